"""
FastAPI surface for the bridge.

- Plain HTTP query API for customers, vendors and combined lookups
- Bearer token middleware (mandatory in production)
- Streamable-HTTP MCP mounted at /mcp
- Healthcheck and Prometheus metrics
"""
from __future__ import annotations

import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from .client import FOClient
from .config import BackendSettings
from .env_utils import env_flag, is_production_env
from .errors import FOBridgeError, HttpError
from .observability import format_prometheus, get_shared_metrics
from .repository import ListOptions, records_or_payload
from .resolver import NotFound, Preference
from .server import CONFIG, mcp, set_shared_client

logger = logging.getLogger("fo_bridge.http_app")

PUBLIC_PATHS = ("/health", "/metrics")


class BearerTokenAuthMiddleware(BaseHTTPMiddleware):
    """Checks `Authorization: Bearer <FO_BRIDGE_TOKEN>` on every non-public path."""

    def __init__(self, app: ASGIApp, expected_token: str | None = None) -> None:
        super().__init__(app)
        self.expected_token = (expected_token or os.getenv("FO_BRIDGE_TOKEN", "")).strip()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in PUBLIC_PATHS:
            return await call_next(request)

        if is_production_env() and not self.expected_token:
            logger.error("[Auth] FO_BRIDGE_TOKEN not set in production")
            return JSONResponse(
                {"error": "server_error", "message": "FO_BRIDGE_TOKEN not configured"},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        if self.expected_token:
            auth_header = request.headers.get("authorization", "")
            if not auth_header.startswith("Bearer "):
                logger.warning(f"[Auth] Missing or invalid Authorization header for {request.method} {path}")
                return JSONResponse(
                    {"error": "unauthorized", "message": "Missing or invalid Authorization header"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )
            if not hmac.compare_digest(auth_header[7:], self.expected_token):
                logger.warning(f"[Auth] Invalid token for {request.method} {path}")
                return JSONResponse(
                    {"error": "unauthorized", "message": "Invalid token"},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": "Bearer"},
                )

        return await call_next(request)


def _is_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


def _query_param(request: Request, *names: str) -> Optional[str]:
    for name in names:
        value = request.query_params.get(name)
        if value:
            return value
    return None


def _select_from_query(request: Request) -> Optional[list[str]]:
    raw = _query_param(request, "$select", "select")
    if not raw:
        return None
    return [field.strip() for field in raw.split(",") if field.strip()]


def _cross_company_from_query(request: Request) -> bool:
    return _is_true(request.query_params.get("crossCompany")) or _is_true(request.query_params.get("cross-company"))


def _list_options_from_query(request: Request) -> ListOptions:
    raw_top = _query_param(request, "$top", "top")
    top = None
    if raw_top is not None:
        try:
            top = int(raw_top)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"top must be an integer, got '{raw_top}'")
    return ListOptions(
        filter=_query_param(request, "$filter", "filter"),
        select=_select_from_query(request),
        top=top,
        orderby=_query_param(request, "$orderby", "orderby"),
        cross_company=_cross_company_from_query(request),
        fetch_all_pages=_is_true(request.query_params.get("fetchAllPages")),
    )


def _client(request: Request) -> FOClient:
    client = request.app.state.client
    if client is None:
        raise HTTPException(status_code=503, detail="Backend client not initialised")
    return client


def create_app(
    client: FOClient | None = None,
    mount_mcp: bool | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """
    Build the HTTP app.

    When `client` is None one is created from the environment at startup and
    closed on shutdown. `mount_mcp` defaults to true unless DISABLE_MCP=true.
    `cors_origins` defaults to `http.cors_origins` from the config file.
    """
    if mount_mcp is None:
        mount_mcp = not env_flag("DISABLE_MCP")
    if cors_origins is None:
        cors_origins = list((CONFIG.get("http") or {}).get("cors_origins", ["*"]))
    mcp_asgi = mcp.streamable_http_app() if mount_mcp else None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned: FOClient | None = None
        if app.state.client is None:
            owned = FOClient.from_settings(BackendSettings.from_env(CONFIG))
            app.state.client = owned
        set_shared_client(app.state.client)
        try:
            if mcp_asgi is not None:
                async with mcp.session_manager.run():
                    logger.info("MCP streamable-HTTP endpoint ready at /mcp")
                    yield
            else:
                logger.info("MCP transport disabled; serving the HTTP API only")
                yield
        finally:
            set_shared_client(None)
            if owned is not None:
                await owned.aclose()
                app.state.client = None

    app = FastAPI(
        title="Dynamics 365 FO Bridge",
        description="Customer and vendor lookups against Dynamics 365 Finance & Operations",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.client = client
    app.add_middleware(BearerTokenAuthMiddleware)
    # Added last so it is outermost: preflights never reach the bearer check
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Mcp-Session-Id"],
    )

    @app.exception_handler(FOBridgeError)
    async def bridge_error_handler(request: Request, exc: FOBridgeError) -> JSONResponse:
        logger.error(f"Error in {request.method} {request.url.path}: {exc}")
        content: dict[str, Any] = {"error": str(exc), "type": type(exc).__name__}
        if isinstance(exc, HttpError):
            content["status"] = exc.status
            content["body"] = exc.body
        return JSONResponse(content, status_code=500)

    @app.exception_handler(httpx.HTTPError)
    async def network_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
        logger.error(f"Network error in {request.method} {request.url.path}: {exc}")
        return JSONResponse({"error": str(exc) or type(exc).__name__, "type": type(exc).__name__}, status_code=500)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "status": "healthy"}

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=format_prometheus(get_shared_metrics()), media_type="text/plain; version=0.0.4")

    @app.get("/customers")
    async def list_customers(request: Request) -> Any:
        response = await _client(request).list_customers(_list_options_from_query(request))
        return records_or_payload(response)

    @app.get("/customers/{account}")
    async def get_customer(account: str, request: Request) -> Any:
        record = await _client(request).get_customer_by_account_identifier(
            account,
            select=_select_from_query(request),
            cross_company=_cross_company_from_query(request),
        )
        if record is None:
            return JSONResponse({"message": "Not found", "account": account}, status_code=404)
        return record

    @app.get("/vendors")
    async def list_vendors(request: Request) -> Any:
        response = await _client(request).list_vendors(_list_options_from_query(request))
        return records_or_payload(response)

    @app.get("/vendors/{vendor_account}")
    async def get_vendor(vendor_account: str, request: Request) -> Any:
        record = await _client(request).get_vendor_by_account_identifier(
            vendor_account,
            select=_select_from_query(request),
            cross_company=_cross_company_from_query(request),
        )
        if record is None:
            return JSONResponse({"message": "Not found", "vendorAccount": vendor_account}, status_code=404)
        return record

    @app.get("/entities/{account}")
    async def resolve_entity(account: str, request: Request) -> Any:
        try:
            preference = Preference.parse(request.query_params.get("preference", "parallel"))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        match = await _client(request).resolve_entity_by_identifier(
            account,
            preference,
            select=_select_from_query(request),
            cross_company=_cross_company_from_query(request),
        )
        if isinstance(match, NotFound):
            return JSONResponse({"message": "Not found", "account": account}, status_code=404)
        return match.to_dict()

    # Last, so the routes above take precedence over the MCP app's catch-all
    if mcp_asgi is not None:
        app.mount("/", mcp_asgi)

    return app
