from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from .client import FOClient
from .config import BackendSettings, config_path, load_config
from .env_utils import first_env
from .errors import FOBridgeError
from .logging_setup import setup_logger
from .observability import InMemoryMetrics, get_shared_metrics
from .repository import ListOptions, records_or_payload
from .resolver import NotFound, Preference

CONFIG = load_config(config_path())
server_cfg = CONFIG.get("server", {})

_shared_client: Optional[FOClient] = None


def get_shared_client() -> Optional[FOClient]:
    return _shared_client


def set_shared_client(client: Optional[FOClient]) -> None:
    """Register the process-wide client so MCP sessions reuse its token cache."""
    global _shared_client
    _shared_client = client


@dataclass
class AppContext:
    config: Dict[str, Any]
    client: FOClient
    logger: logging.Logger
    metrics: InMemoryMetrics


TypedContext = Context[ServerSession, AppContext]


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    logger = setup_logger(CONFIG)
    metrics = get_shared_metrics()

    shared = get_shared_client()
    if shared is not None:
        yield AppContext(config=CONFIG, client=shared, logger=logger, metrics=metrics)
        return

    # stdio mode: this session owns the client
    client = FOClient.from_settings(BackendSettings.from_env(CONFIG))
    try:
        yield AppContext(config=CONFIG, client=client, logger=logger, metrics=metrics)
    finally:
        await client.aclose()


_server_host = first_env("FO_BRIDGE_HOST", default=str(server_cfg.get("host", "127.0.0.1")))
_server_port = int(first_env("FO_BRIDGE_PORT", default=str(server_cfg.get("port", 3000))))

mcp = FastMCP(
    server_cfg.get("name", "dynamics365-fo"),
    lifespan=lifespan,
    host=_server_host,
    port=_server_port,
)


def _require_context(ctx: TypedContext | None) -> TypedContext:
    if ctx is None:
        raise RuntimeError("Context is required")
    return ctx


async def _run_tool(
    ctx: TypedContext | None,
    tool_name: str,
    operation: Callable[[FOClient], Awaitable[Dict[str, Any]]],
) -> Dict[str, Any]:
    """Run one tool against the shared client with timing, metrics and logging."""
    ctx = _require_context(ctx)
    app = ctx.request_context.lifespan_context
    start = time.perf_counter()
    try:
        result = await operation(app.client)
    except FOBridgeError as exc:
        duration_ms = (time.perf_counter() - start) * 1000.0
        app.metrics.record(tool_name, duration_ms, error=type(exc).__name__)
        app.logger.error(
            f"Backend error: {exc}",
            extra={"tool": tool_name, "status": type(exc).__name__, "duration_ms": duration_ms},
        )
        raise
    except Exception as exc:
        duration_ms = (time.perf_counter() - start) * 1000.0
        app.metrics.record(tool_name, duration_ms, error=type(exc).__name__)
        app.logger.error(
            f"Unexpected error: {exc}",
            extra={"tool": tool_name, "status": "error", "duration_ms": duration_ms},
            exc_info=True,
        )
        raise

    duration_ms = (time.perf_counter() - start) * 1000.0
    app.metrics.record(tool_name, duration_ms)
    app.logger.info(
        "Tool call succeeded",
        extra={"tool": tool_name, "status": "ok", "duration_ms": duration_ms},
    )
    return result


def _list_result(entity: str, response: Any) -> Dict[str, Any]:
    payload = records_or_payload(response)
    result: Dict[str, Any] = {"entity": entity, "value": payload}
    if isinstance(payload, list):
        result["count"] = len(payload)
    return result


def _not_found(message: str) -> Dict[str, Any]:
    return {"found": False, "message": message}


@mcp.tool(
    name="fetch_accounts",
    description=(
        "Fetch accounts from Dynamics 365 FO. Provide account_num for a single lookup or OData options "
        "for listing customers. entity_type = customer|vendor|auto (default auto, customer first with "
        "vendor fallback) controls the lookup order."
    ),
)
async def fetch_accounts(
    account_num: Optional[str] = None,
    filter: Optional[str] = None,
    select: Optional[List[str]] = None,
    top: Optional[int] = None,
    orderby: Optional[str] = None,
    cross_company: bool = False,
    fetch_all_pages: bool = False,
    entity_type: Literal["customer", "vendor", "auto"] = "auto",
    ctx: TypedContext | None = None,
) -> Dict[str, Any]:
    async def operation(client: FOClient) -> Dict[str, Any]:
        if account_num:
            preference = Preference.parse(entity_type)
            match = await client.resolve_entity_by_identifier(
                account_num, preference, select=select, cross_company=cross_company
            )
            if isinstance(match, NotFound):
                if preference is Preference.VENDOR_FIRST:
                    return _not_found(f"No vendor or customer found for AccountNum = {account_num}")
                return _not_found(f"No customer or vendor found for AccountNum = {account_num}")
            return match.to_dict()

        # Listing always targets customers; use fetch_vendors for vendor lists
        response = await client.list_customers(
            ListOptions(
                filter=filter,
                select=select,
                top=top,
                orderby=orderby,
                cross_company=cross_company,
                fetch_all_pages=fetch_all_pages,
            )
        )
        return _list_result("customer", response)

    return await _run_tool(ctx, "fetch_accounts", operation)


@mcp.tool(
    name="fetch_vendors",
    description="Fetch vendors from Dynamics 365 FO. Optionally look up by account_num or provide OData options.",
)
async def fetch_vendors(
    account_num: Optional[str] = None,
    filter: Optional[str] = None,
    select: Optional[List[str]] = None,
    top: Optional[int] = None,
    orderby: Optional[str] = None,
    cross_company: bool = False,
    fetch_all_pages: bool = False,
    ctx: TypedContext | None = None,
) -> Dict[str, Any]:
    async def operation(client: FOClient) -> Dict[str, Any]:
        if account_num:
            record = await client.get_vendor_by_account_identifier(
                account_num, select=select, cross_company=cross_company
            )
            if record is None:
                return _not_found(f"No vendor found for VendorAccount = {account_num}")
            return record

        response = await client.list_vendors(
            ListOptions(
                filter=filter,
                select=select,
                top=top,
                orderby=orderby,
                cross_company=cross_company,
                fetch_all_pages=fetch_all_pages,
            )
        )
        return _list_result("vendor", response)

    return await _run_tool(ctx, "fetch_vendors", operation)


@mcp.tool(
    name="fetch_entity_by_id",
    description=(
        "Search customers and vendors in parallel for the given account identifier and return the "
        "matched records with type tags (both when both exist)."
    ),
)
async def fetch_entity_by_id(
    account_num: Optional[str] = None,
    select: Optional[List[str]] = None,
    cross_company: bool = False,
    ctx: TypedContext | None = None,
) -> Dict[str, Any]:
    if not account_num:
        return _not_found("Please provide account_num in the input payload.")

    async def operation(client: FOClient) -> Dict[str, Any]:
        match = await client.resolve_entity_by_identifier(
            account_num, Preference.PARALLEL, select=select, cross_company=cross_company
        )
        if isinstance(match, NotFound):
            return _not_found(f"No customer or vendor found for {account_num}")
        return match.to_dict()

    return await _run_tool(ctx, "fetch_entity_by_id", operation)


@mcp.tool(
    name="search_accounts_by_name",
    description="Search customers or vendors whose name contains the given text.",
)
async def search_accounts_by_name(
    name: str,
    entity_type: Literal["customer", "vendor"] = "customer",
    select: Optional[List[str]] = None,
    top: Optional[int] = None,
    cross_company: bool = False,
    fetch_all_pages: bool = False,
    ctx: TypedContext | None = None,
) -> Dict[str, Any]:
    async def operation(client: FOClient) -> Dict[str, Any]:
        options = ListOptions(
            select=select,
            top=top,
            cross_company=cross_company,
            fetch_all_pages=fetch_all_pages,
        )
        if entity_type == "vendor":
            return _list_result("vendor", await client.list_vendors_by_name(name, options))
        return _list_result("customer", await client.list_customers_by_name(name, options))

    return await _run_tool(ctx, "search_accounts_by_name", operation)


# Hyphenated names kept for clients written against the earlier bridge
TOOL_ALIASES: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
    "fetch-accounts": fetch_accounts,
    "fetch-vendors": fetch_vendors,
    "fetch-entity-by-id": fetch_entity_by_id,
}

for _alias, _tool in TOOL_ALIASES.items():
    mcp.add_tool(_tool, name=_alias, description=f"Alias of {_tool.__name__}.")
