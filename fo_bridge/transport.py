from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from .auth import Authenticator
from .config import HttpLimits
from .errors import HttpError, UnexpectedPayloadError

logger = logging.getLogger("fo_bridge.transport")

REDACTED_AUTHORIZATION = "Bearer [REDACTED]"


def join_url(base_url: str, endpoint: str) -> str:
    """Absolute URLs pass through; otherwise exactly one "/" joins base and path."""
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    return f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"


def looks_like_html(text: str) -> bool:
    head = text.lstrip()[:64].lower()
    return head.startswith("<!doctype html") or "<html" in text.lower()


def build_http_client(limits: Optional[HttpLimits] = None) -> httpx.AsyncClient:
    limits = limits or HttpLimits()
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
        ),
        timeout=httpx.Timeout(
            connect=limits.connect_timeout,
            read=limits.read_timeout,
            write=limits.write_timeout,
            pool=limits.pool_timeout,
        ),
        follow_redirects=False,
    )


@dataclass
class RequestContext:
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    def masked_headers(self) -> Dict[str, str]:
        masked = dict(self.headers)
        if "Authorization" in masked:
            masked["Authorization"] = REDACTED_AUTHORIZATION
        return masked


class ODataTransport:
    """
    Issues authenticated requests against the backend and validates payloads.

    No retries: every failure reaches the caller.
    """

    def __init__(self, http_client: httpx.AsyncClient, authenticator: Authenticator) -> None:
        self.http_client = http_client
        self.authenticator = authenticator

    @property
    def base_url(self) -> str:
        return self.authenticator.base_url

    async def _prepare(
        self,
        endpoint: str,
        method: str,
        body: Any = None,
        additional_headers: Optional[Dict[str, str]] = None,
    ) -> RequestContext:
        token = await self.authenticator.get_valid_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        }
        if additional_headers:
            headers.update(additional_headers)
        return RequestContext(
            url=join_url(self.base_url, endpoint),
            method=method.upper(),
            headers=headers,
            body=body,
        )

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        additional_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Return the parsed JSON body, or None for an empty body."""
        ctx = await self._prepare(endpoint, method, body, additional_headers)
        logger.info(f"Request: {ctx.method} {ctx.url}")
        logger.debug(f"Headers: {ctx.masked_headers()}")
        if body is not None:
            logger.debug(f"Body: {json.dumps(body, default=str)}")

        try:
            response = await self.http_client.request(
                method=ctx.method,
                url=ctx.url,
                headers=ctx.headers,
                content=json.dumps(body) if body is not None else None,
            )
        except httpx.HTTPError as exc:
            logger.error(f"API request to {ctx.url} failed: {exc}")
            raise

        text = response.text
        if not response.is_success:
            logger.error(
                f"Request failed: {response.status_code} {response.reason_phrase} url={ctx.url} body={text[:500]}"
            )
            raise HttpError(response.status_code, response.reason_phrase, text)

        if not text or not text.strip():
            return None

        # A 200 HTML page is a login or redirect screen, not data
        if looks_like_html(text):
            logger.error(
                "Received HTML instead of JSON; this usually means an access or permission problem. "
                f"snippet={text[:300]}"
            )
            raise UnexpectedPayloadError(
                f"Response OK but received non-JSON payload: {text[:100]}...", snippet=text[:300]
            )

        try:
            return json.loads(text)
        except ValueError as exc:
            raise UnexpectedPayloadError(
                f"Response OK but received non-JSON payload: {text[:100]}...", snippet=text[:300]
            ) from exc
