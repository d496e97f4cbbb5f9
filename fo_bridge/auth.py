"""
Application token acquisition for the Finance & Operations backend.

Client-credential exchange against Azure AD, scoped to `{origin}/.default`.
The last credential is cached per Authenticator and reused until it comes
within the renewal skew of its expiry.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from .errors import AuthenticationError

logger = logging.getLogger("fo_bridge.auth")

RENEWAL_SKEW_SECONDS = 180.0

_TRAILING_JUNK = re.compile(r"[,/]+$")


def sanitize_base_url(url: str) -> str:
    """
    Strip whitespace, surrounding quotes, trailing commas and trailing slashes.

    Repeats until stable so combinations like `"https://x/",` come out clean.
    """
    cleaned = url or ""
    while True:
        previous = cleaned
        cleaned = cleaned.strip().strip("'\"")
        cleaned = _TRAILING_JUNK.sub("", cleaned)
        if cleaned == previous:
            return cleaned


def resource_origin(base_url: str) -> str:
    """Scheme and host of the backend URL, the audience of the token scope."""
    parts = urlsplit(base_url)
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}"
    return base_url


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at_epoch_ms: float

    def is_usable(self, now_ms: float, skew_ms: float) -> bool:
        return now_ms < self.expires_at_epoch_ms - skew_ms


def build_client_secret_credential(tenant_id: str, client_id: str, client_secret: str, authority_host: str) -> Any:
    from azure.identity.aio import ClientSecretCredential

    return ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
        authority=authority_host,
    )


class Authenticator:
    """
    Owns the cached Credential for one backend connection.

    `credential` is any object with an async `get_token(*scopes)` returning
    an object with `token` and `expires_on` (epoch seconds), i.e. an
    azure-identity async credential.
    """

    def __init__(
        self,
        credential: Any,
        base_url: str,
        renewal_skew_seconds: float = RENEWAL_SKEW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credential = credential
        self.base_url = sanitize_base_url(base_url)
        self.scope = f"{resource_origin(self.base_url)}/.default"
        self._skew_ms = renewal_skew_seconds * 1000.0
        self._clock = clock
        self._cached: Optional[Credential] = None
        self._refresh_lock = asyncio.Lock()

    @classmethod
    def for_client_secret(
        cls,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        base_url: str,
        authority_host: str = "https://login.microsoftonline.com",
        renewal_skew_seconds: float = RENEWAL_SKEW_SECONDS,
    ) -> "Authenticator":
        credential = build_client_secret_credential(tenant_id, client_id, client_secret, authority_host)
        return cls(credential, base_url, renewal_skew_seconds=renewal_skew_seconds)

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _cached_token(self) -> Optional[str]:
        cached = self._cached
        if cached is not None and cached.is_usable(self._now_ms(), self._skew_ms):
            return cached.token
        return None

    async def get_valid_token(self) -> str:
        token = self._cached_token()
        if token is not None:
            return token

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited
            token = self._cached_token()
            if token is not None:
                return token
            self._cached = await self._exchange()
            return self._cached.token

    async def _exchange(self) -> Credential:
        try:
            access_token = await self._credential.get_token(self.scope)
        except Exception as exc:
            logger.error(f"Failed to authenticate with Azure AD: {exc}")
            raise AuthenticationError(f"Failed to authenticate with Dynamics 365 FO: {exc}") from exc

        token = getattr(access_token, "token", None)
        if not token:
            logger.error("Token acquisition returned no access token")
            raise AuthenticationError("Token acquisition failed: response is null or invalid.")

        expires_on = getattr(access_token, "expires_on", None) or 0
        logger.info("Token acquired and cached", extra={"status": "ok"})
        return Credential(token=token, expires_at_epoch_ms=float(expires_on) * 1000.0)

    async def close(self) -> None:
        close = getattr(self._credential, "close", None)
        if close is not None:
            await close()
