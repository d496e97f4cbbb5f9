from __future__ import annotations

from typing import Optional


class FOBridgeError(Exception):
    """Base exception for all bridge errors."""
    pass


class ConfigError(FOBridgeError):
    """Required configuration is missing or invalid."""
    pass


class AuthenticationError(FOBridgeError):
    """Identity-provider exchange failed or returned an unusable token."""
    pass


class HttpError(FOBridgeError):
    """Backend answered with a non-success status."""

    def __init__(self, status: int, status_text: str, body: Optional[str] = None):
        self.status = status
        self.status_text = status_text
        self.body = body
        super().__init__(f"API request failed: {status} {status_text} - {body or ''}")


class UnexpectedPayloadError(FOBridgeError):
    """Backend answered with success but the body is not JSON (or is HTML)."""

    def __init__(self, message: str, snippet: str = ""):
        self.snippet = snippet
        super().__init__(message)


class PaginationLimitExceeded(FOBridgeError):
    """Continuation chain is longer than the configured page bound."""

    def __init__(self, max_pages: int, next_link: str):
        self.max_pages = max_pages
        self.next_link = next_link
        super().__init__(f"Pagination stopped after {max_pages} pages; backend still returned a next link")
