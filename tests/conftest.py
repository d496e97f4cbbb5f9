from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

import httpx
import pytest
import pytest_asyncio

from fo_bridge.auth import Authenticator
from fo_bridge.client import FOClient
from fo_bridge.observability import InMemoryMetrics, set_shared_metrics

BACKEND_URL = "http://fo.test"


@dataclass
class FakeAccessToken:
    token: str
    expires_on: int


class FakeCredential:
    """Stands in for azure.identity.aio.ClientSecretCredential."""

    def __init__(self, clock: "FakeClock", lifetime_seconds: int = 600, error: Optional[Exception] = None):
        self.clock = clock
        self.lifetime_seconds = lifetime_seconds
        self.error = error
        self.calls: List[tuple] = []
        self.closed = False

    async def get_token(self, *scopes: str) -> Any:
        self.calls.append(scopes)
        if self.error is not None:
            raise self.error
        return FakeAccessToken(
            token=f"token-{len(self.calls)}",
            expires_on=int(self.clock() + self.lifetime_seconds),
        )

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def fresh_metrics():
    set_shared_metrics(InMemoryMetrics())
    yield
    set_shared_metrics(None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credential(clock: FakeClock) -> FakeCredential:
    return FakeCredential(clock)


@pytest.fixture
def authenticator(credential: FakeCredential, clock: FakeClock) -> Authenticator:
    return Authenticator(credential, BACKEND_URL, clock=clock)


@pytest_asyncio.fixture
async def dev_backend_client(authenticator: Authenticator):
    """FOClient wired to the in-process fake OData service."""
    from dev_backend.main import app as dev_app

    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=dev_app))
    client = FOClient(authenticator, http_client, max_pages=50)
    yield client
    await client.aclose()


class RecordingHandler:
    """httpx.MockTransport handler returning queued responses and keeping requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            return httpx.Response(200, json={"value": []})
        return self.responses.pop(0)


@pytest.fixture
def make_client(authenticator: Authenticator):
    """Factory for an FOClient backed by an httpx.MockTransport handler."""

    def factory(handler: RecordingHandler, max_pages: Optional[int] = None) -> FOClient:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return FOClient(authenticator, http_client, max_pages=max_pages)

    return factory


@pytest.fixture
def recording_handler():
    return RecordingHandler
