from __future__ import annotations

import httpx
import pytest

from fo_bridge.errors import AuthenticationError, HttpError, UnexpectedPayloadError
from fo_bridge.transport import REDACTED_AUTHORIZATION, ODataTransport, RequestContext, join_url, looks_like_html

from conftest import FakeCredential, RecordingHandler


def _transport(authenticator, handler: RecordingHandler) -> ODataTransport:
    return ODataTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)), authenticator)


class TestUrlJoining:
    @pytest.mark.parametrize(
        "base,endpoint",
        [
            ("https://fo.example", "data/CustomersV3"),
            ("https://fo.example/", "data/CustomersV3"),
            ("https://fo.example", "/data/CustomersV3"),
            ("https://fo.example/", "/data/CustomersV3"),
        ],
    )
    def test_exactly_one_slash(self, base: str, endpoint: str) -> None:
        assert join_url(base, endpoint) == "https://fo.example/data/CustomersV3"

    def test_absolute_url_passes_through(self) -> None:
        link = "https://other.example/data/CustomersV3?$skiptoken=2"
        assert join_url("https://fo.example", link) == link


class TestRequest:
    @pytest.mark.asyncio
    async def test_headers_and_parsed_body(self, authenticator) -> None:
        handler = RecordingHandler(httpx.Response(200, json={"value": [{"CustomerAccount": "C001"}]}))
        transport = _transport(authenticator, handler)

        result = await transport.request("data/CustomersV3?$top=1")

        assert result == {"value": [{"CustomerAccount": "C001"}]}
        sent = handler.requests[0]
        assert str(sent.url) == "http://fo.test/data/CustomersV3?$top=1"
        assert sent.method == "GET"
        assert sent.headers["Authorization"] == "Bearer token-1"
        assert sent.headers["Accept"] == "application/json"
        assert sent.headers["OData-Version"] == "4.0"
        assert sent.headers["OData-MaxVersion"] == "4.0"

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self, authenticator) -> None:
        transport = _transport(authenticator, RecordingHandler(httpx.Response(204)))
        assert await transport.request("data/CustomersV3") is None

    @pytest.mark.asyncio
    async def test_error_status_raises_http_error(self, authenticator) -> None:
        handler = RecordingHandler(httpx.Response(403, text='{"error":"forbidden"}'))
        transport = _transport(authenticator, handler)

        with pytest.raises(HttpError) as exc_info:
            await transport.request("data/CustomersV3")

        assert exc_info.value.status == 403
        assert exc_info.value.status_text == "Forbidden"
        assert exc_info.value.body == '{"error":"forbidden"}'

    @pytest.mark.asyncio
    async def test_html_with_success_status_is_rejected(self, authenticator) -> None:
        html = "<!DOCTYPE html><html><head><title>Sign in</title></head></html>"
        transport = _transport(authenticator, RecordingHandler(httpx.Response(200, text=html)))

        with pytest.raises(UnexpectedPayloadError):
            await transport.request("data/CustomersV3")

    @pytest.mark.asyncio
    async def test_invalid_json_is_rejected(self, authenticator) -> None:
        transport = _transport(authenticator, RecordingHandler(httpx.Response(200, text="not json at all")))

        with pytest.raises(UnexpectedPayloadError) as exc_info:
            await transport.request("data/CustomersV3")
        assert "non-JSON" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self, authenticator) -> None:
        handler = RecordingHandler(httpx.Response(500), httpx.Response(200, json={}))
        transport = _transport(authenticator, handler)

        with pytest.raises(HttpError):
            await transport.request("data/CustomersV3")
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_authentication_failure_sends_nothing(self, clock) -> None:
        from fo_bridge.auth import Authenticator

        auth = Authenticator(FakeCredential(clock, error=RuntimeError("bad secret")), "http://fo.test", clock=clock)
        handler = RecordingHandler()
        transport = _transport(auth, handler)

        with pytest.raises(AuthenticationError):
            await transport.request("data/CustomersV3")
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_json_body_is_serialised(self, authenticator) -> None:
        handler = RecordingHandler(httpx.Response(200, json={"ok": True}))
        transport = _transport(authenticator, handler)

        await transport.request("data/Echo", method="post", body={"a": 1})

        sent = handler.requests[0]
        assert sent.method == "POST"
        assert sent.content == b'{"a": 1}'


def test_masked_headers_hide_token() -> None:
    ctx = RequestContext(
        url="http://fo.test/data/CustomersV3",
        method="GET",
        headers={"Authorization": "Bearer secret-token", "Accept": "application/json"},
    )
    masked = ctx.masked_headers()
    assert masked["Authorization"] == REDACTED_AUTHORIZATION
    assert "secret-token" not in str(masked)
    assert ctx.headers["Authorization"] == "Bearer secret-token"


def test_html_detection() -> None:
    assert looks_like_html("<!DOCTYPE html><html></html>")
    assert looks_like_html("  <!doctype HTML>")
    assert looks_like_html("<html><body></body></html>")
    assert not looks_like_html('{"value": []}')
