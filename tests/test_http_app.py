"""
HTTP API tests with FastAPI's TestClient and a stubbed FOClient.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from fo_bridge.errors import HttpError, UnexpectedPayloadError
from fo_bridge.http_app import create_app
from fo_bridge.pagination import AggregatedResult
from fo_bridge.resolver import BothMatch, NotFound


@pytest.fixture
def fo_client() -> MagicMock:
    client = MagicMock()
    client.list_customers = AsyncMock(return_value={"value": [{"CustomerAccount": "C001"}]})
    client.list_vendors = AsyncMock(return_value=AggregatedResult(records=[{"VendorAccountNumber": "V1"}]))
    client.get_customer_by_account_identifier = AsyncMock(return_value={"CustomerAccount": "C001"})
    client.get_vendor_by_account_identifier = AsyncMock(return_value=None)
    client.resolve_entity_by_identifier = AsyncMock(
        return_value=BothMatch(customer={"CustomerAccount": "C001"}, vendor={"VendorAccountNumber": "C001"})
    )
    return client


@pytest.fixture
def http(fo_client, monkeypatch) -> TestClient:
    monkeypatch.delenv("FO_BRIDGE_TOKEN", raising=False)
    for name in ("ENVIRONMENT", "APP_ENV", "NODE_ENV"):
        monkeypatch.delenv(name, raising=False)
    return TestClient(create_app(client=fo_client, mount_mcp=False))


def test_health(http) -> None:
    response = http.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "status": "healthy"}


def test_metrics_is_prometheus_text(http) -> None:
    response = http.get("/metrics")
    assert response.status_code == 200
    assert "fo_bridge_healthy 1" in response.text


class TestCustomers:
    def test_list_passes_odata_params(self, http, fo_client) -> None:
        response = http.get(
            "/customers",
            params={"$filter": "Name eq 'A'", "select": "CustomerAccount,Name", "top": "5", "crossCompany": "true"},
        )

        assert response.status_code == 200
        assert response.json() == [{"CustomerAccount": "C001"}]
        options = fo_client.list_customers.await_args.args[0]
        assert options.filter == "Name eq 'A'"
        assert options.select == ["CustomerAccount", "Name"]
        assert options.top == 5
        assert options.cross_company is True
        assert options.fetch_all_pages is False

    def test_fetch_all_pages_flag(self, http, fo_client) -> None:
        http.get("/customers", params={"fetchAllPages": "true", "cross-company": "true"})
        options = fo_client.list_customers.await_args.args[0]
        assert options.fetch_all_pages is True
        assert options.cross_company is True

    def test_invalid_top_is_400(self, http) -> None:
        assert http.get("/customers", params={"top": "many"}).status_code == 400

    def test_get_by_account(self, http, fo_client) -> None:
        response = http.get("/customers/C001", params={"$select": "Name"})

        assert response.status_code == 200
        assert response.json() == {"CustomerAccount": "C001"}
        fo_client.get_customer_by_account_identifier.assert_awaited_once_with(
            "C001", select=["Name"], cross_company=False
        )

    def test_backend_error_is_500(self, http, fo_client) -> None:
        fo_client.get_customer_by_account_identifier.side_effect = HttpError(401, "Unauthorized", "nope")

        response = http.get("/customers/C001")

        assert response.status_code == 500
        body = response.json()
        assert body["type"] == "HttpError"
        assert body["status"] == 401

    def test_html_payload_error_is_500(self, http, fo_client) -> None:
        fo_client.list_customers.side_effect = UnexpectedPayloadError("Response OK but received non-JSON payload")
        response = http.get("/customers")
        assert response.status_code == 500
        assert response.json()["type"] == "UnexpectedPayloadError"


class TestVendors:
    def test_list_aggregated(self, http) -> None:
        response = http.get("/vendors", params={"fetchAllPages": "true"})
        assert response.json() == [{"VendorAccountNumber": "V1"}]

    def test_missing_vendor_is_404(self, http) -> None:
        response = http.get("/vendors/V9")
        assert response.status_code == 404
        assert response.json() == {"message": "Not found", "vendorAccount": "V9"}


class TestEntities:
    def test_parallel_by_default(self, http, fo_client) -> None:
        response = http.get("/entities/C001")

        assert response.status_code == 200
        assert set(response.json()) == {"customer", "vendor"}
        assert fo_client.resolve_entity_by_identifier.await_args.args[1].value == "parallel"

    def test_not_found(self, http, fo_client) -> None:
        fo_client.resolve_entity_by_identifier.return_value = NotFound()
        assert http.get("/entities/X", params={"preference": "vendor"}).status_code == 404

    def test_bad_preference(self, http) -> None:
        assert http.get("/entities/X", params={"preference": "supplier"}).status_code == 400


PREFLIGHT = {"Origin": "https://app.example", "Access-Control-Request-Method": "GET"}


class TestCors:
    def test_preflight_allowed_by_default(self, http) -> None:
        response = http.options("/customers", headers=PREFLIGHT)

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_simple_request_carries_origin_header(self, http) -> None:
        response = http.get("/vendors", headers={"Origin": "https://app.example"})
        assert response.headers["access-control-allow-origin"] == "*"

    def test_preflight_bypasses_bearer_token(self, fo_client, monkeypatch) -> None:
        monkeypatch.setenv("FO_BRIDGE_TOKEN", "s3cret")
        http = TestClient(create_app(client=fo_client, mount_mcp=False))

        response = http.options(
            "/customers",
            headers={**PREFLIGHT, "Access-Control-Request-Headers": "authorization"},
        )

        assert response.status_code == 200

    def test_configured_origins(self, fo_client) -> None:
        http = TestClient(create_app(client=fo_client, mount_mcp=False, cors_origins=["https://ops.example"]))

        allowed = http.options("/customers", headers={**PREFLIGHT, "Origin": "https://ops.example"})
        denied = http.options("/customers", headers=PREFLIGHT)

        assert allowed.headers["access-control-allow-origin"] == "https://ops.example"
        assert denied.status_code == 400
        assert "access-control-allow-origin" not in denied.headers


class TestBearerAuth:
    def test_token_required_when_configured(self, fo_client, monkeypatch) -> None:
        monkeypatch.setenv("FO_BRIDGE_TOKEN", "s3cret")
        http = TestClient(create_app(client=fo_client, mount_mcp=False))

        assert http.get("/customers").status_code == 401
        assert http.get("/customers", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert http.get("/customers", headers={"Authorization": "Bearer s3cret"}).status_code == 200
        assert http.get("/health").status_code == 200

    def test_production_without_token_is_503(self, fo_client, monkeypatch) -> None:
        monkeypatch.delenv("FO_BRIDGE_TOKEN", raising=False)
        monkeypatch.setenv("ENVIRONMENT", "production")
        http = TestClient(create_app(client=fo_client, mount_mcp=False))

        assert http.get("/customers").status_code == 503
        assert http.get("/health").status_code == 200
