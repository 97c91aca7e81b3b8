"""
Tests for the REST API.
"""

from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import test_utils

from nr_guardian.api import create_app
from nr_guardian.client import NerdGraphClient
from nr_guardian.config import ApiConfig
from nr_guardian.context import GuardianContext
from nr_guardian.graphql.models import GraphQLResponse
from nr_guardian.utils.rate_limit import RateLimiter

from conftest import TEST_ACCOUNT_ID, StubTransport

ATTRIBUTES = {
    "Transaction": ["appName", "duration"],
    "TransactionError": ["appName", "error.message"],
    "SystemSample": ["hostname", "cpuPercent"],
}


class EventTransport(StubTransport):
    """Answers SHOW EVENT TYPES and keyset() NRQL, anything else from the script."""

    async def send(self, request):
        nrql = (request.variables or {}).get("nrqlQuery")
        if nrql is None:
            return await super().send(request)
        self.requests.append(request)
        self.request_count += 1
        if nrql.startswith("SHOW EVENT TYPES"):
            rows = [{"eventType": name} for name in ATTRIBUTES]
        else:
            event_type = nrql.split(" FROM ")[1].split()[0].strip("`")
            names = ATTRIBUTES.get(event_type)
            rows = [{name: None for name in names}] if names else []
        return GraphQLResponse(
            data={"actor": {"account": {"nrql": {"results": rows, "metadata": {}}}}}
        )


def api_client(config, transport, environment="production"):
    config = config.model_copy(update={"api": ApiConfig(environment=environment)})
    client = NerdGraphClient(
        config,
        transport=transport,
        rate_limiter=RateLimiter(config.rate_limit.model_copy(update={"max_requests": 1000})),
    )
    app = create_app(config, GuardianContext(config, client=client))
    return test_utils.TestClient(test_utils.TestServer(app))


@pytest.fixture
def transport():
    return EventTransport()


class TestHealth:
    async def test_health(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/health")
            body = await response.json()

        assert response.status == 200
        assert body["success"] is True
        assert body["status"] == "healthy"
        assert "timestamp" in body
        assert transport.request_count == 0

    async def test_unknown_endpoint(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/api/nothing-here")
            body = await response.json()

        assert response.status == 404
        assert body == {"success": False, "error": "Endpoint not found"}

    async def test_cleanup_closes_transport(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            await http.get("/health")

        assert transport.closed is True


class TestMetrics:
    async def test_discover(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/api/metrics/discover", params={"pattern": "transaction"})
            body = await response.json()

        assert response.status == 200
        assert body["success"] is True
        assert [e["name"] for e in body["eventTypes"]] == ["Transaction", "TransactionError"]
        assert body["total"] == 2

    async def test_discover_limit(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/api/metrics/discover", params={"limit": "1"})
            body = await response.json()

        assert body["count"] == 1
        assert body["total"] == 3

    async def test_search(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/api/metrics/search/appname")
            body = await response.json()

        assert response.status == 200
        assert body["term"] == "appname"
        assert {m["eventType"] for m in body["matches"]} == {"Transaction", "TransactionError"}
        assert all(m["matchType"] == "exact" for m in body["matches"])

    async def test_metadata(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/api/metrics/SystemSample/metadata")
            body = await response.json()

        assert response.status == 200
        assert body["success"] is True
        assert body["metadata"]["eventType"] == "SystemSample"
        assert body["metadata"]["attributes"] == ["cpuPercent", "hostname"]

    async def test_metadata_not_found(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/api/metrics/Missing/metadata")
            body = await response.json()

        assert response.status == 404
        assert body == {"success": False, "error": "Metric not found"}

    async def test_metadata_rejects_unsafe_name(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.get("/api/metrics/Bad%60Name/metadata")
            body = await response.json()

        assert response.status == 400
        assert body["success"] is False
        assert "stack" not in body
        assert transport.request_count == 0


class TestDashboards:
    async def test_validate(self, guardian_config, transport, sample_dashboard):
        async with api_client(guardian_config, transport) as http:
            response = await http.post("/api/dashboards/validate", json={"dashboard": sample_dashboard})
            body = await response.json()

        assert response.status == 200
        assert body["success"] is True
        assert body["valid"] is True
        assert body["errors"] == []
        assert transport.request_count == 0

    async def test_validate_reports_errors(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.post("/api/dashboards/validate", json={"dashboard": {"pages": []}})
            body = await response.json()

        assert response.status == 200
        assert body["success"] is False
        assert body["valid"] is False
        assert body["errors"]

    @pytest.mark.parametrize("path", ["/api/dashboards/validate", "/api/dashboards/deploy"])
    async def test_dashboard_required(self, guardian_config, transport, path):
        async with api_client(guardian_config, transport) as http:
            response = await http.post(path, json={})
            body = await response.json()

        assert response.status == 400
        assert body == {"success": False, "error": "Dashboard configuration required"}

    async def test_body_must_be_json(self, guardian_config, transport):
        async with api_client(guardian_config, transport) as http:
            response = await http.post("/api/dashboards/validate", data="not json")
            body = await response.json()

        assert response.status == 400
        assert body["success"] is False
        assert "JSON" in body["error"]

    async def test_deploy(self, guardian_config, transport, sample_dashboard):
        transport.add({"dashboardCreate": {"entityResult": {"guid": "NEW", "name": "Service Overview"}, "errors": []}})

        async with api_client(guardian_config, transport) as http:
            response = await http.post("/api/dashboards/deploy", json={"dashboard": sample_dashboard})
            body = await response.json()

        assert response.status == 200
        assert body == {"success": True, "deployment": {"guid": "NEW", "name": "Service Overview"}}
        assert transport.requests[0].variables["accountId"] == TEST_ACCOUNT_ID

    async def test_deploy_mutation_errors(self, guardian_config, transport, sample_dashboard):
        transport.add(
            {"dashboardCreate": {"entityResult": None, "errors": [{"type": "INVALID_INPUT", "description": "bad widget"}]}}
        )

        async with api_client(guardian_config, transport) as http:
            response = await http.post("/api/dashboards/deploy", json={"dashboard": sample_dashboard})
            body = await response.json()

        assert response.status == 502
        assert body["success"] is False
        assert "bad widget" in body["error"]

    async def test_deploy_rejects_bad_account(self, guardian_config, transport, sample_dashboard):
        async with api_client(guardian_config, transport) as http:
            response = await http.post(
                "/api/dashboards/deploy", json={"dashboard": sample_dashboard, "accountId": "abc"}
            )

        assert response.status == 400
        assert transport.request_count == 0


class TestErrorEnvelope:
    async def test_production_hides_stack(self, guardian_config, transport):
        with patch(
            "nr_guardian.services.schema.SchemaService.discover_event_types",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            async with api_client(guardian_config, transport) as http:
                response = await http.get("/api/metrics/discover")
                body = await response.json()

        assert response.status == 500
        assert body == {"success": False, "error": "boom"}

    async def test_development_includes_stack(self, guardian_config, transport):
        with patch(
            "nr_guardian.services.schema.SchemaService.discover_event_types",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            async with api_client(guardian_config, transport, environment="development") as http:
                response = await http.get("/api/metrics/discover")
                body = await response.json()

        assert response.status == 500
        assert body["success"] is False
        assert "RuntimeError: boom" in body["stack"]
