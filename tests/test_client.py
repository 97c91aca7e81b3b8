"""
Tests for the NerdGraph client and its domain operations.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from nr_guardian.client import NerdGraphClient, validate_account_id
from nr_guardian.config import GuardianConfig
from nr_guardian.exceptions import (
    ConfigError,
    DashboardCreateError,
    DashboardDeleteError,
    GraphQLError,
    QueryError,
    RateLimitError,
    TransportError,
    ValidationError,
)
from nr_guardian.graphql.models import GraphQLErrorDetail

from conftest import TEST_ACCOUNT_ID, StubTransport


def nrql_data(results):
    return {"actor": {"account": {"nrql": {"results": results, "metadata": {"eventTypes": ["Transaction"]}}}}}


class TestValidation:
    """Test input checks that run before any request."""

    @pytest.mark.parametrize("value, expected", [(1, 1), ("42", 42), (" 7 ", 7)])
    def test_valid_account_ids(self, value, expected):
        assert validate_account_id(value) == expected

    @pytest.mark.parametrize("value", [0, -5, "abc", None, True, 1.5])
    def test_invalid_account_ids(self, value):
        with pytest.raises(ValidationError):
            validate_account_id(value)

    async def test_no_network_on_invalid_input(self, client, stub_transport, sample_dashboard):
        with pytest.raises(ValidationError):
            await client.create_dashboard("not-an-id", sample_dashboard)
        with pytest.raises(ValidationError):
            await client.create_dashboard(TEST_ACCOUNT_ID, {"pages": []})
        with pytest.raises(ValidationError):
            await client.get_dashboard("  ")
        with pytest.raises(ValidationError):
            await client.run_nrql(TEST_ACCOUNT_ID, "")

        assert stub_transport.requests == []

    def test_missing_api_key(self):
        with pytest.raises(ConfigError):
            NerdGraphClient(GuardianConfig())


class TestPipeline:
    """Test rate limiting and retries around the transport."""

    async def test_rate_limiter_gates_every_attempt(self, guardian_config):
        transport = StubTransport(
            [TransportError("reset"), TransportError("reset"), {"actor": {"user": {"name": "Ada"}}}]
        )
        limiter = MagicMock()
        limiter.check_limit = AsyncMock()
        client = NerdGraphClient(guardian_config, transport=transport, rate_limiter=limiter)

        data = await client.query("{ actor { user { name } } }")

        assert data == {"actor": {"user": {"name": "Ada"}}}
        assert limiter.check_limit.await_count == 3
        assert transport.request_count == 3

    async def test_documents_are_optimized(self, client, stub_transport):
        stub_transport.add({"actor": {"user": {"name": "Ada"}}})

        await client.test_connection()

        assert "\n" not in stub_transport.requests[0].query

    async def test_get_stats(self, client, stub_transport):
        stub_transport.add({"actor": {"user": {}}})
        await client.test_connection()

        stats = client.get_stats()
        assert stats["requests_sent"] == 1
        assert stats["rate_limiter"]["total_admitted"] == 1


class TestNrql:
    """Test NRQL execution and error mapping."""

    async def test_results_and_suggestions(self, client, stub_transport):
        stub_transport.add(nrql_data([{"count": 10}]))

        result = await client.run_nrql(TEST_ACCOUNT_ID, "SELECT count(*) FROM Transaction")

        assert result.results == [{"count": 10}]
        assert result.metadata["eventTypes"] == ["Transaction"]
        assert any("SINCE" in s for s in result.suggestions)
        variables = dict(stub_transport.requests[0].variables)
        assert variables == {"accountId": TEST_ACCOUNT_ID, "nrqlQuery": "SELECT count(*) FROM Transaction"}

    async def test_graphql_error_becomes_query_error(self, client, stub_transport):
        stub_transport.add(GraphQLError("bad", errors=[GraphQLErrorDetail("NRQL Syntax error")]))

        with pytest.raises(QueryError) as exc_info:
            await client.run_nrql(TEST_ACCOUNT_ID, "SELEC * FROM Transaction")

        assert exc_info.value.query == "SELEC * FROM Transaction"
        assert exc_info.value.messages == ["NRQL Syntax error"]
        assert exc_info.value.suggestions
        assert stub_transport.request_count == 1

    async def test_rate_limit_passes_through_after_retries(self, client, stub_transport):
        stub_transport.add(*[RateLimitError("429", status_code=429) for _ in range(4)])

        with pytest.raises(RateLimitError):
            await client.run_nrql(TEST_ACCOUNT_ID, "SELECT count(*) FROM Transaction SINCE 1 hour ago")

        assert stub_transport.request_count == 4

    async def test_event_types_and_attributes(self, client, stub_transport):
        stub_transport.add(
            nrql_data([{"eventType": "Transaction"}, {"eventType": "PageView"}]),
            nrql_data([{"appName": "api", "duration": 0.2}]),
            GraphQLError("unknown event type"),
        )

        assert await client.get_event_types(TEST_ACCOUNT_ID) == ["Transaction", "PageView"]
        assert await client.get_event_attributes(TEST_ACCOUNT_ID, "Transaction") == ["appName", "duration"]
        assert await client.get_event_attributes(TEST_ACCOUNT_ID, "Missing") == []

        sent = [request.variables["nrqlQuery"] for request in stub_transport.requests]
        assert sent[1] == "SELECT keyset() FROM `Transaction` SINCE 1 day ago LIMIT 1"

    async def test_event_attributes_reject_unsafe_input(self, client, stub_transport):
        with pytest.raises(ValidationError, match="Invalid event type"):
            await client.get_event_attributes(TEST_ACCOUNT_ID, "Transaction` SINCE 1 week ago")
        with pytest.raises(ValidationError, match="Invalid SINCE"):
            await client.get_event_types(TEST_ACCOUNT_ID, since="1 day ago\nFACET name")

        assert stub_transport.request_count == 0


class TestDashboards:
    """Test dashboard operations and mutation errors."""

    async def test_create_then_get_round_trip(self, client, stub_transport, sample_dashboard):
        stub_transport.add(
            {"dashboardCreate": {"entityResult": {"guid": "DASH-1", "name": "Service Overview"}, "errors": []}},
            {"actor": {"entity": {"guid": "DASH-1", **sample_dashboard}}},
        )

        created = await client.create_dashboard(TEST_ACCOUNT_ID, sample_dashboard)
        fetched = await client.get_dashboard(created["guid"])

        assert created == {"guid": "DASH-1", "name": "Service Overview"}
        assert fetched["name"] == sample_dashboard["name"]
        assert fetched["pages"] == sample_dashboard["pages"]

        create_vars = dict(stub_transport.requests[0].variables)
        assert create_vars["accountId"] == TEST_ACCOUNT_ID
        assert create_vars["dashboard"]["name"] == "Service Overview"
        assert dict(stub_transport.requests[1].variables) == {"guid": "DASH-1"}

    async def test_mutation_errors_not_retried(self, client, stub_transport, sample_dashboard):
        errors = [{"type": "INVALID_INPUT", "description": "Widget has no query"}]
        stub_transport.add({"dashboardCreate": {"entityResult": None, "errors": errors}})

        with pytest.raises(DashboardCreateError) as exc_info:
            await client.create_dashboard(TEST_ACCOUNT_ID, sample_dashboard)

        assert exc_info.value.errors == errors
        assert "INVALID_INPUT: Widget has no query" in exc_info.value.message
        assert stub_transport.request_count == 1

    async def test_get_missing_dashboard(self, client, stub_transport):
        stub_transport.add({"actor": {"entity": None}})
        assert await client.get_dashboard("MISSING") is None

    async def test_delete(self, client, stub_transport):
        stub_transport.add(
            {"dashboardDelete": {"status": "SUCCESS", "errors": []}},
            {"dashboardDelete": {"status": None, "errors": [{"type": "FORBIDDEN", "description": "no"}]}},
        )

        assert await client.delete_dashboard("DASH-1") is True
        with pytest.raises(DashboardDeleteError):
            await client.delete_dashboard("DASH-2")

    async def test_list_dashboards(self, client, stub_transport):
        entities = [{"guid": f"D{i}", "name": f"Dash {i}"} for i in range(5)]
        stub_transport.add({"actor": {"entitySearch": {"results": {"entities": entities}}}})

        dashboards = await client.list_dashboards(TEST_ACCOUNT_ID, limit=2)

        assert [d["guid"] for d in dashboards] == ["D0", "D1"]
        assert f"accountId = {TEST_ACCOUNT_ID}" in stub_transport.requests[0].query


class TestEntitiesAndAlerts:
    async def test_search_entities(self, client, stub_transport):
        stub_transport.add(
            {"actor": {"entitySearch": {"results": {"entities": [{"guid": "E1"}, {"guid": "E2"}]}}}}
        )
        assert await client.search_entities("name LIKE 'api'", limit=1) == [{"guid": "E1"}]

    async def test_alert_policies(self, client, stub_transport):
        policies = [{"id": "1", "name": "Golden signals"}]
        stub_transport.add(
            {"actor": {"account": {"alerts": {"policiesSearch": {"policies": policies}}}}}
        )
        assert await client.get_alert_policies(TEST_ACCOUNT_ID) == policies

    async def test_alert_conditions_requires_policy(self, client):
        with pytest.raises(ValidationError):
            await client.get_alert_conditions(TEST_ACCOUNT_ID, None)
