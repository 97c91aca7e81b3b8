"""
Tests for dashboard validation, replication and the dashboard service.
"""

import copy

import pytest

from nr_guardian.client import NerdGraphClient
from nr_guardian.context import GuardianContext
from nr_guardian.exceptions import GraphQLError, ValidationError
from nr_guardian.graphql.models import GraphQLResponse
from nr_guardian.services.dashboard import (
    MAX_WIDGETS,
    DashboardService,
    replace_account_ids,
    validate_dashboard,
    widget_queries,
)

from conftest import TEST_ACCOUNT_ID, StubTransport


def entity_from(dashboard, guid="DASH-1"):
    return {"actor": {"entity": {"guid": guid, "accountId": TEST_ACCOUNT_ID, **dashboard}}}


class TestValidateDashboard:
    """Test offline structural checks."""

    def test_valid(self, sample_dashboard):
        report = validate_dashboard(sample_dashboard)
        assert report.valid
        assert report.errors == []

    def test_not_an_object(self):
        assert validate_dashboard(["pages"]).errors == ["Dashboard must be a JSON object"]

    def test_missing_name_and_pages(self):
        report = validate_dashboard({"pages": []})
        assert "Dashboard name is required" in report.errors
        assert "Dashboard must have at least one page" in report.errors

    def test_grid_boundary(self, sample_dashboard):
        dashboard = copy.deepcopy(sample_dashboard)
        dashboard["pages"][0]["widgets"][1]["layout"]["column"] = 9

        report = validate_dashboard(dashboard)

        assert report.errors == ["Widget 'Errors' extends beyond grid boundary"]

    def test_warnings_do_not_block(self, sample_dashboard):
        dashboard = copy.deepcopy(sample_dashboard)
        widget = dashboard["pages"][0]["widgets"][0]
        widget["visualization"]["id"] = "viz.hologram"
        del widget["title"]

        report = validate_dashboard(dashboard)

        assert report.valid
        assert len(report.warnings) == 2

    def test_missing_visualization_and_empty_query(self, sample_dashboard):
        dashboard = copy.deepcopy(sample_dashboard)
        widget = dashboard["pages"][0]["widgets"][0]
        del widget["visualization"]
        widget["rawConfiguration"]["nrqlQueries"][0]["query"] = "  "

        report = validate_dashboard(dashboard)

        assert "Widget 'Throughput' is missing visualization.id" in report.errors
        assert "Widget 'Throughput' query 1 is empty" in report.errors

    def test_widget_limit(self, sample_dashboard):
        dashboard = copy.deepcopy(sample_dashboard)
        widget = dashboard["pages"][0]["widgets"][0]
        dashboard["pages"][0]["widgets"] = [widget] * (MAX_WIDGETS + 1)

        report = validate_dashboard(dashboard)

        assert f"Dashboard cannot contain more than {MAX_WIDGETS} widgets" in report.errors


class TestReplaceAccountIds:
    def test_rewrites_queries_and_ids(self, sample_dashboard):
        updated = replace_account_ids(sample_dashboard, TEST_ACCOUNT_ID, 999)

        nrql = updated["pages"][0]["widgets"][0]["rawConfiguration"]["nrqlQueries"][0]
        assert "account = 999" in nrql["query"]
        assert nrql["accountId"] == 999

        original = sample_dashboard["pages"][0]["widgets"][0]["rawConfiguration"]["nrqlQueries"][0]
        assert original["accountId"] == TEST_ACCOUNT_ID

    def test_account_ids_list(self):
        dashboard = {
            "name": "x",
            "pages": [
                {"name": "p", "widgets": [{"rawConfiguration": {"nrqlQueries": [{"accountIds": [1, 2]}]}}]}
            ],
        }
        updated = replace_account_ids(dashboard, 1, 3)
        assert updated["pages"][0]["widgets"][0]["rawConfiguration"]["nrqlQueries"][0]["accountIds"] == [3, 2]


class TestDashboardService:
    """Test service operations against the stub transport."""

    async def test_export(self, guardian_context, stub_transport, sample_dashboard):
        stub_transport.add(entity_from(sample_dashboard))

        exported = await DashboardService(guardian_context).export_dashboard("DASH-1")

        assert exported["name"] == sample_dashboard["name"]
        assert exported["pages"][0]["widgets"][0]["title"] == "Throughput"
        assert "guid" not in exported
        assert validate_dashboard(exported).valid

    async def test_export_missing(self, guardian_context, stub_transport):
        stub_transport.add({"actor": {"entity": None}})

        with pytest.raises(ValidationError, match="not found"):
            await DashboardService(guardian_context).export_dashboard("NOPE")

    async def test_import_invalid_sends_nothing(self, guardian_context, stub_transport):
        with pytest.raises(ValidationError, match="Invalid dashboard"):
            await DashboardService(guardian_context).import_dashboard({"name": "x", "pages": []})

        assert stub_transport.requests == []

    async def test_list_is_cached_until_mutation(self, guardian_context, stub_transport, sample_dashboard):
        search = {"actor": {"entitySearch": {"results": {"entities": [{"guid": "D1", "name": "One"}]}}}}
        stub_transport.add(
            search,
            {"dashboardCreate": {"entityResult": {"guid": "D2", "name": "Two"}, "errors": []}},
            search,
        )
        service = DashboardService(guardian_context)

        first = await service.list_dashboards()
        second = await service.list_dashboards()
        assert first == second
        assert stub_transport.request_count == 1

        await service.import_dashboard(sample_dashboard)
        await service.list_dashboards()
        assert stub_transport.request_count == 3

    async def test_replicate_with_query_rewrite(self, guardian_context, stub_transport, sample_dashboard):
        stub_transport.add(
            {"dashboardCreate": {"entityResult": {"guid": "COPY", "name": "Service Overview"}, "errors": []}}
        )

        result = await DashboardService(guardian_context).replicate_dashboard(
            sample_dashboard, 999, update_queries=True
        )

        assert result["guid"] == "COPY"
        variables = dict(stub_transport.requests[0].variables)
        assert variables["accountId"] == 999
        nrql = variables["dashboard"]["pages"][0]["widgets"][0]["rawConfiguration"]["nrqlQueries"][0]
        assert "account = 999" in nrql["query"]
        assert nrql["accountId"] == 999


class NrqlRulesTransport(StubTransport):
    """Answers NRQL by the first rule whose text appears in the query."""

    def __init__(self, rules):
        super().__init__()
        self.rules = rules

    @property
    def nrql_sent(self):
        return [request.variables["nrqlQuery"] for request in self.requests]

    async def send(self, request):
        self.requests.append(request)
        self.request_count += 1
        nrql = request.variables["nrqlQuery"]
        for needle, outcome in self.rules:
            if needle in nrql:
                if isinstance(outcome, Exception):
                    raise outcome
                return GraphQLResponse(
                    data={"actor": {"account": {"nrql": {"results": outcome, "metadata": {}}}}}
                )
        raise AssertionError(f"Unexpected NRQL: {nrql}")


def widget_service(config, rules):
    transport = NrqlRulesTransport(rules)
    client = NerdGraphClient(config, transport=transport)
    return DashboardService(GuardianContext(config, client=client)), transport


def single_widget_dashboard(query, title="Apps"):
    return {
        "name": "Single",
        "pages": [
            {
                "name": "Main",
                "widgets": [
                    {
                        "title": title,
                        "visualization": {"id": "viz.table"},
                        "rawConfiguration": {"nrqlQueries": [{"accountId": TEST_ACCOUNT_ID, "query": query}]},
                    }
                ],
            }
        ],
    }


class TestWidgetQueries:
    """Test running widget queries through the client."""

    def test_collects_queries_in_order(self, sample_dashboard):
        found = widget_queries(sample_dashboard)

        assert [(q.page, q.widget, q.position) for q in found] == [
            ("Overview", "Throughput", 0),
            ("Overview", "Errors", 1),
        ]
        assert all(q.account_id == TEST_ACCOUNT_ID for q in found)

    async def test_validate_widgets(self, guardian_config, sample_dashboard):
        service, transport = widget_service(
            guardian_config,
            [
                ("FROM TransactionError", GraphQLError("NRQL Syntax Error: unknown function")),
                ("FROM Transaction", [{"rate": 12.5}]),
            ],
        )

        report = await service.validate_widgets(sample_dashboard)

        assert report["allValid"] is False
        assert (report["totalWidgets"], report["validWidgets"], report["invalidWidgets"]) == (2, 1, 1)
        throughput, errors = report["widgets"]
        assert throughput["valid"] is True
        assert errors["valid"] is False
        assert errors["errors"] == ["NRQL query failed: NRQL Syntax Error: unknown function"]
        assert transport.request_count == 2
        assert {request.variables["accountId"] for request in transport.requests} == {TEST_ACCOUNT_ID}

    async def test_validate_widgets_account_override(self, guardian_config, sample_dashboard):
        service, transport = widget_service(guardian_config, [("FROM", [{"count": 1}])])

        report = await service.validate_widgets(sample_dashboard, account_id=999)

        assert report["allValid"] is True
        assert {request.variables["accountId"] for request in transport.requests} == {999}

    async def test_validate_widgets_duplicate_titles(self, guardian_config, sample_dashboard):
        dashboard = copy.deepcopy(sample_dashboard)
        dashboard["pages"][0]["widgets"][1]["title"] = "Throughput"
        service, _ = widget_service(
            guardian_config,
            [
                ("FROM TransactionError", GraphQLError("bad")),
                ("FROM Transaction", [{"rate": 1}]),
            ],
        )

        report = await service.validate_widgets(dashboard)

        assert [w["valid"] for w in report["widgets"]] == [True, False]

    async def test_find_broken_widgets(self, guardian_config, sample_dashboard):
        service, _ = widget_service(
            guardian_config,
            [
                ("FROM TransactionError", GraphQLError("Unknown event type")),
                ("FROM Transaction", []),
            ],
        )

        broken = await service.find_broken_widgets(sample_dashboard)

        assert [(b["widget"], b["error"]) for b in broken] == [
            ("Throughput", "No data returned"),
            ("Errors", "NRQL query failed: Unknown event type"),
        ]
        assert broken[0]["suggestion"] == "Check time range or WHERE conditions"

    async def test_no_broken_widgets(self, guardian_config, sample_dashboard):
        service, _ = widget_service(guardian_config, [("FROM", [{"count": 1}])])
        assert await service.find_broken_widgets(sample_dashboard) == []

    async def test_analyze_performance(self, guardian_config, sample_dashboard):
        service, _ = widget_service(guardian_config, [("FROM", [{"count": 1}])])

        analysis = await service.analyze_performance(sample_dashboard)

        assert analysis["totalWidgets"] == 2
        assert analysis["totalPages"] == 1
        assert analysis["estimatedLoadTime"] >= 100
        # The throughput widget has no time window
        assert analysis["performanceScore"] == 98
        assert analysis["recommendations"][0]["widgets"] == ["Throughput"]
        assert [w["complexity"] for w in analysis["widgetAnalysis"]] == ["Low", "Low"]

    async def test_analyze_high_cardinality_facet(self, guardian_config):
        dashboard = single_widget_dashboard(
            "SELECT count(*) FROM Transaction FACET userId SINCE 1 hour ago"
        )
        service, transport = widget_service(
            guardian_config,
            [
                ("uniqueCount(`userId`)", [{"cardinality": 5000}]),
                ("FROM Transaction", [{"count": 1}]),
            ],
        )

        analysis = await service.analyze_performance(dashboard)

        assert analysis["performanceScore"] == 97
        assert analysis["recommendations"][0]["widgets"] == ["Apps"]
        assert "FROM `Transaction`" in transport.nrql_sent[-1]

    async def test_analyze_failing_widget(self, guardian_config):
        dashboard = single_widget_dashboard("SELECT nope FROM Nowhere SINCE 1 hour ago")
        service, _ = widget_service(guardian_config, [("FROM Nowhere", GraphQLError("bad query"))])

        analysis = await service.analyze_performance(dashboard)

        assert analysis["performanceScore"] == 90
        assert analysis["widgetAnalysis"] == [
            {"widget": "Apps", "page": "Main", "error": "NRQL query failed: bad query"}
        ]
