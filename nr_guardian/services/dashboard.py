"""
Dashboard management on top of the NerdGraph client.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from ..client import quote_event_type, validate_account_id
from ..context import GuardianContext
from ..exceptions import QueryError, ValidationError
from ..graphql.documents import nrql_facets, query_complexity

logger = logging.getLogger(__name__)

GRID_COLUMNS = 12
MAX_WIDGETS = 300
# Widget queries in flight at once; the rate limiter still applies
WIDGET_CONCURRENCY = 10
HIGH_CARDINALITY = 1000
LARGE_RESULT = 10000
MANY_WIDGETS = 20

VALID_VISUALIZATIONS = frozenset(
    [
        "area", "bar", "billboard", "bullet", "event-feed", "funnel", "heatmap",
        "histogram", "json", "line", "list", "log", "pie", "scatter", "sparkline",
        "stacked-bar", "table", "gauge", "treemap", "markdown",
    ]
)


@dataclass
class ValidationReport:
    """Outcome of a structural dashboard check."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": self.errors, "warnings": self.warnings}


def _visualization_id(widget: Mapping[str, Any]) -> Optional[str]:
    visualization = widget.get("visualization")
    if isinstance(visualization, Mapping):
        viz_id = visualization.get("id")
        return viz_id if isinstance(viz_id, str) else None
    return None


def _widget_queries(widget: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    raw = widget.get("rawConfiguration")
    if not isinstance(raw, Mapping):
        return []
    nrql_queries = raw.get("nrqlQueries")
    if not isinstance(nrql_queries, list):
        return []
    return [q for q in nrql_queries if isinstance(q, Mapping)]


@dataclass
class WidgetQuery:
    """One NRQL query found on a dashboard widget."""

    page: str
    widget: str
    query: str
    account_id: Optional[int] = None
    # Index of the widget in dashboard order
    position: int = 0


def _is_known_visualization(viz_id: Optional[str]) -> bool:
    if viz_id is None:
        return False
    short_id = viz_id.lower()
    if short_id.startswith("viz."):
        short_id = short_id[4:]
    return short_id in VALID_VISUALIZATIONS


def iter_widgets(dashboard: Mapping[str, Any]) -> Iterator[Tuple[str, Mapping[str, Any]]]:
    """Yield ``(page name, widget)`` for every widget object on the dashboard."""
    for page in dashboard.get("pages") or []:
        if not isinstance(page, Mapping):
            continue
        for widget in page.get("widgets") or []:
            if isinstance(widget, Mapping):
                yield page.get("name") or "", widget


def widget_queries(dashboard: Mapping[str, Any]) -> List[WidgetQuery]:
    """Collect every non-empty widget query in page order."""
    found: List[WidgetQuery] = []
    for position, (page_name, widget) in enumerate(iter_widgets(dashboard)):
        for nrql in _widget_queries(widget):
            query = nrql.get("query")
            if isinstance(query, str) and query.strip():
                account_id = nrql.get("accountId")
                found.append(
                    WidgetQuery(
                        page=page_name,
                        widget=widget.get("title") or "",
                        query=query,
                        account_id=account_id if isinstance(account_id, int) else None,
                        position=position,
                    )
                )
    return found


def validate_dashboard(dashboard: Any) -> ValidationReport:
    """
    Check a dashboard's structure without touching the network.

    Args:
        dashboard: Dashboard JSON in NerdGraph ``DashboardInput`` shape

    Returns:
        ValidationReport with blocking errors and advisory warnings
    """
    report = ValidationReport()
    if not isinstance(dashboard, Mapping):
        report.errors.append("Dashboard must be a JSON object")
        return report

    name = dashboard.get("name")
    if not isinstance(name, str) or not name.strip():
        report.errors.append("Dashboard name is required")

    pages = dashboard.get("pages")
    if not isinstance(pages, list) or not pages:
        report.errors.append("Dashboard must have at least one page")
        return report

    total_widgets = 0
    for page_index, page in enumerate(pages, start=1):
        if not isinstance(page, Mapping):
            report.errors.append(f"Page {page_index} must be an object")
            continue
        page_name = page.get("name") or f"Page {page_index}"
        if not page.get("name"):
            report.errors.append(f"Page {page_index} is missing a name")

        widgets = page.get("widgets")
        if not isinstance(widgets, list):
            report.errors.append(f"Page '{page_name}' must have a widgets list")
            continue
        total_widgets += len(widgets)

        for widget_index, widget in enumerate(widgets, start=1):
            if not isinstance(widget, Mapping):
                report.errors.append(f"Widget {widget_index} on '{page_name}' must be an object")
                continue
            title = widget.get("title") or f"#{widget_index}"
            if not widget.get("title"):
                report.warnings.append(f"Widget {widget_index} on '{page_name}' has no title")

            viz_id = _visualization_id(widget)
            if viz_id is None:
                report.errors.append(f"Widget '{title}' is missing visualization.id")
            elif not _is_known_visualization(viz_id):
                report.warnings.append(f"Widget '{title}' uses unknown visualization type: {viz_id}")

            for query_index, nrql in enumerate(_widget_queries(widget), start=1):
                query = nrql.get("query")
                if not isinstance(query, str) or not query.strip():
                    report.errors.append(f"Widget '{title}' query {query_index} is empty")

            layout = widget.get("layout")
            if isinstance(layout, Mapping):
                column = layout.get("column", 1)
                width = layout.get("width", 1)
                if not isinstance(column, int) or not 1 <= column <= GRID_COLUMNS:
                    report.errors.append(f"Widget '{title}' has invalid column: {column}")
                elif not isinstance(width, int) or not 1 <= width <= GRID_COLUMNS:
                    report.errors.append(f"Widget '{title}' has invalid width: {width}")
                elif column + width - 1 > GRID_COLUMNS:
                    report.errors.append(f"Widget '{title}' extends beyond grid boundary")

    if total_widgets > MAX_WIDGETS:
        report.errors.append(f"Dashboard cannot contain more than {MAX_WIDGETS} widgets")

    return report


def replace_account_ids(dashboard: Mapping[str, Any], source_id: int, target_id: int) -> Dict[str, Any]:
    """
    Copy a dashboard, pointing widget queries at another account.

    Rewrites ``account = <source>`` clauses in NRQL and the ``accountId`` /
    ``accountIds`` fields of each query.
    """
    updated = copy.deepcopy(dict(dashboard))
    pattern = re.compile(rf"account\s*=\s*{source_id}\b", re.IGNORECASE)

    for page in updated.get("pages") or []:
        for widget in page.get("widgets") or []:
            for nrql in _widget_queries(widget):
                if isinstance(nrql.get("query"), str):
                    nrql["query"] = pattern.sub(f"account = {target_id}", nrql["query"])
                if nrql.get("accountId") == source_id:
                    nrql["accountId"] = target_id
                if isinstance(nrql.get("accountIds"), list):
                    nrql["accountIds"] = [
                        target_id if a == source_id else a for a in nrql["accountIds"]
                    ]
    return updated


class DashboardService:
    """List, export, import, validate, replicate and delete dashboards."""

    def __init__(self, context: GuardianContext):
        self.context = context

    @property
    def client(self):
        return self.context.client

    async def list_dashboards(self, limit: int = 100, account_id: Optional[int] = None) -> List[Dict[str, Any]]:
        account_id = self.context.account_id(account_id)
        key = self.context.cache.generate_key("dashboards", {"account": account_id, "limit": limit})

        async def fetch() -> List[Dict[str, Any]]:
            dashboards = await self.client.list_dashboards(account_id, limit)
            return [
                {
                    "name": d.get("name"),
                    "guid": d.get("guid"),
                    "accountId": d.get("accountId"),
                    "createdAt": d.get("createdAt"),
                    "updatedAt": d.get("updatedAt"),
                }
                for d in dashboards
            ]

        return await self.context.cache.get_or_fetch(key, fetch)

    async def export_dashboard(self, guid: str) -> Dict[str, Any]:
        """
        Fetch a dashboard in a shape ``import_dashboard`` accepts.

        Raises:
            ValidationError: If no dashboard has that GUID
        """
        dashboard = await self.client.get_dashboard(guid)
        if not dashboard:
            raise ValidationError(f"Dashboard with GUID {guid} not found", field="guid")

        exported: Dict[str, Any] = {
            "name": dashboard.get("name"),
            "permissions": dashboard.get("permissions"),
            "pages": [
                {
                    "name": page.get("name"),
                    "widgets": [
                        {
                            "title": widget.get("title"),
                            "visualization": widget.get("visualization"),
                            "rawConfiguration": widget.get("rawConfiguration"),
                            "layout": widget.get("layout"),
                        }
                        for widget in page.get("widgets") or []
                    ],
                }
                for page in dashboard.get("pages") or []
            ],
        }
        if dashboard.get("description"):
            exported["description"] = dashboard["description"]
        return exported

    def _require_valid(self, dashboard: Any) -> Dict[str, Any]:
        report = validate_dashboard(dashboard)
        if not report.valid:
            raise ValidationError(
                f"Invalid dashboard: {', '.join(report.errors)}", errors=report.errors
            )
        for warning in report.warnings:
            logger.warning(warning)
        return dict(dashboard)

    async def import_dashboard(
        self, dashboard: Mapping[str, Any], account_id: Optional[int] = None
    ) -> Dict[str, Any]:
        account_id = self.context.account_id(account_id)
        result = await self.client.create_dashboard(account_id, self._require_valid(dashboard))
        self.context.cache.invalidate("dashboards")
        return result

    async def update_dashboard(self, guid: str, dashboard: Mapping[str, Any]) -> Dict[str, Any]:
        result = await self.client.update_dashboard(guid, self._require_valid(dashboard))
        self.context.cache.invalidate("dashboards")
        return result

    async def delete_dashboard(self, guid: str) -> bool:
        deleted = await self.client.delete_dashboard(guid)
        self.context.cache.invalidate("dashboards")
        return deleted

    def validate_dashboard(self, dashboard: Any) -> ValidationReport:
        return validate_dashboard(dashboard)

    async def replicate_dashboard(
        self,
        dashboard: Mapping[str, Any],
        target_account_id: Any,
        update_queries: bool = False,
    ) -> Dict[str, Any]:
        """
        Create a copy of ``dashboard`` in another account.

        Args:
            dashboard: Exported dashboard JSON
            target_account_id: Account receiving the copy
            update_queries: Rewrite queries that reference the source account
        """
        target_account_id = validate_account_id(target_account_id)
        if update_queries:
            dashboard = replace_account_ids(
                dashboard, self.context.account_id(), target_account_id
            )
        return await self.client.create_dashboard(target_account_id, self._require_valid(dashboard))

    async def _run_widget_queries(
        self, found: List[WidgetQuery], account_id: Optional[int]
    ) -> List[Dict[str, Any]]:
        """
        Run widget queries concurrently through the client pipeline.

        Query failures are captured per widget. Rate limit, auth and transport
        failures propagate since every other widget would fail the same way.
        """
        semaphore = asyncio.Semaphore(WIDGET_CONCURRENCY)

        async def run(item: WidgetQuery) -> Dict[str, Any]:
            target = self.context.account_id(account_id or item.account_id)
            async with semaphore:
                start_time = time.monotonic()
                try:
                    result = await self.client.run_nrql(target, item.query)
                except (QueryError, ValidationError) as e:
                    return {
                        "valid": False,
                        "error": e.message,
                        "suggestions": getattr(e, "suggestions", []),
                        "queryTime": (time.monotonic() - start_time) * 1000,
                    }
            return {
                "valid": True,
                "resultCount": len(result.results),
                "warnings": result.suggestions,
                "queryTime": (time.monotonic() - start_time) * 1000,
            }

        return list(await asyncio.gather(*(run(item) for item in found)))

    async def validate_widgets(
        self,
        dashboard: Mapping[str, Any],
        account_id: Optional[int] = None,
        include_suggestions: bool = False,
    ) -> Dict[str, Any]:
        """
        Run every widget query and report which ones NerdGraph rejects.

        Args:
            dashboard: Dashboard JSON
            account_id: Run all queries against this account instead of
                each query's own ``accountId``
            include_suggestions: Attach advisory fixes for invalid queries

        Returns:
            Totals plus one entry per widget with its errors and warnings
        """
        found = widget_queries(dashboard)
        outcomes = await self._run_widget_queries(found, account_id)
        by_widget: Dict[int, List[Dict[str, Any]]] = {}
        for item, outcome in zip(found, outcomes):
            by_widget.setdefault(item.position, []).append(outcome)

        widgets: List[Dict[str, Any]] = []
        suggestions: Dict[str, List[str]] = {}
        for position, (page_name, widget) in enumerate(iter_widgets(dashboard)):
            title = widget.get("title") or ""
            errors: List[str] = []
            warnings: List[str] = []
            for outcome in by_widget.get(position, []):
                if outcome["valid"]:
                    warnings.extend(outcome["warnings"])
                else:
                    errors.append(outcome["error"])
                    if include_suggestions and outcome["suggestions"]:
                        suggestions.setdefault(title, []).extend(outcome["suggestions"])
            viz_id = _visualization_id(widget)
            if not _is_known_visualization(viz_id):
                warnings.append(f"Unknown visualization type: {viz_id}")
            widgets.append(
                {
                    "page": page_name,
                    "widget": title,
                    "valid": not errors,
                    "errors": errors,
                    "warnings": warnings,
                }
            )

        invalid = sum(1 for w in widgets if not w["valid"])
        return {
            "allValid": invalid == 0,
            "totalWidgets": len(widgets),
            "validWidgets": len(widgets) - invalid,
            "invalidWidgets": invalid,
            "widgets": widgets,
            "suggestions": suggestions,
        }

    async def find_broken_widgets(
        self, dashboard: Mapping[str, Any], account_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Widgets whose query fails or returns no rows."""
        found = widget_queries(dashboard)
        outcomes = await self._run_widget_queries(found, account_id)

        broken: List[Dict[str, Any]] = []
        for item, outcome in zip(found, outcomes):
            if outcome["valid"] and outcome["resultCount"] > 0:
                continue
            if outcome["valid"]:
                error, suggestion = "No data returned", "Check time range or WHERE conditions"
            else:
                error = outcome["error"]
                suggestion = (outcome["suggestions"] or ["Check query syntax and permissions"])[0]
            broken.append(
                {
                    "page": item.page,
                    "widget": item.widget,
                    "query": item.query,
                    "error": error,
                    "suggestion": suggestion,
                }
            )
        return broken

    async def _facet_cardinality(self, account_id: int, nrql: str, facet: str) -> int:
        match = re.search(r"\bFROM\s+([^\s,]+)", nrql, re.IGNORECASE)
        if not match or not re.fullmatch(r"[\w.]+", facet):
            return 0
        try:
            event_type = quote_event_type(match.group(1).strip("`"))
            result = await self.client.run_nrql(
                account_id,
                f"SELECT uniqueCount(`{facet}`) AS cardinality FROM {event_type} SINCE 1 hour ago",
            )
        except (QueryError, ValidationError) as e:
            logger.debug(f"Cardinality check for {facet} failed: {e.message}")
            return 0
        row = result.results[0] if result.results else {}
        value = row.get("cardinality", 0)
        return int(value) if isinstance(value, (int, float)) else 0

    async def analyze_performance(
        self, dashboard: Mapping[str, Any], account_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Time each widget query and score the dashboard.

        The score starts at 100 and loses points for failing queries,
        high-complexity queries, high-cardinality facets, missing time
        windows, large result sets and crowded dashboards. The estimated load
        time is the slowest query plus 50 ms per widget.
        """
        found = widget_queries(dashboard)
        outcomes = await self._run_widget_queries(found, account_id)
        total_widgets = sum(1 for _ in iter_widgets(dashboard))
        score = 100

        widget_analysis: List[Dict[str, Any]] = []
        high_cardinality: List[str] = []
        missing_window: List[str] = []
        large_results: List[str] = []
        query_times: List[float] = []

        for item, outcome in zip(found, outcomes):
            if not outcome["valid"]:
                widget_analysis.append(
                    {"widget": item.widget, "page": item.page, "error": outcome["error"]}
                )
                score -= 10
                continue

            query_times.append(outcome["queryTime"])
            complexity = query_complexity(item.query)
            entry = {
                "widget": item.widget,
                "page": item.page,
                "queryTime": round(outcome["queryTime"], 1),
                "dataPoints": outcome["resultCount"],
                "complexity": complexity["level"],
            }
            if complexity["level"] == "High":
                score -= 5

            target = self.context.account_id(account_id or item.account_id)
            for facet in nrql_facets(item.query):
                if await self._facet_cardinality(target, item.query, facet) > HIGH_CARDINALITY:
                    high_cardinality.append(item.widget)
                    score -= 3

            if not re.search(r"\b(SINCE|UNTIL)\b", item.query, re.IGNORECASE):
                missing_window.append(item.widget)
                score -= 2
            if outcome["resultCount"] > LARGE_RESULT:
                large_results.append(item.widget)
                score -= 2
            widget_analysis.append(entry)

        recommendations: List[Dict[str, Any]] = []
        if high_cardinality:
            recommendations.append(
                {
                    "issue": f"{len(high_cardinality)} widgets use high-cardinality facets",
                    "solution": "Bucket values with FACET cases() or drop the facet",
                    "widgets": high_cardinality,
                }
            )
        if missing_window:
            recommendations.append(
                {
                    "issue": f"{len(missing_window)} widgets have no time window",
                    "solution": "Add SINCE clauses to limit data scanned",
                    "widgets": missing_window,
                }
            )
        if large_results:
            recommendations.append(
                {
                    "issue": f"{len(large_results)} widgets return large result sets",
                    "solution": "Add LIMIT clauses or aggregate to reduce data points",
                    "widgets": large_results,
                }
            )
        if total_widgets > MANY_WIDGETS:
            recommendations.append(
                {
                    "issue": "Dashboard has many widgets",
                    "solution": "Split it into several dashboards or pages",
                }
            )
            score -= 10

        return {
            "dashboardName": dashboard.get("name"),
            "totalPages": len(dashboard.get("pages") or []),
            "totalWidgets": total_widgets,
            "estimatedLoadTime": round(max(query_times, default=0.0) + total_widgets * 50, 1),
            "widgetAnalysis": widget_analysis,
            "recommendations": recommendations,
            "performanceScore": max(0, score),
        }
