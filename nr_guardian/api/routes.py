"""REST endpoint handlers."""

import json
from datetime import datetime, timezone
from typing import Any, Dict

from aiohttp import web

from .. import __version__
from ..client import validate_account_id
from ..exceptions import SchemaError, ValidationError
from ..services.dashboard import DashboardService
from ..services.schema import SchemaService
from . import context_key


def _safe_int(value: Any, default: int) -> int:
    """Parse int from query param, returning default on failure."""
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


async def _json_body(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        raise ValidationError(f"Request body is not valid JSON: {e}", field="body") from e
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", field="body")
    return body


def _dashboard_required() -> web.Response:
    return web.json_response(
        {"success": False, "error": "Dashboard configuration required"}, status=400
    )


async def health_handler(request: web.Request) -> web.Response:
    return web.json_response(
        {
            "success": True,
            "status": "healthy",
            "service": "nr-guardian",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


async def discover_handler(request: web.Request) -> web.Response:
    service = SchemaService(request.app[context_key])
    since = request.query.get("since", "1 day ago")
    pattern = request.query.get("pattern", "").lower()
    limit = _safe_int(request.query.get("limit"), 100)

    event_types = await service.discover_event_types(since)
    if pattern:
        event_types = [e for e in event_types if pattern in e["name"].lower()]
    return web.json_response(
        {
            "success": True,
            "eventTypes": event_types[:limit],
            "count": min(len(event_types), limit),
            "total": len(event_types),
        }
    )


async def search_handler(request: web.Request) -> web.Response:
    service = SchemaService(request.app[context_key])
    term = request.match_info["term"]
    since = request.query.get("since", "1 day ago")
    limit = _safe_int(request.query.get("limit"), 50)

    matches = await service.find_attribute(term, since=since)
    return web.json_response(
        {"success": True, "term": term, "matches": matches[:limit], "count": min(len(matches), limit)}
    )


async def metadata_handler(request: web.Request) -> web.Response:
    service = SchemaService(request.app[context_key])
    since = request.query.get("since", "1 day ago")
    include_types = request.query.get("dataTypes", "").lower() in ("1", "true", "yes")
    try:
        metadata = await service.describe_event_type(
            request.match_info["metric_name"], since=since, include_data_types=include_types
        )
    except SchemaError:
        return web.json_response({"success": False, "error": "Metric not found"}, status=404)
    return web.json_response({"success": True, "metadata": metadata})


async def validate_handler(request: web.Request) -> web.Response:
    body = await _json_body(request)
    dashboard = body.get("dashboard")
    if not dashboard:
        return _dashboard_required()

    report = DashboardService(request.app[context_key]).validate_dashboard(dashboard)
    return web.json_response(
        {
            "success": report.valid,
            "valid": report.valid,
            "errors": report.errors,
            "warnings": report.warnings,
        }
    )


async def deploy_handler(request: web.Request) -> web.Response:
    body = await _json_body(request)
    dashboard = body.get("dashboard")
    if not dashboard:
        return _dashboard_required()

    account_id = body.get("accountId")
    if account_id is not None:
        account_id = validate_account_id(account_id)
    deployment = await DashboardService(request.app[context_key]).import_dashboard(
        dashboard, account_id=account_id
    )
    return web.json_response({"success": True, "deployment": deployment})


def setup_routes(app: web.Application) -> None:
    app.router.add_get("/health", health_handler)
    app.router.add_get("/api/metrics/discover", discover_handler)
    app.router.add_get("/api/metrics/search/{term}", search_handler)
    app.router.add_get("/api/metrics/{metric_name}/metadata", metadata_handler)
    app.router.add_post("/api/dashboards/validate", validate_handler)
    app.router.add_post("/api/dashboards/deploy", deploy_handler)
