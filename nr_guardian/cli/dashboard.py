"""
``nr-guardian dashboard`` commands.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.text import Text

from ..context import GuardianContext
from ..exceptions import NRGuardianError
from ..services.dashboard import DashboardService, validate_dashboard
from .utils import get_formatter, load_json_file, parse_account_ids, run_command


@click.group()
def dashboard() -> None:
    """Dashboard export, import, validation and replication."""


@dashboard.command("list")
@click.option("--account-id", type=int, help="Override default account ID")
@click.option("--limit", type=int, default=100, show_default=True, help="Maximum dashboards")
@click.pass_context
def list_dashboards(ctx: click.Context, account_id: Optional[int], limit: int) -> None:
    """List dashboards in the account."""

    async def handler(context: GuardianContext) -> List[Dict[str, Any]]:
        return await DashboardService(context).list_dashboards(limit, account_id)

    dashboards = run_command(ctx, handler)
    get_formatter(ctx).print_result(
        dashboards, title="Dashboards", columns=["name", "guid", "updatedAt"]
    )


@dashboard.command("export")
@click.argument("guid")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write JSON to this file")
@click.pass_context
def export_dashboard(ctx: click.Context, guid: str, output: Optional[str]) -> None:
    """Export a dashboard as importable JSON."""

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        return await DashboardService(context).export_dashboard(guid)

    exported = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if output:
        Path(output).write_text(json.dumps(exported, indent=2), encoding="utf-8")
        formatter.success(f"Dashboard exported to {output}")
    else:
        formatter.print_json(exported)


@dashboard.command("import")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--account-id", type=int, help="Override default account ID")
@click.option("--update-existing", "update_guid", help="Update this dashboard GUID instead of creating")
@click.option("--dry-run", is_flag=True, help="Validate without importing")
@click.pass_context
def import_dashboard(
    ctx: click.Context,
    file_path: str,
    account_id: Optional[int],
    update_guid: Optional[str],
    dry_run: bool,
) -> None:
    """Import a dashboard from a JSON file."""
    formatter = get_formatter(ctx)

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        service = DashboardService(context)
        document = load_json_file(file_path)
        if dry_run:
            return {"dryRun": True, **service.validate_dashboard(document).to_dict()}
        if update_guid:
            return await service.update_dashboard(update_guid, document)
        return await service.import_dashboard(document, account_id)

    result = run_command(ctx, handler)
    if dry_run and not result["valid"]:
        formatter.print_result(result, title="Dry run")
        ctx.exit(1)
    formatter.print_result(result, title="Dashboard")
    if not dry_run:
        formatter.success(f"Dashboard {'updated' if update_guid else 'imported'}: {result.get('guid')}")


@dashboard.command("validate-json")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def validate_json(ctx: click.Context, file_path: str) -> None:
    """Validate dashboard JSON structure offline."""
    formatter = get_formatter(ctx)
    try:
        document = load_json_file(file_path)
    except NRGuardianError as e:
        formatter.error(e)
        ctx.exit(1)

    report = validate_dashboard(document)
    if formatter.json_output:
        formatter.print_json(report.to_dict())
    else:
        for warning in report.warnings:
            formatter.warning(warning)
        for error in report.errors:
            formatter.err_console.print(Text.assemble(("✗ ", "red"), error), soft_wrap=True)
        if report.valid:
            formatter.success("Dashboard JSON is valid")
    if not report.valid:
        ctx.exit(1)


async def _load_dashboard(service: DashboardService, guid_or_file: str) -> Dict[str, Any]:
    """Read a dashboard from a JSON file, or export it when given a GUID."""
    if Path(guid_or_file).is_file():
        return load_json_file(guid_or_file)
    return await service.export_dashboard(guid_or_file)


@dashboard.command("validate-widgets")
@click.argument("guid_or_file")
@click.option("--account-id", type=int, help="Run every query against this account")
@click.option("--fix-suggestions", is_flag=True, help="Include fix suggestions for invalid queries")
@click.pass_context
def validate_widgets(
    ctx: click.Context, guid_or_file: str, account_id: Optional[int], fix_suggestions: bool
) -> None:
    """Run every widget query and report the ones that fail."""

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        service = DashboardService(context)
        document = await _load_dashboard(service, guid_or_file)
        return await service.validate_widgets(document, account_id, fix_suggestions)

    report = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if formatter.json_output:
        formatter.print_json(report)
    else:
        rows = [
            {
                "page": w["page"],
                "widget": w["widget"],
                "valid": w["valid"],
                "issues": "; ".join(w["errors"] + w["warnings"]),
            }
            for w in report["widgets"]
        ]
        formatter.print_result(
            rows, title="Widget validation", columns=["page", "widget", "valid", "issues"]
        )
        for widget, suggestions in report["suggestions"].items():
            for suggestion in suggestions:
                formatter.warning(f"{widget}: {suggestion}")
        summary = f"{report['validWidgets']}/{report['totalWidgets']} widgets valid"
        if report["allValid"]:
            formatter.success(summary)
        else:
            formatter.warning(summary)
    if not report["allValid"]:
        ctx.exit(1)


@dashboard.command("find-broken-widgets")
@click.argument("guid_or_file")
@click.option("--account-id", type=int, help="Run every query against this account")
@click.pass_context
def find_broken_widgets(ctx: click.Context, guid_or_file: str, account_id: Optional[int]) -> None:
    """Find widgets whose query fails or returns no data."""

    async def handler(context: GuardianContext) -> List[Dict[str, Any]]:
        service = DashboardService(context)
        document = await _load_dashboard(service, guid_or_file)
        return await service.find_broken_widgets(document, account_id)

    broken = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if not broken and not formatter.json_output:
        formatter.success("No broken widgets found")
        return
    formatter.print_result(
        broken, title="Broken widgets", columns=["page", "widget", "error", "suggestion"]
    )
    if broken:
        ctx.exit(1)


@dashboard.command("analyze-performance")
@click.argument("guid_or_file")
@click.option("--account-id", type=int, help="Run every query against this account")
@click.pass_context
def analyze_performance(ctx: click.Context, guid_or_file: str, account_id: Optional[int]) -> None:
    """Time widget queries and score the dashboard."""

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        service = DashboardService(context)
        document = await _load_dashboard(service, guid_or_file)
        return await service.analyze_performance(document, account_id)

    analysis = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if formatter.json_output:
        formatter.print_json(analysis)
        return

    formatter.print_result(
        analysis["widgetAnalysis"],
        title=f"{analysis['dashboardName']}: score {analysis['performanceScore']}/100, "
        f"~{analysis['estimatedLoadTime']:.0f} ms",
        columns=["page", "widget", "queryTime", "dataPoints", "complexity", "error"],
    )
    for recommendation in analysis["recommendations"]:
        formatter.warning(f"{recommendation['issue']}: {recommendation['solution']}")


@dashboard.command("replicate")
@click.argument("guid")
@click.option("--targets", required=True, help="Comma-separated target account IDs")
@click.option("--update-queries", is_flag=True, help="Rewrite account ids inside widget queries")
@click.pass_context
def replicate_dashboard(ctx: click.Context, guid: str, targets: str, update_queries: bool) -> None:
    """Copy a dashboard into other accounts."""
    target_ids = parse_account_ids(targets)

    async def handler(context: GuardianContext) -> List[Dict[str, Any]]:
        service = DashboardService(context)
        source = await service.export_dashboard(guid)
        outcomes: List[Dict[str, Any]] = []
        for target in target_ids:
            try:
                created = await service.replicate_dashboard(source, target, update_queries)
                outcomes.append({"accountId": target, "success": True, "guid": created.get("guid")})
            except NRGuardianError as e:
                outcomes.append({"accountId": target, "success": False, "error": e.message})
        return outcomes

    outcomes = run_command(ctx, handler)
    get_formatter(ctx).print_result(
        outcomes, title="Replication", columns=["accountId", "success", "guid", "error"]
    )
    if not all(outcome["success"] for outcome in outcomes):
        ctx.exit(1)


@dashboard.command("delete")
@click.argument("guid")
@click.option("--confirm", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def delete_dashboard(ctx: click.Context, guid: str, confirm: bool) -> None:
    """Delete a dashboard."""
    if not confirm:
        click.confirm(f"Delete dashboard {guid}?", abort=True)

    async def handler(context: GuardianContext) -> bool:
        return await DashboardService(context).delete_dashboard(guid)

    deleted = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if formatter.json_output:
        formatter.print_json({"guid": guid, "deleted": deleted})
    elif deleted:
        formatter.success(f"Dashboard {guid} deleted")
    if not deleted:
        formatter.warning(f"Dashboard {guid} was not deleted")
        ctx.exit(1)
