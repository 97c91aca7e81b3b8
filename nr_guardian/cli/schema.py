"""
``nr-guardian schema`` commands.
"""

from typing import Any, Dict, List, Optional

import click

from ..context import GuardianContext
from ..services.schema import SchemaService
from .utils import get_formatter, run_command


@click.group()
def schema() -> None:
    """Event-type schema discovery."""


@schema.command("discover-event-types")
@click.option("--since", default="1 day ago", show_default=True, help="NRQL time window")
@click.pass_context
def discover_event_types(ctx: click.Context, since: str) -> None:
    """List event types that reported data in the window."""

    async def handler(context: GuardianContext) -> List[Dict[str, Any]]:
        return await SchemaService(context).discover_event_types(since)

    event_types = run_command(ctx, handler)
    get_formatter(ctx).print_result(
        event_types, title="Event types", columns=["name", "category", "attributeCount"]
    )


@schema.command("describe-event-type")
@click.argument("event_type")
@click.option("--since", default="1 day ago", show_default=True, help="NRQL time window")
@click.option("--include-data-types", is_flag=True, help="Sample a row to infer attribute types")
@click.pass_context
def describe_event_type(
    ctx: click.Context, event_type: str, since: str, include_data_types: bool
) -> None:
    """Show the attributes of an event type."""

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        return await SchemaService(context).describe_event_type(
            event_type, since, include_data_types
        )

    description = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if formatter.json_output:
        formatter.print_json(description)
        return

    data_types = description.get("dataTypes", {})
    rows = [
        {"attribute": name, "type": data_types.get(name, "")}
        for name in description["attributes"]
    ]
    columns = ["attribute", "type"] if include_data_types else ["attribute"]
    formatter.print_result(
        rows,
        title=f"{event_type} ({description['category']}, since {since})",
        columns=columns,
    )


@schema.command("compare-schemas")
@click.argument("event_type")
@click.option("--account-a", type=int, required=True, help="First account ID")
@click.option("--account-b", type=int, required=True, help="Second account ID")
@click.option("--since", default="1 day ago", show_default=True, help="NRQL time window")
@click.pass_context
def compare_schemas(
    ctx: click.Context, event_type: str, account_a: int, account_b: int, since: str
) -> None:
    """Compare an event type's attributes across two accounts."""

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        return await SchemaService(context).compare_schemas(event_type, account_a, account_b, since)

    comparison = run_command(ctx, handler)
    get_formatter(ctx).print_result(comparison, title=f"{event_type} schema comparison")


@schema.command("validate-attributes")
@click.option("--event-type", required=True, help="Event type to check")
@click.option("--expected-attributes", required=True, help="Comma-separated attribute names")
@click.option("--allow-extra", is_flag=True, help="Allow attributes beyond the expected ones")
@click.option("--account-id", type=int, help="Override default account ID")
@click.option("--since", default="1 day ago", show_default=True, help="NRQL time window")
@click.pass_context
def validate_attributes(
    ctx: click.Context,
    event_type: str,
    expected_attributes: str,
    allow_extra: bool,
    account_id: Optional[int],
    since: str,
) -> None:
    """Check that an event type carries the expected attributes."""
    expected = [name.strip() for name in expected_attributes.split(",") if name.strip()]

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        return await SchemaService(context).validate_attributes(
            event_type, expected, allow_extra, since, account_id
        )

    result = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if formatter.json_output:
        formatter.print_json(result)
    else:
        formatter.print_result(
            {key: result[key] for key in ("eventType", "coverage", "missing", "extra")},
            title="Attribute validation",
        )
        for suggestion in result["suggestions"]:
            formatter.warning(suggestion)
        if result["valid"]:
            formatter.success(f"{event_type} has all expected attributes")
    if not result["valid"]:
        ctx.exit(1)


@schema.command("find-attribute")
@click.argument("attribute")
@click.option("--exact", is_flag=True, help="Match the whole attribute name")
@click.option("--event-type-pattern", help="Regex limiting the event types searched")
@click.option("--since", default="1 day ago", show_default=True, help="NRQL time window")
@click.pass_context
def find_attribute(
    ctx: click.Context,
    attribute: str,
    exact: bool,
    event_type_pattern: Optional[str],
    since: str,
) -> None:
    """Find event types carrying an attribute."""

    async def handler(context: GuardianContext) -> List[Dict[str, Any]]:
        return await SchemaService(context).find_attribute(
            attribute, since, exact, event_type_pattern
        )

    matches = run_command(ctx, handler)
    get_formatter(ctx).print_result(
        matches, title=f"Attributes matching '{attribute}'", columns=["eventType", "attribute", "matchType"]
    )
