"""
nr-guardian command line entry point.
"""

from typing import Any, Dict, Optional

import click

from .. import __version__
from ..api import run_server
from ..client import NrqlResult
from ..config import ConfigLoader
from ..context import GuardianContext
from ..exceptions import ConfigError
from ..logging import setup_logging
from .dashboard import dashboard
from .formatting import Formatter
from .schema import schema
from .utils import get_formatter, run_command


@click.group()
@click.version_option(__version__, prog_name="nr-guardian")
@click.option("--json", "-j", "json_output", is_flag=True, help="Output results as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Only print errors")
@click.option("--no-cache", is_flag=True, help="Disable the response cache")
@click.option("--api-key", help="New Relic user API key")
@click.option("--account-id", type=int, help="Default New Relic account ID")
@click.option(
    "--region",
    type=click.Choice(["US", "EU"], case_sensitive=False),
    help="New Relic data center region",
)
@click.option("--config", "-c", "config_file", type=click.Path(dir_okay=False), help="Config file")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    verbose: bool,
    quiet: bool,
    no_cache: bool,
    api_key: Optional[str],
    account_id: Optional[int],
    region: Optional[str],
    config_file: Optional[str],
) -> None:
    """Guardrails and tooling for the New Relic NerdGraph API."""
    ctx.ensure_object(dict)

    overrides: Dict[str, Any] = {"api_key": api_key, "account_id": account_id, "region": region}
    if json_output:
        overrides["output_json"] = True
    if no_cache:
        overrides["cache"] = {"enabled": False}
    if verbose:
        overrides["logging"] = {"level": "DEBUG"}
    elif quiet:
        overrides["logging"] = {"level": "ERROR"}

    try:
        config = ConfigLoader().load_config(config_file, overrides)
    except ConfigError as e:
        Formatter(json_output=json_output).error(e)
        ctx.exit(1)

    logging_manager = setup_logging(config.logging)
    ctx.call_on_close(logging_manager.cleanup)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["formatter"] = Formatter(json_output=config.output_json, quiet=quiet)


@cli.command("test-connection")
@click.pass_context
def test_connection(ctx: click.Context) -> None:
    """Check the API key against NerdGraph."""

    async def handler(context: GuardianContext) -> Dict[str, Any]:
        return await context.client.test_connection()

    user = run_command(ctx, handler)
    formatter = get_formatter(ctx)
    if formatter.json_output:
        formatter.print_json({"success": True, "user": user})
    else:
        formatter.success(f"Connected as {user.get('name')} <{user.get('email')}>")


@cli.group()
def nrql() -> None:
    """NRQL queries."""


@nrql.command("run")
@click.argument("query")
@click.option("--account-id", type=int, help="Override default account ID")
@click.pass_context
def run_nrql(ctx: click.Context, query: str, account_id: Optional[int]) -> None:
    """Run an NRQL query and print the rows."""
    formatter = get_formatter(ctx)

    async def handler(context: GuardianContext) -> NrqlResult:
        return await context.client.run_nrql(context.account_id(account_id), query)

    result = run_command(ctx, handler)
    if formatter.json_output:
        formatter.print_json({**result.to_dict(), "suggestions": result.suggestions})
        return

    columns = sorted({key for row in result.results for key in row})
    formatter.print_result(result.results, title="NRQL results", columns=columns)
    for suggestion in result.suggestions:
        formatter.warning(suggestion)


@cli.group("config")
def config_group() -> None:
    """Configuration inspection."""


@config_group.command("show")
@click.pass_context
def show_config(ctx: click.Context) -> None:
    """Print the effective configuration with secrets masked."""
    formatter = get_formatter(ctx)
    config = ctx.obj["config"]
    formatter.print_result(config.masked(), title="Configuration")


@cli.command("serve")
@click.option("--host", help="Interface to bind, defaults to api.host")
@click.option("--port", type=int, help="Port to listen on, defaults to api.port")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Run the JSON REST API."""
    run_server(ctx.obj["config"], host=host, port=port)


cli.add_command(dashboard)
cli.add_command(schema)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
