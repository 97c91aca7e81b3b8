"""
Helpers shared by the CLI command modules.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, List, TypeVar

import click

from ..context import GuardianContext
from ..exceptions import NRGuardianError, ValidationError
from .formatting import Formatter

T = TypeVar("T")


def get_formatter(ctx: click.Context) -> Formatter:
    return ctx.obj["formatter"]


def run_command(ctx: click.Context, handler: Callable[[GuardianContext], Awaitable[T]]) -> T:
    """
    Run an async handler inside a fresh GuardianContext.

    NRGuardianError is reported on stderr and turned into exit code 1; with
    ``--verbose`` the traceback is printed as well.
    """
    config = ctx.obj["config"]

    async def runner() -> T:
        async with GuardianContext(config) as context:
            return await handler(context)

    try:
        return asyncio.run(runner())
    except NRGuardianError as e:
        formatter = get_formatter(ctx)
        formatter.error(e)
        if ctx.obj.get("verbose"):
            formatter.err_console.print_exception()
        ctx.exit(1)


def load_json_file(path: str) -> Any:
    """
    Read a JSON document from disk.

    Raises:
        ValidationError: If the file cannot be read or parsed
    """
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}", field="file") from e
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {path}: {e}", field="file") from e


def parse_account_ids(value: str) -> List[int]:
    ids: List[int] = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise click.BadParameter(f"'{part}' is not a numeric account id")
        ids.append(int(part))
    if not ids:
        raise click.BadParameter("At least one account id is required")
    return ids
