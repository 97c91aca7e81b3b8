"""
Output formatting for the nr-guardian CLI.

Results go to stdout, either as rich tables/panels or as JSON with ``--json``.
Errors always go to stderr.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..exceptions import NRGuardianError


class Formatter:
    """Writes command results and errors."""

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    def print_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def print_result(
        self,
        data: Any,
        title: Optional[str] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Print a command result.

        Args:
            data: JSON-serializable result
            title: Table or panel title in text mode
            columns: Keys to show when ``data`` is a list of dicts
        """
        if self.json_output:
            self.print_json(data)
            return
        if self.quiet:
            return

        if isinstance(data, list) and columns:
            self.print_table(data, columns, title)
        elif isinstance(data, dict):
            body = Text()
            for key, value in data.items():
                body.append(f"{key}: ", style="bold")
                body.append(f"{self._cell(value)}\n")
            body.rstrip()
            self.console.print(Panel(body, title=title, expand=False))
        else:
            self.console.print(data)

    def print_table(
        self, rows: List[Dict[str, Any]], columns: Sequence[str], title: Optional[str] = None
    ) -> None:
        table = Table(title=title, show_header=True, header_style="bold cyan")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(Text(self._cell(row.get(column))) for column in columns))
        self.console.print(table)
        self.console.print(f"[dim]{len(rows)} row(s)[/dim]")

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return str(value)

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(f"[yellow]⚠[/yellow] {message}")

    def error(self, error: BaseException) -> None:
        """Print an error line, or a JSON error object with ``--json``."""
        if self.json_output:
            if isinstance(error, NRGuardianError):
                payload = {"success": False, **error.to_dict()}
            else:
                payload = {"success": False, "error": type(error).__name__, "message": str(error)}
            self.err_console.print_json(json.dumps(payload, default=str))
            return

        name = type(error).__name__
        message = error.message if isinstance(error, NRGuardianError) else str(error)
        self.err_console.print(Text.assemble((f"✗ {name}: ", "bold red"), message), soft_wrap=True)
