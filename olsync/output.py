"""Console output formatting for the CLI."""

import json
import sys
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Formats user-facing output with rich, honoring quiet and JSON modes."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of styled text
            quiet: Suppress informational messages
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(highlight=False)
        self.err_console = Console(stderr=True, highlight=False)

    def print(self, message: str = "") -> None:
        """Print a plain message."""
        if self.quiet or self.json_output:
            return
        self.console.print(message)

    def info(self, message: str) -> None:
        """Print an informational message."""
        if self.quiet or self.json_output:
            return
        self.console.print(message)

    def dim(self, message: str) -> None:
        """Print a secondary, de-emphasized message."""
        if self.quiet or self.json_output:
            return
        self.console.print(f"[dim]{message}[/dim]")

    def success(self, message: str) -> None:
        """Print a success message."""
        if self.quiet or self.json_output:
            return
        self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        """Print a warning (shown even in quiet mode)."""
        if self.json_output:
            return
        self.err_console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        """Print an error (always shown, on stderr)."""
        self.err_console.print(f"[red]{message}[/red]")

    def output_json(self, data: Any) -> None:
        """Write JSON to stdout."""
        sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")

    def print_table(
        self, title: Optional[str], columns: list[str], rows: list[list[str]]
    ) -> None:
        """Print rows as a table."""
        if self.json_output:
            return
        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a titled list of key/value pairs."""
        if self.json_output:
            self.output_json({key: value for key, value in items})
            return
        self.console.print(f"[bold]{title}[/bold]")
        for key, value in items:
            self.console.print(f"  {key}: {value}")
