"""
Diagnostic output for pgharness.

Uses Rich for terminal output. Diagnostics go to standard error so they
never mix with query output a test or a shell pipeline is capturing.
"""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .models import HarnessConfig, QueryResult


class Diagnostics:
    """
    Writer for harness diagnostics.

    Messages are escaped before printing, so SQL and server output
    containing square brackets are shown literally.
    """

    def __init__(
        self,
        quiet: bool = False,
        no_color: bool = False,
        console: Optional[Console] = None,
    ):
        """
        Initialize diagnostics.

        Args:
            quiet: Suppress everything except errors
            no_color: Disable colored output
            console: Console to write to (defaults to stderr)
        """
        self.quiet = quiet
        self.console = console or Console(
            stderr=True,
            no_color=no_color,
            highlight=False,
            soft_wrap=True,
        )

    def print(self, message: str, style: Optional[str] = None) -> None:
        """Print a message to the console."""
        if self.quiet:
            return
        if style:
            self.console.print(escape(message), style=style)
        else:
            self.console.print(escape(message))

    def print_error(self, message: str) -> None:
        """Print an error message (always shown, even in quiet mode)."""
        self.console.print(f"[red]Error:[/red] {escape(message)}")

    def connstr(self, caller: str, connstr: str) -> None:
        self.print(f"{caller} has connstr: {connstr}", style="dim")

    def standard_error(self, stderr: str) -> None:
        """Echo psql's stderr, which can hold NOTICEs even on success."""
        if self.quiet:
            return
        self.console.print("#### Begin standard error", markup=False)
        self.console.print(stderr, markup=False)
        self.console.print("#### End standard error", markup=False)

    def poll_timed_out(self, query: str, expected: str, actual: str) -> None:
        """Report the last attempt of a poll that ran out of budget."""
        if self.quiet:
            return
        self.console.print(Panel(
            f"[dim]Query:[/dim]\n{escape(query)}\n"
            f"[dim]Expecting this output:[/dim]\n{escape(expected)}\n"
            f"[dim]Last actual query output:[/dim]\n{escape(actual)}",
            title="poll_query_until timed out",
            border_style="red",
        ))

    def node_info(self, info: str) -> None:
        self.print(info.rstrip("\n"))


def result_table(result: QueryResult) -> Table:
    """Build a Rich table for a tuples result, showing NULL distinctly."""
    table = Table(show_header=True, header_style="bold")
    for name in result.names:
        table.add_column(escape(name))
    for row in result.rows:
        table.add_row(*(
            "[dim]NULL[/dim]" if cell is None else escape(cell)
            for cell in row
        ))
    return table


_diagnostics: Optional[Diagnostics] = None


def get_diagnostics() -> Diagnostics:
    """Get the process-wide diagnostics writer, creating it from the environment."""
    global _diagnostics
    if _diagnostics is None:
        _diagnostics = Diagnostics(quiet=HarnessConfig.from_env().quiet)
    return _diagnostics


def set_diagnostics(diagnostics: Optional[Diagnostics]) -> None:
    """Replace the process-wide diagnostics writer (None resets to default)."""
    global _diagnostics
    _diagnostics = diagnostics
