"""Console output utilities with color formatting."""

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Global console instance
_console = Console()


def print_success(message: str) -> None:
    """Print a success message in green."""
    _console.print(f"[green]{escape(message)}[/green]")


def print_error(message: str) -> None:
    """Print an error message in red.

    The message is escaped, so pydantic errors (``[type=missing, ...]``) and
    work item titles (``[FIRING:2] ...``) print as written.
    """
    _console.print(f"[red]{escape(message)}[/red]")


def print_header(message: str) -> None:
    """Print a header message in bold cyan."""
    _console.print(f"[bold cyan]{escape(message)}[/bold cyan]")


def print_json(data: Any) -> None:
    """Pretty-print JSON-serializable data."""
    _console.print_json(data=data)


def print_table(table: Table) -> None:
    _console.print(table)
