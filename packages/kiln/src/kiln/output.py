"""Console output for kiln commands.

Build reports go to stdout through a rich Console. Colors are disabled by
the NO_COLOR environment variable or the --no-color flag.
"""

from __future__ import annotations

import os

from rich.console import Console
from rich.markup import escape

console = Console(no_color=os.environ.get("NO_COLOR") is not None)


def set_no_color(no_color: bool) -> None:
    """Replace the shared console, with colors disabled when requested."""
    global console
    console = Console(
        force_terminal=False if no_color else None,
        no_color=no_color or os.environ.get("NO_COLOR") is not None,
    )


def success(message: str) -> None:
    console.print(f"[green]✓[/green] {escape(message)}")


def error(message: str) -> None:
    """Print a failure line.

    Example:
        >>> error("Compiling error in app/a.js: unexpected token")
        ✗ Compiling error in app/a.js: unexpected token
    """
    console.print(f"[red]✗[/red] {escape(message)}")


def warning(message: str) -> None:
    console.print(f"[yellow]![/yellow] {escape(message)}")


def info(message: str) -> None:
    console.print(escape(message), highlight=False)
