"""
Console output helpers.

Respects NO_COLOR and FORCE_COLOR, and renders plain text when stdout is not
a terminal (CI pipelines, redirected output).
"""

from __future__ import annotations

import os

from rich.console import Console
from rich.table import Table
from rich.theme import Theme

from netprov.graph.models import NodeStatus

NETPROV_THEME = Theme(
    {
        "info": "#88C0D0",
        "success": "#A3BE8C",
        "warning": "#EBCB8B",
        "error": "#BF616A bold",
        "muted": "#D8DEE9",
    }
)

STATUS_STYLES = {
    NodeStatus.READY: "success",
    NodeStatus.FAILED: "error",
    NodeStatus.SKIPPED: "warning",
}

console = Console(
    theme=NETPROV_THEME,
    force_terminal=os.environ.get("FORCE_COLOR") is not None,
    no_color=os.environ.get("NO_COLOR") is not None,
)


def status_text(status: NodeStatus) -> str:
    style = STATUS_STYLES.get(status, "muted")
    return f"[{style}]{status.value}[/{style}]"


def new_table(*columns: str) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    for column in columns:
        table.add_column(column)
    return table


def success(message: str) -> None:
    console.print(f"[success]✓[/success] {message}")


def warning(message: str) -> None:
    console.print(f"[warning]⚠[/warning] {message}")


def error(message: str) -> None:
    console.print(f"[error]✗[/error] {message}")
