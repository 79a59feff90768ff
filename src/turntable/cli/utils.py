"""
CLI utility helpers: settings loading and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from turntable.core.settings import TurntableSettings

console = Console()
err_console = Console(stderr=True)


def load_settings() -> TurntableSettings:
    """Settings from the environment; exit 2 with a message when invalid."""
    try:
        return TurntableSettings()
    except ValidationError as e:
        err_console.print(f"[red]Invalid configuration:[/red]\n{e}")
        raise typer.Exit(code=2) from e


def _cell(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return "" if value is None else str(value)


def print_table(
    rows: Sequence[dict[str, Any]],
    columns: Sequence[str],
    title: str | None = None,
) -> None:
    """Render a list of dicts as a rich table."""
    table = Table(title=title, show_lines=False)
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in columns))
    console.print(table)
