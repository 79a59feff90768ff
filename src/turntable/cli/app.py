"""
Root Typer application for the turntable CLI.

    turntable serve                 start the HTTP API
    turntable stage DB SQL          run a query once and print its rows
    turntable period SPEC           show the next occurrences of a period
    turntable queries               list persisted query definitions
"""

from __future__ import annotations

import json
from itertools import islice

import typer
from typer import Typer

from turntable import __version__
from turntable.cli.utils import console, err_console, load_settings, print_table
from turntable.core.errors import TurntableError
from turntable.core.logging import configure_logging
from turntable.core.period import PeriodSpec
from turntable.core.timestamps import utc_now

app = Typer(
    name="turntable",
    help="turntable: scheduled SQL queries archived as time series.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"turntable {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """turntable CLI: serve, stage queries, inspect periods."""


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    log_level: str | None = typer.Option(None, "--log-level"),
) -> None:
    """Start the turntable HTTP API."""
    import uvicorn

    from turntable.api import create_app

    settings = load_settings()
    if log_level:
        settings.log_level = log_level.upper()
    host = host or settings.host
    port = port or settings.port

    console.print(f"[bold green]Starting turntable[/bold green] on {host}:{port}")
    uvicorn.run(
        create_app(settings=settings),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


@app.command("stage")
def stage(
    db: str = typer.Argument(..., help="Database name"),
    sql: str = typer.Argument(..., help="SQL with ? placeholders bound to now"),
) -> None:
    """Run SQL once the way a scheduled run would and print the rows."""
    from turntable.core.catalog import DatabaseCatalog
    from turntable.core.executor import QueryExecutor

    settings = load_settings()
    configure_logging(level="WARNING", json_format=False)
    catalog = DatabaseCatalog(settings)
    try:
        typer.echo(QueryExecutor(catalog).stage(db, sql), nl=False)
    finally:
        catalog.dispose()


@app.command("period")
def period(
    spec: str = typer.Argument(..., help='Cron string or JSON mapping, e.g. \'{"minute": [0, 30]}\''),
    count: int = typer.Option(5, "--count", "-n", help="Occurrences to show"),
) -> None:
    """Show the cron form and next occurrences of a period."""
    try:
        parsed = PeriodSpec.parse(spec)
    except TurntableError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=2) from e

    console.print(f"cron: [bold]{parsed.to_cron()}[/bold]")
    console.print(f"json: {json.dumps(parsed.to_dict())}")
    for t in islice(parsed.times_for(utc_now()), count):
        console.print(f"  {t.isoformat()}")


@app.command("queries")
def queries() -> None:
    """List query definitions in the registry snapshot."""
    from turntable.core.snapshot import SnapshotStore

    settings = load_settings()
    store = SnapshotStore(settings.query_file)
    try:
        rows = store.read()
    except TurntableError as e:
        err_console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from e

    if not rows:
        console.print(f"[dim]No queries in {store.path}[/dim]")
        return
    print_table(
        rows,
        columns=["name", "db", "period", "added", "query"],
        title=str(store.path),
    )
