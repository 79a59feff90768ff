"""turntable command line (Typer)."""

from turntable.cli.app import app

__all__ = ["app"]
