"""
turntable - scheduled SQL queries archived as time series.

Queries are registered with a recurrence, run against named databases on
their own timers, and every run is appended to a per-query result table.
The render API reads those tables back as ``(value, timestamp)`` series.

- turntable.core: registry, scheduler, executor, sinks, render engine
- turntable.api: FastAPI HTTP surface
- turntable.cli: Typer command line
"""

__version__ = "0.1.0"
