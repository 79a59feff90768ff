"""
Shared pytest fixtures for turntable tests.

This module provides:
- Settings backed by file SQLite databases in ``tmp_path``
- Fixed clocks so schedules fire (or stay quiet) deterministically
- An inline backfill runner that replays synchronously
- A registry wired to all of the above, shut down after each test
"""

from __future__ import annotations

from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

import pytest

from turntable.core.logging import configure_logging
from turntable.core.registry import QueryRegistry
from turntable.core.scheduling import BackfillReport, BackfillRunner, QueryScheduler
from turntable.core.settings import TurntableSettings


def pytest_configure(config: pytest.Config) -> None:
    configure_logging(level="WARNING", json_format=False)


class FixedClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class InlineBackfillRunner(BackfillRunner):
    """Runs the replay on the calling thread and keeps every report."""

    def __init__(self) -> None:
        super().__init__()
        self.reports: list[BackfillReport] = []

    def launch(self, name, period, start, fn, end=None):  # type: ignore[override]
        self.reports.append(self.run(name, period, start, fn, end))
        return None


# =============================================================================
# Clocks
# =============================================================================


@pytest.fixture
def quiet_clock() -> FixedClock:
    """Frozen at the top of a minute: the next fire is a full minute away."""
    return FixedClock(datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC))


@pytest.fixture
def fast_clock() -> FixedClock:
    """Frozen one millisecond before a minute boundary: fires continuously."""
    return FixedClock(datetime(2026, 1, 1, 12, 0, 59, 999000, tzinfo=UTC))


# =============================================================================
# Settings / registry
# =============================================================================


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path}"


@pytest.fixture
def settings(tmp_path: Path) -> TurntableSettings:
    return TurntableSettings(
        _env_file=None,
        servers={"d1": sqlite_url(tmp_path / "d1.db")},
        query_file=tmp_path / "queries.json",
        recent_results_capacity=5,
    )


@pytest.fixture
def backfill_runner() -> InlineBackfillRunner:
    return InlineBackfillRunner()


@pytest.fixture
def registry(
    settings: TurntableSettings,
    quiet_clock: FixedClock,
    backfill_runner: InlineBackfillRunner,
) -> Generator[QueryRegistry, None, None]:
    reg = QueryRegistry(
        settings,
        scheduler=QueryScheduler(clock=quiet_clock),
        backfill=backfill_runner,
    )
    yield reg
    reg.shutdown()
    reg.catalog.dispose()
