"""Tests for backfill replay."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from turntable.core.errors import BackfillError, ExecutionError
from turntable.core.period import PeriodSpec
from turntable.core.result import Err, Ok
from turntable.core.scheduling import BackfillRunner, BackfillStatus, occurrences, resolve_start

START = datetime(2026, 1, 1, 0, 0, tzinfo=UTC)
HOURLY = PeriodSpec.parse({"minute": 0})


class TestOccurrences:
    def test_half_open_interval(self):
        times = list(occurrences(HOURLY, START, START + timedelta(hours=3)))
        assert times == [START, START + timedelta(hours=1), START + timedelta(hours=2)]

    def test_strictly_increasing(self):
        times = list(occurrences(PeriodSpec(), START, START + timedelta(minutes=30)))
        assert len(times) == 30
        assert all(a < b for a, b in zip(times, times[1:]))

    def test_empty_when_end_not_after_start(self):
        assert list(occurrences(HOURLY, START, START)) == []


class TestResolveStart:
    def test_epoch_number_and_text(self):
        seconds = int(START.timestamp())
        assert resolve_start(seconds) == START
        assert resolve_start(str(seconds)) == START

    def test_datetime(self):
        assert resolve_start(START.replace(tzinfo=None)) == START

    @pytest.mark.parametrize("value", ["yesterday", "", True])
    def test_invalid(self, value):
        with pytest.raises(BackfillError):
            resolve_start(value)


class TestBackfillRunner:
    def test_invokes_once_per_occurrence_oldest_first(self):
        seen = []
        report = BackfillRunner().run(
            "q1", HOURLY, START, lambda t: seen.append(t) or Ok(None),
            end=START + timedelta(hours=4),
        )
        assert seen == [START + timedelta(hours=h) for h in range(4)]
        assert report.status is BackfillStatus.COMPLETED
        assert report.completed == 4
        assert report.first == START
        assert report.last == START + timedelta(hours=3)

    def test_end_defaults_to_clock(self):
        seen = []
        clock = lambda: START + timedelta(hours=2, minutes=30)  # noqa: E731
        BackfillRunner(clock=clock).run("q1", HOURLY, START, seen.append)
        assert len(seen) == 3

    def test_failed_occurrence_does_not_abort(self):
        bad = START + timedelta(hours=1)

        def fn(t):
            if t == bad:
                return Err(ExecutionError("nope"))
            return Ok(t)

        report = BackfillRunner().run("q1", HOURLY, START, fn, end=START + timedelta(hours=3))
        assert report.status is BackfillStatus.FAILED
        assert report.completed == 2
        assert report.failed_times == [bad]

    def test_raising_occurrence_does_not_abort(self):
        calls = []

        def fn(t):
            calls.append(t)
            if len(calls) == 1:
                raise RuntimeError("first one breaks")

        report = BackfillRunner().run("q1", HOURLY, START, fn, end=START + timedelta(hours=3))
        assert len(calls) == 3
        assert report.failed == 1
        assert report.total == 3

    def test_launch_runs_on_separate_thread(self):
        threads = []
        done = threading.Event()

        def fn(t):
            threads.append(threading.current_thread().name)
            done.set()

        thread = BackfillRunner().launch(
            "q1", HOURLY, START, fn, end=START + timedelta(minutes=30)
        )
        thread.join(timeout=5.0)
        assert done.is_set()
        assert threads == ["turntable-backfill-q1"]

    def test_launch_validates_start(self):
        with pytest.raises(BackfillError):
            BackfillRunner().launch("q1", HOURLY, "not-a-time", lambda t: None)

    def test_report_to_dict(self):
        report = BackfillRunner().run("q1", HOURLY, START, lambda t: None, end=START)
        data = report.to_dict()
        assert data["status"] == "completed"
        assert data["first"] is None
