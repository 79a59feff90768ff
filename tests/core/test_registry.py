"""Tests for QueryRegistry lifecycle."""

import json
import threading
from datetime import UTC, datetime, timedelta

from turntable.core.errors import (
    BackfillError,
    ConflictError,
    InvalidPeriodError,
    SnapshotError,
)
from turntable.core.registry import QueryRegistry
from turntable.core.result import Err, Ok
from turntable.core.scheduling import QueryScheduler


def _snapshot_names(settings) -> list[str]:
    return [pair[0] for pair in json.loads(settings.query_file.read_text())]


class TestAdd:
    def test_returns_definition(self, registry):
        result = registry.add("q1", "d1", "SELECT 1 AS v", {"minute": 0})

        assert isinstance(result, Ok)
        definition = result.value
        assert definition.db == "d1"
        assert definition.period.to_cron() == "0 * * * *"
        assert registry.get("q1") == definition
        assert "q1" in registry

    def test_conflict_leaves_registry_unchanged(self, registry, settings):
        first = registry.add("q1", "d1", "SELECT 1 AS v", {}).unwrap()
        result = registry.add("q1", "d1", "SELECT 2 AS v", {"hour": 3})

        assert isinstance(result, Err)
        assert isinstance(result.error, ConflictError)
        assert len(registry) == 1
        assert registry.get("q1") == first
        assert _snapshot_names(settings) == ["q1"]

    def test_invalid_period(self, registry, settings):
        result = registry.add("q1", "d1", "SELECT 1", {"minute": 99})
        assert isinstance(result.error, InvalidPeriodError)
        assert "q1" not in registry
        assert not settings.query_file.exists()

    def test_invalid_backfill_start(self, registry):
        result = registry.add("q1", "d1", "SELECT 1", {}, backfill_from="soon")
        assert isinstance(result.error, BackfillError)
        assert len(registry) == 0

    def test_snapshot_written(self, registry, settings):
        registry.add("q1", "d1", "SELECT 1 AS v", {})
        registry.add("q2", "d1", "SELECT 2 AS v", "*/5 * * * *")

        pairs = json.loads(settings.query_file.read_text())
        assert [p[0] for p in pairs] == ["q1", "q2"]
        assert pairs[1][1]["query"]["period"] == {"minute": [0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55]}

    def test_snapshot_failure_is_err_without_mutation(self, registry, settings, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("")
        registry.store.path = blocker / "queries.json"

        result = registry.add("q1", "d1", "SELECT 1", {})
        assert isinstance(result.error, SnapshotError)
        assert "q1" not in registry

    def test_schedule_started(self, registry):
        registry.add("q1", "d1", "SELECT 1", {})
        health = registry.health()["q1"]
        assert health["healthy"] is True

    def test_added_time_kept(self, registry):
        added = datetime(2025, 6, 1, tzinfo=UTC)
        definition = registry.add("q1", "d1", "SELECT 1", {}, added=added).unwrap()
        assert definition.added == added


class TestBackfill:
    def test_replays_every_occurrence(self, registry, backfill_runner):
        start = datetime.now(UTC).replace(second=0, microsecond=0) - timedelta(hours=3, minutes=30)
        registry.add(
            "q1", "d1", "SELECT 1 AS v", {"minute": start.minute},
            backfill_from=int(start.timestamp()),
        )

        [report] = backfill_runner.reports
        assert report.completed == 4
        assert report.failed == 0
        times = [env.query_time for env in registry.recent_results("q1")]
        assert times == [start + timedelta(hours=h) for h in range(4)]

    def test_no_backfill_by_default(self, registry, backfill_runner):
        registry.add("q1", "d1", "SELECT 1 AS v", {})
        assert backfill_runner.reports == []


class TestRemove:
    def test_cancels_and_drops(self, registry, settings):
        registry.add("q1", "d1", "SELECT 1", {})
        registry.add("q2", "d1", "SELECT 2", {})
        handle = registry._entries["q1"].handle

        assert registry.remove("q1") is True
        assert not handle.is_active
        assert registry.get("q1") is None
        assert _snapshot_names(settings) == ["q2"]

    def test_unknown(self, registry):
        assert registry.remove("nope") is False

    def test_name_reusable_after_remove(self, registry):
        registry.add("q1", "d1", "SELECT 1", {})
        registry.remove("q1")
        assert registry.add("q1", "d1", "SELECT 2", {}).is_ok()

    def test_no_executions_after_remove(self, settings, fast_clock):
        registry = QueryRegistry(settings, scheduler=QueryScheduler(clock=fast_clock))
        try:
            registry.add("q1", "d1", "SELECT 1 AS v", {})
            handle = registry._entries["q1"].handle
            deadline = datetime.now(UTC) + timedelta(seconds=5)
            while handle.fire_count < 2 and datetime.now(UTC) < deadline:
                threading.Event().wait(0.01)
            assert handle.fire_count >= 2

            registry.remove("q1")
            handle.join(timeout=5.0)
            fired = handle.fire_count
            threading.Event().wait(0.1)
            assert handle.fire_count == fired
        finally:
            registry.shutdown()
            registry.catalog.dispose()


class TestReads:
    def test_get_unknown(self, registry):
        assert registry.get("nope") is None

    def test_list(self, registry):
        registry.add("q1", "d1", "SELECT 1", {})
        listing = registry.list()
        assert [d.name for d in listing.definitions] == ["q1"]
        assert listing.databases == ("d1",)
        assert listing.to_dict()["dbs"] == ["d1"]

    def test_recent_results_bounded(self, registry, settings):
        registry.add("q1", "d1", "SELECT 1 AS v", {})
        run = registry.executor.build(registry.get("q1"))
        for _ in range(settings.recent_results_capacity + 2):
            run().unwrap()
        assert len(registry.recent_results("q1")) == settings.recent_results_capacity

    def test_readers_see_whole_maps(self, registry):
        stop = threading.Event()
        seen = []

        def reader():
            while True:
                listing = registry.list()
                seen.append([d.name for d in listing.definitions])
                if stop.is_set():
                    return

        t = threading.Thread(target=reader)
        t.start()
        try:
            for i in range(20):
                registry.add(f"q{i}", "d1", "SELECT 1", {})
        finally:
            stop.set()
            t.join()
        assert seen
        for names in seen:
            assert names == [f"q{i}" for i in range(len(names))]
        assert registry.list().definitions[-1].name == "q19"


class TestRestore:
    def test_restores_from_snapshot(self, registry, settings, quiet_clock, backfill_runner):
        registry.add("q1", "d1", "SELECT 1 AS v", {"minute": 5})
        registry.add("q2", "d1", "SELECT 2 AS v", {})
        original = registry.get("q1")
        registry.shutdown()
        backfill_runner.reports.clear()

        restarted = QueryRegistry(
            settings,
            scheduler=QueryScheduler(clock=quiet_clock),
            backfill=backfill_runner,
        )
        try:
            assert restarted.restore() == 2
            assert restarted.get("q1") == original
            assert backfill_runner.reports == []
        finally:
            restarted.shutdown()
            restarted.catalog.dispose()

    def test_invalid_entries_skipped(self, registry):
        restored = registry.restore(
            [
                {"name": "good", "db": "d1", "query": "SELECT 1", "period": {}},
                {"name": "bad", "db": "d1", "query": "SELECT 1", "period": {"hour": 42}},
                {"name": "incomplete"},
            ]
        )
        assert restored == 1
        assert registry.names() == ["good"]

    def test_restore_does_not_rewrite_snapshot(self, registry, settings):
        registry.restore([{"name": "q1", "db": "d1", "query": "SELECT 1"}])
        assert not settings.query_file.exists()

    def test_missing_file(self, registry):
        assert registry.restore() == 0


class TestShutdown:
    def test_cancels_all_keeps_snapshot(self, registry, settings):
        registry.add("q1", "d1", "SELECT 1", {})
        handle = registry._entries["q1"].handle
        registry.shutdown()
        assert not handle.is_active
        assert _snapshot_names(settings) == ["q1"]
