"""Tests for the render engine."""

from datetime import UTC, datetime, timedelta

import pytest

from turntable.core.errors import InvalidTargetError
from turntable.core.render import (
    ONE_DAY,
    RenderEngine,
    Target,
    match_queries,
    parse_target,
    resolve_window,
)

NOW = 1_767_268_800  # 2026-01-01T12:00:00Z


class TestParseTarget:
    @pytest.mark.parametrize(
        "raw,query,field",
        [
            ("q1.v", "q1", "v"),
            ("web.frontend.hits", "web.frontend", "hits"),
            ("web:frontend:hits", "web:frontend", "hits"),
            ("web/frontend/hits", "web/frontend", "hits"),
            ("web.*.hits", "web.*", "hits"),
        ],
    )
    def test_split_on_last_separator(self, raw, query, field):
        assert parse_target(raw) == Target(query=query, field=field)

    @pytest.mark.parametrize("raw", ["novalue", ".v", "q1.", "q1.v-1", "q1.1v"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidTargetError):
            parse_target(raw)


class TestResolveWindow:
    def test_defaults(self):
        assert resolve_window(None, None, NOW) == (NOW - ONE_DAY, NOW)

    def test_negative_from_relative_to_until(self):
        assert resolve_window(-3600, None, NOW) == (NOW - 3600, NOW)
        assert resolve_window(-3600, NOW - 100, NOW) == (NOW - 3700, NOW - 100)

    def test_negative_until_relative_to_now(self):
        assert resolve_window(None, -60, NOW) == (NOW - 60 - ONE_DAY, NOW - 60)

    def test_absolute_values_kept(self):
        assert resolve_window(1000, 2000, NOW) == (1000, 2000)


class TestMatchQueries:
    NAMES = ["web.frontend", "web.backend", "db.primary", "q1"]

    def test_exact(self):
        assert match_queries(Target("q1", "v"), self.NAMES) == ["q1"]

    def test_exact_unknown(self):
        assert match_queries(Target("q9", "v"), self.NAMES) == []

    def test_segment_wildcard(self):
        assert match_queries(Target("web.*", "v"), self.NAMES) == ["web.backend", "web.frontend"]

    def test_wildcard_respects_segment_count(self):
        assert match_queries(Target("*", "v"), self.NAMES) == ["q1"]

    def test_character_class(self):
        assert match_queries(Target("[dw]*.primary", "v"), self.NAMES) == ["db.primary"]


@pytest.fixture
def engine_for(registry):
    def build(now: datetime) -> RenderEngine:
        return RenderEngine(registry.get, registry.names, registry.catalog, clock=lambda: now)

    return build


class TestRender:
    def test_one_tick_one_datapoint(self, registry, engine_for):
        definition = registry.add("q1", "d1", "SELECT 1 AS v", {}).unwrap()
        tick = datetime(2026, 1, 1, 11, 0, tzinfo=UTC)
        registry.executor.build(definition)(tick).unwrap()

        series = engine_for(datetime.now(UTC)).render(["q1.v"], from_=-3600)

        assert [s.to_dict() for s in series] == [
            {"target": "q1.v", "datapoints": [[1, int(tick.timestamp() * 1000)]]}
        ]

    def test_chronological_by_start(self, registry, engine_for):
        definition = registry.add("q1", "d1", "SELECT ? AS t, 5 AS v", {}).unwrap()
        run = registry.executor.build(definition)
        for minute in (3, 1, 2):
            run(datetime(2026, 1, 1, 11, minute, tzinfo=UTC)).unwrap()

        [series] = engine_for(datetime.now(UTC)).render(["q1.v"], from_=-600)
        stamps = [ts for _, ts in series.datapoints]
        assert len(stamps) == 3
        assert [datetime.fromtimestamp(ts / 1000, UTC).minute for ts in stamps] == [3, 1, 2]

    def test_window_excludes_old_runs(self, registry, engine_for):
        definition = registry.add("q1", "d1", "SELECT 1 AS v", {}).unwrap()
        registry.executor.build(definition)().unwrap()

        later = datetime.now(UTC) + timedelta(days=2)
        assert engine_for(later).render(["q1.v"]) is None

    def test_unknown_only_is_none(self, registry, engine_for):
        assert engine_for(datetime.now(UTC)).render(["nope.v"]) is None

    def test_mixture_returns_matched(self, registry, engine_for):
        definition = registry.add("q1", "d1", "SELECT 1 AS v", {}).unwrap()
        registry.executor.build(definition)().unwrap()

        series = engine_for(datetime.now(UTC)).render(["q1.v", "nope.v"])
        assert [s.target for s in series] == ["q1.v"]

    def test_wildcard_targets_named_concretely(self, registry, engine_for):
        for name in ("web.a", "web.b"):
            d = registry.add(name, "d1", "SELECT 2 AS hits", {}).unwrap()
            registry.executor.build(d)().unwrap()

        series = engine_for(datetime.now(UTC)).render(["web.*.hits"])
        assert [s.target for s in series] == ["web.a.hits", "web.b.hits"]
        assert all(s.datapoints[0][0] == 2 for s in series)

    def test_missing_column_yields_nothing(self, registry, engine_for):
        definition = registry.add("q1", "d1", "SELECT 1 AS v", {}).unwrap()
        registry.executor.build(definition)().unwrap()
        assert engine_for(datetime.now(UTC)).render(["q1.nosuchcol"]) is None

    def test_registered_but_never_ran(self, registry, engine_for):
        registry.add("q1", "d1", "SELECT 1 AS v", {})
        assert engine_for(datetime.now(UTC)).render(["q1.v"]) is None

    def test_invalid_target_raises(self, registry, engine_for):
        with pytest.raises(InvalidTargetError):
            engine_for(datetime.now(UTC)).render(["q1"])
