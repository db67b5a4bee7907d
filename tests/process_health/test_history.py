"""
Tests for the Historical Query Engine.
"""

from unittest.mock import MagicMock

import pytest

from process_health.aggregator import SystemAggregator
from process_health.config import ScoringThresholds
from process_health.exceptions import InvalidPeriodToken, StorageUnavailable
from process_health.history import (
    HOUR_MS,
    MINUTE_MS,
    PERIOD_POLICIES,
    HistoricalQueryEngine,
    bucket_points,
    resolve_period,
)
from process_health.models import (
    DataOrigin,
    ProcessSample,
    SystemRollup,
    TimeSeriesPoint,
)
from process_health.scorer import HealthScorer

from conftest import START_MS


DAY_MS = 24 * HOUR_MS


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def aggregator(store, fake_source, clock):
    return SystemAggregator(
        store,
        fake_source,
        scorer=HealthScorer(ScoringThresholds()),
        clock=clock,
        source_timeout=0.2,
    )


@pytest.fixture
def engine(aggregator, clock):
    return HistoricalQueryEngine(aggregator, clock=clock)


def rollup(timestamp, total_cpu=0.0, processes=None, **kwargs):
    return SystemRollup(
        timestamp=timestamp,
        total_cpu=total_cpu,
        total_processes=len(processes or []),
        processes=processes or [],
        **kwargs,
    )


def sample(process_id, cpu, status="online", score=90):
    return ProcessSample(
        process_id=process_id,
        name=f"proc-{process_id}",
        cpu=cpu,
        memory=100,
        status=status,
        restarts=0,
        health_score=score,
    )


# ============================================================
# PERIOD RESOLUTION
# ============================================================

class TestResolvePeriod:
    """Period token table."""

    @pytest.mark.parametrize("token,window,bucket", [
        ("1h", HOUR_MS, None),
        ("24h", DAY_MS, None),
        ("1w", 7 * DAY_MS, 10 * MINUTE_MS),
        ("15d", 15 * DAY_MS, HOUR_MS),
        ("1m", 30 * DAY_MS, 2 * HOUR_MS),
    ])
    def test_known_tokens(self, token, window, bucket):
        policy, defaulted = resolve_period(token)
        assert policy.window_ms == window
        assert policy.bucket_ms == bucket
        assert defaulted is False

    def test_unknown_token_defaults_to_24h(self):
        policy, defaulted = resolve_period("3y")
        assert policy is PERIOD_POLICIES["24h"]
        assert defaulted is True

    def test_unknown_token_strict(self):
        with pytest.raises(InvalidPeriodToken) as exc_info:
            resolve_period("3y", strict=True)
        assert exc_info.value.token == "3y"
        assert "1w" in exc_info.value.details["valid_tokens"]


# ============================================================
# BUCKETING
# ============================================================

class TestBucketPoints:
    """Left-aligned bucket means."""

    def test_bucket_means_and_counts(self):
        points = [
            TimeSeriesPoint(100, {"cpu": 10.0}, status="online"),
            TimeSeriesPoint(150, {"cpu": 30.0}, status="errored"),
            TimeSeriesPoint(250, {"cpu": 5.0}, status="online"),
        ]

        result = bucket_points(points, window_start=100, bucket_ms=100)

        assert [p.timestamp for p in result] == [100, 200]
        assert result[0].values == {"cpu": 20.0}
        assert result[0].sample_count == 2
        assert result[0].status == "errored"
        assert result[1].values == {"cpu": 5.0}

    def test_values_missing_from_some_samples(self):
        points = [
            TimeSeriesPoint(0, {"cpu": 10.0, "load_avg": 2.0}),
            TimeSeriesPoint(10, {"cpu": 20.0}),
        ]
        result = bucket_points(points, window_start=0, bucket_ms=100)
        assert result[0].values == {"cpu": 15.0, "load_avg": 2.0}

    def test_empty_buckets_are_omitted(self):
        points = [TimeSeriesPoint(0, {"cpu": 1.0}), TimeSeriesPoint(1000, {"cpu": 2.0})]
        result = bucket_points(points, window_start=0, bucket_ms=100)
        assert [p.timestamp for p in result] == [0, 1000]


# ============================================================
# QUERIES
# ============================================================

class TestHistoricalQuery:
    """Range queries over stored rollups."""

    @pytest.mark.asyncio
    async def test_15d_aggregation(self, engine, aggregator):
        window_start = START_MS - 15 * DAY_MS
        aggregator.record(rollup(window_start + 10 * MINUTE_MS, total_cpu=10.0))
        aggregator.record(rollup(window_start + 20 * MINUTE_MS, total_cpu=20.0))
        aggregator.record(rollup(window_start + HOUR_MS + 5 * MINUTE_MS, total_cpu=60.0))

        result = await engine.query("15d")

        assert result.aggregated is True
        assert result.bucket_size_ms == HOUR_MS
        assert result.origin == DataOrigin.HISTORICAL
        assert [p.timestamp for p in result.points] == [window_start, window_start + HOUR_MS]
        assert result.points[0].values["total_cpu"] == 15.0
        assert result.points[0].sample_count == 2
        assert result.points[1].values["total_cpu"] == 60.0
        assert result.points[1].sample_count == 1

    @pytest.mark.asyncio
    async def test_sparse_week_is_still_aggregated(self, engine, aggregator):
        for offset in (DAY_MS, 3 * DAY_MS, 5 * DAY_MS):
            aggregator.record(rollup(START_MS - offset, total_cpu=5.0))

        result = await engine.query("1w")

        assert len(result.points) <= 3
        assert result.aggregated is True
        assert result.bucket_size_ms == 600_000
        assert result.to_dict()["summary"]["total_points"] == len(result.points)

    @pytest.mark.asyncio
    async def test_raw_period_returns_every_sample_in_window(self, engine, aggregator):
        aggregator.record(rollup(START_MS - 2 * DAY_MS, total_cpu=99.0))
        aggregator.record(rollup(START_MS - 2 * HOUR_MS, total_cpu=1.0))
        aggregator.record(rollup(START_MS - HOUR_MS, total_cpu=2.0))

        result = await engine.query("24h")

        assert result.aggregated is False
        assert result.bucket_size_ms is None
        assert [p.values["total_cpu"] for p in result.points] == [1.0, 2.0]
        assert result.window_end - result.window_start == DAY_MS

    @pytest.mark.asyncio
    async def test_process_filter_excludes_absent_samples(self, engine, aggregator):
        aggregator.record(rollup(START_MS - 3 * MINUTE_MS, processes=[sample(3, 10.0), sample(4, 1.0)]))
        aggregator.record(rollup(START_MS - 2 * MINUTE_MS, processes=[sample(4, 1.0)]))
        aggregator.record(rollup(START_MS - MINUTE_MS, processes=[sample(3, 30.0, status="errored")]))

        result = await engine.query("1h", process_id=3)

        assert [p.values["cpu"] for p in result.points] == [10.0, 30.0]
        assert result.points[-1].status == "errored"
        assert result.process_id == 3

    @pytest.mark.asyncio
    async def test_queries_do_not_mutate_store(self, engine, aggregator, store):
        aggregator.record(rollup(START_MS - MINUTE_MS, total_cpu=3.0))
        first = await engine.query("24h")
        second = await engine.query("24h")
        assert first.to_dict() == second.to_dict()
        assert store.count("system") == 1


# ============================================================
# FALLBACK / ERRORS
# ============================================================

class TestFallback:
    """Behaviour without stored history."""

    @pytest.mark.asyncio
    async def test_no_history_returns_live_sample(self, engine, store):
        result = await engine.query("24h")

        assert result.origin == DataOrigin.LIVE_SNAPSHOT
        assert len(result.points) == 1
        assert result.points[0].values["total_processes"] == 2.0
        assert result.message
        assert store.count("system") == 0

    @pytest.mark.asyncio
    async def test_no_history_and_source_down(self, engine, fake_source):
        fake_source.fail = True

        result = await engine.query("1w")

        assert result.origin == DataOrigin.NO_DATA
        assert result.points == []

    @pytest.mark.asyncio
    async def test_live_sample_for_unknown_process(self, engine):
        result = await engine.query("24h", process_id=42)
        assert result.origin == DataOrigin.NO_DATA
        assert result.points == []

    @pytest.mark.asyncio
    async def test_invalid_token_defaults_with_warning(self, engine, aggregator):
        aggregator.record(rollup(START_MS - MINUTE_MS, total_cpu=3.0))

        result = await engine.query("yesterday")

        assert result.period == "24h"
        assert result.period_defaulted is True
        assert result.warnings

    @pytest.mark.asyncio
    async def test_invalid_token_strict(self, engine):
        with pytest.raises(InvalidPeriodToken):
            await engine.query("yesterday", strict=True)

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, fake_source, clock):
        broken = MagicMock()
        broken.read_range.side_effect = StorageUnavailable("read_range", "database is locked")
        aggregator = SystemAggregator(broken, fake_source, HealthScorer(ScoringThresholds()), clock)
        engine = HistoricalQueryEngine(aggregator, clock=clock)

        with pytest.raises(StorageUnavailable):
            await engine.query("24h")
