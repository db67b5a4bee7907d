"""
Process Health - Historical Query Engine.

============================================================
PERIOD POLICIES
============================================================

| token | window | bucket  |
|-------|--------|---------|
| 1h    | 1 h    | raw     |
| 24h   | 24 h   | raw     |
| 1w    | 7 d    | 10 min  |
| 15d   | 15 d   | 1 h     |
| 1m    | 30 d   | 2 h     |

Buckets are fixed-width, non-overlapping and left-aligned on
the window start. A bucket point carries the mean of every
numeric value of its samples, the bucket start as timestamp,
the raw sample count and the last observed status. Empty
buckets are omitted.

============================================================
FALLBACK
============================================================

With no stored history in the window, a single live sample is
taken (and not persisted) so first-time callers see something.
If the source is down as well, the result is empty and marked
no_data.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .clock import ClockProtocol, SystemClock
from .aggregator import SystemAggregator
from .exceptions import InvalidPeriodToken, SourceUnavailable
from .models import DataOrigin, HistoricalResult, SystemRollup, TimeSeriesPoint


logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


@dataclass(frozen=True)
class PeriodPolicy:
    """Window length and bucket width for one period token."""
    token: str
    window_ms: int
    bucket_ms: Optional[int] = None

    @property
    def aggregated(self) -> bool:
        return self.bucket_ms is not None


PERIOD_POLICIES: Dict[str, PeriodPolicy] = {
    "1h": PeriodPolicy("1h", HOUR_MS),
    "24h": PeriodPolicy("24h", DAY_MS),
    "1w": PeriodPolicy("1w", 7 * DAY_MS, 10 * MINUTE_MS),
    "15d": PeriodPolicy("15d", 15 * DAY_MS, HOUR_MS),
    "1m": PeriodPolicy("1m", 30 * DAY_MS, 2 * HOUR_MS),
}

DEFAULT_PERIOD = "24h"


def resolve_period(token: Optional[str], strict: bool = False) -> Tuple[PeriodPolicy, bool]:
    """
    Look up the policy for a period token.

    Returns:
        (policy, defaulted) where defaulted is True when an unknown
        token was replaced by the default period

    Raises:
        InvalidPeriodToken: Unknown token in strict mode
    """
    policy = PERIOD_POLICIES.get(token or DEFAULT_PERIOD)
    if policy is not None:
        return policy, False
    if strict:
        raise InvalidPeriodToken(str(token), valid_tokens=list(PERIOD_POLICIES))
    logger.warning(f"Unknown period {token!r}, defaulting to {DEFAULT_PERIOD}")
    return PERIOD_POLICIES[DEFAULT_PERIOD], True


# =============================================================
# POINT EXTRACTION
# =============================================================


def rollup_point(rollup: SystemRollup, process_id: Optional[int] = None) -> Optional[TimeSeriesPoint]:
    """
    Project a rollup onto a time series point.

    System-wide points carry host totals; process points carry the
    matching sub-record. Returns None when the process is absent.
    """
    if process_id is not None:
        sample = rollup.find_process(process_id)
        if sample is None:
            return None
        values = {
            "cpu": sample.cpu,
            "memory": float(sample.memory),
            "restarts": float(sample.restarts),
        }
        if sample.health_score is not None:
            values["health_score"] = float(sample.health_score)
        return TimeSeriesPoint(rollup.timestamp, values, 1, sample.status)

    values = {
        "total_cpu": rollup.total_cpu,
        "total_memory": float(rollup.total_memory),
        "total_processes": float(rollup.total_processes),
        "online_processes": float(rollup.online_processes),
        "healthy_processes": float(rollup.healthy_processes),
        "avg_health_score": rollup.avg_health_score,
    }
    optional = {
        "load_avg": rollup.load_avg[0] if rollup.load_avg else None,
        "memory_usage_percent": rollup.memory_usage_percent,
        "disk_read_bytes": rollup.disk_read_bytes,
        "disk_write_bytes": rollup.disk_write_bytes,
        "net_rx_bytes": rollup.net_rx_bytes,
        "net_tx_bytes": rollup.net_tx_bytes,
    }
    values.update({k: float(v) for k, v in optional.items() if v is not None})
    return TimeSeriesPoint(rollup.timestamp, values, 1)


def bucket_points(
    points: List[TimeSeriesPoint],
    window_start: int,
    bucket_ms: int,
) -> List[TimeSeriesPoint]:
    """
    Average raw points into left-aligned buckets.

    Each value is averaged over the samples that carry it.
    """
    buckets: Dict[int, List[TimeSeriesPoint]] = {}
    for point in points:
        index = max(0, (point.timestamp - window_start) // bucket_ms)
        buckets.setdefault(index, []).append(point)

    result = []
    for index in sorted(buckets):
        members = buckets[index]
        totals: Dict[str, List[float]] = {}
        status = None
        for point in members:
            for key, value in point.values.items():
                totals.setdefault(key, []).append(value)
            if point.status is not None:
                status = point.status
        result.append(TimeSeriesPoint(
            timestamp=window_start + index * bucket_ms,
            values={k: sum(v) / len(v) for k, v in totals.items()},
            sample_count=sum(p.sample_count for p in members),
            status=status,
        ))
    return result


# =============================================================
# QUERY ENGINE
# =============================================================


class HistoricalQueryEngine:
    """
    Answers range queries over the system series.

    ```python
    engine = HistoricalQueryEngine(aggregator)
    result = await engine.query("15d")
    result = await engine.query("24h", process_id=3)
    ```
    """

    LIVE_MESSAGE = "No historical data yet; showing a live sample while collection starts"
    NO_DATA_MESSAGE = "No historical data and the metric source is unavailable"

    def __init__(
        self,
        aggregator: SystemAggregator,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._aggregator = aggregator
        self._clock = clock or SystemClock()

    async def query(
        self,
        period: Optional[str] = DEFAULT_PERIOD,
        process_id: Optional[int] = None,
        strict: bool = False,
    ) -> HistoricalResult:
        """
        Run a historical query.

        Raises:
            InvalidPeriodToken: Unknown token in strict mode
            StorageUnavailable: Stored history cannot be read
        """
        policy, defaulted = resolve_period(period, strict=strict)
        window_end = self._clock.now_ms()
        window_start = window_end - policy.window_ms

        result = HistoricalResult(
            period=policy.token,
            points=[],
            aggregated=policy.aggregated,
            window_start=window_start,
            window_end=window_end,
            origin=DataOrigin.HISTORICAL,
            process_id=process_id,
            bucket_size_ms=policy.bucket_ms,
            period_defaulted=defaulted,
        )
        if defaulted:
            result.warnings.append(
                f"Unknown period {period!r}; using {DEFAULT_PERIOD}"
            )

        rollups = await asyncio.to_thread(self._aggregator.read, window_start)
        rollups = [r for r in rollups if r.timestamp <= window_end]

        if not rollups:
            return await self._live_fallback(result, window_end)

        raw = [p for p in (rollup_point(r, process_id) for r in rollups) if p is not None]
        if policy.bucket_ms is not None:
            result.points = bucket_points(raw, window_start, policy.bucket_ms)
        else:
            result.points = raw

        logger.debug(
            f"Historical query {policy.token} process={process_id}: "
            f"{len(rollups)} rollups -> {len(result.points)} points"
        )
        return result

    async def _live_fallback(self, result: HistoricalResult, now_ms: int) -> HistoricalResult:
        try:
            rollup = await self._aggregator.sample(now_ms)
        except SourceUnavailable as e:
            logger.info(f"No history and no live data: {e.reason}")
            result.origin = DataOrigin.NO_DATA
            result.message = self.NO_DATA_MESSAGE
            return result

        point = rollup_point(rollup, result.process_id)
        if point is None:
            result.origin = DataOrigin.NO_DATA
            result.message = f"Process {result.process_id} not found in live data"
            return result

        result.points = [point]
        result.origin = DataOrigin.LIVE_SNAPSHOT
        result.message = self.LIVE_MESSAGE
        return result
