"""
Process Health - Health Service.

============================================================
PUBLIC INTERFACE
============================================================

```python
service = create_health_service()
await service.start_monitoring()

# Per-process history + summary
report = await service.get_health(3, period_hours=24)

# Capture, score and persist one sample now
metric = await service.record_health(3, extra={"response_time": 120})

# System-wide or per-process time series
result = await service.get_historical("15d", process_id=3)

# Live scored list
status = await service.get_current_status()
```

============================================================
DEGRADATION
============================================================

- Source down, history present: served from history, marked
  historical_only
- No history, source up: one live sample, marked live_snapshot
  (never persisted by a read)
- Neither: ProcessNotFound

============================================================
"""

import asyncio
import logging
import math
from typing import Any, Dict, Optional

from .aggregator import SystemAggregator
from .clock import ClockProtocol, SystemClock
from .config import HealthConfig, get_config
from .exceptions import ProcessNotFound, SourceUnavailable
from .history import DEFAULT_PERIOD, HistoricalQueryEngine
from .models import (
    DataOrigin,
    HealthMetric,
    HealthReport,
    HealthSummary,
    HistoricalResult,
)
from .monitor import HealthMonitorLoop, TickResult
from .scorer import HealthScorer
from .sources import MetricSource, create_metric_source
from .store import HealthStore, create_health_store, series_key


logger = logging.getLogger(__name__)

# Processes scoring below this count as critical in status summaries
CRITICAL_SCORE_THRESHOLD = 50


class HealthService:
    """
    Main entry point for process health.

    Wires the store, metric source, scorer, aggregator, query
    engine and monitor loop together.
    """

    def __init__(
        self,
        store: HealthStore,
        source: MetricSource,
        config: Optional[HealthConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._config = config or get_config()
        self._clock = clock or SystemClock()
        self._store = store
        self._source = source
        self._aggregator = SystemAggregator(
            store,
            source,
            scorer=HealthScorer(self._config.scoring),
            clock=self._clock,
            source_timeout=self._config.monitor.source_timeout_seconds,
        )
        self._history = HistoricalQueryEngine(self._aggregator, clock=self._clock)
        self._monitor = HealthMonitorLoop(
            self._aggregator,
            clock=self._clock,
            interval_seconds=self._config.monitor.tick_interval_seconds,
        )

    @property
    def monitor(self) -> HealthMonitorLoop:
        return self._monitor

    @property
    def data_source(self) -> str:
        """'real' or 'simulated'."""
        return self._source.data_source

    # =========================================================
    # MONITORING
    # =========================================================

    async def start_monitoring(self) -> bool:
        return await self._monitor.start()

    async def stop_monitoring(self) -> None:
        await self._monitor.stop()

    async def collect_now(self) -> TickResult:
        """Run one collection tick immediately."""
        return await self._monitor.run_once()

    async def close(self) -> None:
        await self._monitor.stop()
        self._store.close()

    # =========================================================
    # PER-PROCESS HEALTH
    # =========================================================

    async def get_health(self, process_id: int, period_hours: float = 24) -> HealthReport:
        """
        History and summary for one process over the last `period_hours`.

        Raises:
            ValueError: period_hours is not a positive finite number
            ProcessNotFound: No history and no live match
            StorageUnavailable: History cannot be read
        """
        if not math.isfinite(period_hours) or period_hours <= 0:
            raise ValueError("period_hours must be a positive finite number")

        now = self._clock.now_ms()
        since = now - int(period_hours * 3600 * 1000)
        records = await asyncio.to_thread(self._store.read_range, series_key(process_id), since)
        history = [HealthMetric.from_dict(r) for r in records]

        live_available = True
        current: Optional[HealthMetric] = None
        try:
            current = await self._live_metric(process_id, now)
        except SourceUnavailable as e:
            live_available = False
            logger.info(f"Serving process {process_id} from history only: {e.reason}")

        if history:
            origin = DataOrigin.HISTORICAL if live_available else DataOrigin.HISTORICAL_ONLY
        elif current is not None:
            history = [current]
            origin = DataOrigin.LIVE_SNAPSHOT
        else:
            raise ProcessNotFound(process_id)

        return HealthReport(
            process_id=process_id,
            period_hours=period_hours,
            history=history,
            summary=HealthSummary.from_history(history, current),
            origin=origin,
            live_source_available=live_available,
            generated_at=now,
        )

    async def record_health(
        self,
        process_id: int,
        extra: Optional[Dict[str, Any]] = None,
    ) -> HealthMetric:
        """
        Capture, score and persist one sample for a process.

        Raises:
            ValueError: A non-numeric extra metric
            SourceUnavailable: Source down or timed out
            ProcessNotFound: Process not in the live list
        """
        extra_values = {}
        for key, value in (extra or {}).items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Extra metric {key!r} must be numeric")
            extra_values[key] = float(value)

        async with self._monitor.tick_lock:
            metric = await self._live_metric(process_id, self._clock.now_ms(), extra_values)
            if metric is None:
                raise ProcessNotFound(process_id)
            await asyncio.to_thread(self._store.append, series_key(process_id), metric.to_dict())

        logger.info(
            f"Recorded health for process {process_id}: "
            f"score={metric.health_score} issues={len(metric.health_issues)}"
        )
        return metric

    async def forget_process(self, process_id: int) -> int:
        """Delete the stored history of a process."""
        return await asyncio.to_thread(self._store.delete_series, series_key(process_id))

    async def _live_metric(
        self,
        process_id: int,
        now_ms: int,
        extra: Optional[Dict[str, float]] = None,
    ) -> Optional[HealthMetric]:
        snapshot = await self._aggregator.poll()
        for process in snapshot.processes:
            if process.process_id == process_id:
                assessment = self._aggregator.scorer.score(process, snapshot.host, now_ms)
                return HealthMetric.from_snapshot(process, snapshot.host, assessment, now_ms, extra)
        return None

    # =========================================================
    # SYSTEM VIEWS
    # =========================================================

    async def get_historical(
        self,
        period: Optional[str] = DEFAULT_PERIOD,
        process_id: Optional[int] = None,
        strict: bool = False,
    ) -> HistoricalResult:
        """System-wide (or per-process) time series for a period token."""
        return await self._history.query(period, process_id=process_id, strict=strict)

    async def get_current_status(self) -> Dict[str, Any]:
        """
        Live scored process list with a summary.

        A down source yields an empty list with source_available False.
        """
        now = self._clock.now_ms()
        base = {
            "timestamp": now,
            "data_source": self.data_source,
            "monitoring": self._monitor.state.value,
        }
        try:
            snapshot = await self._aggregator.poll()
        except SourceUnavailable as e:
            logger.warning(f"Current status unavailable: {e.message}")
            return {
                **base,
                "source_available": False,
                "error": e.reason,
                "processes": [],
                "summary": self._status_summary([]),
            }

        metrics = self._aggregator.score_all(snapshot, now)
        return {
            **base,
            "source_available": True,
            "host": snapshot.host.to_dict(),
            "processes": [m.to_dict() for m in metrics],
            "summary": self._status_summary(metrics),
        }

    def _status_summary(self, metrics) -> Dict[str, Any]:
        count = len(metrics)
        return {
            "total_processes": count,
            "healthy_processes": sum(1 for m in metrics if m.is_healthy),
            "average_health_score": (
                round(sum(m.health_score for m in metrics) / count) if count else 0
            ),
            "critical_issues": sum(1 for m in metrics if m.health_score < CRITICAL_SCORE_THRESHOLD),
        }


# =============================================================
# FACTORY
# =============================================================


def create_health_service(
    config: Optional[HealthConfig] = None,
    clock: Optional[ClockProtocol] = None,
) -> HealthService:
    """Build a service from configuration."""
    config = config or get_config()
    store = create_health_store(config.storage)
    source = create_metric_source(config.monitor, clock=clock)
    logger.info(
        f"Health service ready (source={source.data_source}, "
        f"retention={config.storage.retention_cap})"
    )
    return HealthService(store, source, config=config, clock=clock)
