"""
Process Health - System Aggregator.

============================================================
RESPONSIBILITY
============================================================

Turns one poll of the metric source into persisted records:
- One HealthMetric per process (scored by HealthScorer)
- One SystemRollup for the host (series "system")

Also provides the live, non-persisted rollup used when a
historical query finds no stored data.

============================================================
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .clock import ClockProtocol, SystemClock
from .exceptions import SourceUnavailable
from .models import (
    SYSTEM_SERIES_KEY,
    HealthMetric,
    HostContext,
    ProcessSample,
    ProcessStatus,
    SourceSnapshot,
    SystemRollup,
)
from .scorer import HealthScorer
from .sources import MetricSource
from .store import HealthStore


logger = logging.getLogger(__name__)


class SystemAggregator:
    """
    Builds and stores host-wide rollups.

    ```python
    aggregator = SystemAggregator(store, source, scorer)
    metrics = aggregator.score_all(source_snapshot, timestamp)
    rollup = aggregator.build_rollup(metrics, source_snapshot.host, timestamp)
    aggregator.record(rollup)
    ```
    """

    def __init__(
        self,
        store: HealthStore,
        source: MetricSource,
        scorer: Optional[HealthScorer] = None,
        clock: Optional[ClockProtocol] = None,
        source_timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._source = source
        self._scorer = scorer or HealthScorer()
        self._clock = clock or SystemClock()
        self._source_timeout = source_timeout

    @property
    def scorer(self) -> HealthScorer:
        return self._scorer

    @property
    def source(self) -> MetricSource:
        return self._source

    @property
    def store(self) -> HealthStore:
        return self._store

    # =========================================================
    # BUILDING
    # =========================================================

    def score_all(
        self,
        snapshot: SourceSnapshot,
        timestamp: int,
        extra: Optional[Dict[int, Dict[str, float]]] = None,
    ) -> List[HealthMetric]:
        """Score every process in a poll, all at the same timestamp."""
        extra = extra or {}
        metrics = []
        for process in snapshot.processes:
            assessment = self._scorer.score(process, snapshot.host, timestamp)
            metrics.append(HealthMetric.from_snapshot(
                process,
                snapshot.host,
                assessment,
                timestamp,
                extra=extra.get(process.process_id),
            ))
        return metrics

    def build_rollup(
        self,
        metrics: List[HealthMetric],
        host: HostContext,
        timestamp: int,
    ) -> SystemRollup:
        """
        Aggregate one poll into a rollup.

        Zero processes still yields a rollup with zero totals.
        """
        count = len(metrics)
        avg_score = sum(m.health_score for m in metrics) / count if count else 0.0

        return SystemRollup(
            timestamp=timestamp,
            total_cpu=sum(m.cpu_percent for m in metrics),
            total_memory=sum(m.memory_bytes for m in metrics),
            total_processes=count,
            online_processes=sum(1 for m in metrics if m.status == ProcessStatus.ONLINE),
            healthy_processes=sum(1 for m in metrics if m.is_healthy),
            avg_health_score=avg_score,
            load_avg=host.load_avg,
            host_total_mem=host.total_mem,
            host_free_mem=host.free_mem,
            disk_read_bytes=host.disk_read_bytes,
            disk_write_bytes=host.disk_write_bytes,
            net_rx_bytes=host.net_rx_bytes,
            net_tx_bytes=host.net_tx_bytes,
            processes=[
                ProcessSample(
                    process_id=m.process_id,
                    name=m.name,
                    cpu=m.cpu_percent,
                    memory=m.memory_bytes,
                    status=m.status.value,
                    restarts=m.restart_count,
                    health_score=m.health_score,
                )
                for m in metrics
            ],
        )

    # =========================================================
    # STORAGE
    # =========================================================

    def record(self, rollup: SystemRollup) -> bool:
        """Append a rollup to the system series."""
        stored = self._store.append(SYSTEM_SERIES_KEY, rollup.to_dict())
        if stored:
            logger.debug(
                f"Recorded rollup at {rollup.timestamp}: "
                f"{rollup.online_processes}/{rollup.total_processes} online"
            )
        return stored

    def read(self, since_ms: int) -> List[SystemRollup]:
        """Stored rollups with timestamp >= since_ms, oldest first."""
        return [
            SystemRollup.from_dict(record)
            for record in self._store.read_range(SYSTEM_SERIES_KEY, since_ms)
        ]

    # =========================================================
    # LIVE SAMPLE
    # =========================================================

    async def poll(self) -> SourceSnapshot:
        """
        Poll the metric source once, bounded by the source timeout.

        Raises:
            SourceUnavailable: Source down or timed out
        """
        try:
            return await asyncio.wait_for(
                self._source.snapshot(),
                timeout=self._source_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SourceUnavailable(f"timed out after {self._source_timeout}s") from e

    async def sample(self, now_ms: Optional[int] = None) -> SystemRollup:
        """
        Build one live rollup without persisting it.

        Raises:
            SourceUnavailable: Source down or timed out
        """
        timestamp = now_ms if now_ms is not None else self._clock.now_ms()
        snapshot = await self.poll()
        metrics = self.score_all(snapshot, timestamp)
        return self.build_rollup(metrics, snapshot.host, timestamp)
