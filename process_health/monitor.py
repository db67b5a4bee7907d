"""
Process Health - Monitor Loop.

============================================================
LIFECYCLE
============================================================

STOPPED -> RUNNING -> TERMINATED

- start(): begin ticking (no-op while RUNNING; refused after
  TERMINATED)
- stop(): cancel the owned task and wait for it to finish
- run_once(): one tick, usable without the loop

============================================================
ONE TICK
============================================================

1. Capture one timestamp from the clock (under the tick lock)
2. Poll the metric source, bounded by the source timeout
3. Score every process and append one HealthMetric per process
4. Append one SystemRollup (even with zero processes)

A source failure or timeout abandons the tick with no writes.
Ticks never overlap: run_once() holds the tick lock for the
whole tick, and the loop sleeps only after a tick ends.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .aggregator import SystemAggregator
from .clock import ClockProtocol, SystemClock
from .exceptions import SourceUnavailable
from .models import HealthMetric, SystemRollup
from .store import series_key


logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    """Monitor loop lifecycle state."""
    STOPPED = "stopped"
    RUNNING = "running"
    TERMINATED = "terminated"


class TickOutcome(str, Enum):
    RECORDED = "recorded"
    SOURCE_UNAVAILABLE = "source_unavailable"


@dataclass
class TickResult:
    """Outcome of one monitor tick."""
    timestamp: int
    outcome: TickOutcome
    metrics: List[HealthMetric] = field(default_factory=list)
    rollup: Optional[SystemRollup] = None
    stored: int = 0
    error: Optional[str] = None

    @property
    def process_count(self) -> int:
        return len(self.metrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "outcome": self.outcome.value,
            "process_count": self.process_count,
            "stored": self.stored,
            "error": self.error,
            "rollup": self.rollup.to_dict() if self.rollup else None,
        }


class HealthMonitorLoop:
    """
    Periodic health collection.

    Owns exactly one asyncio task while RUNNING.
    """

    def __init__(
        self,
        aggregator: SystemAggregator,
        clock: Optional[ClockProtocol] = None,
        interval_seconds: float = 30.0,
    ) -> None:
        self._aggregator = aggregator
        self._clock = clock or SystemClock()
        self._interval = interval_seconds
        self._state = MonitorState.STOPPED
        self._task: Optional[asyncio.Task] = None
        self._last_tick: Optional[TickResult] = None
        self._tick_count = 0
        self._lock: Optional[asyncio.Lock] = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == MonitorState.RUNNING

    @property
    def last_tick(self) -> Optional[TickResult]:
        return self._last_tick

    @property
    def tick_lock(self) -> asyncio.Lock:
        """
        Serializes capture-and-append.

        Held for a whole tick; any other writer of health samples
        takes it too, so appends to a key follow capture order.
        """
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    # =========================================================
    # LIFECYCLE
    # =========================================================

    async def start(self) -> bool:
        """
        Start the background loop.

        Returns:
            True if started, False if already running or terminated
        """
        if self._state == MonitorState.RUNNING:
            return False
        if self._state == MonitorState.TERMINATED:
            logger.warning("Monitor loop was terminated and cannot be restarted")
            return False

        self._state = MonitorState.RUNNING
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Started health monitor loop (interval={self._interval}s)")
        return True

    async def stop(self) -> None:
        """Stop the loop and wait for the in-flight tick to be cancelled."""
        previous = self._state
        self._state = MonitorState.TERMINATED
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if previous == MonitorState.RUNNING:
            logger.info(f"Stopped health monitor loop after {self._tick_count} ticks")

    async def _run_loop(self) -> None:
        while self._state == MonitorState.RUNNING:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Health monitor tick failed: {e}", exc_info=True)
            await asyncio.sleep(self._interval)

    # =========================================================
    # TICK
    # =========================================================

    async def run_once(self) -> TickResult:
        """Perform one collection tick, waiting for any tick in flight."""
        async with self.tick_lock:
            return await self._tick()

    async def _tick(self) -> TickResult:
        timestamp = self._clock.now_ms()
        self._tick_count += 1

        try:
            snapshot = await self._aggregator.poll()
        except SourceUnavailable as e:
            logger.warning(f"Skipping health tick: {e.message}")
            result = TickResult(
                timestamp=timestamp,
                outcome=TickOutcome.SOURCE_UNAVAILABLE,
                error=e.reason,
            )
            self._last_tick = result
            return result

        metrics = self._aggregator.score_all(snapshot, timestamp)
        store = self._aggregator.store
        stored = 0
        for metric in metrics:
            if await asyncio.to_thread(store.append, series_key(metric.process_id), metric.to_dict()):
                stored += 1

        rollup = self._aggregator.build_rollup(metrics, snapshot.host, timestamp)
        if await asyncio.to_thread(self._aggregator.record, rollup):
            stored += 1

        result = TickResult(
            timestamp=timestamp,
            outcome=TickOutcome.RECORDED,
            metrics=metrics,
            rollup=rollup,
            stored=stored,
        )
        self._last_tick = result
        logger.debug(f"Health tick at {timestamp}: {len(metrics)} processes, {stored} records stored")
        return result

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "interval_seconds": self._interval,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.to_dict() if self._last_tick else None,
        }
