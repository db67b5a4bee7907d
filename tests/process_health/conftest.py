"""
Shared fixtures for process health tests.
"""

import asyncio
from typing import List, Optional

import pytest

from process_health.clock import MockClock
from process_health.config import HealthConfig, MonitorSettings, StorageSettings
from process_health.exceptions import SourceUnavailable
from process_health.models import HostContext, ProcessSnapshot, ProcessStatus
from process_health.sources import MetricSource
from process_health.store import InMemoryHealthStore


START_MS = 1_700_000_000_000
MB = 1024 * 1024
GB = 1024 * MB


class FakeSource(MetricSource):
    """Scriptable metric source."""

    def __init__(
        self,
        processes: Optional[List[ProcessSnapshot]] = None,
        host: Optional[HostContext] = None,
    ):
        self.processes = list(processes or [])
        self.host = host or HostContext(load_avg=(0.5, 0.5, 0.5), total_mem=16 * GB, free_mem=8 * GB)
        self.fail = False
        self.delay = 0.0
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0

    async def list_processes(self) -> List[ProcessSnapshot]:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise SourceUnavailable("pm2 daemon not running")
            return list(self.processes)
        finally:
            self.in_flight -= 1

    async def host_stats(self) -> HostContext:
        return self.host


def make_snapshot(
    process_id: int = 0,
    name: str = "api",
    status: ProcessStatus = ProcessStatus.ONLINE,
    cpu: float = 10.0,
    memory_bytes: int = 100 * MB,
    restarts: int = 0,
    started_at_ms: Optional[int] = START_MS - 3_600_000,
    **kwargs,
) -> ProcessSnapshot:
    return ProcessSnapshot(
        process_id=process_id,
        name=name,
        pid=4000 + process_id,
        status=status,
        cpu_percent=cpu,
        memory_bytes=memory_bytes,
        restart_count=restarts,
        started_at_ms=started_at_ms,
        **kwargs,
    )


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Mock clock fixed at a known instant."""
    return MockClock(START_MS)


@pytest.fixture
def store():
    """In-memory store with a small retention cap."""
    return InMemoryHealthStore(retention_cap=500)


@pytest.fixture
def healthy_host():
    return HostContext(load_avg=(0.5, 0.5, 0.5), total_mem=16 * GB, free_mem=8 * GB)


@pytest.fixture
def fake_source():
    """Source with two online processes."""
    return FakeSource([
        make_snapshot(0, "api"),
        make_snapshot(1, "worker", cpu=50.0),
    ])


@pytest.fixture
def config():
    """Configuration with short timeouts for tests."""
    return HealthConfig(
        monitor=MonitorSettings(tick_interval_seconds=0.05, source_timeout_seconds=0.2),
        storage=StorageSettings(url="memory://", retention_cap=500),
    )


@pytest.fixture
def make_process():
    """Factory for process snapshots."""
    return make_snapshot


@pytest.fixture
def source_factory():
    """Factory for scriptable sources."""
    return FakeSource
