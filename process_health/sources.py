"""
Process Health - Metric Sources.

============================================================
RESPONSIBILITY
============================================================

Enumerates managed processes and host statistics.

- PM2MetricSource: live data from the PM2 CLI (`pm2 jlist`)
- SyntheticMetricSource: seeded demo data, no PM2 required

Both implement the same MetricSource interface and are chosen
once, at startup, by create_metric_source().

============================================================
FAILURE SEMANTICS
============================================================

- list_processes() raises SourceUnavailable when the process
  manager cannot be reached. An empty list means "nothing is
  running", never "source down".
- host_stats() is best effort and never raises; fields it
  cannot read are left as None.

============================================================
"""

import asyncio
import json
import logging
import os
import random
import re
import shutil
import socket
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import psutil

from .clock import ClockProtocol, SystemClock
from .config import MonitorSettings
from .exceptions import SourceUnavailable
from .models import (
    CustomMetric,
    HostContext,
    ProcessSnapshot,
    ProcessStatus,
    SourceSnapshot,
)


logger = logging.getLogger(__name__)

_NUMERIC_PREFIX = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")


# =============================================================
# HOST STATISTICS
# =============================================================


def collect_host_context() -> HostContext:
    """
    Read host statistics via psutil.

    Each statistic is read independently; one failing read does
    not discard the others.
    """
    load_avg = None
    try:
        load_avg = tuple(float(v) for v in os.getloadavg())
    except (AttributeError, OSError):
        logger.debug("Load average not supported on this platform")

    total_mem = free_mem = None
    try:
        memory = psutil.virtual_memory()
        total_mem = int(memory.total)
        free_mem = int(memory.available)
    except (OSError, RuntimeError) as e:
        logger.debug(f"Memory statistics unavailable: {e}")

    disk_read = disk_write = None
    try:
        disk = psutil.disk_io_counters()
        if disk is not None:
            disk_read = int(disk.read_bytes)
            disk_write = int(disk.write_bytes)
    except (OSError, RuntimeError) as e:
        logger.debug(f"Disk counters unavailable: {e}")

    net_rx = net_tx = None
    try:
        net = psutil.net_io_counters()
        if net is not None:
            net_rx = int(net.bytes_recv)
            net_tx = int(net.bytes_sent)
    except (OSError, RuntimeError) as e:
        logger.debug(f"Network counters unavailable: {e}")

    return HostContext(
        load_avg=load_avg,
        total_mem=total_mem,
        free_mem=free_mem,
        cpu_count=psutil.cpu_count(),
        hostname=socket.gethostname(),
        disk_read_bytes=disk_read,
        disk_write_bytes=disk_write,
        net_rx_bytes=net_rx,
        net_tx_bytes=net_tx,
    )


# =============================================================
# PM2 DESCRIPTOR PARSING
# =============================================================


def parse_metric_value(value: Any) -> Optional[float]:
    """
    Extract a number from a custom metric value.

    Accepts numbers and strings with a numeric prefix such as
    "1.23ms" or "12.5 MB". Returns None otherwise.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMERIC_PREFIX.match(value)
        if match:
            return float(match.group(1))
    return None


def parse_custom_metrics(axm_monitor: Optional[Dict[str, Any]]) -> Dict[str, CustomMetric]:
    """Convert a PM2 axm_monitor mapping into typed custom metrics."""
    metrics: Dict[str, CustomMetric] = {}
    for name, entry in (axm_monitor or {}).items():
        if isinstance(entry, dict):
            raw_value = entry.get("value")
            unit = str(entry.get("unit") or "")
            historic = bool(entry.get("historic", False))
        else:
            raw_value, unit, historic = entry, "", False

        value = parse_metric_value(raw_value)
        if value is None:
            logger.debug(f"Skipping non-numeric custom metric {name!r}: {raw_value!r}")
            continue
        metrics[name] = CustomMetric(value=value, unit=unit, historic=historic)
    return metrics


def extract_jlist(output: str) -> List[Any]:
    """
    Find the JSON array in `pm2 jlist` output.

    pm2 may print banner lines such as "[PM2] Spawning PM2 daemon"
    before the array, so each line starting with "[" is tried.

    Raises:
        SourceUnavailable: No parsable array in the output
    """
    lines = output.splitlines()
    for index, line in enumerate(lines):
        if not line.lstrip().startswith("["):
            continue
        try:
            data = json.loads("\n".join(lines[index:]))
        except ValueError:
            continue
        if isinstance(data, list):
            return data
    raise SourceUnavailable("unparsable pm2 jlist output", command="pm2 jlist")


def parse_pm2_process(raw: Dict[str, Any]) -> ProcessSnapshot:
    """Map one `pm2 jlist` descriptor to a ProcessSnapshot."""
    env = raw.get("pm2_env") or {}
    monit = raw.get("monit") or {}
    started = env.get("pm_uptime")

    return ProcessSnapshot(
        process_id=int(raw.get("pm_id", env.get("pm_id", -1))),
        name=str(raw.get("name") or env.get("name") or ""),
        pid=int(raw.get("pid") or 0),
        status=ProcessStatus.parse(env.get("status") or raw.get("status")),
        cpu_percent=float(monit.get("cpu") or 0.0),
        memory_bytes=int(monit.get("memory") or 0),
        restart_count=int(env.get("restart_time") or 0),
        started_at_ms=int(started) if started else None,
        custom_metrics=parse_custom_metrics(env.get("axm_monitor")),
    )


# =============================================================
# BASE SOURCE
# =============================================================


class MetricSource(ABC):
    """Abstract source of process and host metrics."""

    data_source = "real"

    @abstractmethod
    async def list_processes(self) -> List[ProcessSnapshot]:
        """
        Enumerate managed processes.

        Raises:
            SourceUnavailable: Process manager unreachable
        """
        pass

    @abstractmethod
    async def host_stats(self) -> HostContext:
        """Host statistics, best effort. Never raises."""
        pass

    async def snapshot(self) -> SourceSnapshot:
        """One poll: process list plus host statistics."""
        processes = await self.list_processes()
        host = await self.host_stats()
        return SourceSnapshot(processes=processes, host=host)


# =============================================================
# PM2 SOURCE
# =============================================================


class PM2MetricSource(MetricSource):
    """
    Live metrics from the PM2 CLI.

    Tries, in order: the configured binary, `pm2` on PATH, then
    the usual global install locations.
    """

    def __init__(
        self,
        pm2_bin: Optional[str] = None,
        command_timeout: float = 10.0,
    ) -> None:
        self._pm2_bin = pm2_bin
        self._command_timeout = command_timeout

    def candidate_binaries(self) -> List[str]:
        """Existing PM2 executables, most specific first."""
        candidates: List[Optional[str]] = [
            self._pm2_bin,
            shutil.which("pm2"),
            "/usr/local/bin/pm2",
            "/usr/bin/pm2",
            os.path.expanduser("~/.npm-global/bin/pm2"),
        ]
        nvm_bin = os.getenv("NVM_BIN")
        if nvm_bin:
            candidates.append(os.path.join(nvm_bin, "pm2"))

        found: List[str] = []
        for path in candidates:
            if path and path not in found and os.path.isfile(path) and os.access(path, os.X_OK):
                found.append(path)
        return found

    async def list_processes(self) -> List[ProcessSnapshot]:
        descriptors = extract_jlist(await self._run_jlist())
        return [parse_pm2_process(d) for d in descriptors if isinstance(d, dict)]

    async def host_stats(self) -> HostContext:
        try:
            return await asyncio.to_thread(collect_host_context)
        except Exception as e:
            logger.warning(f"Host statistics unavailable: {e}")
            return HostContext()

    async def _run_jlist(self) -> str:
        binaries = self.candidate_binaries()
        if not binaries:
            raise SourceUnavailable("pm2 executable not found", command="pm2 jlist")

        for binary in binaries:
            try:
                proc = await asyncio.create_subprocess_exec(
                    binary,
                    "jlist",
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                logger.debug(f"Cannot execute {binary}: {e}")
                continue

            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(),
                    timeout=self._command_timeout,
                )
            except asyncio.TimeoutError:
                raise SourceUnavailable(
                    f"timed out after {self._command_timeout}s",
                    command=f"{binary} jlist",
                )
            finally:
                # Also reached when an outer timeout cancels the poll
                if proc.returncode is None:
                    await self._reap(proc)

            if proc.returncode != 0:
                raise SourceUnavailable(
                    f"exit code {proc.returncode}: {stderr.decode(errors='replace').strip()}",
                    command=f"{binary} jlist",
                )
            return stdout.decode(errors="replace")

        raise SourceUnavailable("no usable pm2 executable", command="pm2 jlist")

    @staticmethod
    async def _reap(proc: asyncio.subprocess.Process) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        logger.warning(f"Killed unfinished pm2 child process {proc.pid}")


# =============================================================
# SYNTHETIC SOURCE
# =============================================================


class SyntheticMetricSource(MetricSource):
    """
    Seeded demo source.

    Generates a fixed set of plausible processes whose CPU and
    memory drift between polls. The first five processes are
    always online.
    """

    data_source = "simulated"

    PROCESS_NAMES = [
        "web-server",
        "api-gateway",
        "auth-service",
        "database-worker",
        "redis-client",
        "notification-service",
        "file-processor",
        "analytics-engine",
    ]
    STATUSES = [
        ProcessStatus.ONLINE,
        ProcessStatus.STOPPED,
        ProcessStatus.ERRORED,
        ProcessStatus.LAUNCHING,
    ]
    ALWAYS_ONLINE = 5

    def __init__(
        self,
        seed: int = 42,
        process_count: int = 8,
        clock: Optional[ClockProtocol] = None,
    ) -> None:
        self._rng = random.Random(seed)
        self._clock = clock or SystemClock()
        self._processes = [self._make_process(i) for i in range(process_count)]

    def _make_process(self, index: int) -> Dict[str, Any]:
        name = self.PROCESS_NAMES[index % len(self.PROCESS_NAMES)]
        if index < self.ALWAYS_ONLINE:
            status = ProcessStatus.ONLINE
        else:
            status = self._rng.choice(self.STATUSES)
        return {
            "process_id": index,
            "name": f"{name}-{index}",
            "pid": 1000 + index,
            "status": status,
            "base_memory_mb": self._rng.uniform(50, 250),
            "base_cpu": self._rng.uniform(0, 30),
            "restarts": self._rng.randint(0, 9),
            "started_at_ms": self._clock.now_ms() - int(self._rng.uniform(0, 86_400_000)),
        }

    async def list_processes(self) -> List[ProcessSnapshot]:
        snapshots = []
        for proc in self._processes:
            online = proc["status"] == ProcessStatus.ONLINE
            memory_mb = proc["base_memory_mb"] * self._rng.uniform(0.9, 1.1)
            cpu = proc["base_cpu"] * self._rng.uniform(0.5, 1.5) if online else 0.0
            snapshots.append(ProcessSnapshot(
                process_id=proc["process_id"],
                name=proc["name"],
                pid=proc["pid"] if online else 0,
                status=proc["status"],
                cpu_percent=round(cpu, 2),
                memory_bytes=int(memory_mb * 1024 * 1024) if online else 0,
                restart_count=proc["restarts"],
                started_at_ms=proc["started_at_ms"] if online else None,
                custom_metrics={
                    "Loop delay": CustomMetric(round(self._rng.uniform(0, 2), 2), "ms", True),
                    "Heap Usage": CustomMetric(float(self._rng.randint(0, 99)), "%", True),
                    "Used Heap Size": CustomMetric(round(memory_mb * 0.8, 2), "MB", True),
                },
            ))
        return snapshots

    async def host_stats(self) -> HostContext:
        total = 16 * 1024 ** 3
        return HostContext(
            load_avg=(
                round(self._rng.uniform(0.2, 2.0), 2),
                round(self._rng.uniform(0.2, 1.8), 2),
                round(self._rng.uniform(0.2, 1.5), 2),
            ),
            total_mem=total,
            free_mem=int(total * self._rng.uniform(0.3, 0.7)),
            cpu_count=8,
            hostname="demo-host",
        )


# =============================================================
# FACTORY
# =============================================================


def create_metric_source(
    settings: MonitorSettings,
    clock: Optional[ClockProtocol] = None,
) -> MetricSource:
    """Select the live or synthetic source once, from configuration."""
    if settings.demo_mode:
        logger.info(f"Demo mode: using synthetic metric source (seed={settings.demo_seed})")
        return SyntheticMetricSource(seed=settings.demo_seed, clock=clock)
    return PM2MetricSource(
        pm2_bin=settings.pm2_bin,
        command_timeout=settings.source_timeout_seconds,
    )
