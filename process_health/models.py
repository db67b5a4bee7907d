"""
Process Health - Data Models.

============================================================
CORE DATA STRUCTURES
============================================================

Defines all data models for process health monitoring:
- ProcessStatus: Process manager status values
- CustomMetric: Tagged numeric value reported by a process
- ProcessSnapshot: One process as seen by a single poll
- HostContext: Best-effort host statistics
- HealthAssessment: Score + ordered issue list
- HealthMetric: Persisted per-process sample
- SystemRollup: Persisted host-wide sample
- TimeSeriesPoint / HistoricalResult: Range query output
- HealthSummary / HealthReport: Per-process health view

All timestamps are epoch milliseconds.

============================================================
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# Score at or above which an online process counts as healthy
HEALTHY_SCORE_THRESHOLD = 70

# Reserved series key for host-wide rollups
SYSTEM_SERIES_KEY = "system"

BYTES_PER_MB = 1024 * 1024


# =============================================================
# ENUMS
# =============================================================


class ProcessStatus(str, Enum):
    """Status of a managed process as reported by the process manager."""
    ONLINE = "online"
    STOPPED = "stopped"
    ERRORED = "errored"
    STOPPING = "stopping"
    LAUNCHING = "launching"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "ProcessStatus":
        """Map a raw status string to a status, defaulting to UNKNOWN."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class DataOrigin(str, Enum):
    """
    Where a response's data came from.

    Lets consumers label fallback responses differently from
    genuine history.
    """
    HISTORICAL = "historical"
    HISTORICAL_ONLY = "historical_only"  # live source unreachable
    LIVE_SNAPSHOT = "live_snapshot"      # no history, one live sample
    NO_DATA = "no_data"


# =============================================================
# HELPERS
# =============================================================


def bytes_to_mb(value: float) -> float:
    return value / BYTES_PER_MB


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_uptime(seconds: int) -> str:
    """Format an uptime in seconds as '1d 2h 3m', '2h 3m' or '3m'."""
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _load_tuple(value: Any) -> Optional[Tuple[float, float, float]]:
    if not value:
        return None
    values = [float(v) for v in value][:3]
    while len(values) < 3:
        values.append(0.0)
    return (values[0], values[1], values[2])


# =============================================================
# SNAPSHOT MODELS
# =============================================================


@dataclass(frozen=True)
class CustomMetric:
    """
    A custom metric published by a process (e.g. event loop delay).

    Values are always numeric; the unit travels alongside.
    """
    value: float
    unit: str = ""
    historic: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "unit": self.unit, "historic": self.historic}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CustomMetric":
        return cls(
            value=float(data["value"]),
            unit=data.get("unit", ""),
            historic=bool(data.get("historic", False)),
        )


@dataclass(frozen=True)
class ProcessSnapshot:
    """
    Immutable snapshot of one managed process.

    Produced by a MetricSource on every poll.
    """
    process_id: int
    name: str
    pid: int
    status: ProcessStatus
    cpu_percent: float  # may exceed 100 on multi-core, never clamped
    memory_bytes: int
    restart_count: int
    started_at_ms: Optional[int] = None
    custom_metrics: Dict[str, CustomMetric] = field(default_factory=dict)

    @property
    def memory_mb(self) -> float:
        return bytes_to_mb(self.memory_bytes)

    def uptime_seconds(self, now_ms: int) -> int:
        """Seconds since last (re)start, 0 when the start time is unknown."""
        if not self.started_at_ms:
            return 0
        return max(0, (now_ms - self.started_at_ms) // 1000)


@dataclass(frozen=True)
class HostContext:
    """
    Host statistics captured alongside a process poll.

    Every field is optional: host stats are best-effort and a
    missing field must never break scoring.
    """
    load_avg: Optional[Tuple[float, float, float]] = None
    total_mem: Optional[int] = None
    free_mem: Optional[int] = None
    cpu_count: Optional[int] = None
    hostname: Optional[str] = None
    disk_read_bytes: Optional[int] = None
    disk_write_bytes: Optional[int] = None
    net_rx_bytes: Optional[int] = None
    net_tx_bytes: Optional[int] = None

    @property
    def load_1m(self) -> Optional[float]:
        return self.load_avg[0] if self.load_avg else None

    @property
    def memory_usage_ratio(self) -> Optional[float]:
        """Used / total memory, or None when unknown."""
        if not self.total_mem or self.free_mem is None:
            return None
        return (self.total_mem - self.free_mem) / self.total_mem

    def to_dict(self) -> Dict[str, Any]:
        return {
            "load_avg": list(self.load_avg) if self.load_avg else None,
            "total_mem": self.total_mem,
            "free_mem": self.free_mem,
            "cpu_count": self.cpu_count,
            "hostname": self.hostname,
            "disk_read_bytes": self.disk_read_bytes,
            "disk_write_bytes": self.disk_write_bytes,
            "net_rx_bytes": self.net_rx_bytes,
            "net_tx_bytes": self.net_tx_bytes,
        }


@dataclass
class SourceSnapshot:
    """One MetricSource poll: process list plus host statistics."""
    processes: List[ProcessSnapshot]
    host: HostContext


# =============================================================
# HEALTH RECORDS
# =============================================================


@dataclass(frozen=True)
class HealthAssessment:
    """Result of scoring one snapshot."""
    score: int  # 0-100
    issues: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class HealthMetric:
    """
    One persisted health sample for one process.

    The score and issues are always produced by HealthScorer from
    the snapshot that created the record. is_healthy is derived,
    never stored independently.
    """
    timestamp: int
    process_id: int
    name: str
    pid: int
    status: ProcessStatus
    cpu_percent: float
    memory_bytes: int
    restart_count: int
    started_at_ms: Optional[int]
    uptime_seconds: int
    health_score: int
    health_issues: List[str] = field(default_factory=list)
    load_avg: Optional[Tuple[float, float, float]] = None
    total_system_memory: Optional[int] = None
    free_system_memory: Optional[int] = None
    custom_metrics: Dict[str, CustomMetric] = field(default_factory=dict)
    extra: Dict[str, float] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.health_score >= HEALTHY_SCORE_THRESHOLD and self.status == ProcessStatus.ONLINE

    @property
    def memory_mb(self) -> float:
        return bytes_to_mb(self.memory_bytes)

    @property
    def uptime_formatted(self) -> str:
        return format_uptime(self.uptime_seconds)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: ProcessSnapshot,
        host: HostContext,
        assessment: HealthAssessment,
        timestamp: int,
        extra: Optional[Dict[str, float]] = None,
    ) -> "HealthMetric":
        """Build a record from a snapshot and its assessment."""
        return cls(
            timestamp=timestamp,
            process_id=snapshot.process_id,
            name=snapshot.name,
            pid=snapshot.pid,
            status=snapshot.status,
            cpu_percent=snapshot.cpu_percent,
            memory_bytes=snapshot.memory_bytes,
            restart_count=snapshot.restart_count,
            started_at_ms=snapshot.started_at_ms,
            uptime_seconds=snapshot.uptime_seconds(timestamp),
            health_score=assessment.score,
            health_issues=list(assessment.issues),
            load_avg=host.load_avg,
            total_system_memory=host.total_mem,
            free_system_memory=host.free_mem,
            custom_metrics=dict(snapshot.custom_metrics),
            extra=dict(extra or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "timestamp": self.timestamp,
            "process_id": self.process_id,
            "name": self.name,
            "pid": self.pid,
            "status": self.status.value,
            "cpu_percent": self.cpu_percent,
            "memory_bytes": self.memory_bytes,
            "memory_mb": round(self.memory_mb, 2),
            "restart_count": self.restart_count,
            "started_at_ms": self.started_at_ms,
            "uptime_seconds": self.uptime_seconds,
            "uptime_formatted": self.uptime_formatted,
            "health_score": self.health_score,
            "health_issues": list(self.health_issues),
            "is_healthy": self.is_healthy,
            "load_avg": list(self.load_avg) if self.load_avg else None,
            "total_system_memory": self.total_system_memory,
            "free_system_memory": self.free_system_memory,
            "custom_metrics": {k: v.to_dict() for k, v in self.custom_metrics.items()},
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HealthMetric":
        """Rebuild from a persisted dictionary (derived fields are ignored)."""
        return cls(
            timestamp=int(data["timestamp"]),
            process_id=int(data["process_id"]),
            name=data.get("name", ""),
            pid=int(data.get("pid") or 0),
            status=ProcessStatus.parse(data.get("status")),
            cpu_percent=float(data.get("cpu_percent") or 0.0),
            memory_bytes=int(data.get("memory_bytes") or 0),
            restart_count=int(data.get("restart_count") or 0),
            started_at_ms=data.get("started_at_ms"),
            uptime_seconds=int(data.get("uptime_seconds") or 0),
            health_score=int(data["health_score"]),
            health_issues=list(data.get("health_issues") or []),
            load_avg=_load_tuple(data.get("load_avg")),
            total_system_memory=data.get("total_system_memory"),
            free_system_memory=data.get("free_system_memory"),
            custom_metrics={
                k: CustomMetric.from_dict(v)
                for k, v in (data.get("custom_metrics") or {}).items()
            },
            extra={k: float(v) for k, v in (data.get("extra") or {}).items()},
        )


@dataclass(frozen=True)
class ProcessSample:
    """Per-process sub-record carried inside a SystemRollup."""
    process_id: int
    name: str
    cpu: float
    memory: int
    status: str
    restarts: int
    health_score: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "process_id": self.process_id,
            "name": self.name,
            "cpu": self.cpu,
            "memory": self.memory,
            "status": self.status,
            "restarts": self.restarts,
            "health_score": self.health_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessSample":
        return cls(
            process_id=int(data["process_id"]),
            name=data.get("name", ""),
            cpu=float(data.get("cpu") or 0.0),
            memory=int(data.get("memory") or 0),
            status=data.get("status", ProcessStatus.UNKNOWN.value),
            restarts=int(data.get("restarts") or 0),
            health_score=data.get("health_score"),
        )


@dataclass(frozen=True)
class SystemRollup:
    """
    One host-wide sample, aggregated over a single poll.

    Stored under SYSTEM_SERIES_KEY.
    """
    timestamp: int
    total_cpu: float = 0.0
    total_memory: int = 0
    total_processes: int = 0
    online_processes: int = 0
    healthy_processes: int = 0
    avg_health_score: float = 0.0
    load_avg: Optional[Tuple[float, float, float]] = None
    host_total_mem: Optional[int] = None
    host_free_mem: Optional[int] = None
    disk_read_bytes: Optional[int] = None
    disk_write_bytes: Optional[int] = None
    net_rx_bytes: Optional[int] = None
    net_tx_bytes: Optional[int] = None
    processes: List[ProcessSample] = field(default_factory=list)

    @property
    def memory_usage_percent(self) -> Optional[float]:
        if not self.host_total_mem or self.host_free_mem is None:
            return None
        return (self.host_total_mem - self.host_free_mem) / self.host_total_mem * 100

    def find_process(self, process_id: int) -> Optional[ProcessSample]:
        for sample in self.processes:
            if sample.process_id == process_id:
                return sample
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "total_cpu": self.total_cpu,
            "total_memory": self.total_memory,
            "total_processes": self.total_processes,
            "online_processes": self.online_processes,
            "healthy_processes": self.healthy_processes,
            "avg_health_score": self.avg_health_score,
            "load_avg": list(self.load_avg) if self.load_avg else None,
            "host_total_mem": self.host_total_mem,
            "host_free_mem": self.host_free_mem,
            "memory_usage_percent": self.memory_usage_percent,
            "disk_read_bytes": self.disk_read_bytes,
            "disk_write_bytes": self.disk_write_bytes,
            "net_rx_bytes": self.net_rx_bytes,
            "net_tx_bytes": self.net_tx_bytes,
            "processes": [p.to_dict() for p in self.processes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemRollup":
        return cls(
            timestamp=int(data["timestamp"]),
            total_cpu=float(data.get("total_cpu") or 0.0),
            total_memory=int(data.get("total_memory") or 0),
            total_processes=int(data.get("total_processes") or 0),
            online_processes=int(data.get("online_processes") or 0),
            healthy_processes=int(data.get("healthy_processes") or 0),
            avg_health_score=float(data.get("avg_health_score") or 0.0),
            load_avg=_load_tuple(data.get("load_avg")),
            host_total_mem=data.get("host_total_mem"),
            host_free_mem=data.get("host_free_mem"),
            disk_read_bytes=data.get("disk_read_bytes"),
            disk_write_bytes=data.get("disk_write_bytes"),
            net_rx_bytes=data.get("net_rx_bytes"),
            net_tx_bytes=data.get("net_tx_bytes"),
            processes=[ProcessSample.from_dict(p) for p in data.get("processes") or []],
        )


# =============================================================
# QUERY RESULTS
# =============================================================


@dataclass
class TimeSeriesPoint:
    """
    One point of a historical series.

    For aggregated series, timestamp is the bucket start, values
    are bucket means and sample_count is the raw sample count.
    """
    timestamp: int
    values: Dict[str, float] = field(default_factory=dict)
    sample_count: int = 1
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "sample_count": self.sample_count,
            **{k: round(v, 4) for k, v in self.values.items()},
        }
        if self.status is not None:
            data["status"] = self.status
        return data


@dataclass
class HistoricalResult:
    """Result of a HistoricalQueryEngine query."""
    period: str
    points: List[TimeSeriesPoint]
    aggregated: bool
    window_start: int
    window_end: int
    origin: DataOrigin
    process_id: Optional[int] = None
    bucket_size_ms: Optional[int] = None
    period_defaulted: bool = False
    warnings: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def total_points(self) -> int:
        return len(self.points)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "process_id": self.process_id,
            "data_points": [p.to_dict() for p in self.points],
            "aggregated": self.aggregated,
            "bucket_size_ms": self.bucket_size_ms,
            "origin": self.origin.value,
            "period_defaulted": self.period_defaulted,
            "warnings": list(self.warnings),
            "message": self.message,
            "summary": {
                "total_points": self.total_points,
                "time_range": {"start": self.window_start, "end": self.window_end},
            },
        }


@dataclass
class HealthSummary:
    """Summary statistics over a process health history."""
    avg_health_score: float = 0.0
    avg_cpu: float = 0.0
    avg_memory: float = 0.0
    max_restarts: int = 0
    uptime_percentage: float = 0.0
    peak_cpu: float = 0.0
    peak_memory: int = 0
    sample_count: int = 0
    current_score: Optional[int] = None
    current_issues: List[str] = field(default_factory=list)
    current_is_healthy: Optional[bool] = None
    extra_averages: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_history(
        cls,
        history: List[HealthMetric],
        current: Optional[HealthMetric] = None,
    ) -> "HealthSummary":
        """Compute the summary; `current` defaults to the newest sample."""
        if current is None and history:
            current = history[-1]

        summary = cls()
        if current is not None:
            summary.current_score = current.health_score
            summary.current_issues = list(current.health_issues)
            summary.current_is_healthy = current.is_healthy

        count = len(history)
        if count == 0:
            return summary

        summary.sample_count = count
        summary.avg_health_score = sum(m.health_score for m in history) / count
        summary.avg_cpu = sum(m.cpu_percent for m in history) / count
        summary.avg_memory = sum(m.memory_bytes for m in history) / count
        summary.max_restarts = max(m.restart_count for m in history)
        online = sum(1 for m in history if m.status == ProcessStatus.ONLINE)
        summary.uptime_percentage = online / count * 100
        summary.peak_cpu = max(m.cpu_percent for m in history)
        summary.peak_memory = max(m.memory_bytes for m in history)

        extra_totals: Dict[str, List[float]] = {}
        for metric in history:
            for key, value in metric.extra.items():
                extra_totals.setdefault(key, []).append(value)
        summary.extra_averages = {
            key: sum(values) / len(values) for key, values in extra_totals.items()
        }
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "avg_health_score": round(self.avg_health_score, 2),
            "avg_cpu": round(self.avg_cpu, 2),
            "avg_memory": round(self.avg_memory, 2),
            "max_restarts": self.max_restarts,
            "uptime_percentage": round(self.uptime_percentage, 2),
            "peak_cpu": self.peak_cpu,
            "peak_memory": self.peak_memory,
            "sample_count": self.sample_count,
            "current_score": self.current_score,
            "current_issues": list(self.current_issues),
            "current_is_healthy": self.current_is_healthy,
            "extra_averages": {k: round(v, 4) for k, v in self.extra_averages.items()},
        }


@dataclass
class HealthReport:
    """Health history and summary for one process."""
    process_id: int
    period_hours: float
    history: List[HealthMetric]
    summary: HealthSummary
    origin: DataOrigin
    live_source_available: bool
    generated_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "process_id": self.process_id,
            "time_range": self.period_hours,
            "history": [m.to_dict() for m in self.history],
            "summary": self.summary.to_dict(),
            "origin": self.origin.value,
            "live_source_available": self.live_source_available,
            "generated_at": self.generated_at,
        }
