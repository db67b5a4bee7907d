"""
Process Health Monitoring Module.

============================================================
PROCESS HEALTH SCORING & HISTORY
============================================================

Scores every PM2-managed process on a fixed interval, keeps a
bounded time series per process plus one host-wide series, and
answers range queries with bucketed aggregation.

============================================================
HEALTH SCORE
============================================================

Starts at 100; deductions for CPU, memory, status, restarts,
recent crashes, host memory pressure and host load.

- HEALTHY: score >= 70 and status online
- CRITICAL (status summaries): score < 50

============================================================
USAGE
============================================================

```python
from process_health import create_health_service

service = create_health_service()
await service.start_monitoring()

report = await service.get_health(0, period_hours=6)
print(report.summary.avg_health_score, report.origin)

result = await service.get_historical("1w")
for point in result.points:
    print(point.timestamp, point.values["avg_health_score"])
```

============================================================
"""

from .models import (
    ProcessStatus,
    DataOrigin,
    CustomMetric,
    ProcessSnapshot,
    HostContext,
    SourceSnapshot,
    HealthAssessment,
    HealthMetric,
    ProcessSample,
    SystemRollup,
    TimeSeriesPoint,
    HistoricalResult,
    HealthSummary,
    HealthReport,
    HEALTHY_SCORE_THRESHOLD,
    SYSTEM_SERIES_KEY,
)
from .config import (
    HealthConfig,
    ScoringThresholds,
    MonitorSettings,
    StorageSettings,
    ApiSettings,
    get_config,
    set_config,
)
from .exceptions import (
    HealthMonitorError,
    SourceUnavailable,
    StorageUnavailable,
    InvalidPeriodToken,
    ProcessNotFound,
    ConfigurationError,
)
from .clock import ClockProtocol, SystemClock, MockClock
from .scorer import HealthScorer
from .store import (
    HealthStore,
    SqlHealthStore,
    InMemoryHealthStore,
    create_health_store,
)
from .sources import (
    MetricSource,
    PM2MetricSource,
    SyntheticMetricSource,
    create_metric_source,
)
from .aggregator import SystemAggregator
from .history import HistoricalQueryEngine, PeriodPolicy, PERIOD_POLICIES
from .monitor import HealthMonitorLoop, MonitorState, TickResult, TickOutcome
from .service import HealthService, create_health_service


__all__ = [
    # Models
    "ProcessStatus",
    "DataOrigin",
    "CustomMetric",
    "ProcessSnapshot",
    "HostContext",
    "SourceSnapshot",
    "HealthAssessment",
    "HealthMetric",
    "ProcessSample",
    "SystemRollup",
    "TimeSeriesPoint",
    "HistoricalResult",
    "HealthSummary",
    "HealthReport",
    "HEALTHY_SCORE_THRESHOLD",
    "SYSTEM_SERIES_KEY",
    # Config
    "HealthConfig",
    "ScoringThresholds",
    "MonitorSettings",
    "StorageSettings",
    "ApiSettings",
    "get_config",
    "set_config",
    # Exceptions
    "HealthMonitorError",
    "SourceUnavailable",
    "StorageUnavailable",
    "InvalidPeriodToken",
    "ProcessNotFound",
    "ConfigurationError",
    # Clock
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    # Core
    "HealthScorer",
    "HealthStore",
    "SqlHealthStore",
    "InMemoryHealthStore",
    "create_health_store",
    "MetricSource",
    "PM2MetricSource",
    "SyntheticMetricSource",
    "create_metric_source",
    "SystemAggregator",
    "HistoricalQueryEngine",
    "PeriodPolicy",
    "PERIOD_POLICIES",
    "HealthMonitorLoop",
    "MonitorState",
    "TickResult",
    "TickOutcome",
    "HealthService",
    "create_health_service",
]
