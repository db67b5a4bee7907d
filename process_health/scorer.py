"""
Process Health - Health Scorer.

============================================================
HEALTH SCORING
============================================================

Turns one process snapshot plus host context into a score
(0-100) and an ordered list of human-readable issues.

Rules are evaluated in a fixed order and each deducts from a
starting score of 100:
1. CPU tier          (exclusive: critical / high / elevated)
2. Memory tier       (exclusive: high / elevated)
3. Status            (anything but online)
4. Restart count     (exclusive: frequent / multiple)
5. Recent crash      (short uptime after a restart)
6. Host memory       (host memory pressure)
7. Host load         (1-minute load average)

============================================================
SCORING PHILOSOPHY
============================================================

- Additive deductions, not worst-of
- Pure function: no I/O, no hidden state
- Fully explainable (issue list mirrors deductions)
- Host rules are skipped when host context is missing

============================================================
"""

from typing import List, Optional, Tuple
import logging

from .config import ScoringThresholds, get_config
from .models import (
    HealthAssessment,
    HostContext,
    ProcessSnapshot,
    ProcessStatus,
    bytes_to_mb,
    round_half_up,
)


logger = logging.getLogger(__name__)

Deduction = Tuple[int, str]


class HealthScorer:
    """
    Scores process snapshots.

    ```python
    scorer = HealthScorer()
    assessment = scorer.score(snapshot, host, now_ms)
    print(assessment.score, assessment.issues)
    ```
    """

    MAX_SCORE = 100
    MIN_SCORE = 0

    def __init__(self, thresholds: Optional[ScoringThresholds] = None) -> None:
        self._t = thresholds or get_config().scoring

    @property
    def thresholds(self) -> ScoringThresholds:
        return self._t

    def score(
        self,
        snapshot: ProcessSnapshot,
        host: Optional[HostContext],
        now_ms: int,
    ) -> HealthAssessment:
        """
        Score one snapshot.

        Args:
            snapshot: Process snapshot
            host: Host context at capture time (None = unavailable)
            now_ms: Capture time, used to derive uptime

        Returns:
            HealthAssessment with clamped score and ordered issues
        """
        host = host or HostContext()
        deductions: List[Optional[Deduction]] = [
            self._cpu_rule(snapshot),
            self._memory_rule(snapshot),
            self._status_rule(snapshot),
            self._restart_rule(snapshot),
            self._recent_crash_rule(snapshot, now_ms),
            self._host_memory_rule(host),
            self._host_load_rule(host),
        ]

        score = self.MAX_SCORE
        issues: List[str] = []
        for deduction in deductions:
            if deduction is None:
                continue
            penalty, issue = deduction
            score -= penalty
            issues.append(issue)

        return HealthAssessment(score=self._normalize_score(score), issues=issues)

    def _normalize_score(self, raw_score: int) -> int:
        """Clamp score to 0-100 range."""
        return max(self.MIN_SCORE, min(self.MAX_SCORE, raw_score))

    # =========================================================
    # PROCESS RULES
    # =========================================================

    def _cpu_rule(self, snapshot: ProcessSnapshot) -> Optional[Deduction]:
        cpu = snapshot.cpu_percent
        if cpu > self._t.cpu_critical:
            return self._t.cpu_critical_penalty, "Critical CPU usage"
        if cpu > self._t.cpu_high:
            return self._t.cpu_high_penalty, "High CPU usage"
        if cpu > self._t.cpu_elevated:
            return self._t.cpu_elevated_penalty, "Elevated CPU usage"
        return None

    def _memory_rule(self, snapshot: ProcessSnapshot) -> Optional[Deduction]:
        memory_mb = bytes_to_mb(snapshot.memory_bytes)
        if memory_mb > self._t.memory_high_mb:
            return (
                self._t.memory_high_penalty,
                f"High memory usage ({round_half_up(memory_mb)}MB)",
            )
        if memory_mb > self._t.memory_elevated_mb:
            return (
                self._t.memory_elevated_penalty,
                f"Elevated memory usage ({round_half_up(memory_mb)}MB)",
            )
        return None

    def _status_rule(self, snapshot: ProcessSnapshot) -> Optional[Deduction]:
        if snapshot.status != ProcessStatus.ONLINE:
            return self._t.not_online_penalty, f"Process {snapshot.status.value}"
        return None

    def _restart_rule(self, snapshot: ProcessSnapshot) -> Optional[Deduction]:
        restarts = snapshot.restart_count
        if restarts > self._t.restarts_frequent:
            return self._t.restarts_frequent_penalty, f"Frequent restarts ({restarts})"
        if restarts > self._t.restarts_multiple:
            return self._t.restarts_multiple_penalty, f"Multiple restarts ({restarts})"
        return None

    def _recent_crash_rule(
        self,
        snapshot: ProcessSnapshot,
        now_ms: int,
    ) -> Optional[Deduction]:
        # Overlaps with the restart rule on crash loops; both apply.
        uptime = snapshot.uptime_seconds(now_ms)
        if uptime < self._t.recent_restart_seconds and snapshot.restart_count > 0:
            return self._t.recent_restart_penalty, "Recently restarted (potential crash)"
        return None

    # =========================================================
    # HOST RULES
    # =========================================================

    def _host_memory_rule(self, host: HostContext) -> Optional[Deduction]:
        ratio = host.memory_usage_ratio
        if ratio is None:
            return None
        if ratio > self._t.host_memory_pressure_ratio:
            percent = round_half_up(self._t.host_memory_pressure_ratio * 100)
            return self._t.host_memory_penalty, f"System memory pressure (>{percent}%)"
        return None

    def _host_load_rule(self, host: HostContext) -> Optional[Deduction]:
        load = host.load_1m
        if load is None:
            return None
        if load > self._t.host_load_threshold:
            return self._t.host_load_penalty, f"High system load ({load:.2f})"
        return None
