"""
Process Health - Configuration.

============================================================
CONFIGURABLE HEALTH MONITORING
============================================================

All monitoring parameters are configurable:
- Scoring thresholds and deductions
- Tick interval and metric source timeout
- Storage location and retention cap
- HTTP API binding

Configuration can be loaded from:
- Default values
- Environment variables (.env supported)
- YAML config file

============================================================
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from dotenv import load_dotenv

from .exceptions import ConfigurationError


load_dotenv()

logger = logging.getLogger(__name__)


# =============================================================
# SCORING THRESHOLDS
# =============================================================


@dataclass
class ScoringThresholds:
    """
    Thresholds and deductions for the health score.

    Every rule starts from a perfect score of 100 and deducts
    points when its threshold is exceeded.
    """
    # CPU tiers (percent, exclusive - only highest tier fires)
    cpu_critical: float = 90.0
    cpu_high: float = 70.0
    cpu_elevated: float = 40.0
    cpu_critical_penalty: int = 40
    cpu_high_penalty: int = 25
    cpu_elevated_penalty: int = 10

    # Memory tiers (MB)
    memory_high_mb: float = 1024.0
    memory_elevated_mb: float = 512.0
    memory_high_penalty: int = 30
    memory_elevated_penalty: int = 15

    # Status
    not_online_penalty: int = 60

    # Restart count
    restarts_frequent: int = 10
    restarts_multiple: int = 5
    restarts_frequent_penalty: int = 20
    restarts_multiple_penalty: int = 10

    # Recent crash heuristic
    recent_restart_seconds: int = 60
    recent_restart_penalty: int = 20

    # Host pressure
    host_memory_pressure_ratio: float = 0.90
    host_memory_penalty: int = 15
    host_load_threshold: float = 4.0
    host_load_penalty: int = 15

    def __post_init__(self) -> None:
        """Validate tier ordering."""
        if not self.cpu_elevated < self.cpu_high < self.cpu_critical:
            raise ConfigurationError(
                "cpu thresholds",
                (self.cpu_elevated, self.cpu_high, self.cpu_critical),
                "must be strictly increasing",
            )
        if self.memory_elevated_mb >= self.memory_high_mb:
            raise ConfigurationError(
                "memory thresholds",
                (self.memory_elevated_mb, self.memory_high_mb),
                "elevated must be below high",
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "cpu": [self.cpu_elevated, self.cpu_high, self.cpu_critical],
            "memory_mb": [self.memory_elevated_mb, self.memory_high_mb],
            "restarts": [self.restarts_multiple, self.restarts_frequent],
            "recent_restart_seconds": self.recent_restart_seconds,
            "host_memory_pressure_ratio": self.host_memory_pressure_ratio,
            "host_load_threshold": self.host_load_threshold,
        }


# =============================================================
# MONITOR / STORAGE / API SETTINGS
# =============================================================


@dataclass
class MonitorSettings:
    """Settings for the background monitor loop and metric source."""
    tick_interval_seconds: float = 30.0
    source_timeout_seconds: float = 5.0
    pm2_bin: Optional[str] = None
    demo_mode: bool = False
    demo_seed: int = 42
    autostart: bool = True

    def __post_init__(self) -> None:
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError(
                "tick_interval_seconds", self.tick_interval_seconds, "must be > 0"
            )
        if self.source_timeout_seconds <= 0:
            raise ConfigurationError(
                "source_timeout_seconds", self.source_timeout_seconds, "must be > 0"
            )


@dataclass
class StorageSettings:
    """Settings for the health store."""
    url: str = "sqlite:///.pm2-health/health.db"
    retention_cap: int = 2000
    echo: bool = False

    def __post_init__(self) -> None:
        if self.retention_cap < 1:
            raise ConfigurationError("retention_cap", self.retention_cap, "must be >= 1")


@dataclass
class ApiSettings:
    """Settings for the HTTP API."""
    host: str = "0.0.0.0"
    port: int = 8080


# =============================================================
# MAIN CONFIGURATION
# =============================================================


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class HealthConfig:
    """
    Main configuration for process health monitoring.

    Combines all sub-configurations.
    """
    scoring: ScoringThresholds = field(default_factory=ScoringThresholds)
    monitor: MonitorSettings = field(default_factory=MonitorSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    api: ApiSettings = field(default_factory=ApiSettings)

    @classmethod
    def from_env(cls) -> "HealthConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - HEALTH_STORAGE_URL
        - HEALTH_RETENTION_CAP
        - HEALTH_TICK_INTERVAL
        - HEALTH_SOURCE_TIMEOUT
        - HEALTH_AUTOSTART_MONITOR
        - PM2_BIN
        - DEMO_MODE
        - HEALTH_API_HOST
        - HEALTH_API_PORT
        """
        config = cls()

        try:
            if os.getenv("HEALTH_STORAGE_URL"):
                config.storage.url = os.getenv("HEALTH_STORAGE_URL")
            if os.getenv("HEALTH_RETENTION_CAP"):
                config.storage = StorageSettings(
                    url=config.storage.url,
                    retention_cap=int(os.getenv("HEALTH_RETENTION_CAP")),
                )

            monitor_kwargs: Dict[str, Any] = {}
            if os.getenv("HEALTH_TICK_INTERVAL"):
                monitor_kwargs["tick_interval_seconds"] = float(os.getenv("HEALTH_TICK_INTERVAL"))
            if os.getenv("HEALTH_SOURCE_TIMEOUT"):
                monitor_kwargs["source_timeout_seconds"] = float(os.getenv("HEALTH_SOURCE_TIMEOUT"))
            if os.getenv("HEALTH_AUTOSTART_MONITOR"):
                monitor_kwargs["autostart"] = _env_bool(os.getenv("HEALTH_AUTOSTART_MONITOR"))
            if os.getenv("PM2_BIN"):
                monitor_kwargs["pm2_bin"] = os.getenv("PM2_BIN")
            if os.getenv("DEMO_MODE"):
                monitor_kwargs["demo_mode"] = _env_bool(os.getenv("DEMO_MODE"))
            if monitor_kwargs:
                config.monitor = MonitorSettings(**monitor_kwargs)

            if os.getenv("HEALTH_API_HOST"):
                config.api.host = os.getenv("HEALTH_API_HOST")
            if os.getenv("HEALTH_API_PORT"):
                config.api.port = int(os.getenv("HEALTH_API_PORT"))
        except ValueError as e:
            raise ConfigurationError("environment", str(e), "not a number") from e

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "HealthConfig":
        """Load configuration from YAML file."""
        try:
            import yaml
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except Exception as e:
            logger.warning(f"Failed to load YAML config from {path}: {e}")
            return cls()

        return cls(
            scoring=ScoringThresholds(**data.get("scoring", {})),
            monitor=MonitorSettings(**data.get("monitor", {})),
            storage=StorageSettings(**data.get("storage", {})),
            api=ApiSettings(**data.get("api", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "scoring": self.scoring.to_dict(),
            "monitor": {
                "tick_interval_seconds": self.monitor.tick_interval_seconds,
                "source_timeout_seconds": self.monitor.source_timeout_seconds,
                "demo_mode": self.monitor.demo_mode,
                "autostart": self.monitor.autostart,
            },
            "storage": {
                "url": self.storage.url.split("@")[-1],
                "retention_cap": self.storage.retention_cap,
            },
            "api": {"host": self.api.host, "port": self.api.port},
        }


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[HealthConfig] = None


def get_config() -> HealthConfig:
    """Get the global health configuration."""
    global _default_config
    if _default_config is None:
        _default_config = HealthConfig.from_env()
    return _default_config


def set_config(config: HealthConfig) -> None:
    """Set the global health configuration."""
    global _default_config
    _default_config = config
