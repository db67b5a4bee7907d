"""
Process Health - Health Store.

============================================================
APPEND-ONLY TIME SERIES
============================================================

Per-key time series of JSON-shaped samples:
- One series per process (key = str(process_id))
- One reserved series for host-wide rollups (key = "system")

Contract:
- append(key, record): add to tail, trim head to the retention
  cap, durable before returning. Failures are logged and
  swallowed - monitoring must never crash the host process.
- read_range(key, since_ms): retained records with
  timestamp >= since_ms, ascending. Empty if nothing matches.
  Failures raise StorageUnavailable.

============================================================
IMPLEMENTATIONS
============================================================

- SqlHealthStore: SQLAlchemy (SQLite default, any URL)
- InMemoryHealthStore: bounded deques, for demo and tests

============================================================
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import StorageSettings
from .exceptions import StorageUnavailable
from .storage import HealthDatabase, HealthSampleRepository


logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"


def series_key(process_id: int) -> str:
    """Series key for a process."""
    return str(process_id)


# =============================================================
# BASE STORE
# =============================================================


class HealthStore(ABC):
    """Abstract append-only per-key time series store."""

    def __init__(self, retention_cap: int) -> None:
        if retention_cap < 1:
            raise ValueError("retention_cap must be >= 1")
        self._retention_cap = retention_cap

    @property
    def retention_cap(self) -> int:
        return self._retention_cap

    @abstractmethod
    def append(self, key: str, record: Dict[str, Any]) -> bool:
        """
        Append a record to a series.

        Args:
            key: Series key
            record: JSON-compatible record with integer "timestamp"

        Returns:
            True if persisted, False if dropped on a storage failure
        """
        pass

    @abstractmethod
    def read_range(self, key: str, since_ms: int) -> List[Dict[str, Any]]:
        """Records with timestamp >= since_ms, oldest first."""
        pass

    @abstractmethod
    def latest(self, key: str) -> Optional[Dict[str, Any]]:
        """Most recent record of a series, or None."""
        pass

    @abstractmethod
    def count(self, key: str) -> int:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    @abstractmethod
    def delete_series(self, key: str) -> int:
        """Remove a whole series. Returns the number of records removed."""
        pass

    def close(self) -> None:
        """Release resources."""


# =============================================================
# SQL STORE
# =============================================================


class SqlHealthStore(HealthStore):
    """
    SQLAlchemy-backed store.

    Every append runs in its own transaction (insert + trim), so
    a crash loses at most the append in flight and never corrupts
    committed history.
    """

    def __init__(
        self,
        database: HealthDatabase,
        retention_cap: int = 2000,
    ) -> None:
        super().__init__(retention_cap)
        self._db = database

    @classmethod
    def from_url(cls, url: str, retention_cap: int = 2000, echo: bool = False) -> "SqlHealthStore":
        database = HealthDatabase(url, echo=echo)
        try:
            database.create_tables()
        except SQLAlchemyError as e:
            raise StorageUnavailable("create_tables", str(e)) from e
        return cls(database, retention_cap)

    def append(self, key: str, record: Dict[str, Any]) -> bool:
        try:
            with self._db.session_scope() as session:
                repo = HealthSampleRepository(session)
                repo.add(key, int(record["timestamp"]), record)
                repo.trim(key, self._retention_cap)
            return True
        except SQLAlchemyError as e:
            logger.error(f"Dropping health sample for series {key}: {e}")
            return False

    def read_range(self, key: str, since_ms: int) -> List[Dict[str, Any]]:
        try:
            with self._db.session_scope() as session:
                return HealthSampleRepository(session).read_since(key, since_ms)
        except SQLAlchemyError as e:
            raise StorageUnavailable("read_range", str(e), key=key) from e

    def latest(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            with self._db.session_scope() as session:
                return HealthSampleRepository(session).latest(key)
        except SQLAlchemyError as e:
            raise StorageUnavailable("latest", str(e), key=key) from e

    def count(self, key: str) -> int:
        try:
            with self._db.session_scope() as session:
                return HealthSampleRepository(session).count(key)
        except SQLAlchemyError as e:
            raise StorageUnavailable("count", str(e), key=key) from e

    def keys(self) -> List[str]:
        try:
            with self._db.session_scope() as session:
                return HealthSampleRepository(session).series_keys()
        except SQLAlchemyError as e:
            raise StorageUnavailable("keys", str(e)) from e

    def delete_series(self, key: str) -> int:
        try:
            with self._db.session_scope() as session:
                removed = HealthSampleRepository(session).delete_series(key)
        except SQLAlchemyError as e:
            raise StorageUnavailable("delete_series", str(e), key=key) from e
        logger.info(f"Deleted {removed} samples from series {key}")
        return removed

    def close(self) -> None:
        self._db.dispose()


# =============================================================
# IN-MEMORY STORE
# =============================================================


class InMemoryHealthStore(HealthStore):
    """
    Process-local store using bounded deques.

    History does not survive a restart.
    """

    def __init__(self, retention_cap: int = 2000) -> None:
        super().__init__(retention_cap)
        self._series: Dict[str, Deque[Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def append(self, key: str, record: Dict[str, Any]) -> bool:
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = deque(maxlen=self._retention_cap)
                self._series[key] = series
            series.append(copy.deepcopy(record))
        return True

    def read_range(self, key: str, since_ms: int) -> List[Dict[str, Any]]:
        with self._lock:
            matches = [
                copy.deepcopy(r) for r in self._series.get(key, ())
                if r["timestamp"] >= since_ms
            ]
        return sorted(matches, key=lambda r: r["timestamp"])

    def latest(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            series = self._series.get(key)
            if not series:
                return None
            return copy.deepcopy(max(series, key=lambda r: r["timestamp"]))

    def count(self, key: str) -> int:
        with self._lock:
            return len(self._series.get(key, ()))

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(k for k, v in self._series.items() if v)

    def delete_series(self, key: str) -> int:
        with self._lock:
            series = self._series.pop(key, None)
        return len(series) if series else 0


# =============================================================
# FACTORY
# =============================================================


def create_health_store(settings: StorageSettings) -> HealthStore:
    """Build the store selected by the storage URL."""
    if settings.url == MEMORY_URL:
        logger.info("Using in-memory health store")
        return InMemoryHealthStore(settings.retention_cap)
    return SqlHealthStore.from_url(
        settings.url,
        retention_cap=settings.retention_cap,
        echo=settings.echo,
    )
