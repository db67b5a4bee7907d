"""
Health Storage - Sample Repository.

============================================================
PURPOSE
============================================================
Query layer over health_samples. Session is injected; the
caller owns the transaction.

Raises SQLAlchemy errors unchanged; the store layer above
converts them into StorageUnavailable.

============================================================
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from .models import HealthSampleRecord


class HealthSampleRepository:
    """Repository for HealthSampleRecord rows."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._logger = logging.getLogger("repository.HealthSampleRepository")

    def add(self, series_key: str, timestamp_ms: int, payload: Dict[str, Any]) -> HealthSampleRecord:
        """Insert one sample."""
        record = HealthSampleRecord(
            series_key=series_key,
            timestamp_ms=timestamp_ms,
            payload=payload,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def count(self, series_key: str) -> int:
        stmt = (
            select(func.count())
            .select_from(HealthSampleRecord)
            .where(HealthSampleRecord.series_key == series_key)
        )
        return self._session.execute(stmt).scalar() or 0

    def trim(self, series_key: str, keep: int) -> int:
        """
        Drop the oldest samples so at most `keep` remain.

        Returns:
            Number of rows deleted
        """
        excess = self.count(series_key) - keep
        if excess <= 0:
            return 0

        oldest = (
            select(HealthSampleRecord.sample_id)
            .where(HealthSampleRecord.series_key == series_key)
            .order_by(HealthSampleRecord.sample_id.asc())
            .limit(excess)
        )
        ids = list(self._session.execute(oldest).scalars().all())
        self._session.execute(
            delete(HealthSampleRecord).where(HealthSampleRecord.sample_id.in_(ids))
        )
        self._logger.debug(f"Trimmed {len(ids)} samples from series {series_key}")
        return len(ids)

    def read_since(self, series_key: str, since_ms: int) -> List[Dict[str, Any]]:
        """Payloads with timestamp >= since_ms, oldest first."""
        stmt = (
            select(HealthSampleRecord.payload)
            .where(
                HealthSampleRecord.series_key == series_key,
                HealthSampleRecord.timestamp_ms >= since_ms,
            )
            .order_by(
                HealthSampleRecord.timestamp_ms.asc(),
                HealthSampleRecord.sample_id.asc(),
            )
        )
        return [dict(payload) for payload in self._session.execute(stmt).scalars().all()]

    def latest(self, series_key: str) -> Optional[Dict[str, Any]]:
        stmt = (
            select(HealthSampleRecord.payload)
            .where(HealthSampleRecord.series_key == series_key)
            .order_by(
                HealthSampleRecord.timestamp_ms.desc(),
                HealthSampleRecord.sample_id.desc(),
            )
            .limit(1)
        )
        payload = self._session.execute(stmt).scalar_one_or_none()
        return dict(payload) if payload is not None else None

    def series_keys(self) -> List[str]:
        stmt = select(HealthSampleRecord.series_key).distinct().order_by(HealthSampleRecord.series_key)
        return list(self._session.execute(stmt).scalars().all())

    def delete_series(self, series_key: str) -> int:
        result = self._session.execute(
            delete(HealthSampleRecord).where(HealthSampleRecord.series_key == series_key)
        )
        return result.rowcount or 0
