"""
Health Storage - ORM Models.

============================================================
PURPOSE
============================================================
Stores health time series: one row per sample, keyed by
series (process id or the reserved system key).

============================================================
DATA LIFECYCLE ROLE
============================================================
- Stage: OPERATIONAL (monitoring)
- Mutability: IMMUTABLE (append-only)
- Retention: count-capped per series, oldest first
- Source: Health monitor loop
- Consumers: Health reports, historical queries

============================================================
"""

from typing import Any, Dict

from sqlalchemy import JSON, BigInteger, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for health storage models."""


class HealthSampleRecord(Base):
    """
    One sample in a health time series.

    The payload is the JSON form of a HealthMetric or SystemRollup.
    Rows are never updated; they are only trimmed from the head.
    """

    __tablename__ = "health_samples"

    sample_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
        comment="Insertion order within the table",
    )

    series_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Process id or reserved system key",
    )

    timestamp_ms: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Sample capture time (epoch ms)",
    )

    payload: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Serialized sample",
    )

    __table_args__ = (
        Index("ix_health_samples_series_time", "series_key", "timestamp_ms", "sample_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<HealthSampleRecord(key={self.series_key}, "
            f"timestamp_ms={self.timestamp_ms})>"
        )
