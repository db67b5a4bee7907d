"""
Health Storage Layer.

SQLAlchemy persistence for health time series.
"""

from .models import Base, HealthSampleRecord
from .database import HealthDatabase, create_database_engine
from .repository import HealthSampleRepository


__all__ = [
    "Base",
    "HealthSampleRecord",
    "HealthDatabase",
    "create_database_engine",
    "HealthSampleRepository",
]
