"""
Health Storage - Database Engine.

============================================================
RESPONSIBILITY
============================================================
Manages the SQLAlchemy engine and sessions for health storage.

- SQLite by default (file under .pm2-health/)
- Any SQLAlchemy URL accepted (e.g. PostgreSQL)
- Explicit transaction scope: commit or roll back
- Engines are owned by a HealthDatabase instance, never global

============================================================
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


logger = logging.getLogger(__name__)


def create_database_engine(url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite connections are shared across threads because sync
    storage calls run in worker threads. In-memory SQLite uses
    a single static connection so all sessions see one database.
    """
    parsed = make_url(url)
    kwargs = {"echo": echo, "future": True}

    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        database = parsed.database
        if not database or database == ":memory:":
            kwargs["poolclass"] = StaticPool
        else:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs["pool_pre_ping"] = True

    logger.info(f"Creating health database engine for: {url.split('@')[-1]}")
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_conn, connection_record):
        logger.debug("Health database connection established")

    return engine


class HealthDatabase:
    """
    Owns the engine and session factory for health storage.

    ```python
    db = HealthDatabase("sqlite:///.pm2-health/health.db")
    db.create_tables()
    with db.session_scope() as session:
        ...
    ```
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self._url = url
        self._engine = create_database_engine(url, echo=echo)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_tables(self) -> None:
        """Create health tables if they do not exist."""
        Base.metadata.create_all(bind=self._engine)
        logger.info("Health tables ready")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Transaction scope.

        Commits only if no exception occurs; rolls back and
        re-raises otherwise.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()
