"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def enable_sqlite_foreign_keys(engine) -> None:
    """Register a ``connect`` listener that turns on SQLite FK enforcement.

    SQLite ignores ``ON DELETE CASCADE`` unless ``PRAGMA foreign_keys`` is
    set on every new connection.
    """

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(database_url: str):
    """Create an engine for ``database_url`` with the app's SQLite tweaks."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sync workers and background jobs open sessions from other threads
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, connect_args=connect_args, echo=False)
    if database_url.startswith("sqlite"):
        enable_sqlite_foreign_keys(engine)
    return engine


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    return create_db_engine(settings.DATABASE_URL)


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db() -> None:
    """Create any missing tables."""
    import models  # noqa: F401  (registers mappers on Base.metadata)

    Base.metadata.create_all(bind=get_engine())
    logger.info("Database schema ready")


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Default: services ``flush()``, API layer ``commit()``
    - Exceptions that commit internally:
      - ``TransactionSyncService``: commits after every applied page so the
        cursor checkpoint is durable
      - ``InvestmentSyncService``: commits per account
      - ``BackgroundJobRunner`` / ``SyncStateService.claim()``: status
        transitions are committed immediately so other workers see them
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
