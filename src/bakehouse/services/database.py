"""
Database connection and session management for Bakehouse.

This module provides:
- The SQLite engine (foreign keys on, WAL journal for file databases)
- session_scope(), the transactional unit every service function uses
- Schema creation, optional rebuild, and a check for missing tables
- close_connections() for orderly shutdown of the CLI commands
"""

from contextlib import contextmanager
import logging
from typing import List, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..models.base import Base
from ..utils.config import get_config
from .exceptions import DatabaseError

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_SessionFactory: Optional[sessionmaker] = None


def _is_memory_url(database_url: str) -> bool:
    return ":memory:" in database_url or "mode=memory" in database_url


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Foreign keys and WAL on every new SQLite connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    # Ignored (reported as "memory") for in-memory databases
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_database_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create a SQLite engine.

    In-memory databases share a single connection (StaticPool) so every
    session sees the same tables. File databases get a busy timeout, since
    the sync bridge writes from worker threads while the CLI may be reading.
    Both allow use across threads.
    """
    database_url = database_url or get_config().database_url
    logger.info(f"Creating database engine: {database_url}")

    if _is_memory_url(database_url):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def init_database(engine: Optional[Engine] = None, *, reset: bool = False) -> List[str]:
    """
    Create any missing tables.

    Args:
        engine: Engine to use (defaults to the global engine)
        reset: Drop every table first. All data is lost.

    Returns:
        Names of the tables that did not exist before the call
    """
    from .. import models  # noqa: F401  (registers every table with Base.metadata)

    engine = engine or get_engine()
    if reset:
        logger.warning("Dropping all tables: existing data will be lost")
        Base.metadata.drop_all(engine)

    created = missing_tables(engine)
    Base.metadata.create_all(engine)
    if created:
        logger.info(f"Created {len(created)} table(s): {', '.join(created)}")
    return created


def missing_tables(engine: Optional[Engine] = None) -> List[str]:
    """Tables defined by the models but absent from the database, sorted."""
    from .. import models  # noqa: F401

    existing = set(inspect(engine or get_engine()).get_table_names())
    return sorted(name for name in Base.metadata.tables if name not in existing)


def get_engine() -> Engine:
    """Get the global engine, creating it from the config on first use."""
    global _engine

    if _engine is None:
        _engine = create_database_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """
    Get the global session factory.

    Tests replace this function to point every session_scope() at a
    throwaway database.
    """
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionFactory


@contextmanager
def session_scope():
    """
    Provide a transactional scope: commit on success, roll back on any
    exception, always close.

    Example:
        with session_scope() as session:
            slot = BakeSlot(date=..., location_id=1, total_capacity=24)
            session.add(slot)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_connections() -> None:
    """Dispose of the global engine; the next session_scope() reconnects."""
    global _engine, _SessionFactory

    _SessionFactory = None
    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("Database connections closed")


def initialize_app_database(reset: bool = False) -> None:
    """
    Make sure the application database exists and has every table.

    Raises:
        DatabaseError: If tables are still missing after creation
    """
    config = get_config()
    if config.database_exists() and not reset:
        logger.info(f"Using existing database at: {config.database_path}")
    else:
        logger.info(f"Preparing database at: {config.database_path}")

    engine = get_engine()
    init_database(engine, reset=reset)

    missing = missing_tables(engine)
    if missing:
        raise DatabaseError(f"tables missing after initialization: {', '.join(missing)}")
