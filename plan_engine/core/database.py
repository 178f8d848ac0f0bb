"""
Database configuration for the persistent local cache.

This module provides:
- SQLAlchemy engine and session management
- SQLite-friendly defaults (file or in-memory)
- The `local_cache` key/value table backing dismissal records
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, String, DateTime, Text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker
import os

from plan_engine.core.config import Settings, settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url(cfg: Optional[Settings] = None) -> Optional[str]:
    """
    Get the cache database URL from settings or environment.

    For testing, use TEST_CACHE_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_CACHE_DATABASE_URL")
    if test_url:
        return test_url

    return (cfg or settings).CACHE_DATABASE_URL


def build_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across sessions."""
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)

    return create_engine(url, pool_recycle=POOL_RECYCLE, pool_pre_ping=True, echo=False)


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for CACHE_DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "CACHE_DATABASE_URL is not configured. "
            "Set CACHE_DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session(engine: Optional[Engine] = None):
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine is not None else get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None):
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine: Optional[Engine] = None):
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine or get_engine())


def reset_database(engine: Optional[Engine] = None):
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables(engine)
    create_all_tables(engine)


# Persistent local cache: one string blob per key
local_cache = Table(
    "local_cache",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)
