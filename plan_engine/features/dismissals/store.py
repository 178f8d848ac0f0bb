"""
plan_engine/features/dismissals/store.py

Persistent local cache: string-keyed get/set/delete.

Two implementations:
- InMemoryKeyValueStore for tests and ephemeral sessions
- SqlKeyValueStore backed by the `local_cache` table (survives restarts)
"""

from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from plan_engine.core.database import create_all_tables, get_db_session, get_engine, local_cache


class KeyValueStore(Protocol):
    """Protocol for the persistent local cache."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqlKeyValueStore:
    """Key/value store on the `local_cache` table (upsert on set)."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine or get_engine()
        create_all_tables(self._engine)

    def get(self, key: str) -> Optional[str]:
        with get_db_session(self._engine) as session:
            row = session.execute(
                select(local_cache.c.value).where(local_cache.c.key == key)
            ).first()
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc)
        with get_db_session(self._engine) as session:
            result = session.execute(
                update(local_cache)
                .where(local_cache.c.key == key)
                .values(value=value, updated_at=now)
            )
            if result.rowcount == 0:
                session.execute(
                    insert(local_cache).values(key=key, value=value, updated_at=now)
                )

    def delete(self, key: str) -> None:
        with get_db_session(self._engine) as session:
            session.execute(delete(local_cache).where(local_cache.c.key == key))
