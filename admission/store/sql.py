"""
store/sql.py — Keyed store on a relational database
====================================================
For deployments that already run SQLite or PostgreSQL and want shared
admission state without Redis. Each increment is one
``INSERT … ON CONFLICT DO UPDATE … RETURNING`` statement, so the
database serialises concurrent writers on the row.

The SQLAlchemy engine is synchronous; calls run in a worker thread.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from threading import Lock
from typing import Any, Callable, Optional

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from ..database import StoreEntry, create_db_engine
from ..errors import ConfigurationError, StoreUnavailable
from .base import KeyedStore

logger = logging.getLogger("admission.store")

_SWEEP_EVERY = 500

_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class SqlStore(KeyedStore):
    def __init__(self, engine: Engine, clock: Callable[[], float] = time.time) -> None:
        try:
            self._insert = _INSERTS[engine.dialect.name]
        except KeyError:
            raise ConfigurationError(
                f"SqlStore supports sqlite and postgresql, not {engine.dialect.name!r}"
            ) from None
        self._engine = engine
        self._clock = clock
        self._writes = itertools.count(1)
        # A StaticPool engine hands every thread the same connection
        self._serial = Lock() if isinstance(engine.pool, StaticPool) else None

    @classmethod
    def from_url(cls, url: str) -> "SqlStore":
        return cls(create_db_engine(url))

    async def _run(self, fn: Callable, *args):
        try:
            return await asyncio.to_thread(self._call, fn, *args)
        except SQLAlchemyError as exc:
            logger.error("database store operation %s failed: %s", fn.__name__, exc)
            raise StoreUnavailable(str(exc)) from exc

    def _call(self, fn: Callable, *args):
        if self._serial is None:
            return fn(*args)
        with self._serial:
            return fn(*args)

    # -- sync bodies ---------------------------------------------------------

    def _get_sync(self, key: str) -> Optional[Any]:
        table = StoreEntry.__table__
        with self._engine.connect() as conn:
            row = conn.execute(
                select(table.c.value, table.c.counter)
                .where(table.c.key == key)
                .where(table.c.expires_at > self._clock())
            ).first()
        if row is None:
            return None
        return row.counter if row.value is None else json.loads(row.value)

    def _set_sync(self, key: str, value: Any, ttl: float) -> None:
        table = StoreEntry.__table__
        now = self._clock()
        stmt = self._insert(table).values(
            key=key, value=json.dumps(value), counter=None, expires_at=now + ttl
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.key],
            set_={
                "value": stmt.excluded.value,
                "counter": stmt.excluded.counter,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)
            self._maybe_sweep(conn, now)

    def _delete_sync(self, key: str) -> None:
        table = StoreEntry.__table__
        with self._engine.begin() as conn:
            conn.execute(delete(table).where(table.c.key == key))

    def _increment_sync(self, key: str, ttl: float, limit: Optional[int]) -> Optional[int]:
        table = StoreEntry.__table__
        now = self._clock()
        expired = table.c.expires_at <= now
        current = func.coalesce(table.c.counter, 0)

        stmt = self._insert(table).values(key=key, value=None, counter=1, expires_at=now + ttl)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.key],
            set_={
                "counter": case((expired, 1), else_=current + 1),
                "value": None,
                "expires_at": case((expired, now + ttl), else_=table.c.expires_at),
            },
            where=None if limit is None else or_(expired, current < limit),
        ).returning(table.c.counter)

        with self._engine.begin() as conn:
            value = conn.execute(stmt).scalar_one_or_none()
            self._maybe_sweep(conn, now)
        return value

    def _maybe_sweep(self, conn, now: float) -> None:
        if next(self._writes) % _SWEEP_EVERY == 0:
            table = StoreEntry.__table__
            conn.execute(delete(table).where(table.c.expires_at <= now))

    # -- async interface -----------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        return await self._run(self._get_sync, key)

    async def set(self, key: str, value: Any, ttl: float) -> None:
        await self._run(self._set_sync, key, value, ttl)

    async def delete(self, key: str) -> None:
        await self._run(self._delete_sync, key)

    async def increment(self, key: str, ttl: float, limit: Optional[int] = None) -> Optional[int]:
        return await self._run(self._increment_sync, key, ttl, limit)

    async def close(self) -> None:
        await asyncio.to_thread(self._engine.dispose)
