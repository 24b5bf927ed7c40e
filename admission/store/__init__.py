from __future__ import annotations

from .base import KeyedStore
from .memory import MemoryStore


def create_store(url: str) -> KeyedStore:
    """
    Build a store from a URL:
      memory://            process-local store
      redis:// rediss://   shared Redis store
      anything else        SQLAlchemy database URL (sqlite, postgresql)
    """
    if url.startswith("memory://"):
        return MemoryStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        from .redis_store import RedisStore
        return RedisStore.from_url(url)
    from .sql import SqlStore
    return SqlStore.from_url(url)


__all__ = ["KeyedStore", "MemoryStore", "create_store"]
