"""
store/memory.py — Process-local keyed store
============================================
Every read-modify-write happens under one ``threading.Lock`` so the
store stays atomic whether callers share an event loop or run on
separate OS threads. Nothing inside the lock awaits.
"""
from __future__ import annotations

import copy
import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Tuple

from .base import KeyedStore

# Sweep expired entries after this many writes
_SWEEP_EVERY = 1000


class MemoryStore(KeyedStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = Lock()
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._writes = 0

    def _live(self, key: str, now: float) -> Optional[Tuple[Any, float]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._entries[key]
            return None
        return entry

    def _note_write(self, now: float) -> None:
        self._writes += 1
        if self._writes % _SWEEP_EVERY == 0:
            expired = [k for k, (_, exp) in self._entries.items() if exp <= now]
            for k in expired:
                del self._entries[k]

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live(key, self._clock())
            return copy.deepcopy(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            now = self._clock()
            self._entries[key] = (copy.deepcopy(value), now + ttl)
            self._note_write(now)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def increment(self, key: str, ttl: float, limit: Optional[int] = None) -> Optional[int]:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            if entry is None:
                value, expires_at = 0, now + ttl
            else:
                value, expires_at = int(entry[0]), entry[1]
            if limit is not None and value >= limit:
                return None
            value += 1
            self._entries[key] = (value, expires_at)
            self._note_write(now)
            return value

    def keys(self, prefix: str = "") -> List[str]:
        """Live keys starting with ``prefix``."""
        with self._lock:
            now = self._clock()
            return sorted(k for k, (_, exp) in self._entries.items() if exp > now and k.startswith(prefix))

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for _, exp in self._entries.values() if exp > now)
