from __future__ import annotations

import abc
from typing import Any, Optional


class KeyedStore(abc.ABC):
    """
    Ephemeral TTL key-value store shared by every admission component.

    Entries vanish on their own once their TTL elapses. Values must be
    JSON-serialisable. Backend faults surface as ``StoreUnavailable``.
    """

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or None."""

    @abc.abstractmethod
    async def set(self, key: str, value: Any, ttl: float) -> None:
        """Write ``value`` with a TTL in seconds. Last write wins."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; missing keys are ignored."""

    @abc.abstractmethod
    async def increment(self, key: str, ttl: float, limit: Optional[int] = None) -> Optional[int]:
        """
        Atomically add one to the counter at ``key`` and return the new value.

        An absent or expired counter starts at 1 and receives ``ttl``;
        later increments keep the original expiry. If ``limit`` is given
        and the counter already holds ``limit`` or more, nothing changes
        and None is returned.
        """

    async def close(self) -> None:
        return None
