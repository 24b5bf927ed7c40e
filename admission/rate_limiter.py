"""
rate_limiter.py — Fixed-window quotas per (purpose, client)
===========================================================
Each purpose ("short", "medium", "login", "refresh", …) owns a window
length and a limit. A client's counter is created on its first request
with the window as TTL and resets completely when that TTL lapses.

Fixed windows admit up to 2×limit for a burst straddling a boundary.
That imprecision is accepted.

The ceiling check and the increment are one store operation, so
concurrent callers can never push admissions past the limit.
"""
from __future__ import annotations

import logging
import math
from typing import Optional

from .config import SecurityConfig
from .errors import StoreUnavailable
from .identity import ClientIdentifier, rate_limit_key
from .schemas import Decision, DenyReason
from .store import KeyedStore

logger = logging.getLogger("admission.rate_limit")


class RateLimiter:
    def __init__(self, config: SecurityConfig, store: KeyedStore) -> None:
        self._config = config
        self._store = store

    async def check_and_consume(self, purpose: str, client: ClientIdentifier) -> Decision:
        """
        Consume one unit of ``purpose`` quota for ``client``.

        Denied requests do not consume quota. When the store is down the
        limiter denies, unless ``rate_limit_fail_open`` is configured.
        """
        policy = self._config.throttle(purpose)
        key = rate_limit_key(purpose, client)
        try:
            count = await self._store.increment(key, policy.window_seconds, limit=policy.limit)
        except StoreUnavailable as exc:
            if self._config.rate_limit_fail_open:
                logger.warning("Rate limit store unavailable, failing open for %s: %s", key, exc)
                return Decision.allow()
            return Decision.deny(DenyReason.STORE_UNAVAILABLE, detail="rate limit state unavailable")

        if count is None:
            logger.info("Rate limit exhausted for %s (limit %d)", key, policy.limit)
            return Decision.deny(
                DenyReason.RATE_LIMITED,
                detail=f"{purpose} quota of {policy.limit} exhausted",
                retry_after=math.ceil(policy.window_seconds),
            )
        logger.debug("Rate limit %s at %d/%d", key, count, policy.limit)
        return Decision.allow()

    async def usage(self, purpose: str, client: ClientIdentifier) -> int:
        """Requests counted for ``client`` in the current ``purpose`` window."""
        self._config.throttle(purpose)
        value: Optional[int] = await self._store.get(rate_limit_key(purpose, client))
        return int(value or 0)
