from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .audit import AuditTrail
from .config import SecurityConfig
from .identity import normalize_ip
from .schemas import SecurityEventType
from .store import KeyedStore

logger = logging.getLogger("admission.ip_access")

BLOCK_TTL_SECONDS = 24 * 60 * 60
BLOCKED_IP_PREFIX = "blocked_ip:"


class IPAccessEvaluator:
    """
    Allow/deny membership test over the configured lists plus the
    dynamic deny entries held in the store.

    An empty allow-list admits every address that is not denied; a
    non-empty one admits only its members, and denial still wins.
    """

    def __init__(
        self,
        config: SecurityConfig,
        store: KeyedStore,
        audit: AuditTrail,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._audit = audit
        self._clock = clock

    async def is_allowed(self, ip: str) -> bool:
        """Raises InvalidIdentifier for malformed input, StoreUnavailable if the deny state is unknown."""
        ip = normalize_ip(ip)
        if ip in self._config.blocked_ips:
            return False
        if self._config.allowed_ips and ip not in self._config.allowed_ips:
            return False
        return await self._store.get(BLOCKED_IP_PREFIX + ip) is None

    async def block(self, ip: str, reason: str) -> None:
        """Add ``ip`` to the dynamic deny-list for 24 hours."""
        ip = normalize_ip(ip)
        await self._store.set(
            BLOCKED_IP_PREFIX + ip,
            {"reason": reason, "blocked_at": self._clock()},
            BLOCK_TTL_SECONDS,
        )
        logger.warning("IP %s blocked: %s", ip, reason)
        await self._audit.emit(SecurityEventType.IP_BLOCKED, ip, reason=reason, user_agent="system")

    async def block_record(self, ip: str) -> Optional[dict]:
        """Dynamic block entry for ``ip``, if one is live."""
        return await self._store.get(BLOCKED_IP_PREFIX + normalize_ip(ip))
