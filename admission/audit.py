"""
audit.py — Append-only security audit trail
============================================
Each event is written under its own key (millisecond timestamp plus a
random suffix) with a 7-day TTL, and mirrored to the ``admission.audit``
logger. Recording never raises: a failed write is logged locally and
the caller's admission decision proceeds untouched.
"""
from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .schemas import LoginAttempt, SecurityEvent, SecurityEventType
from .store import KeyedStore

logger = logging.getLogger("admission.audit")

EVENT_RETENTION_SECONDS = 7 * 24 * 60 * 60
ATTEMPT_RETENTION_SECONDS = 24 * 60 * 60

EVENT_PREFIX = "security_event"
ATTEMPT_PREFIX = "login_attempt"


class AuditTrail:
    def __init__(self, store: KeyedStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), timezone.utc)

    def _key(self, prefix: str, *parts: str) -> str:
        stamp = int(self._clock() * 1000)
        return ":".join([prefix, *parts, str(stamp), secrets.token_hex(6)])

    async def record(self, event: SecurityEvent) -> Optional[str]:
        """Persist ``event``. Returns its key, or None when the write failed."""
        key = self._key(EVENT_PREFIX)
        logger.info(
            "Security event %s from %s",
            event.type.value,
            event.ip,
            extra={
                "event_type": event.type.value,
                "ip": event.ip,
                "account_key": event.account_key,
                "user_agent_hash": event.user_agent_hash,
                "detail": event.detail,
            },
        )
        try:
            await self._store.set(key, event.model_dump(mode="json"), EVENT_RETENTION_SECONDS)
        except Exception:
            logger.exception("Failed to persist security event %s", event.type.value)
            return None
        return key

    async def emit(
        self,
        event_type: SecurityEventType,
        ip: str,
        account_key: Optional[str] = None,
        user_agent_hash: Optional[str] = None,
        **detail: Any,
    ) -> Optional[str]:
        """Shorthand for building and recording an event stamped with the trail's clock."""
        event = SecurityEvent(
            type=event_type,
            ip=ip,
            account_key=account_key,
            user_agent_hash=user_agent_hash,
            timestamp=self.now(),
            detail=detail,
        )
        return await self.record(event)

    async def record_attempt(self, attempt: LoginAttempt) -> Optional[str]:
        """Persist a login attempt fact for the 24h attempt window."""
        key = self._key(ATTEMPT_PREFIX, attempt.ip, attempt.account_key)
        try:
            await self._store.set(key, attempt.model_dump(mode="json"), ATTEMPT_RETENTION_SECONDS)
        except Exception:
            logger.exception("Failed to persist login attempt for %s", attempt.account_key)
            return None
        return key
