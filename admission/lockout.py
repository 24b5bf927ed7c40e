"""
lockout.py — Progressive account lockout with cross-account escalation
=======================================================================
Per account (a normalised identity such as an email address):

  Unlocked  failures accumulate in a counter windowed by the lockout
            duration
  Locked    entered when the counter reaches ``max_login_attempts``;
            an AccountLockout record is written with
            ``locked_until = now + lockout duration`` and the failure
            counter is dropped
  Expired   the next lookup after ``locked_until`` deletes the record and
            any stray failure counter, so the next failure counts from 1

Every lockout also bumps a per-IP counter (15 minute window). Once an
origin has caused more than 20 lockouts in that window it is handed to
the IP evaluator for a 24 hour block.

A successful login leaves the failure counter alone; it expires with its
window. All transitions run on the request path, with no background
sweeper.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .audit import AuditTrail
from .config import SecurityConfig
from .identity import fingerprint_user_agent, normalize_account_key, normalize_ip
from .ip_access import IPAccessEvaluator
from .schemas import AccountLockout, LockoutStatus, LoginAttempt, SecurityEventType
from .store import KeyedStore

logger = logging.getLogger("admission.lockout")

FAILED_ATTEMPTS_PREFIX = "failed_attempts:"
LOCKOUT_PREFIX = "account_lockout:"
IP_ATTEMPTS_PREFIX = "ip_attempts:"

ESCALATION_REASON = "Too many failed login attempts across accounts"


class LockoutEngine:
    def __init__(
        self,
        config: SecurityConfig,
        store: KeyedStore,
        ip_access: IPAccessEvaluator,
        audit: AuditTrail,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._ip_access = ip_access
        self._audit = audit
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), timezone.utc)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_lockout(self, account_key: str) -> Optional[AccountLockout]:
        """Live lockout for the account, clearing a stale one on the way."""
        account = normalize_account_key(account_key)
        raw = await self._store.get(LOCKOUT_PREFIX + account)
        if raw is None:
            return None
        lockout = AccountLockout.model_validate(raw)
        if self._now() >= lockout.locked_until:
            await self._store.delete(LOCKOUT_PREFIX + account)
            await self._store.delete(FAILED_ATTEMPTS_PREFIX + account)
            logger.info("Lockout for %s expired", account)
            return None
        return lockout

    async def is_locked_out(self, account_key: str) -> bool:
        return await self.get_lockout(account_key) is not None

    async def status(self, account_key: str) -> LockoutStatus:
        account = normalize_account_key(account_key)
        lockout = await self.get_lockout(account)
        failures = await self._store.get(FAILED_ATTEMPTS_PREFIX + account)
        return LockoutStatus(
            account_key=account,
            locked=lockout is not None,
            failure_count=lockout.attempt_count if lockout else int(failures or 0),
            locked_until=lockout.locked_until if lockout else None,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record_attempt(
        self,
        ip: str,
        account_key: str,
        success: bool,
        user_agent: Optional[str],
    ) -> LockoutStatus:
        """
        Record the outcome of an authentication attempt.

        Raises InvalidIdentifier for a malformed ip/account and
        StoreUnavailable when the failure counters cannot be updated.
        """
        ip = normalize_ip(ip)
        account = normalize_account_key(account_key)
        ua_hash = fingerprint_user_agent(user_agent)

        await self._audit.record_attempt(
            LoginAttempt(
                ip=ip,
                account_key=account,
                success=success,
                user_agent_hash=ua_hash,
                timestamp=self._now(),
            )
        )
        await self._audit.emit(
            SecurityEventType.LOGIN_SUCCESS if success else SecurityEventType.LOGIN_FAILED,
            ip,
            account_key=account,
            user_agent_hash=ua_hash,
        )

        if success:
            return LockoutStatus(account_key=account, locked=False)
        return await self._register_failure(ip, account)

    async def _register_failure(self, ip: str, account: str) -> LockoutStatus:
        window = self._config.lockout_seconds
        count = await self._store.increment(FAILED_ATTEMPTS_PREFIX + account, window)
        if count < self._config.max_login_attempts:
            return LockoutStatus(account_key=account, locked=False, failure_count=count)
        if count > self._config.max_login_attempts:
            # A concurrent failure reached the threshold first and owns the lockout
            existing = await self.get_lockout(account)
            return LockoutStatus(
                account_key=account,
                locked=True,
                failure_count=count,
                locked_until=existing.locked_until if existing else None,
            )

        locked_until = self._now() + timedelta(seconds=window)
        lockout = AccountLockout(account_key=account, locked_until=locked_until, attempt_count=count)
        await self._store.set(LOCKOUT_PREFIX + account, lockout.model_dump(mode="json"), window)
        await self._store.delete(FAILED_ATTEMPTS_PREFIX + account)
        logger.warning(
            "Account %s locked out until %s after %d failed attempts",
            account,
            locked_until.isoformat(),
            count,
        )

        await self._escalate(ip)
        return LockoutStatus(account_key=account, locked=True, failure_count=count, locked_until=locked_until)

    async def _escalate(self, ip: str) -> None:
        ip_lockouts = await self._store.increment(
            IP_ATTEMPTS_PREFIX + ip, self._config.ip_escalation_window_seconds
        )
        if ip_lockouts > self._config.ip_escalation_threshold:
            await self._ip_access.block(ip, ESCALATION_REASON)
