"""
facade.py — Admission decisions for the request boundary
=========================================================
Checks run left to right and stop at the first denial:

  1. IP access      (skipped for endpoints marked ``skip_ip_check``)
  2. Account lockout (authentication endpoints carrying an account key)
  3. Rate limit      (skipped when the policy's ``skip_if`` says so)

IP and lockout run before quota consumption so traffic that is already
refused never eats into the budget of clients sharing its identifier.
IP and lockout checks fail closed when the store is unreachable.

After the guarded operation, the boundary reports authentication
outcomes back through ``record_attempt``.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from .audit import AuditTrail
from .config import SecurityConfig
from .errors import InvalidIdentifier, StoreUnavailable
from .identity import ClientIdentifier, client_identifier, fingerprint_user_agent, normalize_account_key
from .ip_access import IPAccessEvaluator
from .lockout import LockoutEngine
from .rate_limiter import RateLimiter
from .schemas import Decision, DenyReason, LockoutStatus, SecurityEventType
from .store import KeyedStore

logger = logging.getLogger("admission.facade")


@dataclass(frozen=True)
class AdmissionRequest:
    """What the boundary knows about an inbound request."""

    ip: str
    user_agent: Optional[str] = None
    account_key: Optional[str] = None


@dataclass(frozen=True)
class EndpointPolicy:
    """Per-endpoint guard settings supplied at the call site."""

    name: str
    purpose: str = "short"
    authenticates: bool = False
    skip_ip_check: bool = False
    skip_if: Optional[Callable[[AdmissionRequest], bool]] = None


Check = Callable[[AdmissionRequest, EndpointPolicy, ClientIdentifier], Awaitable[Optional[Decision]]]


async def first_denial(
    checks: List[Check],
    request: AdmissionRequest,
    policy: EndpointPolicy,
    client: ClientIdentifier,
) -> Decision:
    """Run ``checks`` in order; the first non-None result is the verdict."""
    for check in checks:
        decision = await check(request, policy, client)
        if decision is not None:
            return decision
    return Decision.allow()


class AdmissionFacade:
    def __init__(
        self,
        config: SecurityConfig,
        store: KeyedStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store = store
        self._clock = clock
        self.audit = AuditTrail(store, clock)
        self.ip_access = IPAccessEvaluator(config, store, self.audit, clock)
        self.rate_limiter = RateLimiter(config, store)
        self.lockout = LockoutEngine(config, store, self.ip_access, self.audit, clock)
        self._checks: List[Check] = [self._check_ip, self._check_lockout, self._check_rate_limit]

    # ------------------------------------------------------------------
    # Boundary entry points
    # ------------------------------------------------------------------

    async def admit(self, request: AdmissionRequest, policy: EndpointPolicy) -> Decision:
        try:
            client = client_identifier(request.ip, request.user_agent)
            decision = await first_denial(self._checks, request, policy, client)
        except InvalidIdentifier as exc:
            await self._audit_invalid(request, policy, exc)
            return Decision.deny(DenyReason.INVALID_IDENTIFIER, detail=str(exc))
        if decision.allowed:
            logger.debug("Admitted %s on %s", request.ip, policy.name)
        return decision

    async def record_attempt(
        self,
        request: AdmissionRequest,
        success: bool,
    ) -> LockoutStatus:
        """Report an authentication outcome for ``request.account_key``."""
        return await self.lockout.record_attempt(
            request.ip, request.account_key or "", success, request.user_agent
        )

    async def record_token_refresh(self, request: AdmissionRequest) -> None:
        await self.audit.emit(
            SecurityEventType.TOKEN_REFRESH,
            request.ip,
            account_key=request.account_key,
            user_agent_hash=fingerprint_user_agent(request.user_agent),
        )

    async def is_ip_allowed(self, ip: str) -> bool:
        return await self.ip_access.is_allowed(ip)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def _check_ip(
        self, request: AdmissionRequest, policy: EndpointPolicy, client: ClientIdentifier
    ) -> Optional[Decision]:
        if policy.skip_ip_check:
            return None
        try:
            allowed = await self.ip_access.is_allowed(client.ip)
        except StoreUnavailable as exc:
            logger.error("IP check failed closed for %s: %s", client.ip, exc)
            return Decision.deny(DenyReason.STORE_UNAVAILABLE, detail="IP access state unavailable")
        if allowed:
            return None
        await self.audit.emit(
            SecurityEventType.IP_BLOCKED,
            client.ip,
            account_key=request.account_key,
            user_agent_hash=client.user_agent_hash,
            reason="ip_not_allowed",
            endpoint=policy.name,
        )
        return Decision.deny(DenyReason.IP_BLOCKED, detail="IP address not allowed")

    async def _check_lockout(
        self, request: AdmissionRequest, policy: EndpointPolicy, client: ClientIdentifier
    ) -> Optional[Decision]:
        if not policy.authenticates or not request.account_key:
            return None
        account = normalize_account_key(request.account_key)
        try:
            lockout = await self.lockout.get_lockout(account)
        except StoreUnavailable as exc:
            logger.error("Lockout check failed closed for %s: %s", account, exc)
            return Decision.deny(DenyReason.STORE_UNAVAILABLE, detail="lockout state unavailable")
        if lockout is None:
            return None
        await self.audit.emit(
            SecurityEventType.LOGIN_FAILED,
            client.ip,
            account_key=account,
            user_agent_hash=client.user_agent_hash,
            reason="account_locked",
            endpoint=policy.name,
        )
        remaining = lockout.locked_until.timestamp() - self._clock()
        return Decision.deny(
            DenyReason.ACCOUNT_LOCKED,
            detail="Account temporarily locked",
            retry_after=max(1, math.ceil(remaining)),
        )

    async def _check_rate_limit(
        self, request: AdmissionRequest, policy: EndpointPolicy, client: ClientIdentifier
    ) -> Optional[Decision]:
        if policy.skip_if is not None and policy.skip_if(request):
            return None
        decision = await self.rate_limiter.check_and_consume(policy.purpose, client)
        if decision.allowed:
            return None
        if decision.reason is DenyReason.RATE_LIMITED:
            await self.audit.emit(
                SecurityEventType.RATE_LIMITED,
                client.ip,
                account_key=request.account_key,
                user_agent_hash=client.user_agent_hash,
                purpose=policy.purpose,
                endpoint=policy.name,
            )
        return decision

    async def _audit_invalid(
        self, request: AdmissionRequest, policy: EndpointPolicy, exc: InvalidIdentifier
    ) -> None:
        event_type = (
            SecurityEventType.IP_BLOCKED if exc.kind == "ip" else SecurityEventType.LOGIN_FAILED
        )
        await self.audit.emit(
            event_type,
            (request.ip or "")[:64],
            user_agent_hash=fingerprint_user_agent(request.user_agent),
            reason="invalid_identifier",
            identifier=exc.kind,
            endpoint=policy.name,
        )
