from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Audit facts
# ---------------------------------------------------------------------------

class SecurityEventType(str, Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    IP_BLOCKED = "IP_BLOCKED"
    RATE_LIMITED = "RATE_LIMITED"
    TOKEN_REFRESH = "TOKEN_REFRESH"


class SecurityEvent(BaseModel):
    """One entry of the append-only security audit trail."""

    type: SecurityEventType
    ip: str
    account_key: Optional[str] = None
    user_agent_hash: Optional[str] = Field(
        default=None,
        description="Digest of the client user agent; the raw string is never stored.",
    )
    timestamp: datetime = Field(default_factory=utcnow)
    detail: Dict[str, Any] = Field(default_factory=dict)


class LoginAttempt(BaseModel):
    """Immutable record of one authentication attempt."""

    ip: str
    account_key: str
    success: bool
    user_agent_hash: str
    timestamp: datetime = Field(default_factory=utcnow)


class AccountLockout(BaseModel):
    """Stored only while an account is locked; absence means unlocked."""

    account_key: str
    locked_until: datetime
    attempt_count: int = Field(..., ge=1)


# ---------------------------------------------------------------------------
# Admission verdicts
# ---------------------------------------------------------------------------

class DenyReason(str, Enum):
    IP_BLOCKED = "ip_blocked"
    ACCOUNT_LOCKED = "account_locked"
    RATE_LIMITED = "rate_limited"
    INVALID_IDENTIFIER = "invalid_identifier"
    STORE_UNAVAILABLE = "store_unavailable"


class Decision(BaseModel):
    """Verdict returned to the request boundary. Denial is a value, not an error."""

    allowed: bool
    reason: Optional[DenyReason] = None
    detail: Optional[str] = None
    retry_after: Optional[int] = Field(
        default=None,
        description="Seconds until the denial is expected to lapse, when known.",
    )

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        detail: Optional[str] = None,
        retry_after: Optional[int] = None,
    ) -> "Decision":
        return cls(allowed=False, reason=reason, detail=detail, retry_after=retry_after)


class LockoutStatus(BaseModel):
    """Outcome of recording an attempt, or a lookup of an account's state."""

    account_key: str
    locked: bool
    failure_count: int = 0
    locked_until: Optional[datetime] = None
