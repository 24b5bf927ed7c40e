from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import FrozenSet, List, Mapping

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"

# Fixed policy constants for the auth purposes (milliseconds, requests)
LOGIN_THROTTLE = (60_000, 5)
REFRESH_THROTTLE = (60_000, 10)

# Cross-account escalation: more than N lockouts from one IP inside the window
IP_ESCALATION_THRESHOLD = 20
IP_ESCALATION_WINDOW_SECONDS = 15 * 60


class Settings(BaseSettings):
    """Environment-driven settings. Names match the deployment env keys."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", validate_default=True)

    # Lockout
    max_login_attempts: int = 5
    lockout_duration: int = 15  # minutes

    # IP lists (comma separated)
    allowed_ips: str = ""
    blocked_ips: str = ""

    # Consumed by the credential and token collaborators
    require_strong_passwords: bool = True
    session_timeout: int = 480  # minutes

    # Throttling ("short" and "medium" purposes)
    throttle_ttl: int = 60_000  # ms
    throttle_limit: int = 30
    throttle_ttl_medium: int = 300_000  # ms
    throttle_limit_medium: int = 100
    rate_limit_fail_open: bool = False

    # Store
    store_url: str = "memory://"

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = ["*"]
    trust_forwarded_headers: bool = True
    endpoint_policies_path: str = ""

    # Token collaborator
    jwt_secret: str = _DEFAULT_JWT_SECRET

    @field_validator(
        "max_login_attempts",
        "lockout_duration",
        "session_timeout",
        "throttle_ttl",
        "throttle_limit",
        "throttle_ttl_medium",
        "throttle_limit_medium",
    )
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set the JWT_SECRET env var."
            )
        return v


def load_settings(**overrides) -> Settings:
    """Build Settings, turning validation failures into ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


@lru_cache
def get_settings() -> Settings:
    return load_settings()


# ---------------------------------------------------------------------------
# Immutable policy value handed to every component
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ThrottlePolicy:
    """Fixed-window quota for one purpose."""

    window_seconds: float
    limit: int


def _default_throttles() -> Mapping[str, ThrottlePolicy]:
    return {
        "short": ThrottlePolicy(60.0, 30),
        "medium": ThrottlePolicy(300.0, 100),
        "login": ThrottlePolicy(LOGIN_THROTTLE[0] / 1000, LOGIN_THROTTLE[1]),
        "refresh": ThrottlePolicy(REFRESH_THROTTLE[0] / 1000, REFRESH_THROTTLE[1]),
    }


@dataclass(frozen=True)
class SecurityConfig:
    max_login_attempts: int = 5
    lockout_minutes: int = 15
    allowed_ips: FrozenSet[str] = frozenset()
    blocked_ips: FrozenSet[str] = frozenset()
    require_strong_passwords: bool = True
    session_timeout_minutes: int = 480
    throttles: Mapping[str, ThrottlePolicy] = field(default_factory=_default_throttles)
    rate_limit_fail_open: bool = False
    ip_escalation_threshold: int = IP_ESCALATION_THRESHOLD
    ip_escalation_window_seconds: float = IP_ESCALATION_WINDOW_SECONDS

    def __post_init__(self) -> None:
        if self.max_login_attempts < 1:
            raise ConfigurationError("max_login_attempts must be at least 1")
        if self.lockout_minutes < 1:
            raise ConfigurationError("lockout_minutes must be at least 1")
        for purpose, policy in self.throttles.items():
            if policy.limit < 1 or policy.window_seconds <= 0:
                raise ConfigurationError(f"Invalid throttle policy for {purpose!r}: {policy}")
        object.__setattr__(self, "allowed_ips", frozenset(self.allowed_ips))
        object.__setattr__(self, "blocked_ips", frozenset(self.blocked_ips))
        object.__setattr__(self, "throttles", MappingProxyType(dict(self.throttles)))

    @property
    def lockout_seconds(self) -> float:
        return self.lockout_minutes * 60.0

    def throttle(self, purpose: str) -> ThrottlePolicy:
        try:
            return self.throttles[purpose]
        except KeyError:
            raise ConfigurationError(f"No throttle policy configured for purpose {purpose!r}") from None

    def redacted(self) -> dict:
        """Operator view of the policy. Lists are reported as counts only."""
        return {
            "max_login_attempts": self.max_login_attempts,
            "lockout_minutes": self.lockout_minutes,
            "allowed_ip_count": len(self.allowed_ips),
            "blocked_ip_count": len(self.blocked_ips),
            "require_strong_passwords": self.require_strong_passwords,
            "session_timeout_minutes": self.session_timeout_minutes,
            "throttles": {
                name: {"window_seconds": p.window_seconds, "limit": p.limit}
                for name, p in sorted(self.throttles.items())
            },
            "rate_limit_fail_open": self.rate_limit_fail_open,
        }


def parse_ip_list(raw: str) -> FrozenSet[str]:
    """Parse a comma list of addresses into their canonical text form."""
    result = set()
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            result.add(str(ipaddress.ip_address(item)))
        except ValueError:
            raise ConfigurationError(f"Malformed IP address in list: {item!r}") from None
    return frozenset(result)


def load_security_config(settings: Settings) -> SecurityConfig:
    """Convert process settings into the immutable SecurityConfig."""
    throttles = dict(_default_throttles())
    throttles["short"] = ThrottlePolicy(settings.throttle_ttl / 1000, settings.throttle_limit)
    throttles["medium"] = ThrottlePolicy(settings.throttle_ttl_medium / 1000, settings.throttle_limit_medium)
    return SecurityConfig(
        max_login_attempts=settings.max_login_attempts,
        lockout_minutes=settings.lockout_duration,
        allowed_ips=parse_ip_list(settings.allowed_ips),
        blocked_ips=parse_ip_list(settings.blocked_ips),
        require_strong_passwords=settings.require_strong_passwords,
        session_timeout_minutes=settings.session_timeout,
        throttles=throttles,
        rate_limit_fail_open=settings.rate_limit_fail_open,
    )
