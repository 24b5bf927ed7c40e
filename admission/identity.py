"""
identity.py — Client and account identifiers
=============================================
A client is grouped by network origin plus a short digest of its user
agent, so raw user-agent strings never land in the store.
"""
from __future__ import annotations

import hashlib
import ipaddress
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidIdentifier

UNKNOWN_USER_AGENT = "unknown"
FINGERPRINT_LENGTH = 16
MAX_ACCOUNT_KEY_LENGTH = 254


@dataclass(frozen=True)
class ClientIdentifier:
    ip: str
    user_agent_hash: str


def fingerprint_user_agent(user_agent: Optional[str]) -> str:
    """Fixed-length one-way digest of the raw user agent."""
    raw = user_agent or UNKNOWN_USER_AGENT
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def normalize_ip(ip: Optional[str]) -> str:
    """Return the canonical text form of an IPv4/IPv6 address."""
    if not ip:
        raise InvalidIdentifier("ip", ip or "")
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError:
        raise InvalidIdentifier("ip", ip) from None


def normalize_account_key(account_key: Optional[str]) -> str:
    """Case-fold an identity such as an email address."""
    key = (account_key or "").strip().lower()
    if not key or len(key) > MAX_ACCOUNT_KEY_LENGTH:
        raise InvalidIdentifier("account key", account_key or "")
    if any(ch.isspace() or not ch.isprintable() for ch in key):
        raise InvalidIdentifier("account key", account_key or "")
    return key


def client_identifier(ip: str, user_agent: Optional[str]) -> ClientIdentifier:
    return ClientIdentifier(ip=normalize_ip(ip), user_agent_hash=fingerprint_user_agent(user_agent))


def rate_limit_key(purpose: str, client: ClientIdentifier) -> str:
    return f"throttle_{purpose}:{client.ip}:{client.user_agent_hash}"
