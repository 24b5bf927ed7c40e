"""
auth/principals.py — Principal lookup collaborator
===================================================
The admission engine never reads user records itself. Login routes look
a principal up here, verify the password, and report the outcome.
Hosts plug in their own directory; the in-memory one serves tests and
single-process deployments.
"""
from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional, Protocol

from ..identity import normalize_account_key
from .core import hash_password, verify_password


@dataclass
class Principal:
    identity: str
    password_hash: str
    is_active: bool = True

    def check_password(self, plain: str) -> bool:
        return self.is_active and verify_password(plain, self.password_hash)


class PrincipalExists(Exception):
    """Raised by ``add`` when the identity is already registered."""


class PrincipalDirectory(Protocol):
    def find_by_identity(self, identity: str) -> Optional[Principal]:
        ...

    def add(self, identity: str, password: str) -> Principal:
        ...


class InMemoryPrincipalDirectory:
    def __init__(self) -> None:
        self._lock = Lock()
        self._principals: Dict[str, Principal] = {}

    def find_by_identity(self, identity: str) -> Optional[Principal]:
        with self._lock:
            return self._principals.get(normalize_account_key(identity))

    def add(self, identity: str, password: str) -> Principal:
        """Register a principal. Raises PrincipalExists if the identity is taken."""
        key = normalize_account_key(identity)
        principal = Principal(identity=key, password_hash=hash_password(password))
        with self._lock:
            if key in self._principals:
                raise PrincipalExists(key)
            self._principals[key] = principal
        return principal
