from __future__ import annotations

from datetime import datetime, timedelta, timezone

import bcrypt
from jose import jwt

from ..passwords import password_too_long

# ---------------------------------------------------------------------------
# Password hashing (credential verifier collaborator)
# ---------------------------------------------------------------------------

def hash_password(plain: str) -> str:
    """Raises ValueError for passwords bcrypt cannot hash in full."""
    if password_too_long(plain):
        raise ValueError("Password exceeds the bcrypt input limit")
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    if password_too_long(plain):
        return False
    return bcrypt.checkpw(plain.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT (token issuer collaborator)
# ---------------------------------------------------------------------------

ALGORITHM = "HS256"


class TokenIssuer:
    """Issues session tokens that live for ``session_timeout_minutes``."""

    def __init__(self, secret: str, session_timeout_minutes: int) -> None:
        self._secret = secret
        self.expire_minutes = session_timeout_minutes

    def issue(self, subject: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": subject,
            "exp": now + timedelta(minutes=self.expire_minutes),
            "iat": now,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def decode(self, token: str) -> dict:
        """Decode and validate a token. Raises JWTError on failure."""
        return jwt.decode(token, self._secret, algorithms=[ALGORITHM])
