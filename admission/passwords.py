from __future__ import annotations

import re

from .config import SecurityConfig

# At least 8 characters: one lowercase, one uppercase, one digit, one of @$!%*?&
_STRONG_PASSWORD = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,}$")

# bcrypt only looks at the first 72 bytes and refuses anything longer
MAX_PASSWORD_BYTES = 72


def password_too_long(password: str) -> bool:
    return len((password or "").encode("utf-8")) > MAX_PASSWORD_BYTES


def validate_password_strength(password: str, config: SecurityConfig) -> bool:
    """Used by credential collaborators; always passes when strong passwords are not required."""
    if not config.require_strong_passwords:
        return True
    return _STRONG_PASSWORD.match(password or "") is not None
