"""Request admission control: IP access, rate limits, account lockout, audit."""

__version__ = "0.1.0"
