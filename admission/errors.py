"""
errors.py — Admission error taxonomy
=====================================
Denial is never an exception: the engine returns a ``Decision``.
These types are reserved for operational faults.
"""
from __future__ import annotations


class AdmissionError(Exception):
    """Base class for every error raised by the admission engine."""


class ConfigurationError(AdmissionError):
    """A policy value is malformed or missing. Fatal at startup."""


class StoreUnavailable(AdmissionError):
    """The keyed store could not be reached or answered with an error."""


class InvalidIdentifier(AdmissionError):
    """An IP address or account key failed validation."""

    def __init__(self, kind: str, value: str) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"Invalid {kind}: {value!r}")
