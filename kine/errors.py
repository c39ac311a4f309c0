"""Error taxonomy shared by the remote adapters and the services."""
from __future__ import annotations

from typing import Optional


class KineError(RuntimeError):
    """Base error for every failure surfaced to the user."""


class AuthMissing(KineError):
    """Raised when no valid OAuth token is available; the user must log in again."""


class RemoteUnavailable(KineError):
    """Raised when Google cannot be reached (network or transport failure)."""


class RemoteRejected(KineError):
    """Raised when a Google API answers with an explicit error response."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class DataInconsistent(KineError):
    """Raised when an expected subfolder or journal is missing remotely."""


class ValidationError(KineError):
    """Raised when a required field is missing; never reaches remote calls."""


__all__ = [
    "AuthMissing",
    "DataInconsistent",
    "KineError",
    "RemoteRejected",
    "RemoteUnavailable",
    "ValidationError",
]
