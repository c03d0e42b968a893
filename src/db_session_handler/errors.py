"""Exception hierarchy for db-session-handler.

Logical absence of a session (unknown or expired id) is never an exception:
it is reported as ``None`` / ``b""`` / ``False`` by the operation concerned.

Classes
-------
- SessionStoreError   — root of the hierarchy
- ConfigurationError  — invalid construction-time configuration
- BackendError        — a storage statement or transaction failed
- EngineClosedError   — a closed SessionEngine was used again
"""
from __future__ import annotations


class SessionStoreError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(SessionStoreError, ValueError):
    """Raised at construction when a setting cannot be honoured."""


class BackendError(SessionStoreError):
    """Raised when the storage backend fails to execute an operation.

    Parameters
    ----------
    operation:
        Name of the backend operation that failed (``"select"``,
        ``"save"``, ``"commit"`` ...).
    message:
        Human readable description of the failure.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class EngineClosedError(SessionStoreError, RuntimeError):
    """Raised when a SessionEngine is used after ``close()``."""

    def __init__(self) -> None:
        super().__init__("SessionEngine is closed; create a new engine per request.")
