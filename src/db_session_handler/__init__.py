"""db-session-handler — database-backed session storage with row locking.

Concurrent requests that share a session ID serialize on that session's
row; requests for different sessions never contend.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import db_session_handler
>>> db_session_handler.__version__
'0.1.0'
"""
from __future__ import annotations

__version__: str = "0.1.0"

# Errors
from db_session_handler.errors import (
    BackendError,
    ConfigurationError,
    EngineClosedError,
    SessionStoreError,
)

# Identifiers
from db_session_handler.identifiers import (
    MIN_SESSION_ID_LENGTH,
    SessionIdGenerator,
    generate_session_id,
)

# Storage backends
from db_session_handler.storage.base import StorageBackend
from db_session_handler.storage.memory import InMemoryBackend, InMemoryStore
from db_session_handler.storage.sql import SQLBackend

# Session engine
from db_session_handler.session.engine import EngineState, SessionEngine

# Configuration
from db_session_handler.config import CookieSettings, SessionStoreSettings, load_settings

# Middleware
from db_session_handler.middleware.session_middleware import (
    RequestSession,
    SessionCookie,
    SessionMiddleware,
)

# Convenience
from db_session_handler.convenience import SessionStore

__all__ = [
    "__version__",
    # Errors
    "BackendError",
    "ConfigurationError",
    "EngineClosedError",
    "SessionStoreError",
    # Identifiers
    "MIN_SESSION_ID_LENGTH",
    "SessionIdGenerator",
    "generate_session_id",
    # Storage
    "InMemoryBackend",
    "InMemoryStore",
    "SQLBackend",
    "StorageBackend",
    # Engine
    "EngineState",
    "SessionEngine",
    # Configuration
    "CookieSettings",
    "SessionStoreSettings",
    "load_settings",
    # Middleware
    "RequestSession",
    "SessionCookie",
    "SessionMiddleware",
    # Convenience
    "SessionStore",
]
