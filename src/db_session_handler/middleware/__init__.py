"""Request-cycle middleware binding sessions to cookies."""
from __future__ import annotations

from db_session_handler.middleware.session_middleware import (
    RequestSession,
    SessionCookie,
    SessionMiddleware,
)

__all__ = ["RequestSession", "SessionCookie", "SessionMiddleware"]
