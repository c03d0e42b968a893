"""Per-request session lifecycle."""
from __future__ import annotations

from db_session_handler.session.engine import DEFAULT_MAX_LIFETIME, EngineState, SessionEngine

__all__ = ["DEFAULT_MAX_LIFETIME", "EngineState", "SessionEngine"]
