"""Settings for the session store and its front-end adapter.

Settings are Pydantic models so they validate on construction and can be
loaded from a YAML file::

    database_url: postgresql+psycopg://app@db/app
    table_name: sessions
    lock_enabled: true
    max_lifetime: 1800
    cookie:
      name: SESSIONID
      secure: true

Classes
-------
- CookieSettings        — cookie attributes used by the middleware
- SessionStoreSettings  — storage, locking and expiry settings

Functions
---------
- load_settings — read and validate a YAML settings file
"""
from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.engine import Connection

from db_session_handler.errors import ConfigurationError
from db_session_handler.identifiers import MIN_SESSION_ID_LENGTH
from db_session_handler.storage.sql import SQLBackend


class CookieSettings(BaseModel):
    """Attributes of the session cookie.

    Parameters
    ----------
    name:
        Cookie name carrying the session ID.
    lifetime:
        Cookie ``Max-Age`` in seconds.
    path, domain, secure, httponly:
        Standard cookie attributes.
    autorefresh:
        When True, the cookie is re-sent on every request so its lifetime
        slides with activity.
    """

    name: str = "SESSIONID"
    lifetime: int = Field(default=60 * 30, ge=0)
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    httponly: bool = True
    autorefresh: bool = True


class SessionStoreSettings(BaseModel):
    """Storage, locking and expiry configuration."""

    database_url: str = "sqlite:///sessions.db"
    table_name: str = "sessions"
    lock_enabled: bool = True
    session_id_length: int = MIN_SESSION_ID_LENGTH
    max_lifetime: int = 60 * 30
    gc_probability: float = 0.01
    cookie: CookieSettings = Field(default_factory=CookieSettings)

    model_config = {"extra": "forbid"}

    @field_validator("table_name")
    @classmethod
    def _table_name_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Table name cannot be empty")
        return value

    @field_validator("session_id_length")
    @classmethod
    def _session_id_length_floor(cls, value: int) -> int:
        if value < MIN_SESSION_ID_LENGTH:
            raise ValueError(
                f"Session ID length cannot be less than {MIN_SESSION_ID_LENGTH}"
            )
        return value

    @field_validator("max_lifetime")
    @classmethod
    def _max_lifetime_not_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_lifetime cannot be negative")
        return value

    @field_validator("gc_probability")
    @classmethod
    def _gc_probability_range(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("gc_probability must be between 0 and 1")
        return value

    def build_backend(self, connection: Connection) -> SQLBackend:
        """Return an ``SQLBackend`` on ``connection`` configured from these settings."""
        return SQLBackend(
            connection,
            lock_enabled=self.lock_enabled,
            session_id_length=self.session_id_length,
            table_name=self.table_name,
        )


def load_settings(path: str | Path) -> SessionStoreSettings:
    """Read a YAML settings file.

    Parameters
    ----------
    path:
        Path to the YAML document.  An empty document yields the defaults.

    Returns
    -------
    SessionStoreSettings

    Raises
    ------
    ConfigurationError
        If the file cannot be read or parsed, or a value is invalid.
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
        data = yaml.safe_load(raw) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read settings from {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")
    try:
        return SessionStoreSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc
