"""Convenience API for db-session-handler.

Example
-------
::

    from db_session_handler import SessionStore

    store = SessionStore("postgresql+psycopg://app@db/app")
    store.create_schema()
    with store.engine_session() as engine:
        payload = engine.read(session_id)

"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from db_session_handler.config import SessionStoreSettings
from db_session_handler.middleware.session_middleware import SessionMiddleware
from db_session_handler.session.engine import SessionEngine
from db_session_handler.storage.sql import SQLBackend


def _connect_args(database_url: str) -> dict[str, object]:
    if database_url.startswith("sqlite"):
        # One request's connection may be handed between threads.
        return {"check_same_thread": False}
    return {}


class SessionStore:
    """Owns a database engine and hands out one connection per request.

    Parameters
    ----------
    database_url:
        SQLAlchemy URL.  Overrides ``settings.database_url`` when given.
    settings:
        Store settings.  Defaults to ``SessionStoreSettings()``.
    engine:
        An existing SQLAlchemy ``Engine`` to use instead of creating one.
    """

    def __init__(
        self,
        database_url: str | None = None,
        settings: SessionStoreSettings | None = None,
        engine: Engine | None = None,
    ) -> None:
        settings = settings or SessionStoreSettings()
        if database_url is not None:
            settings = settings.model_copy(update={"database_url": database_url})
        self.settings = settings
        self._engine = engine or create_engine(
            settings.database_url,
            connect_args=_connect_args(settings.database_url),
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    def backend_for(self, connection: Connection) -> SQLBackend:
        return self.settings.build_backend(connection)

    def create_schema(self) -> None:
        """Create the sessions table if it does not exist."""
        with self._engine.connect() as connection:
            self.backend_for(connection).create_schema()

    @contextmanager
    def backend(self) -> Iterator[SQLBackend]:
        """Yield a backend on a freshly checked-out connection."""
        with self._engine.connect() as connection:
            yield self.backend_for(connection)

    @contextmanager
    def engine_session(self) -> Iterator[SessionEngine]:
        """Yield an opened ``SessionEngine``; it is closed and its connection returned on exit."""
        with self.backend() as backend:
            with SessionEngine(backend, max_lifetime=self.settings.max_lifetime) as engine:
                yield engine

    def middleware(self) -> SessionMiddleware:
        """Return a ``SessionMiddleware`` using one connection per request."""
        return SessionMiddleware(self.backend, settings=self.settings)

    def dispose(self) -> None:
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"SessionStore(url={self._engine.url!r})"
