"""Request-cycle binding of the session engine.

Loads the session at the start of a request and persists it at the end,
deciding which cookie the response should carry.  It is intentionally
framework-agnostic: callers read the cookie value from their request
object, call the hooks at the right points in their own pipeline, and copy
the returned :class:`SessionCookie` onto their response.

Payloads are stored as UTF-8 JSON objects.

Classes
-------
- SessionCookie      — cookie the response should set
- RequestSession     — dict-like view of one request's session data
- SessionMiddleware  — before/after request hooks for session management
"""
from __future__ import annotations

import json
import logging
import random
from collections.abc import Iterator, MutableMapping
from contextlib import AbstractContextManager, ExitStack, contextmanager
from dataclasses import dataclass
from typing import Any, Callable

from db_session_handler.config import CookieSettings, SessionStoreSettings
from db_session_handler.identifiers import SessionIdGenerator
from db_session_handler.session.engine import SessionEngine
from db_session_handler.storage.base import StorageBackend

logger = logging.getLogger(__name__)

BackendScope = Callable[[], AbstractContextManager[StorageBackend]]


@dataclass(frozen=True)
class SessionCookie:
    """A cookie to set on the response."""

    name: str
    value: str
    max_age: int
    path: str = "/"
    domain: str | None = None
    secure: bool = False
    httponly: bool = True

    @classmethod
    def for_session(cls, settings: CookieSettings, session_id: str) -> SessionCookie:
        return cls(
            name=settings.name,
            value=session_id,
            max_age=settings.lifetime,
            path=settings.path,
            domain=settings.domain,
            secure=settings.secure,
            httponly=settings.httponly,
        )

    @classmethod
    def expired(cls, settings: CookieSettings) -> SessionCookie:
        """Return a cookie that makes the client drop its session ID."""
        return cls(
            name=settings.name,
            value="",
            max_age=0,
            path=settings.path,
            domain=settings.domain,
            secure=settings.secure,
            httponly=settings.httponly,
        )


def _decode_payload(payload: bytes, session_id: str) -> dict[str, Any]:
    if not payload:
        return {}
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Discarding undecodable payload for session %s", session_id[:8])
        return {}
    if not isinstance(data, dict):
        logger.warning("Discarding non-object payload for session %s", session_id[:8])
        return {}
    return data


class RequestSession(MutableMapping[str, Any]):
    """Session values for one request, backed by a :class:`SessionEngine`.

    Supports the full mapping protocol plus chainable helpers
    (``set``, ``merge``, ``delete``).  Values must be JSON serialisable.
    """

    def __init__(
        self,
        engine: SessionEngine,
        session_id: str,
        data: dict[str, Any],
        is_new: bool,
        exit_stack: ExitStack,
    ) -> None:
        self._engine = engine
        self._session_id = session_id
        self._data = data
        self._is_new = is_new
        self._stack = exit_stack
        self._stale_ids: list[str] = []
        self._regenerated = False
        self._destroyed = False
        self._finished = False
        self.response_cookie: SessionCookie | None = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_new(self) -> bool:
        """True when the request carried no valid session ID."""
        return self._is_new

    @property
    def regenerated(self) -> bool:
        return self._regenerated

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def finished(self) -> bool:
        return self._finished

    def regenerate(self, delete_old: bool = False) -> str:
        """Move the session data to a freshly generated ID.

        Parameters
        ----------
        delete_old:
            When True, the row stored under the previous ID is deleted at
            the end of the request.

        Returns
        -------
        str
            The new session ID.
        """
        old_id = self._session_id
        self._session_id = self._engine.generate_id()
        self._regenerated = True
        if delete_old:
            self._stale_ids.append(old_id)
        logger.debug("Regenerated session %s -> %s", old_id[:8], self._session_id[:8])
        return self._session_id

    def destroy(self) -> None:
        """Drop all values and delete the session at the end of the request."""
        self._data.clear()
        self._destroyed = True

    # ------------------------------------------------------------------
    # Mapping protocol
    # ------------------------------------------------------------------

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    # ------------------------------------------------------------------
    # Chainable helpers
    # ------------------------------------------------------------------

    def exists(self, key: str) -> bool:
        return key in self._data

    def set(self, key: str, value: Any) -> RequestSession:
        self._data[key] = value
        return self

    def merge(self, key: str, value: Any) -> RequestSession:
        """Merge ``value`` into the existing value for ``key``.

        Dicts are merged recursively and lists are concatenated; any other
        combination replaces the old value.
        """
        old = self._data.get(key)
        if isinstance(old, dict) and isinstance(value, dict):
            value = _merge_dicts(old, value)
        elif isinstance(old, list) and isinstance(value, list):
            value = old + value
        self._data[key] = value
        return self

    def delete(self, key: str) -> RequestSession:
        """Remove ``key`` if present."""
        self._data.pop(key, None)
        return self

    def to_payload(self) -> bytes:
        return json.dumps(self._data, separators=(",", ":"), sort_keys=True).encode("utf-8")

    def __repr__(self) -> str:
        return (
            f"RequestSession(session_id={self._session_id[:8]!r}..., "
            f"keys={len(self._data)}, is_new={self._is_new})"
        )


def _merge_dicts(old: dict[str, Any], new: dict[str, Any]) -> dict[str, Any]:
    merged = dict(old)
    for key, value in new.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


class SessionMiddleware:
    """Load the session before a request and persist it afterwards.

    Parameters
    ----------
    backend_scope:
        Called once per request; returns a context manager yielding the
        storage backend for that request.  Its exit runs after the engine
        has closed, so it is the place to return a connection to its pool.
    settings:
        Expiry, gc and cookie settings.  Defaults to
        ``SessionStoreSettings()``.
    rng:
        Returns a float in ``[0, 1)``; compared with ``gc_probability`` to
        decide whether a request triggers garbage collection.
    generator:
        Identifier generator for new sessions.
    """

    def __init__(
        self,
        backend_scope: BackendScope,
        settings: SessionStoreSettings | None = None,
        rng: Callable[[], float] | None = None,
        generator: SessionIdGenerator | None = None,
    ) -> None:
        self._backend_scope = backend_scope
        self.settings = settings or SessionStoreSettings()
        self._rng = rng or random.random
        self._generator = generator or SessionIdGenerator(self.settings.session_id_length)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def before_request(self, cookie_value: str | None) -> RequestSession:
        """Open the session named by ``cookie_value``.

        A missing cookie, or one that does not resolve to a live session
        (forged, stale or expired), is replaced by a newly generated ID.
        With a locking backend the session row stays locked until
        :meth:`after_request` or :meth:`abort_request`.

        Raises
        ------
        BackendError
            If the storage backend fails.  All resources are released.
        """
        stack = ExitStack()
        try:
            backend = stack.enter_context(self._backend_scope())
            engine = SessionEngine(
                backend,
                max_lifetime=self.settings.max_lifetime,
                generator=self._generator,
            )
            stack.callback(engine.close)
            engine.open()

            is_new = False
            session_id = cookie_value or ""
            if not session_id or not engine.validate_once(session_id):
                if session_id:
                    logger.debug("Rejected unknown session id %s", session_id[:8])
                session_id = engine.generate_id()
                is_new = True
            payload = engine.read(session_id)
        except BaseException:
            stack.close()
            raise

        return RequestSession(
            engine=engine,
            session_id=session_id,
            data=_decode_payload(payload, session_id),
            is_new=is_new,
            exit_stack=stack,
        )

    def after_request(self, session: RequestSession) -> SessionCookie | None:
        """Persist ``session``, release its lock and return the cookie to set.

        Returns
        -------
        SessionCookie | None
            An expired cookie after ``destroy()``, a fresh cookie for new,
            regenerated or auto-refreshed sessions, otherwise None.

        Raises
        ------
        RuntimeError
            If ``session`` was already finished.
        """
        self._check_open(session)
        cookie_settings = self.settings.cookie
        cookie: SessionCookie | None = None
        try:
            engine = session._engine
            if session.destroyed:
                engine.destroy(session.session_id)
                cookie = SessionCookie.expired(cookie_settings)
            else:
                engine.write(session.session_id, session.to_payload())
                for stale_id in session._stale_ids:
                    engine.destroy(stale_id)
                if cookie_settings.autorefresh or session.is_new or session.regenerated:
                    cookie = SessionCookie.for_session(cookie_settings, session.session_id)
            if self._rng() < self.settings.gc_probability:
                engine.request_gc()
        finally:
            session._finished = True
            session._stack.close()
        session.response_cookie = cookie
        return cookie

    def abort_request(self, session: RequestSession) -> None:
        """Release ``session`` without persisting any change."""
        if session.finished:
            return
        session._finished = True
        session._stack.close()

    @contextmanager
    def request(self, cookie_value: str | None) -> Iterator[RequestSession]:
        """Scope one request: persist on success, discard on error.

        The cookie to send is available as ``session.response_cookie``
        once the block exits.
        """
        session = self.before_request(cookie_value)
        try:
            yield session
        except BaseException:
            self.abort_request(session)
            raise
        self.after_request(session)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_open(session: RequestSession) -> None:
        if session.finished:
            raise RuntimeError(
                f"Session {session.session_id[:8]!r} already finished. "
                "Call before_request() to start a new request cycle."
            )
