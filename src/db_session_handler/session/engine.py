"""Per-request session lifecycle over a storage backend.

A :class:`SessionEngine` serves exactly one request.  The first ``read``
(or ``validate_once``) begins a transaction when the backend locks rows,
loads the payload once and caches it; ``close`` commits, releasing the row
lock, and then runs any requested garbage collection.

Use it as a context manager so ``close`` runs on every exit path::

    with SessionEngine(backend, max_lifetime=1800) as engine:
        data = engine.read(session_id)
        engine.write(session_id, data + b"...")

Classes
-------
- EngineState    — lifecycle states of an engine
- SessionEngine  — read-once / write-once session access for one request
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum

from db_session_handler.errors import BackendError, ConfigurationError, EngineClosedError
from db_session_handler.identifiers import SessionIdGenerator
from db_session_handler.storage.base import StorageBackend

logger = logging.getLogger(__name__)

DEFAULT_MAX_LIFETIME: int = 60 * 30


class EngineState(str, Enum):
    """Lifecycle states of a :class:`SessionEngine`."""

    IDLE = "idle"
    OPENED = "opened"
    LOCKED = "locked"
    LOADED = "loaded"
    CLOSED = "closed"


class SessionEngine:
    """Serialized, cached access to one session for the duration of a request.

    Parameters
    ----------
    backend:
        Storage backend bound to this request's connection.
    max_lifetime:
        Default number of seconds after which an untouched session is
        expired.  Used by ``read``, ``validate_once`` and deferred gc.
    generator:
        Identifier generator used by :meth:`generate_id`.

    Raises
    ------
    ConfigurationError
        If ``max_lifetime`` is negative.
    """

    def __init__(
        self,
        backend: StorageBackend,
        max_lifetime: int = DEFAULT_MAX_LIFETIME,
        generator: SessionIdGenerator | None = None,
    ) -> None:
        if max_lifetime < 0:
            raise ConfigurationError(f"max_lifetime cannot be negative, got {max_lifetime}")
        self._backend = backend
        self._max_lifetime = max_lifetime
        self._generator = generator or SessionIdGenerator()
        self._state = EngineState.IDLE
        self._cached_payload: bytes | None = None
        self._row_found = False
        self._lock_held = False
        self._validated = False
        self._gc_requested = False
        self._gc_max_lifetime = max_lifetime

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def max_lifetime(self) -> int:
        return self._max_lifetime

    @property
    def cached_payload(self) -> bytes | None:
        return self._cached_payload

    @property
    def lock_held(self) -> bool:
        return self._lock_held

    @property
    def gc_requested(self) -> bool:
        return self._gc_requested

    @property
    def validated(self) -> bool:
        return self._validated

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_usable(self) -> None:
        if self._state is EngineState.CLOSED:
            raise EngineClosedError()
        if self._state is EngineState.IDLE:
            self.open()

    def _load(self, session_id: str, max_lifetime: int | None) -> bytes:
        """Load and cache the payload on first use; later calls hit the cache."""
        self._ensure_usable()
        if self._cached_payload is not None:
            return self._cached_payload

        lifetime = self._max_lifetime if max_lifetime is None else max_lifetime
        if self._backend.is_locking_enabled() and not self._backend.in_transaction():
            self._backend.begin_transaction()
            self._lock_held = True
            self._state = EngineState.LOCKED
            logger.debug("Began locking transaction for session %s", session_id[:8])

        payload = self._backend.select(session_id, lifetime)
        self._row_found = payload is not None
        self._cached_payload = payload if payload is not None else b""
        self._state = EngineState.LOADED
        logger.debug(
            "Loaded session %s (%s)", session_id[:8], "found" if self._row_found else "absent"
        )
        return self._cached_payload

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> bool:
        """Mark the engine opened.  Backends connect lazily, so this never fails."""
        if self._state is EngineState.CLOSED:
            raise EngineClosedError()
        if self._state is EngineState.IDLE:
            self._state = EngineState.OPENED
        return True

    def read(self, session_id: str, max_lifetime: int | None = None) -> bytes:
        """Return the session payload, loading it from the backend at most once.

        Parameters
        ----------
        session_id:
            The session to read.
        max_lifetime:
            Override the engine's default lifetime for this load.

        Returns
        -------
        bytes
            The stored payload, or ``b""`` when the session does not exist
            or has expired.

        Raises
        ------
        BackendError
            If the backend fails.  Nothing is cached in that case, so a
            storage outage is never mistaken for an empty session.
        """
        return self._load(session_id, max_lifetime)

    def write(self, session_id: str, data: bytes) -> bool:
        """Persist ``data`` under ``session_id``.  No prior ``read`` is required."""
        self._ensure_usable()
        return self._backend.save(session_id, data)

    def destroy(self, session_id: str) -> bool:
        """Delete ``session_id``.  Any held lock is released by ``close``."""
        self._ensure_usable()
        return self._backend.delete(session_id)

    def request_gc(self, max_lifetime: int | None = None) -> bool:
        """Ask for garbage collection to run after the transaction commits."""
        self._ensure_usable()
        self._gc_requested = True
        if max_lifetime is not None:
            self._gc_max_lifetime = max_lifetime
        return True

    def validate_once(self, session_id: str, max_lifetime: int | None = None) -> bool:
        """Return True if a live row exists for ``session_id``.

        Loads the session through the same path as :meth:`read`, so the
        payload is cached and, with locking, the row is locked.  Callers
        discard ``session_id`` and mint a new one when this returns False.
        """
        self._load(session_id, max_lifetime)
        self._validated = True
        return self._row_found

    def generate_id(self) -> str:
        """Return a new identifier sized for this engine's backend."""
        return self._generator.generate(self._backend.session_id_length())

    def close(self) -> bool:
        """Commit, run deferred gc, and reset per-request state.

        In-memory state is reset even when the commit fails; the commit
        error is then re-raised.  A failing deferred gc is logged and
        ignored.

        Returns
        -------
        bool
            Always True when no commit error is raised.
        """
        if self._state is EngineState.CLOSED:
            return True
        gc_requested = self._gc_requested
        try:
            if self._backend.is_locking_enabled() and self._backend.in_transaction():
                self._backend.commit()
                logger.debug("Committed session transaction")
        finally:
            self._cached_payload = None
            self._row_found = False
            self._lock_held = False
            self._validated = False
            self._gc_requested = False
            self._state = EngineState.CLOSED

        if gc_requested:
            try:
                self._backend.gc(self._gc_max_lifetime)
            except BackendError as exc:
                logger.warning("Deferred session gc failed: %s", exc)
        return True

    # ------------------------------------------------------------------
    # Scoped use
    # ------------------------------------------------------------------

    @contextmanager
    def request(self) -> Iterator[SessionEngine]:
        """Open the engine and guarantee ``close`` on every exit path."""
        self.open()
        try:
            yield self
        finally:
            self.close()

    def __enter__(self) -> SessionEngine:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SessionEngine(state={self._state.value!r}, backend={self._backend!r})"
