"""In-memory storage backend.

Sessions live in an :class:`InMemoryStore` shared by every backend instance
that should see the same data, the way requests share one database.  Each
request gets its own :class:`InMemoryBackend`, which tracks its own
transaction and the row locks it holds.  Row locks are real
``threading.Lock`` objects, so concurrent requests for one session
serialize exactly as they would on a database with row locking.

All data is lost when the process exits.  Useful for tests and local
prototyping.

Classes
-------
- InMemoryStore    — shared rows plus per-session row locks
- InMemoryBackend  — per-request backend over an InMemoryStore
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from db_session_handler.errors import BackendError, ConfigurationError
from db_session_handler.identifiers import MIN_SESSION_ID_LENGTH

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class StoredSession:
    """One persisted session row."""

    data: bytes
    last_activity: datetime


@dataclass
class _RowLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class InMemoryStore:
    """Thread-safe dict of session rows with one lock per session ID.

    A row lock exists only while some backend holds or waits for it.

    Parameters
    ----------
    initial_data:
        Optional pre-populated mapping of session IDs to rows.  A shallow
        copy is taken so the caller's dict is not mutated.
    """

    def __init__(self, initial_data: dict[str, StoredSession] | None = None) -> None:
        self._rows: dict[str, StoredSession] = dict(initial_data or {})
        self._row_locks: dict[str, _RowLock] = {}
        self._guard = threading.Lock()

    def acquire_row(self, session_id: str, timeout: float = -1) -> bool:
        """Take the row lock for ``session_id``; False when ``timeout`` expires."""
        with self._guard:
            entry = self._row_locks.setdefault(session_id, _RowLock())
            entry.users += 1
        if entry.lock.acquire(timeout=timeout):
            return True
        with self._guard:
            self._drop_user(session_id, entry)
        return False

    def release_row(self, session_id: str) -> None:
        with self._guard:
            entry = self._row_locks[session_id]
            entry.lock.release()
            self._drop_user(session_id, entry)

    def _drop_user(self, session_id: str, entry: _RowLock) -> None:
        entry.users -= 1
        if entry.users == 0:
            del self._row_locks[session_id]

    def is_locked(self, session_id: str) -> bool:
        with self._guard:
            entry = self._row_locks.get(session_id)
            return entry is not None and entry.lock.locked()

    def lock_count(self) -> int:
        """Number of row locks currently held or waited for."""
        with self._guard:
            return len(self._row_locks)

    def get(self, session_id: str) -> StoredSession | None:
        with self._guard:
            return self._rows.get(session_id)

    def put(self, session_id: str, row: StoredSession) -> None:
        with self._guard:
            self._rows[session_id] = row

    def remove(self, session_id: str) -> None:
        with self._guard:
            self._rows.pop(session_id, None)

    def ids_older_than(self, threshold: datetime) -> list[str]:
        with self._guard:
            return [sid for sid, row in self._rows.items() if row.last_activity < threshold]

    def clear(self) -> None:
        """Remove all stored sessions."""
        with self._guard:
            self._rows.clear()

    def __contains__(self, session_id: object) -> bool:
        with self._guard:
            return session_id in self._rows

    def __len__(self) -> int:
        with self._guard:
            return len(self._rows)

    def __repr__(self) -> str:
        return f"InMemoryStore(sessions={len(self)})"


class InMemoryBackend:
    """Per-request storage backend over a shared :class:`InMemoryStore`.

    Parameters
    ----------
    store:
        The shared store.  A private, empty store is created when omitted.
    lock_enabled:
        When True (default), ``select`` takes the session's row lock and
        holds it until ``commit``.
    session_id_length:
        Identifier length reported to the generator.  At least 256.
    clock:
        Returns the current naive UTC time; override to simulate time.
    lock_timeout:
        Seconds to wait for a row lock before raising ``BackendError``.
        None (default) waits forever.

    Raises
    ------
    ConfigurationError
        If ``session_id_length`` is below 256.
    """

    def __init__(
        self,
        store: InMemoryStore | None = None,
        lock_enabled: bool = True,
        session_id_length: int = MIN_SESSION_ID_LENGTH,
        clock: Callable[[], datetime] | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        if session_id_length < MIN_SESSION_ID_LENGTH:
            raise ConfigurationError(
                f"The value of session ID length cannot be less than {MIN_SESSION_ID_LENGTH}"
            )
        self._store = store if store is not None else InMemoryStore()
        self._lock_enabled = lock_enabled
        self._session_id_length = session_id_length
        self._clock = clock or _utcnow
        self._lock_timeout = lock_timeout
        self._held: set[str] = set()
        self._in_transaction = False
        self.hit_counter = 0

    @property
    def store(self) -> InMemoryStore:
        return self._store

    # ------------------------------------------------------------------
    # Row locks
    # ------------------------------------------------------------------

    def _acquire(self, operation: str, session_id: str) -> None:
        if session_id in self._held:
            return
        timeout = -1 if self._lock_timeout is None else self._lock_timeout
        if not self._store.acquire_row(session_id, timeout=timeout):
            raise BackendError(
                operation, f"lock wait timeout exceeded for session {session_id[:8]!r}"
            )
        self._held.add(session_id)

    def _release_outside_transaction(self, session_id: str) -> None:
        if self._in_transaction or session_id not in self._held:
            return
        self._held.discard(session_id)
        self._store.release_row(session_id)

    def _threshold(self, max_lifetime: int) -> datetime:
        return self._clock() - timedelta(seconds=max_lifetime)

    # ------------------------------------------------------------------
    # StorageBackend interface
    # ------------------------------------------------------------------

    def select(self, session_id: str, max_lifetime: int) -> bytes | None:
        """Return the live payload for ``session_id``, locking the row if enabled."""
        self.hit_counter += 1
        if self._lock_enabled:
            if not self._in_transaction:
                raise BackendError("select", "a locking select requires an active transaction")
            self._acquire("select", session_id)
        row = self._store.get(session_id)
        if row is None or row.last_activity < self._threshold(max_lifetime):
            return None
        return row.data

    def save(self, session_id: str, data: bytes) -> bool:
        """Store ``data`` under ``session_id``, waiting for any foreign row lock."""
        self.hit_counter += 1
        self._acquire("save", session_id)
        try:
            self._store.put(session_id, StoredSession(bytes(data), self._clock()))
        finally:
            self._release_outside_transaction(session_id)
        return True

    def delete(self, session_id: str) -> bool:
        self.hit_counter += 1
        self._acquire("delete", session_id)
        try:
            self._store.remove(session_id)
        finally:
            self._release_outside_transaction(session_id)
        return True

    def gc(self, max_lifetime: int) -> bool:
        """Remove every session whose ``last_activity`` is before the threshold."""
        self.hit_counter += 1
        threshold = self._threshold(max_lifetime)
        removed = 0
        for session_id in self._store.ids_older_than(threshold):
            self._acquire("gc", session_id)
            try:
                row = self._store.get(session_id)
                # Re-check under the lock; the row may have been saved meanwhile.
                if row is not None and row.last_activity < threshold:
                    self._store.remove(session_id)
                    removed += 1
            finally:
                self._release_outside_transaction(session_id)
        logger.debug("gc removed %d expired session(s)", removed)
        return True

    def begin_transaction(self) -> bool:
        if self._in_transaction:
            raise BackendError("begin_transaction", "a transaction is already active")
        self._in_transaction = True
        return True

    def commit(self) -> bool:
        """End the transaction and release every row lock it holds."""
        self._in_transaction = False
        while self._held:
            self._store.release_row(self._held.pop())
        return True

    def in_transaction(self) -> bool:
        return self._in_transaction

    def is_locking_enabled(self) -> bool:
        return self._lock_enabled

    def session_id_length(self) -> int:
        return self._session_id_length

    def __repr__(self) -> str:
        return (
            f"InMemoryBackend(sessions={len(self._store)}, "
            f"lock_enabled={self._lock_enabled})"
        )
