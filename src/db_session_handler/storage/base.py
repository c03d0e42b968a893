"""Storage backend contract.

Every backend stores opaque session payloads keyed by session ID, with a
``last_activity`` timestamp refreshed on every save.  Backends are selected
at construction time and satisfy this protocol structurally; there is no
shared base class.

Classes
-------
- StorageBackend  — protocol for all session storage backends
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for locked reads and writes of raw session payloads.

    One backend instance serves one request at a time.  Concurrency
    between requests is handled by the underlying store, never by the
    backend object itself.

    Any failure of the underlying store is raised as
    :class:`~db_session_handler.errors.BackendError`.  Mutations return
    ``True`` on success.
    """

    def select(self, session_id: str, max_lifetime: int) -> bytes | None:
        """Return the payload for ``session_id``, or None if missing or expired.

        When locking is enabled the row is locked until ``commit`` and a
        transaction must already be active.

        Parameters
        ----------
        session_id:
            The session to read.
        max_lifetime:
            Seconds after which an untouched session counts as expired.
        """
        ...

    def save(self, session_id: str, data: bytes) -> bool:
        """Insert or overwrite ``session_id`` and refresh ``last_activity``.

        The caller generates ``session_id``; backends never do.
        """
        ...

    def delete(self, session_id: str) -> bool:
        """Remove ``session_id``.  A missing row is not an error."""
        ...

    def gc(self, max_lifetime: int) -> bool:
        """Delete every row older than ``max_lifetime`` seconds in one statement."""
        ...

    def begin_transaction(self) -> bool:
        ...

    def commit(self) -> bool:
        ...

    def in_transaction(self) -> bool:
        ...

    def is_locking_enabled(self) -> bool:
        """Return True if ``select`` takes an exclusive row lock."""
        ...

    def session_id_length(self) -> int:
        """Return the identifier length this backend stores."""
        ...
