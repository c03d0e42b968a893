"""Serialization of concurrent requests sharing a session ID.

Each request gets its own SessionEngine and InMemoryBackend over one shared
InMemoryStore, which provides real row locks.
"""
from __future__ import annotations

import threading

import pytest

from db_session_handler.errors import BackendError
from db_session_handler.session.engine import SessionEngine
from db_session_handler.storage.memory import InMemoryBackend, InMemoryStore

from tests.helpers import FakeClock

_BLOCK_WINDOW = 0.2
_JOIN_TIMEOUT = 5.0


def _engine(store: InMemoryStore, clock: FakeClock, **kwargs: object) -> SessionEngine:
    return SessionEngine(InMemoryBackend(store, clock=clock, **kwargs))  # type: ignore[arg-type]


class _Request(threading.Thread):
    """Run one read/append/write request cycle in a background thread."""

    def __init__(self, engine: SessionEngine, session_id: str, suffix: bytes) -> None:
        super().__init__(daemon=True)
        self.engine = engine
        self.session_id = session_id
        self.suffix = suffix
        self.observed: bytes | None = None
        self.done = threading.Event()

    def run(self) -> None:
        with self.engine:
            self.observed = self.engine.read(self.session_id)
            self.engine.write(self.session_id, self.observed + self.suffix)
        self.done.set()


class TestLockingSerialization:
    def test_second_reader_blocks_until_first_closes(
        self, store: InMemoryStore, clock: FakeClock, session_id: str
    ) -> None:
        first = _engine(store, clock)
        assert first.read(session_id) == b""
        first.write(session_id, b"A")

        second = _Request(_engine(store, clock), session_id, b"B")
        second.start()
        assert second.done.wait(_BLOCK_WINDOW) is False

        first.close()
        second.join(_JOIN_TIMEOUT)
        assert second.done.is_set()
        assert second.observed == b"A"
        assert store.get(session_id).data == b"AB"  # type: ignore[union-attr]

    def test_no_lost_updates_under_contention(
        self, store: InMemoryStore, clock: FakeClock, session_id: str
    ) -> None:
        requests = [
            _Request(_engine(store, clock), session_id, bytes([ord("a") + i]))
            for i in range(10)
        ]
        for request in requests:
            request.start()
        for request in requests:
            request.join(_JOIN_TIMEOUT)
        stored = store.get(session_id)
        assert stored is not None
        assert sorted(stored.data) == sorted(b"abcdefghij")

    def test_distinct_sessions_do_not_block(
        self, store: InMemoryStore, clock: FakeClock
    ) -> None:
        first = _engine(store, clock)
        first.read("session-one")

        other = _Request(_engine(store, clock), "session-two", b"x")
        other.start()
        assert other.done.wait(_JOIN_TIMEOUT) is True
        first.close()

    def test_without_locking_readers_do_not_block(
        self, store: InMemoryStore, clock: FakeClock, session_id: str
    ) -> None:
        first = _engine(store, clock, lock_enabled=False)
        first.read(session_id)

        second = _Request(_engine(store, clock, lock_enabled=False), session_id, b"B")
        second.start()
        assert second.done.wait(_JOIN_TIMEOUT) is True
        first.close()

    def test_without_locking_last_write_wins(
        self, store: InMemoryStore, clock: FakeClock, session_id: str
    ) -> None:
        first = _engine(store, clock, lock_enabled=False)
        second = _engine(store, clock, lock_enabled=False)
        first.read(session_id)
        second.read(session_id)
        first.write(session_id, b"first")
        second.write(session_id, b"second")
        first.close()
        second.close()
        assert store.get(session_id).data == b"second"  # type: ignore[union-attr]

    def test_lock_wait_timeout_surfaces_as_backend_error(
        self, store: InMemoryStore, clock: FakeClock, session_id: str
    ) -> None:
        holder = _engine(store, clock)
        holder.read(session_id)
        waiter = _engine(store, clock, lock_timeout=0.05)
        with pytest.raises(BackendError):
            waiter.read(session_id)
        waiter.close()
        holder.close()

    def test_lock_released_when_request_fails(
        self, store: InMemoryStore, clock: FakeClock, session_id: str
    ) -> None:
        with pytest.raises(RuntimeError):
            with _engine(store, clock) as failing:
                failing.read(session_id)
                raise RuntimeError("handler crashed")
        with _engine(store, clock, lock_timeout=0.5) as next_request:
            assert next_request.read(session_id) == b""
