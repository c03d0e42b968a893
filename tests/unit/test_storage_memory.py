"""Unit tests for db_session_handler.storage.memory.

Covers the StorageBackend protocol on InMemoryBackend, expiry and gc
boundaries with a simulated clock, and row-lock behaviour across backend
instances sharing one InMemoryStore.
"""
from __future__ import annotations

import threading

import pytest

from db_session_handler.errors import BackendError, ConfigurationError
from db_session_handler.storage.base import StorageBackend
from db_session_handler.storage.memory import InMemoryBackend, InMemoryStore

from tests.helpers import FakeClock


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def backend(store: InMemoryStore, clock: FakeClock) -> InMemoryBackend:
    return InMemoryBackend(store, lock_enabled=False, clock=clock)


@pytest.fixture()
def locking_backend(store: InMemoryStore, clock: FakeClock) -> InMemoryBackend:
    return InMemoryBackend(store, lock_enabled=True, clock=clock)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestInMemoryBackendConstruction:
    def test_satisfies_protocol(self, backend: InMemoryBackend) -> None:
        assert isinstance(backend, StorageBackend)

    def test_default_store_is_private(self) -> None:
        assert InMemoryBackend().store is not InMemoryBackend().store

    def test_session_id_length_default(self, backend: InMemoryBackend) -> None:
        assert backend.session_id_length() == 256

    def test_session_id_length_below_floor_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            InMemoryBackend(session_id_length=255)

    def test_locking_flag(self, backend: InMemoryBackend, locking_backend: InMemoryBackend) -> None:
        assert backend.is_locking_enabled() is False
        assert locking_backend.is_locking_enabled() is True

    def test_repr(self, backend: InMemoryBackend) -> None:
        assert "InMemoryBackend" in repr(backend)


# ---------------------------------------------------------------------------
# save / select / delete
# ---------------------------------------------------------------------------


class TestInMemoryBackendSaveSelect:
    def test_roundtrip(self, backend: InMemoryBackend) -> None:
        backend.save("s1", b"name=alice")
        assert backend.select("s1", 1800) == b"name=alice"

    def test_save_overwrites(self, backend: InMemoryBackend) -> None:
        backend.save("s1", b"original")
        backend.save("s1", b"updated")
        assert backend.select("s1", 1800) == b"updated"

    def test_missing_returns_none(self, backend: InMemoryBackend) -> None:
        assert backend.select("ghost", 1800) is None

    def test_save_refreshes_last_activity(
        self, backend: InMemoryBackend, store: InMemoryStore, clock: FakeClock
    ) -> None:
        backend.save("s1", b"a")
        clock.advance(100)
        backend.save("s1", b"b")
        row = store.get("s1")
        assert row is not None
        assert row.last_activity == clock.now

    def test_delete_removes_row(self, backend: InMemoryBackend) -> None:
        backend.save("s1", b"payload")
        assert backend.delete("s1") is True
        assert backend.select("s1", 1800) is None

    def test_delete_missing_is_not_an_error(self, backend: InMemoryBackend) -> None:
        assert backend.delete("ghost") is True

    def test_hit_counter_counts_statements(self, backend: InMemoryBackend) -> None:
        backend.save("s1", b"x")
        backend.select("s1", 10)
        backend.delete("s1")
        backend.gc(10)
        assert backend.hit_counter == 4


# ---------------------------------------------------------------------------
# Expiry and gc
# ---------------------------------------------------------------------------


class TestInMemoryBackendExpiry:
    def test_row_at_exact_lifetime_is_live(
        self, backend: InMemoryBackend, clock: FakeClock
    ) -> None:
        backend.save("s1", b"x")
        clock.advance(1800)
        assert backend.select("s1", 1800) == b"x"

    def test_row_past_lifetime_is_absent(
        self, backend: InMemoryBackend, clock: FakeClock
    ) -> None:
        backend.save("s1", b"x")
        clock.advance(1801)
        assert backend.select("s1", 1800) is None

    def test_gc_keeps_row_at_threshold(
        self, backend: InMemoryBackend, store: InMemoryStore, clock: FakeClock
    ) -> None:
        backend.save("s1", b"x")
        clock.advance(1800)
        assert backend.gc(1800) is True
        assert "s1" in store

    def test_gc_removes_only_expired_rows(
        self, backend: InMemoryBackend, store: InMemoryStore, clock: FakeClock
    ) -> None:
        backend.save("old", b"x")
        clock.advance(1000)
        backend.save("new", b"y")
        clock.advance(801)
        backend.gc(1800)
        assert "old" not in store
        assert "new" in store
        assert len(store) == 1


# ---------------------------------------------------------------------------
# Transactions and row locks
# ---------------------------------------------------------------------------


class TestInMemoryBackendLocking:
    def test_locking_select_requires_transaction(
        self, locking_backend: InMemoryBackend
    ) -> None:
        with pytest.raises(BackendError, match="transaction"):
            locking_backend.select("s1", 1800)

    def test_transaction_flags(self, locking_backend: InMemoryBackend) -> None:
        assert locking_backend.in_transaction() is False
        assert locking_backend.begin_transaction() is True
        assert locking_backend.in_transaction() is True
        assert locking_backend.commit() is True
        assert locking_backend.in_transaction() is False

    def test_nested_begin_rejected(self, locking_backend: InMemoryBackend) -> None:
        locking_backend.begin_transaction()
        with pytest.raises(BackendError):
            locking_backend.begin_transaction()

    def test_select_holds_row_lock_until_commit(
        self, locking_backend: InMemoryBackend, store: InMemoryStore
    ) -> None:
        locking_backend.begin_transaction()
        locking_backend.select("s1", 1800)
        assert store.is_locked("s1") is True
        locking_backend.commit()
        assert store.is_locked("s1") is False

    def test_lock_wait_timeout(self, store: InMemoryStore, clock: FakeClock) -> None:
        holder = InMemoryBackend(store, clock=clock)
        holder.begin_transaction()
        holder.select("s1", 1800)
        waiter = InMemoryBackend(store, clock=clock, lock_timeout=0.05)
        waiter.begin_transaction()
        with pytest.raises(BackendError, match="lock wait timeout"):
            waiter.select("s1", 1800)
        holder.commit()

    def test_other_sessions_are_not_blocked(self, store: InMemoryStore, clock: FakeClock) -> None:
        holder = InMemoryBackend(store, clock=clock)
        holder.begin_transaction()
        holder.select("s1", 1800)
        other = InMemoryBackend(store, clock=clock, lock_timeout=0.05)
        assert other.save("s2", b"free") is True
        holder.commit()

    def test_save_waits_for_foreign_lock(self, store: InMemoryStore, clock: FakeClock) -> None:
        holder = InMemoryBackend(store, clock=clock)
        holder.begin_transaction()
        holder.select("s1", 1800)

        writer = InMemoryBackend(store, lock_enabled=False, clock=clock)
        done = threading.Event()

        def write() -> None:
            writer.save("s1", b"late")
            done.set()

        thread = threading.Thread(target=write)
        thread.start()
        assert done.wait(0.2) is False
        holder.save("s1", b"first")
        holder.commit()
        thread.join(timeout=5)
        assert done.is_set()
        assert store.get("s1").data == b"late"  # type: ignore[union-attr]

    def test_save_inside_transaction_keeps_lock(
        self, locking_backend: InMemoryBackend, store: InMemoryStore
    ) -> None:
        locking_backend.begin_transaction()
        locking_backend.save("s1", b"x")
        assert store.is_locked("s1") is True
        locking_backend.commit()
        assert store.is_locked("s1") is False

    def test_row_locks_dropped_after_delete_and_gc(
        self, store: InMemoryStore, clock: FakeClock
    ) -> None:
        for index in range(50):
            backend = InMemoryBackend(store, clock=clock)
            backend.begin_transaction()
            backend.select(f"s{index}", 1800)
            backend.save(f"s{index}", b"x")
            backend.commit()
        InMemoryBackend(store, clock=clock).delete("s0")
        clock.advance(1801)
        InMemoryBackend(store, clock=clock).gc(1800)
        assert len(store) == 0
        assert store.lock_count() == 0

    def test_timed_out_waiter_leaves_no_lock(self, store: InMemoryStore, clock: FakeClock) -> None:
        holder = InMemoryBackend(store, clock=clock)
        holder.begin_transaction()
        holder.select("s1", 1800)
        waiter = InMemoryBackend(store, clock=clock, lock_timeout=0.05)
        waiter.begin_transaction()
        with pytest.raises(BackendError):
            waiter.select("s1", 1800)
        assert store.lock_count() == 1
        holder.commit()
        assert store.lock_count() == 0


class TestInMemoryStore:
    def test_initial_data_copied(self, clock: FakeClock) -> None:
        from db_session_handler.storage.memory import StoredSession

        seed = {"s1": StoredSession(b"x", clock.now)}
        store = InMemoryStore(seed)
        store.remove("s1")
        assert "s1" in seed

    def test_clear(self, backend: InMemoryBackend, store: InMemoryStore) -> None:
        backend.save("a", b"1")
        backend.save("b", b"2")
        store.clear()
        assert len(store) == 0

    def test_repr(self, store: InMemoryStore) -> None:
        assert repr(store) == "InMemoryStore(sessions=0)"
