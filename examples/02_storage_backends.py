#!/usr/bin/env python3
"""Example: Storage Backends

Drives the session engine directly over the in-memory backend and the
SQLAlchemy backend, with and without row locking.

Usage:
    python examples/02_storage_backends.py

Requirements:
    pip install db-session-handler
"""
from __future__ import annotations

import tempfile
from pathlib import Path

from sqlalchemy import create_engine

from db_session_handler import (
    InMemoryBackend,
    InMemoryStore,
    SessionEngine,
    SQLBackend,
    StorageBackend,
)


def demo_backend(label: str, backend: StorageBackend) -> None:
    with SessionEngine(backend) as engine:
        session_id = engine.generate_id()
        engine.write(session_id, b'{"greeting":"hello"}')
    with SessionEngine(backend) as engine:
        found = engine.validate_once(session_id)
        payload = engine.read(session_id)
        print(
            f"  [{label}] locking={backend.is_locking_enabled()} "
            f"found={found} payload={payload.decode()}"
        )


def main() -> None:
    store = InMemoryStore()
    print("In-memory backend:")
    demo_backend("memory", InMemoryBackend(store))
    demo_backend("memory", InMemoryBackend(store, lock_enabled=False))

    print("\nSQLAlchemy backend (SQLite):")
    with tempfile.TemporaryDirectory() as tmpdir:
        engine = create_engine(f"sqlite:///{Path(tmpdir) / 'sessions.db'}")
        with engine.connect() as connection:
            backend = SQLBackend(connection)
            backend.create_schema()
            demo_backend("sqlite", backend)
            print(f"  Statements issued: {backend.hit_counter}")
        engine.dispose()


if __name__ == "__main__":
    main()
