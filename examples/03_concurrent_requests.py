#!/usr/bin/env python3
"""Example: Concurrent Requests

Several threads append to the same session at once.  With row locking
each request waits for the previous one, so no update is lost; without
it, requests overwrite each other.

Usage:
    python examples/03_concurrent_requests.py

Requirements:
    pip install db-session-handler
"""
from __future__ import annotations

import threading
import time

from db_session_handler import InMemoryBackend, InMemoryStore, SessionEngine

_THREADS = 8


def run(lock_enabled: bool) -> bytes:
    store = InMemoryStore()
    session_id = "s" * 256

    def request(tag: bytes) -> None:
        with SessionEngine(InMemoryBackend(store, lock_enabled=lock_enabled)) as engine:
            payload = engine.read(session_id)
            time.sleep(0.01)
            engine.write(session_id, payload + tag)

    threads = [
        threading.Thread(target=request, args=(bytes([ord("a") + i]),))
        for i in range(_THREADS)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    row = store.get(session_id)
    return row.data if row is not None else b""


def main() -> None:
    locked = run(lock_enabled=True)
    print(f"With locking:    {len(locked)} of {_THREADS} updates kept ({locked.decode()})")
    unlocked = run(lock_enabled=False)
    print(f"Without locking: {len(unlocked)} of {_THREADS} updates kept ({unlocked.decode()})")


if __name__ == "__main__":
    main()
