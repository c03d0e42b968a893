"""Storage backend subpackage.

Backends satisfy the ``StorageBackend`` protocol structurally.

Public surface
--------------
- StorageBackend          — protocol shared by all backends
- SQLBackend              — relational backend with SELECT ... FOR UPDATE
- InMemoryBackend         — per-request backend over an InMemoryStore
- InMemoryStore           — shared in-process rows with real row locks
- ConnectionTransactions  — transaction control composed into SQLBackend
- build_sessions_table    — the sessions table definition
"""
from __future__ import annotations

from db_session_handler.storage.base import StorageBackend
from db_session_handler.storage.memory import InMemoryBackend, InMemoryStore, StoredSession
from db_session_handler.storage.schema import DEFAULT_TABLE_NAME, build_sessions_table
from db_session_handler.storage.sql import SQLBackend
from db_session_handler.storage.transactions import ConnectionTransactions

__all__ = [
    "ConnectionTransactions",
    "DEFAULT_TABLE_NAME",
    "InMemoryBackend",
    "InMemoryStore",
    "SQLBackend",
    "StorageBackend",
    "StoredSession",
    "build_sessions_table",
]
