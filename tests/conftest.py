"""Shared fixtures for db-session-handler tests."""
from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

from db_session_handler.identifiers import SessionIdGenerator
from db_session_handler.storage.memory import InMemoryStore
from db_session_handler.storage.sql import SQLBackend

from tests.helpers import FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def session_id() -> str:
    return SessionIdGenerator().generate(256)


@pytest.fixture()
def sql_engine(tmp_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite:///{tmp_path / 'sessions.db'}")
    yield engine
    engine.dispose()


@pytest.fixture()
def connection(sql_engine: Engine) -> Iterator[Connection]:
    with sql_engine.connect() as conn:
        SQLBackend(conn).create_schema()
        yield conn
