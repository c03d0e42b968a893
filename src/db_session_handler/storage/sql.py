"""Relational storage backend built on SQLAlchemy Core.

Implements pessimistic row locking with ``SELECT ... FOR UPDATE`` so that
concurrent requests carrying the same session ID serialize on that row,
while requests for different sessions never contend.  Locking can be turned
off at construction to avoid lock waits and deadlocks, at the price of
last-write-wins races between requests sharing a session.

Dialects without row locks (SQLite) compile ``FOR UPDATE`` away; on those
the backend still works but does not serialize.

Classes
-------
- SQLBackend  — session storage over one caller-owned Connection
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

from sqlalchemy import MetaData, Table, delete, insert, select, update
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from db_session_handler.errors import BackendError, ConfigurationError
from db_session_handler.identifiers import MIN_SESSION_ID_LENGTH
from db_session_handler.storage.schema import DEFAULT_TABLE_NAME, build_sessions_table
from db_session_handler.storage.transactions import ConnectionTransactions

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (the column format)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SQLBackend:
    """Session storage in a relational table.

    Statements issued while no transaction is active are committed
    immediately.  Statements issued inside a transaction (the one the
    session engine opens before a locking ``select``) are committed by
    :meth:`commit`.

    Parameters
    ----------
    connection:
        Connection owned by the current request.  It must not be shared
        with unrelated work while a session lock is held.
    lock_enabled:
        When True (default), ``select`` locks the session row.
    session_id_length:
        Identifier length stored by this backend.  At least 256.
    table_name:
        Name of the sessions table.
    metadata:
        Metadata to register the table on.  A private one is used when
        omitted.
    clock:
        Returns the current naive UTC time; override in tests.

    Raises
    ------
    ConfigurationError
        If ``session_id_length`` is below 256 or ``table_name`` is empty.
    """

    def __init__(
        self,
        connection: Connection,
        lock_enabled: bool = True,
        session_id_length: int = MIN_SESSION_ID_LENGTH,
        table_name: str = DEFAULT_TABLE_NAME,
        metadata: MetaData | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if session_id_length < MIN_SESSION_ID_LENGTH:
            raise ConfigurationError(
                f"The value of session ID length cannot be less than {MIN_SESSION_ID_LENGTH}"
            )
        if not table_name:
            raise ConfigurationError("Table name cannot be empty")
        self._connection = connection
        self._transactions = ConnectionTransactions(connection)
        self._lock_enabled = lock_enabled
        self._session_id_length = session_id_length
        self._table: Table = build_sessions_table(
            metadata if metadata is not None else MetaData(),
            table_name,
            session_id_length,
        )
        self._clock = clock or utcnow
        self.hit_counter = 0

    @property
    def table(self) -> Table:
        return self._table

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _threshold(self, max_lifetime: int) -> datetime:
        return self._clock() - timedelta(seconds=max_lifetime)

    def _run(self, operation: str, work: Callable[[Connection], T]) -> T:
        """Execute ``work`` and commit it unless a transaction was already open."""
        self.hit_counter += 1
        owns_transaction = not self._connection.in_transaction()
        try:
            result = work(self._connection)
            if owns_transaction:
                self._connection.commit()
        except SQLAlchemyError as exc:
            if owns_transaction:
                try:
                    self._connection.rollback()
                except SQLAlchemyError:
                    logger.exception("Rollback after failed %s also failed", operation)
            raise BackendError(operation, str(exc)) from exc
        return result

    def _upsert(self, conn: Connection, values: dict[str, Any]) -> None:
        table = self._table
        dialect = conn.dialect.name
        if dialect in ("sqlite", "postgresql"):
            module = sqlite if dialect == "sqlite" else postgresql
            stmt = module.insert(table).values(**values)
            conn.execute(
                stmt.on_conflict_do_update(
                    index_elements=[table.c.id],
                    set_={
                        "data": stmt.excluded.data,
                        "last_activity": stmt.excluded.last_activity,
                    },
                )
            )
            return
        if dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(table).values(**values)
            conn.execute(
                stmt.on_duplicate_key_update(
                    data=stmt.inserted.data,
                    last_activity=stmt.inserted.last_activity,
                )
            )
            return
        # Generic fallback for dialects without a native upsert.
        result = conn.execute(
            update(table)
            .where(table.c.id == values["id"])
            .values(data=values["data"], last_activity=values["last_activity"])
        )
        if result.rowcount == 0:
            conn.execute(insert(table).values(**values))

    # ------------------------------------------------------------------
    # StorageBackend interface
    # ------------------------------------------------------------------

    def select(self, session_id: str, max_lifetime: int) -> bytes | None:
        """Return the live payload for ``session_id``, locking the row if enabled.

        Raises
        ------
        BackendError
            If the statement fails, or locking is enabled and no
            transaction has been started.
        """
        if self._lock_enabled and not self._transactions.in_transaction():
            raise BackendError("select", "a locking select requires an active transaction")
        table = self._table
        stmt = select(table.c.data).where(
            table.c.id == session_id,
            table.c.last_activity >= self._threshold(max_lifetime),
        )
        if self._lock_enabled:
            stmt = stmt.with_for_update()
        row = self._run("select", lambda conn: conn.execute(stmt).first())
        if row is None:
            return None
        return bytes(row.data)

    def save(self, session_id: str, data: bytes) -> bool:
        """Upsert ``data`` for ``session_id`` with a fresh ``last_activity``."""
        values = {"id": session_id, "data": data, "last_activity": self._clock()}
        self._run("save", lambda conn: self._upsert(conn, values))
        return True

    def delete(self, session_id: str) -> bool:
        stmt = delete(self._table).where(self._table.c.id == session_id)
        self._run("delete", lambda conn: conn.execute(stmt))
        return True

    def gc(self, max_lifetime: int) -> bool:
        """Delete rows whose ``last_activity`` is older than ``max_lifetime`` seconds."""
        stmt = delete(self._table).where(
            self._table.c.last_activity < self._threshold(max_lifetime)
        )
        removed = self._run("gc", lambda conn: conn.execute(stmt).rowcount)
        logger.debug("gc removed %s expired session(s)", removed)
        return True

    def begin_transaction(self) -> bool:
        return self._transactions.begin_transaction()

    def commit(self) -> bool:
        return self._transactions.commit()

    def in_transaction(self) -> bool:
        return self._transactions.in_transaction()

    def is_locking_enabled(self) -> bool:
        return self._lock_enabled

    def session_id_length(self) -> int:
        return self._session_id_length

    # ------------------------------------------------------------------
    # Extras
    # ------------------------------------------------------------------

    def create_schema(self) -> None:
        """Create the sessions table if it does not exist."""
        owns_transaction = not self._connection.in_transaction()
        try:
            self._table.create(bind=self._connection, checkfirst=True)
            if owns_transaction:
                self._connection.commit()
        except SQLAlchemyError as exc:
            raise BackendError("create_schema", str(exc)) from exc

    def __repr__(self) -> str:
        return (
            f"SQLBackend(table={self._table.name!r}, "
            f"dialect={self._connection.dialect.name!r}, "
            f"lock_enabled={self._lock_enabled})"
        )
