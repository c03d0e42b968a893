"""Transaction control delegated straight to an SQLAlchemy connection.

Backends compose a :class:`ConnectionTransactions` instead of inheriting
transaction behaviour.

Classes
-------
- ConnectionTransactions  — begin / commit / in_transaction on a Connection
"""
from __future__ import annotations

import logging

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from db_session_handler.errors import BackendError

logger = logging.getLogger(__name__)


class ConnectionTransactions:
    """Map transaction control onto ``connection``.

    Parameters
    ----------
    connection:
        The connection owned by the current request.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection

    @property
    def connection(self) -> Connection:
        return self._connection

    def begin_transaction(self) -> bool:
        """Begin an explicit transaction on the connection."""
        try:
            self._connection.begin()
        except SQLAlchemyError as exc:
            raise BackendError("begin_transaction", str(exc)) from exc
        return True

    def in_transaction(self) -> bool:
        return self._connection.in_transaction()

    def commit(self) -> bool:
        """Commit the active transaction, releasing any row locks.

        If the commit fails the connection is rolled back before the error
        is raised, so locks never outlive this call.
        """
        try:
            self._connection.commit()
        except SQLAlchemyError as exc:
            logger.error("Commit failed, rolling back: %s", exc)
            try:
                self._connection.rollback()
            except SQLAlchemyError:
                logger.exception("Rollback after failed commit also failed")
            raise BackendError("commit", str(exc)) from exc
        return True

    def rollback(self) -> None:
        try:
            self._connection.rollback()
        except SQLAlchemyError as exc:
            raise BackendError("rollback", str(exc)) from exc
