"""Sessions table definition.

    table <name>:
      id             VARCHAR(session_id_length) PRIMARY KEY
      data           BLOB
      last_activity  DATETIME, indexed (used by gc)
"""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, LargeBinary, MetaData, String, Table

from db_session_handler.errors import ConfigurationError
from db_session_handler.identifiers import MIN_SESSION_ID_LENGTH

DEFAULT_TABLE_NAME: str = "sessions"


def build_sessions_table(
    metadata: MetaData,
    table_name: str = DEFAULT_TABLE_NAME,
    session_id_length: int = MIN_SESSION_ID_LENGTH,
) -> Table:
    """Return the sessions ``Table`` registered on ``metadata``.

    Raises
    ------
    ConfigurationError
        If ``table_name`` is empty or ``session_id_length`` is below 256.
    """
    if not table_name:
        raise ConfigurationError("Table name cannot be empty")
    if session_id_length < MIN_SESSION_ID_LENGTH:
        raise ConfigurationError(
            f"Session ID length cannot be less than {MIN_SESSION_ID_LENGTH}, got {session_id_length}"
        )
    if table_name in metadata.tables:
        return metadata.tables[table_name]
    return Table(
        table_name,
        metadata,
        Column("id", String(session_id_length), primary_key=True),
        Column("data", LargeBinary, nullable=False),
        Column("last_activity", DateTime, nullable=False),
        Index(f"ix_{table_name}_last_activity", "last_activity"),
    )
