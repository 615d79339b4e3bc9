"""Audit sink implementations.

The relay only depends on the ``AuditSink`` protocol. Two implementations
ship with the service:

    MemoryAuditSink:  process-lifetime list, the default.
    DuckDBAuditSink:  embedded DuckDB file for durable trails.

Database Schema (DuckDB):
    audit_logs table:
        - seq: Auto-incrementing insertion order
        - id: Record UUID (primary key)
        - connection_id / partner_connection_id
        - action: join, paired, message, next, report, disconnect, signal
        - details, ip_address, user_agent
        - timestamp: When the action happened (UTC)

Both sinks echo every record to the log so an operator can follow the
session lifecycle without querying the store.
"""
import logging
from typing import List, Optional, Protocol

import duckdb

from .schemas import AuditAction, AuditRecord, AuditRecordCreate

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Append-only store of session lifecycle records."""

    def record(self, entry: AuditRecordCreate) -> AuditRecord:
        ...

    def recent(self, limit: int = 100) -> List[AuditRecord]:
        ...

    def close(self) -> None:
        ...


def _echo(record: AuditRecord) -> None:
    partner = f", partner={record.partner_connection_id}" if record.partner_connection_id else ""
    logger.info(
        "[Audit] %s - conn=%s%s - %s",
        record.action.value.upper(),
        record.connection_id,
        partner,
        record.timestamp.isoformat(),
    )
    if record.details:
        logger.debug("[Audit] Details: %s", record.details)


class MemoryAuditSink:
    """Keeps records in insertion order for the life of the process."""

    def __init__(self) -> None:
        self._records: List[AuditRecord] = []

    def record(self, entry: AuditRecordCreate) -> AuditRecord:
        stored = AuditRecord(**entry.model_dump())
        self._records.append(stored)
        _echo(stored)
        return stored

    def recent(self, limit: int = 100) -> List[AuditRecord]:
        """Newest first, at most *limit* records."""
        if limit <= 0:
            return []
        return list(reversed(self._records[-limit:]))

    def close(self) -> None:
        self._records.clear()


class DuckDBAuditSink:
    """Audit records persisted in an embedded DuckDB database.

    The DuckDB connection is NOT thread-safe; the relay writes from a
    single event loop so one connection per process is enough.
    """

    def __init__(self, db_path: str = "audit_logs.duckdb") -> None:
        """Open (or create) the database and its schema.

        Args:
            db_path: Path to the DuckDB file, or ":memory:".
        """
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        logger.info("[Audit] DuckDB sink ready at %s", db_path)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the sequence, table and index if they don't exist."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS audit_logs_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_logs (
                seq BIGINT DEFAULT nextval('audit_logs_seq'),
                id VARCHAR PRIMARY KEY,
                connection_id VARCHAR NOT NULL,
                partner_connection_id VARCHAR,
                action VARCHAR NOT NULL,
                details VARCHAR,
                ip_address VARCHAR,
                user_agent VARCHAR,
                timestamp TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON audit_logs(timestamp)"
        )

    def record(self, entry: AuditRecordCreate) -> AuditRecord:
        stored = AuditRecord(**entry.model_dump())
        self._get_connection().execute(
            """
            INSERT INTO audit_logs (
                id, connection_id, partner_connection_id, action,
                details, ip_address, user_agent, timestamp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                stored.id,
                stored.connection_id,
                stored.partner_connection_id,
                stored.action.value,
                stored.details,
                stored.ip_address,
                stored.user_agent,
                stored.timestamp,
            ]
        )
        _echo(stored)
        return stored

    def recent(self, limit: int = 100) -> List[AuditRecord]:
        """Newest first, at most *limit* records."""
        if limit <= 0:
            return []
        rows = self._get_connection().execute(
            """
            SELECT id, connection_id, partner_connection_id, action,
                   details, ip_address, user_agent, timestamp
            FROM audit_logs
            ORDER BY seq DESC
            LIMIT ?
            """,
            [limit]
        ).fetchall()

        return [
            AuditRecord(
                id=row[0],
                connection_id=row[1],
                partner_connection_id=row[2],
                action=AuditAction(row[3]),
                details=row[4],
                ip_address=row[5],
                user_agent=row[6],
                timestamp=row[7],
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None


def create_audit_sink(backend: str, db_path: str) -> AuditSink:
    """Build the sink named by the ``audit.backend`` setting."""
    if backend == "duckdb":
        return DuckDBAuditSink(db_path)
    return MemoryAuditSink()
