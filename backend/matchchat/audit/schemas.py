"""Pydantic schemas for the session audit trail.

Every lifecycle transition of an anonymous session (queue join, pairing,
message, next, report, signal, disconnect) produces one append-only
record. Records never carry message content or signal data.

These schemas are used by:
    - SessionRelay / Matchmaker: create records
    - GET /api/audit-logs: list recent records
    - MemoryAuditSink / DuckDBAuditSink: storage
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    """Lifecycle action recorded in the audit trail."""
    JOIN = "join"
    PAIRED = "paired"
    MESSAGE = "message"
    NEXT = "next"
    REPORT = "report"
    DISCONNECT = "disconnect"
    SIGNAL = "signal"


class AuditRecordCreate(BaseModel):
    """Input schema for a new audit record.

    Attributes:
        connection_id: The acting connection.
        partner_connection_id: The other side of the room, if any.
        action: What happened.
        details: Optional free-text context (never message content).
        ip_address: Origin address snapshot of the acting connection.
        user_agent: Client string snapshot of the acting connection.
    """
    connection_id: str = Field(..., min_length=1, description="Acting connection")
    partner_connection_id: Optional[str] = Field(None, description="Partner connection")
    action: AuditAction = Field(..., description="Lifecycle action")
    details: Optional[str] = Field(None, description="Free-text context")
    ip_address: Optional[str] = Field(None, description="Origin address")
    user_agent: Optional[str] = Field(None, description="Client string")


class AuditRecord(AuditRecordCreate):
    """A stored audit record with its generated id and timestamp (UTC)."""
    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Record identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the action happened (UTC)"
    )
