"""Audit trail of anonymous session lifecycle events."""

from .schemas import AuditAction, AuditRecord, AuditRecordCreate
from .service import AuditSink, DuckDBAuditSink, MemoryAuditSink, create_audit_sink
from .router import router

__all__ = [
    "AuditAction",
    "AuditRecord",
    "AuditRecordCreate",
    "AuditSink",
    "DuckDBAuditSink",
    "MemoryAuditSink",
    "create_audit_sink",
    "router",
]
