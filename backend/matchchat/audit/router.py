"""Audit trail API endpoint.

Endpoints:
    GET /api/audit-logs: Most recent session lifecycle records

The list is newest-first and capped by the ``audit.max_page_size`` setting
(default page 50, maximum 100).
"""
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from .schemas import AuditRecord

router = APIRouter(prefix="/api", tags=["audit"])


class GetLogsResponse(BaseModel):
    """Response from the audit-logs endpoint.

    Attributes:
        logs: Audit records (newest first).
        count: Number of records returned.
    """
    logs: List[AuditRecord] = Field(..., description="Audit records")
    count: int = Field(..., description="Number of records")


@router.get("/audit-logs", response_model=GetLogsResponse)
async def get_audit_logs(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, description="Number of records to return"),
) -> GetLogsResponse:
    """Retrieve recent audit records.

    Args:
        limit: Maximum records to return. Defaults to the configured page
            size and is clamped to the configured maximum.

    Returns:
        GetLogsResponse with records and count.
    """
    settings = request.app.state.settings.audit
    page = min(limit or settings.default_page_size, settings.max_page_size)
    logs = request.app.state.audit_sink.recent(page)
    return GetLogsResponse(logs=logs, count=len(logs))
