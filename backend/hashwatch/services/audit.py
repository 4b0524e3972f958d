"""Audit logging: login_success, signup, scan_submitted, denylist_add, denylist_refresh. Never log secrets."""
from uuid import UUID

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.db.models import AuditEvent
from hashwatch.core.logging_redaction import redact_for_log


async def log_audit(
    db: AsyncSession,
    user_id: UUID,
    event_type: str,
    event_data: dict | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    safe_data = redact_for_log(event_data) if event_data else None
    event = AuditEvent(
        user_id=user_id,
        event_type=event_type,
        event_data=safe_data,
        ip=ip,
        user_agent=user_agent,
    )
    db.add(event)
    await db.flush()


async def log_request_audit(
    db: AsyncSession,
    request: Request,
    user_id: UUID,
    event_type: str,
    event_data: dict | None = None,
) -> None:
    await log_audit(
        db,
        user_id,
        event_type,
        event_data=event_data,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
