"""Audit sink: one event per mutating action."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authbridge.database import utcnow
from authbridge.models import AuditEvent
from authbridge.storage.repositories import create_audit_event

logger = logging.getLogger(__name__)


async def record_event(
    db: AsyncSession,
    action: str,
    actor: str,
    database_id: str | None = None,
    **details,
) -> AuditEvent:
    """Append an audit event and mirror it to the log."""
    event = await create_audit_event(
        db,
        action=action,
        actor=actor,
        created_at=utcnow(),
        database_id=database_id,
        details=details,
    )
    logger.info(
        "Audit event",
        extra={"event": "audit." + action, "actor": actor, "database_id": database_id},
    )
    return event
