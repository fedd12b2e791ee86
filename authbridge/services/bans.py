"""Ban / moderation management.

A ban is effectively active only while its stored flag is set AND it is
either permanent or not yet past expires_at. Expired temporary bans are
never flipped in storage by a background job; every read is time-aware.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from authbridge.database import utcnow
from authbridge.errors import ConfigurationError
from authbridge.models import BanType, UserBan
from authbridge.storage.repositories import get_active_ban, lift_active_bans, list_active_bans

logger = logging.getLogger(__name__)


@dataclass
class BanStatus:
    banned: bool
    reason: str | None = None
    type: str | None = None
    expires_at: datetime | None = None
    banned_at: datetime | None = None

    def to_dict(self) -> dict:
        if not self.banned:
            return {"banned": False}
        return {
            "banned": True,
            "reason": self.reason,
            "type": self.type,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "bannedAt": self.banned_at.isoformat() if self.banned_at else None,
        }


def is_effectively_active(ban: UserBan, now: datetime | None = None) -> bool:
    now = now or utcnow()
    if not ban.is_active:
        return False
    if ban.type == BanType.PERMANENT.value:
        return True
    return ban.expires_at is not None and now < ban.expires_at


async def ban_user(
    db: AsyncSession,
    database_id: str,
    external_user_id: str,
    reason: str | None,
    ban_type: BanType = BanType.PERMANENT,
    duration_hours: float | None = None,
    email: str | None = None,
) -> UserBan:
    """Create a ban, or overwrite the user's currently active one."""
    ban_type = BanType(ban_type)
    now = utcnow()
    if ban_type is BanType.TEMPORARY:
        if duration_hours is None:
            raise ConfigurationError("Temporary bans require durationHours")
        expires_at = now + timedelta(hours=duration_hours)
    else:
        expires_at = None

    ban = await get_active_ban(db, database_id, str(external_user_id))
    if ban is None:
        ban = UserBan(
            ban_id=str(uuid4()),
            database_id=database_id,
            external_user_id=str(external_user_id),
        )
        db.add(ban)
    ban.reason = reason or "No reason provided"
    ban.type = ban_type.value
    ban.email = email or ban.email
    ban.created_at = now
    ban.expires_at = expires_at
    ban.is_active = True
    ban.lifted_at = None
    ban.lifted_by = None
    await db.flush()

    logger.info(
        "User banned",
        extra={"event": "ban.created", "database_id": database_id, "type": ban.type},
    )
    return ban


async def check_ban(
    db: AsyncSession,
    database_id: str,
    external_user_id: str,
    now: datetime | None = None,
) -> BanStatus:
    ban = await get_active_ban(db, database_id, str(external_user_id))
    if ban is None or not is_effectively_active(ban, now):
        return BanStatus(banned=False)
    return BanStatus(
        banned=True,
        reason=ban.reason,
        type=ban.type,
        expires_at=ban.expires_at,
        banned_at=ban.created_at,
    )


async def unban_user(
    db: AsyncSession,
    database_id: str,
    external_user_id: str,
    lifted_by: str | None = None,
) -> int:
    """Lift the active ban, if any. Idempotent; returns rows lifted."""
    lifted = await lift_active_bans(db, database_id, str(external_user_id), utcnow(), lifted_by)
    if lifted:
        logger.info("User unbanned", extra={"event": "ban.lifted", "database_id": database_id})
    return lifted


async def effective_bans_by_user(
    db: AsyncSession, database_id: str, now: datetime | None = None
) -> dict[str, UserBan]:
    """Effectively active bans for a database, keyed by external user id."""
    return {
        ban.external_user_id: ban
        for ban in await list_active_bans(db, database_id)
        if is_effectively_active(ban, now)
    }
