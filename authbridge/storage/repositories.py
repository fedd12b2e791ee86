"""Repository functions for connected databases, mappings, tokens, bans and audit events."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from authbridge.models import (
    AuditEvent,
    AuthToken,
    ConnectedDatabase,
    SchemaMappingRecord,
    UserBan,
)


# Connected databases


async def get_database(db: AsyncSession, database_id: str) -> ConnectedDatabase | None:
    return await db.get(ConnectedDatabase, database_id)


async def get_active_database_by_credential(
    db: AsyncSession, credential: str
) -> ConnectedDatabase | None:
    """Find the active connected database whose stored credential matches."""
    result = await db.execute(
        select(ConnectedDatabase).where(
            ConnectedDatabase.credential == credential,
            ConnectedDatabase.is_active.is_(True),
        )
    )
    return result.scalars().first()


async def list_active_databases(db: AsyncSession) -> list[ConnectedDatabase]:
    result = await db.execute(
        select(ConnectedDatabase)
        .where(ConnectedDatabase.is_active.is_(True))
        .order_by(ConnectedDatabase.app_name.asc())
    )
    return list(result.scalars().all())


async def create_database(
    db: AsyncSession,
    name: str,
    app_name: str,
    endpoint: str,
    credential: str | None,
    user_table: str,
) -> ConnectedDatabase:
    record = ConnectedDatabase(
        database_id=str(uuid4()),
        name=name,
        app_name=app_name,
        endpoint=endpoint,
        credential=credential,
        user_table=user_table,
        is_active=True,
    )
    db.add(record)
    await db.flush()
    return record


# Schema mappings


async def get_mapping_record(db: AsyncSession, database_id: str) -> SchemaMappingRecord | None:
    return await db.get(SchemaMappingRecord, database_id)


async def upsert_mapping_record(
    db: AsyncSession, database_id: str, columns: dict
) -> SchemaMappingRecord:
    """Create or overwrite the mapping row; columns uses mapping field names."""
    record = await get_mapping_record(db, database_id)
    if record is None:
        record = SchemaMappingRecord(database_id=database_id)
        db.add(record)
    for field, value in columns.items():
        setattr(record, field, value)
    await db.flush()
    return record


# Tokens


async def create_token(
    db: AsyncSession,
    token: str,
    token_type: str,
    database_id: str,
    external_user_id: str,
    issued_at: datetime,
    expires_at: datetime,
    email: str | None = None,
) -> AuthToken:
    record = AuthToken(
        token_id=str(uuid4()),
        token=token,
        type=token_type,
        database_id=database_id,
        external_user_id=external_user_id,
        email=email,
        issued_at=issued_at,
        expires_at=expires_at,
        used_at=None,
    )
    db.add(record)
    await db.flush()
    return record


async def get_token(db: AsyncSession, token: str) -> AuthToken | None:
    result = await db.execute(
        select(AuthToken)
        .where(AuthToken.token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def mark_token_used(db: AsyncSession, token_id: str, used_at: datetime) -> bool:
    """Set used_at only if it is still NULL. False means someone else got there first."""
    result = await db.execute(
        update(AuthToken)
        .where(AuthToken.token_id == token_id, AuthToken.used_at.is_(None))
        .values(used_at=used_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def count_pending_tokens(
    db: AsyncSession, now: datetime, database_id: str | None = None
) -> int:
    stmt = select(func.count()).select_from(AuthToken).where(
        AuthToken.used_at.is_(None), AuthToken.expires_at > now
    )
    if database_id:
        stmt = stmt.where(AuthToken.database_id == database_id)
    return int((await db.execute(stmt)).scalar_one())


async def revoke_user_tokens(
    db: AsyncSession, database_id: str, external_user_id: str, revoked_at: datetime
) -> int:
    """Consume every unused token for the user. Rows are kept as evidence."""
    result = await db.execute(
        update(AuthToken)
        .where(
            AuthToken.database_id == database_id,
            AuthToken.external_user_id == external_user_id,
            AuthToken.used_at.is_(None),
        )
        .values(used_at=revoked_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# Bans


async def get_active_ban(
    db: AsyncSession, database_id: str, external_user_id: str
) -> UserBan | None:
    """Ban row whose stored flag is active. Time is not considered here."""
    result = await db.execute(
        select(UserBan)
        .where(
            UserBan.database_id == database_id,
            UserBan.external_user_id == external_user_id,
            UserBan.is_active.is_(True),
        )
        .order_by(UserBan.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_active_bans(db: AsyncSession, database_id: str) -> list[UserBan]:
    result = await db.execute(
        select(UserBan).where(UserBan.database_id == database_id, UserBan.is_active.is_(True))
    )
    return list(result.scalars().all())


async def count_active_bans(db: AsyncSession, database_id: str | None = None) -> int:
    stmt = select(func.count()).select_from(UserBan).where(UserBan.is_active.is_(True))
    if database_id:
        stmt = stmt.where(UserBan.database_id == database_id)
    return int((await db.execute(stmt)).scalar_one())


async def lift_active_bans(
    db: AsyncSession,
    database_id: str,
    external_user_id: str,
    lifted_at: datetime,
    lifted_by: str | None = None,
) -> int:
    result = await db.execute(
        update(UserBan)
        .where(
            UserBan.database_id == database_id,
            UserBan.external_user_id == external_user_id,
            UserBan.is_active.is_(True),
        )
        .values(is_active=False, lifted_at=lifted_at, lifted_by=lifted_by)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def delete_user_bans(db: AsyncSession, database_id: str, external_user_id: str) -> int:
    result = await db.execute(
        delete(UserBan).where(
            UserBan.database_id == database_id,
            UserBan.external_user_id == external_user_id,
        )
    )
    return result.rowcount


# Audit


async def create_audit_event(
    db: AsyncSession,
    action: str,
    actor: str,
    created_at: datetime,
    database_id: str | None = None,
    details: dict | None = None,
) -> AuditEvent:
    """Create audit record."""
    ev = AuditEvent(
        event_id=str(uuid4()),
        action=action,
        actor=actor,
        database_id=database_id,
        details=details or {},
        created_at=created_at,
    )
    db.add(ev)
    await db.flush()
    return ev


async def list_audit_events(
    db: AsyncSession, limit: int = 20, prefix: str = "auth_"
) -> list[AuditEvent]:
    result = await db.execute(
        select(AuditEvent)
        .where(AuditEvent.action.startswith(prefix))
        .order_by(AuditEvent.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
