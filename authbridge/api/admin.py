"""Operator endpoints - connected databases, schema mappings, user management."""

import logging
from typing import Annotated, Literal
from uuid import uuid4

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from authbridge.auth.middleware import OperatorDep
from authbridge.bridge.introspection import (
    detect_schema,
    get_database_overview,
    get_table_columns,
    get_tables,
)
from authbridge.bridge.registry import ConnectionRegistry, get_registry
from authbridge.config import settings
from authbridge.database import get_db, utcnow
from authbridge.errors import BridgeError, DeliveryError, NoEmailVerifiedColumnMapped, UserNotFound
from authbridge.models import TokenType
from authbridge.schemas.admin import (
    AuditEventInfo,
    BanRequest,
    ConnectDatabaseRequest,
    CreateUserRequest,
    DatabaseInfo,
    EmailTestRequest,
    SendLinkRequest,
    SetPasswordRequest,
    UpdateFieldRequest,
)
from authbridge.schemas.mapping import SchemaMapping
from authbridge.services.audit import record_event
from authbridge.services.bans import ban_user, effective_bans_by_user, unban_user
from authbridge.services.content import delete_content, fetch_content_rows, list_content_tables
from authbridge.services.notifier import Notifier, get_notifier
from authbridge.services.passwords import check_password_policy, hash_password
from authbridge.services.tenants import (
    connect_database,
    disconnect_database,
    engine_for,
    get_schema_mapping,
    get_stats,
    list_databases,
    refresh_user_count,
    require_database,
    save_schema_mapping,
    user_repository,
)
from authbridge.services.tokens import send_token
from authbridge.storage.repositories import (
    delete_user_bans,
    list_audit_events,
    revoke_user_tokens,
    upsert_mapping_record,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DbDep = Annotated[AsyncSession, Depends(get_db)]
RegistryDep = Annotated[ConnectionRegistry, Depends(get_registry)]
NotifierDep = Annotated[Notifier, Depends(get_notifier)]

SEND_KINDS = {
    "password-reset": (TokenType.PASSWORD_RESET, "auth_password_reset_sent"),
    "verification": (TokenType.EMAIL_VERIFICATION, "auth_verification_sent"),
    "magic-link": (TokenType.MAGIC_LINK, "auth_magic_link_sent"),
}


# Databases


@router.get("/databases", response_model=list[DatabaseInfo])
async def get_databases(actor: OperatorDep, db: DbDep):
    """Active connected databases, ordered by app name."""
    return await list_databases(db)


@router.post("/databases", status_code=201)
async def create_database_connection(
    body: ConnectDatabaseRequest, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    """Test and store a connection, then auto-detect its schema mapping."""
    database, mapping = await connect_database(
        db,
        registry,
        name=body.name,
        app_name=body.app_name,
        endpoint=body.endpoint,
        credential=body.credential,
        user_table=body.user_table,
    )
    await record_event(
        db, "auth_database_connected", actor, database.database_id,
        name=body.name, app_name=body.app_name,
    )
    return {
        "success": True,
        "databaseId": database.database_id,
        "mapping": mapping.model_dump(by_alias=True) if mapping else None,
    }


@router.delete("/databases/{database_id}")
async def delete_database_connection(database_id: str, actor: OperatorDep, db: DbDep):
    """Soft-deactivate; tokens and bans keep their reference."""
    await disconnect_database(db, database_id)
    await record_event(db, "auth_database_disconnected", actor, database_id)
    return {"success": True}


@router.get("/databases/{database_id}/info")
async def database_info(database_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep):
    """Tables, row counts and storage estimate."""
    database = await require_database(db, database_id)
    overview = await get_database_overview(engine_for(registry, database))
    return {**overview, "dbName": database.name, "appName": database.app_name}


@router.get("/databases/{database_id}/introspect")
async def introspect_database(
    database_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    """Raw tables and user-table columns, plus a freshly detected mapping."""
    database = await require_database(db, database_id)
    engine = engine_for(registry, database)
    detected = await detect_schema(engine, database.user_table)
    return {
        "tables": await get_tables(engine),
        "columns": await get_table_columns(engine, database.user_table),
        "detected": detected.model_dump(by_alias=True),
    }


@router.post("/databases/{database_id}/refresh-count")
async def refresh_count(database_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep):
    database = await require_database(db, database_id)
    count = await refresh_user_count(db, registry, database)
    return {"userCount": count, "lastCheckedAt": database.last_checked_at}


# Schema mapping


@router.get("/databases/{database_id}/mapping")
async def read_mapping(database_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep):
    database = await require_database(db, database_id)
    mapping = await get_schema_mapping(db, registry, database)
    return mapping.model_dump(by_alias=True)


@router.put("/databases/{database_id}/mapping")
async def write_mapping(database_id: str, body: SchemaMapping, actor: OperatorDep, db: DbDep):
    """Operator override of the detected mapping."""
    mapping = await save_schema_mapping(db, database_id, body)
    await record_event(db, "auth_schema_updated", actor, database_id)
    return mapping.model_dump(by_alias=True)


@router.post("/databases/{database_id}/mapping/detect")
async def redetect_mapping(
    database_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    """Re-run detection and store the result, replacing any override."""
    database = await require_database(db, database_id)
    mapping = await detect_schema(engine_for(registry, database), database.user_table)
    await upsert_mapping_record(db, database_id, mapping.model_dump())
    await record_event(db, "auth_schema_detected", actor, database_id)
    return mapping.model_dump(by_alias=True)


# Users


@router.get("/databases/{database_id}/users")
async def list_users(
    database_id: str,
    actor: OperatorDep,
    db: DbDep,
    registry: RegistryDep,
    search: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=200)] = 25,
    sort_by: Annotated[str | None, Query(alias="sortBy")] = None,
    sort_dir: Annotated[Literal["ASC", "DESC", "asc", "desc"], Query(alias="sortDir")] = "DESC",
):
    """One page of users, each with its effective ban (or null)."""
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    users, total = await repo.query(
        search=search, limit=limit, offset=(page - 1) * limit, sort_by=sort_by, sort_dir=sort_dir
    )
    bans = await effective_bans_by_user(db, database_id)
    for user in users:
        ban = bans.get(user["id"])
        user["banStatus"] = (
            {
                "reason": ban.reason,
                "type": ban.type,
                "expiresAt": ban.expires_at,
                "bannedAt": ban.created_at,
            }
            if ban
            else None
        )
    return {"users": users, "total": total, "page": page, "limit": limit}


@router.post("/databases/{database_id}/users", status_code=201)
async def create_user(
    database_id: str,
    body: CreateUserRequest,
    actor: OperatorDep,
    db: DbDep,
    registry: RegistryDep,
):
    """Insert a user row using role-keyed input mapped onto the tenant's columns."""
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    mapping = repo.mapping

    fields = {
        mapping.id_column: body.id or str(uuid4()),
        mapping.email_column: body.email,
    }
    if mapping.name_column:
        fields[mapping.name_column] = body.name
    if mapping.username_column:
        fields[mapping.username_column] = body.username
    if mapping.role_column:
        fields[mapping.role_column] = body.role
    if mapping.password_column and body.password:
        check_password_policy(body.password)
        fields[mapping.password_column] = await run_in_threadpool(hash_password, body.password)
    if mapping.email_verified_column:
        fields[mapping.email_verified_column] = 1 if body.email_verified else 0
    if mapping.created_at_column:
        fields[mapping.created_at_column] = utcnow().isoformat()

    user_id = await repo.create(fields)
    await record_event(
        db, "auth_user_created", actor, database_id, user_id=str(user_id), email=body.email
    )
    return {"success": True, "userId": str(user_id)}


async def _require_user(repo, user_id: str) -> dict:
    user = await repo.get_by_id(user_id)
    if user is None:
        raise UserNotFound(f"User {user_id} not found")
    return user


@router.get("/databases/{database_id}/users/{user_id}")
async def get_user(
    database_id: str, user_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    return {"user": await _require_user(repo, user_id)}


@router.delete("/databases/{database_id}/users/{user_id}")
async def delete_user(
    database_id: str, user_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    """Delete the tenant row and this user's bans; pending tokens are revoked, not deleted."""
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    user = await repo.get_by_id(user_id)
    await repo.delete(user_id)
    await delete_user_bans(db, database_id, user_id)
    revoked = await revoke_user_tokens(db, database_id, user_id, utcnow())
    await record_event(
        db, "auth_user_deleted", actor, database_id,
        user_id=user_id, email=user.get("email") if user else None, tokens_revoked=revoked,
    )
    return {"success": True}


@router.patch("/databases/{database_id}/users/{user_id}")
async def update_user_field(
    database_id: str,
    user_id: str,
    body: UpdateFieldRequest,
    actor: OperatorDep,
    db: DbDep,
    registry: RegistryDep,
):
    """Set one column; the column name must be a plain identifier."""
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    updated = await repo.update_field(user_id, body.column, body.value)
    await record_event(
        db, "auth_user_updated", actor, database_id, user_id=user_id, column=body.column
    )
    return {"success": True, "updated": updated}


@router.post("/databases/{database_id}/users/{user_id}/password")
async def set_password(
    database_id: str,
    user_id: str,
    body: SetPasswordRequest,
    actor: OperatorDep,
    db: DbDep,
    registry: RegistryDep,
):
    """Write a new password hash directly, no token involved."""
    check_password_policy(body.new_password)
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    hashed = await run_in_threadpool(hash_password, body.new_password)
    await repo.update_password(user_id, hashed)
    await record_event(db, "auth_password_reset_direct", actor, database_id, user_id=user_id)
    return {"success": True}


@router.post("/databases/{database_id}/users/{user_id}/verify-email")
async def mark_email_verified(
    database_id: str, user_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    if not repo.mapping.email_verified_column:
        raise NoEmailVerifiedColumnMapped()
    await repo.update_field(user_id, repo.mapping.email_verified_column, True)
    await record_event(db, "auth_email_verified", actor, database_id, user_id=user_id)
    return {"success": True}


async def _sync_status(repo, user_id: str, value: str) -> bool:
    """Best-effort write of the mapped status column. False when it failed."""
    if not repo.mapping.status_column:
        return False
    try:
        await repo.update_field(user_id, repo.mapping.status_column, value)
    except (BridgeError, SQLAlchemyError) as exc:
        logger.warning(
            "Status column sync failed",
            extra={"event": "ban.status_sync_failed", "error": str(exc)},
        )
        return False
    return True


@router.post("/databases/{database_id}/users/{user_id}/ban")
async def ban(
    database_id: str,
    user_id: str,
    body: BanRequest,
    actor: OperatorDep,
    db: DbDep,
    registry: RegistryDep,
):
    """Ban a user, superseding any active ban. The ban is recorded even if the
    tenant's status column cannot be updated."""
    database = await require_database(db, database_id)
    record = await ban_user(
        db, database_id, user_id, body.reason, body.type, body.duration_hours, body.email
    )
    await db.commit()
    repo = await user_repository(db, registry, database)
    synced = await _sync_status(repo, user_id, "banned")
    await record_event(
        db, "auth_user_banned", actor, database_id,
        user_id=user_id, reason=record.reason, type=record.type,
    )
    return {"success": True, "expiresAt": record.expires_at, "statusSynced": synced}


@router.delete("/databases/{database_id}/users/{user_id}/ban")
async def unban(
    database_id: str, user_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    database = await require_database(db, database_id)
    lifted = await unban_user(db, database_id, user_id, lifted_by=actor)
    await db.commit()
    repo = await user_repository(db, registry, database)
    synced = await _sync_status(repo, user_id, "active")
    await record_event(db, "auth_user_unbanned", actor, database_id, user_id=user_id)
    return {"success": True, "lifted": lifted, "statusSynced": synced}


@router.post("/databases/{database_id}/users/{user_id}/logout")
async def force_logout(
    database_id: str, user_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    """Delete every session row for the user in the mapped session table."""
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    count = await repo.delete_sessions(user_id)
    await record_event(
        db, "auth_force_logout", actor, database_id, user_id=user_id, sessions_destroyed=count
    )
    return {"success": True, "sessionsDestroyed": count}


@router.get("/databases/{database_id}/users/{user_id}/sessions")
async def list_sessions(
    database_id: str, user_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    database = await require_database(db, database_id)
    repo = await user_repository(db, registry, database)
    return {"sessions": await repo.list_sessions(user_id)}


@router.post("/databases/{database_id}/users/{user_id}/send/{kind}")
async def send_link(
    database_id: str,
    user_id: str,
    kind: Literal["password-reset", "verification", "magic-link"],
    body: SendLinkRequest,
    actor: OperatorDep,
    db: DbDep,
    notifier: NotifierDep,
):
    """Send a reset, verification or magic link on the user's behalf."""
    token_type, action = SEND_KINDS[kind]
    database = await require_database(db, database_id)
    result = await send_token(
        db, notifier, database, user_id, body.email, token_type, body.link_base
    )
    await record_event(
        db, action, actor, database_id, user_id=user_id, email=body.email,
        delivered=result.delivered,
    )
    if not result.delivered:
        await db.commit()
        raise DeliveryError(result.error, expires_at=result.expires_at)
    return {"success": True, "expiresAt": result.expires_at}


# Content moderation


@router.get("/databases/{database_id}/content")
async def content_tables(
    database_id: str, actor: OperatorDep, db: DbDep, registry: RegistryDep
):
    """Tables other than the user table, with their detected user link."""
    database = await require_database(db, database_id)
    tables = await list_content_tables(registry, database)
    return {"tables": [t.to_dict() for t in tables]}


@router.get("/databases/{database_id}/content/{table}")
async def content_rows(
    database_id: str,
    table: str,
    actor: OperatorDep,
    db: DbDep,
    registry: RegistryDep,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 25,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
):
    database = await require_database(db, database_id)
    return await fetch_content_rows(registry, database, table, page, limit, user_id)


@router.delete("/databases/{database_id}/content/{table}/{row_id}")
async def remove_content_row(
    database_id: str,
    table: str,
    row_id: str,
    actor: OperatorDep,
    db: DbDep,
    registry: RegistryDep,
):
    database = await require_database(db, database_id)
    deleted = await delete_content(db, registry, database, table, row_id, actor)
    return {"success": True, "deleted": deleted}


# Email


@router.get("/email-settings")
async def email_settings(actor: OperatorDep):
    """Delivery configuration as loaded from the environment. The API key is never returned."""
    return {
        "configured": bool(settings.resend_api_key),
        "fromEmail": settings.from_email,
        "appUrl": settings.app_url,
    }


@router.post("/email-settings/test")
async def send_test_email(
    body: EmailTestRequest, actor: OperatorDep, db: DbDep, notifier: NotifierDep
):
    result = await notifier.send_test(body.to, settings.default_app_name)
    await record_event(db, "auth_email_test_sent", actor, email=body.to, delivered=result.success)
    if not result.success:
        await db.commit()
        raise DeliveryError(result.error)
    return {"success": True}


# Stats and audit


@router.get("/stats")
async def stats(
    actor: OperatorDep,
    db: DbDep,
    database_id: Annotated[str | None, Query(alias="databaseId")] = None,
):
    return await get_stats(db, database_id)


@router.get("/audit", response_model=list[AuditEventInfo])
async def audit_log(
    actor: OperatorDep,
    db: DbDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 20,
):
    """Most recent auth audit events, newest first."""
    return await list_audit_events(db, limit=limit)
