"""Connected databases and their schema mappings."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authbridge.bridge.identifiers import validate_identifier
from authbridge.bridge.introspection import detect_schema
from authbridge.bridge.registry import ConnectionRegistry, check_connection
from authbridge.bridge.users import UserRepository
from authbridge.database import utcnow
from authbridge.errors import BridgeError, TenantNotFound
from authbridge.models import ConnectedDatabase, SchemaMappingRecord
from authbridge.schemas.mapping import SchemaMapping
from authbridge.storage.repositories import (
    count_active_bans,
    count_pending_tokens,
    create_database,
    get_database,
    get_mapping_record,
    list_active_databases,
    upsert_mapping_record,
)

logger = logging.getLogger(__name__)

MAPPING_FIELDS = tuple(SchemaMapping.model_fields)


def mapping_from_record(record: SchemaMappingRecord) -> SchemaMapping:
    return SchemaMapping(**{f: getattr(record, f) for f in MAPPING_FIELDS})


async def require_database(db: AsyncSession, database_id: str) -> ConnectedDatabase:
    database = await get_database(db, database_id)
    if database is None:
        raise TenantNotFound()
    return database


def engine_for(registry: ConnectionRegistry, database: ConnectedDatabase):
    return registry.get_or_create(database.endpoint, database.credential)


async def connect_database(
    db: AsyncSession,
    registry: ConnectionRegistry,
    name: str,
    app_name: str,
    endpoint: str,
    credential: str | None = None,
    user_table: str = "users",
) -> tuple[ConnectedDatabase, SchemaMapping | None]:
    """Test the connection, store it, then try to detect a mapping.

    A detection failure leaves the database connected with no stored
    mapping; one is detected on first use.
    """
    validate_identifier(user_table)
    engine = registry.get_or_create(endpoint, credential)
    await check_connection(engine)

    database = await create_database(
        db,
        name=name,
        app_name=app_name,
        endpoint=endpoint,
        credential=credential,
        user_table=user_table,
    )

    mapping = None
    try:
        mapping = await detect_schema(engine, user_table)
    except BridgeError as exc:
        logger.warning(
            "Schema detection failed; mapping must be set manually",
            extra={"event": "schema.detect_failed", "database_id": database.database_id, "error": str(exc)},
        )
    if mapping is not None:
        await upsert_mapping_record(db, database.database_id, mapping.model_dump())
    return database, mapping


async def disconnect_database(db: AsyncSession, database_id: str) -> ConnectedDatabase:
    database = await require_database(db, database_id)
    database.is_active = False
    await db.flush()
    return database


async def get_schema_mapping(
    db: AsyncSession, registry: ConnectionRegistry, database: ConnectedDatabase
) -> SchemaMapping:
    """Stored mapping, or detect and store one when none exists yet."""
    record = await get_mapping_record(db, database.database_id)
    if record is not None:
        return mapping_from_record(record)
    mapping = await detect_schema(engine_for(registry, database), database.user_table)
    await upsert_mapping_record(db, database.database_id, mapping.model_dump())
    return mapping


async def save_schema_mapping(
    db: AsyncSession, database_id: str, mapping: SchemaMapping
) -> SchemaMapping:
    """Operator override of the mapping."""
    await require_database(db, database_id)
    record = await upsert_mapping_record(db, database_id, mapping.model_dump())
    return mapping_from_record(record)


async def user_repository(
    db: AsyncSession, registry: ConnectionRegistry, database: ConnectedDatabase
) -> UserRepository:
    mapping = await get_schema_mapping(db, registry, database)
    return UserRepository(engine_for(registry, database), database.user_table, mapping)


async def refresh_user_count(
    db: AsyncSession, registry: ConnectionRegistry, database: ConnectedDatabase
) -> int:
    repo = await user_repository(db, registry, database)
    database.user_count = await repo.count()
    database.last_checked_at = utcnow()
    await db.flush()
    return database.user_count


async def list_databases(db: AsyncSession) -> list[ConnectedDatabase]:
    return await list_active_databases(db)


async def get_stats(db: AsyncSession, database_id: str | None = None) -> dict:
    databases = await list_active_databases(db)
    return {
        "activeBans": await count_active_bans(db, database_id),
        "pendingTokens": await count_pending_tokens(db, utcnow(), database_id),
        "databases": len(databases),
    }
