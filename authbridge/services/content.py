"""Moderation of a connected database's content tables."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from authbridge.bridge.content import (
    ContentTable,
    delete_content_row,
    detect_content_tables,
    query_content_table,
)
from authbridge.bridge.registry import ConnectionRegistry
from authbridge.errors import TableNotFound
from authbridge.models import ConnectedDatabase
from authbridge.services.audit import record_event
from authbridge.services.tenants import engine_for

logger = logging.getLogger(__name__)


async def list_content_tables(
    registry: ConnectionRegistry, database: ConnectedDatabase
) -> list[ContentTable]:
    return await detect_content_tables(engine_for(registry, database), database.user_table)


async def require_content_table(
    registry: ConnectionRegistry, database: ConnectedDatabase, table_name: str
) -> ContentTable:
    """Only tables that detection reports may be read or modified."""
    for table in await list_content_tables(registry, database):
        if table.name == table_name:
            return table
    raise TableNotFound(table_name, "Table not found or not a content table")


async def fetch_content_rows(
    registry: ConnectionRegistry,
    database: ConnectedDatabase,
    table_name: str,
    page: int = 1,
    limit: int = 25,
    user_id: str | None = None,
) -> dict:
    table = await require_content_table(registry, database, table_name)
    columns = table.listed_columns()
    rows, total = await query_content_table(
        engine_for(registry, database),
        table.name,
        columns,
        user_fk_column=table.user_fk_column,
        user_id=user_id,
        limit=limit,
        offset=(page - 1) * limit,
        order_by=table.created_at_column or table.id_column,
    )
    return {
        "table": table.to_dict(),
        "columns": columns,
        "rows": rows,
        "total": total,
        "page": page,
        "limit": limit,
    }


async def delete_content(
    db: AsyncSession,
    registry: ConnectionRegistry,
    database: ConnectedDatabase,
    table_name: str,
    row_id: str,
    actor: str,
) -> int:
    table = await require_content_table(registry, database, table_name)
    deleted = await delete_content_row(
        engine_for(registry, database), table.name, table.id_column, row_id
    )
    await record_event(
        db, "auth_content_deleted", actor, database.database_id,
        table=table.name, row_id=row_id, deleted=deleted,
    )
    return deleted
