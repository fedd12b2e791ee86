"""Content moderation over a tenant's non-user tables.

A content table is any visible table other than the user table and the
usual auth bookkeeping tables. Where possible, each one is linked back to
users through a foreign key or a conventional column name such as
``user_id`` or ``author_id``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncEngine

from authbridge.bridge.identifiers import is_valid_identifier, quote_identifier
from authbridge.bridge.introspection import count_rows, first_match, get_tables
from authbridge.bridge.registry import tenant_connection
from authbridge.errors import TableNotFound

logger = logging.getLogger(__name__)

SYSTEM_TABLES = {
    "sessions", "session", "accounts", "account",
    "verification_tokens", "verification_token",
    "authenticators", "authenticator",
    "_prisma_migrations", "schema_migrations",
}

USER_FK_CANDIDATES = [
    "user_id", "author_id", "creator_id", "owner_id", "posted_by", "created_by", "userid",
]
TITLE_CANDIDATES = ["title", "subject", "name", "heading", "label"]
BODY_CANDIDATES = ["content", "body", "message", "text", "description", "comment"]
DATE_CANDIDATES = [
    "created_at", "createdat", "posted_at", "date", "timestamp", "sent_at", "updated_at",
]

# Never shown in row listings.
SENSITIVE_PATTERNS = ("password", "hash", "token", "secret", "avatar_b64")

MAX_LISTED_COLUMNS = 7
MAX_VALUE_LENGTH = 200


@dataclass
class ContentTable:
    name: str
    row_count: int
    columns: list[dict] = field(default_factory=list)
    id_column: str = "id"
    user_fk_column: str | None = None
    title_column: str | None = None
    body_column: str | None = None
    created_at_column: str | None = None

    def listed_columns(self) -> list[str]:
        """Id, user link and display columns first, then others up to the limit."""
        picked = [self.id_column]
        for name in (self.user_fk_column, self.title_column, self.body_column, self.created_at_column):
            if name and name not in picked:
                picked.append(name)
        for column in self.columns:
            if len(picked) >= MAX_LISTED_COLUMNS:
                break
            name = column["name"]
            if name in picked or not is_valid_identifier(name):
                continue
            if any(p in name.lower() for p in SENSITIVE_PATTERNS):
                continue
            picked.append(name)
        return picked

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "rowCount": self.row_count,
            "columns": self.columns,
            "idColumn": self.id_column,
            "userFkColumn": self.user_fk_column,
            "displayColumns": {
                "titleColumn": self.title_column,
                "bodyColumn": self.body_column,
                "createdAtColumn": self.created_at_column,
            },
        }


def _reflect(sync_conn, table_name: str) -> tuple[list[dict], list[dict], list[str]]:
    inspector = inspect(sync_conn)
    columns = inspector.get_columns(table_name)
    foreign_keys = inspector.get_foreign_keys(table_name)
    primary_key = inspector.get_pk_constraint(table_name).get("constrained_columns") or []
    return columns, foreign_keys, primary_key


async def describe_content_table(
    engine: AsyncEngine, table_name: str, user_table: str
) -> ContentTable | None:
    """Reflect one table; None when it is too small to hold content."""
    try:
        async with tenant_connection(engine) as conn:
            raw_columns, foreign_keys, primary_key = await conn.run_sync(_reflect, table_name)
    except NoSuchTableError as exc:
        raise TableNotFound(table_name) from exc

    # Single-column tables are junction or bookkeeping tables.
    if len(raw_columns) < 2:
        return None
    columns = [{"name": c["name"], "type": str(c["type"])} for c in raw_columns]
    names = [c["name"] for c in columns]

    user_fk = None
    for fk in foreign_keys:
        if (fk.get("referred_table") or "").lower() == user_table.lower() and fk["constrained_columns"]:
            user_fk = fk["constrained_columns"][0]
            break
    user_fk = user_fk or first_match(names, USER_FK_CANDIDATES)

    id_column = first_match(names, ["id"]) or (primary_key[0] if primary_key else "id")

    return ContentTable(
        name=table_name,
        row_count=await count_rows(engine, table_name),
        columns=columns,
        id_column=id_column,
        user_fk_column=user_fk,
        title_column=first_match(names, TITLE_CANDIDATES),
        body_column=first_match(names, BODY_CANDIDATES),
        created_at_column=first_match(names, DATE_CANDIDATES),
    )


async def detect_content_tables(engine: AsyncEngine, user_table: str) -> list[ContentTable]:
    """Every table that can be moderated, sorted by name.

    Tables whose names are not plain identifiers are skipped, since no
    statement could safely name them.
    """
    tables = []
    for name in await get_tables(engine):
        if name == user_table or name.lower() in SYSTEM_TABLES:
            continue
        if not is_valid_identifier(name):
            logger.warning(
                "Skipping table with unsafe name",
                extra={"event": "content.table_skipped", "table": repr(name)},
            )
            continue
        info = await describe_content_table(engine, name, user_table)
        if info is not None:
            tables.append(info)
    return tables


def _display_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<{len(bytes(value))} bytes>"
    if isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
        return value[:MAX_VALUE_LENGTH] + "..."
    return value


async def query_content_table(
    engine: AsyncEngine,
    table_name: str,
    columns: list[str],
    user_fk_column: str | None = None,
    user_id: str | None = None,
    limit: int = 25,
    offset: int = 0,
    order_by: str | None = None,
    order_dir: str = "DESC",
) -> tuple[list[dict], int]:
    """One page of rows plus the true total; long values are truncated.

    The user filter applies only when both the link column and a user id
    are given.
    """
    q = engine.dialect
    table = quote_identifier(q, table_name)
    select_list = ", ".join(quote_identifier(q, c) for c in columns)
    order_column = quote_identifier(q, order_by or columns[0])
    direction = "ASC" if str(order_dir).upper() == "ASC" else "DESC"

    where = ""
    params: dict[str, Any] = {}
    if user_fk_column and user_id:
        where = f"WHERE {quote_identifier(q, user_fk_column)} = :user_id"
        params["user_id"] = user_id

    async with tenant_connection(engine) as conn:
        total = int(
            (await conn.execute(text(f"SELECT COUNT(*) FROM {table} {where}"), params)).scalar_one()
        )
        result = await conn.execute(
            text(
                f"SELECT {select_list} FROM {table} {where} "
                f"ORDER BY {order_column} {direction} LIMIT :limit OFFSET :offset"
            ),
            {**params, "limit": limit, "offset": offset},
        )
        rows = [{k: _display_value(v) for k, v in row._mapping.items()} for row in result]
    return rows, total


async def delete_content_row(engine: AsyncEngine, table_name: str, id_column: str, row_id) -> int:
    """Delete one row by its id column. Returns rows affected."""
    table = quote_identifier(engine.dialect, table_name)
    column = quote_identifier(engine.dialect, id_column)
    async with tenant_connection(engine, write=True) as conn:
        result = await conn.execute(text(f"DELETE FROM {table} WHERE {column} = :id"), {"id": row_id})
        deleted = result.rowcount
    logger.info("Content row deleted", extra={"event": "content.deleted", "table": table_name})
    return deleted
