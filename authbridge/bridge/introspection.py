"""Schema introspection for tenant databases."""

import logging

from sqlalchemy import inspect, text
from sqlalchemy.exc import NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncEngine

from authbridge.bridge.identifiers import quote_identifier, validate_identifier
from authbridge.bridge.registry import tenant_connection
from authbridge.errors import TableNotFound
from authbridge.schemas.mapping import SchemaMapping

logger = logging.getLogger(__name__)

# Candidate column names per role, highest priority first.
ROLE_CANDIDATES: dict[str, list[str]] = {
    "id_column": ["id", "user_id", "uid", "userid"],
    "email_column": ["email", "user_email", "email_address"],
    "name_column": ["name", "full_name", "display_name", "fullname"],
    "username_column": ["username", "user_name", "handle", "screen_name"],
    "password_column": ["password", "password_hash", "hashed_password", "passwd"],
    "avatar_column": [
        "avatar", "avatar_url", "image", "profile_image", "photo_url", "image_url", "avatar_b64",
    ],
    "role_column": ["role", "user_role", "roles", "type", "account_type"],
    "status_column": ["status", "account_status", "is_active", "active", "banned", "state"],
    "created_at_column": [
        "created_at", "createdat", "registered_at", "joined_at", "date_joined", "signup_date",
    ],
    "last_login_column": ["last_login", "lastlogin", "last_login_at", "last_seen", "last_active"],
    "email_verified_column": [
        "email_verified", "emailverified", "verified", "is_verified", "email_confirmed",
    ],
}

REQUIRED_FALLBACKS = {"id_column": "id", "email_column": "email"}

SESSION_TABLE_CANDIDATES = ["sessions", "session", "user_sessions"]
SESSION_USER_COLUMN_CANDIDATES = ["user_id", "userid", "uid"]

# Internal tables of SQLite, Litestream and libSQL.
_HIDDEN_PREFIXES = ("sqlite_", "_litestream_", "libsql_")


def first_match(columns: list[str], candidates: list[str]) -> str | None:
    """Real name of the first column whose lowercased name is a candidate."""
    by_lower = {}
    for name in columns:
        by_lower.setdefault(name.lower(), name)
    for candidate in candidates:
        if candidate in by_lower:
            return by_lower[candidate]
    return None


async def get_tables(engine: AsyncEngine) -> list[str]:
    """List user-visible tables, sorted by name."""
    async with tenant_connection(engine) as conn:
        names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    return sorted(n for n in names if not n.startswith(_HIDDEN_PREFIXES))


async def get_table_columns(engine: AsyncEngine, table_name: str) -> list[dict]:
    """Column name and declared type for one table."""
    validate_identifier(table_name)
    try:
        async with tenant_connection(engine) as conn:
            columns = await conn.run_sync(
                lambda sync_conn: inspect(sync_conn).get_columns(table_name)
            )
    except NoSuchTableError as exc:
        raise TableNotFound(table_name) from exc
    return [{"name": c["name"], "type": str(c["type"])} for c in columns]


async def detect_schema(engine: AsyncEngine, table_name: str) -> SchemaMapping:
    """Propose a mapping for table_name by matching column names.

    Best effort: id and email fall back to literal ``id``/``email``, the
    other roles stay None when nothing matches.
    """
    columns = [c["name"] for c in await get_table_columns(engine, table_name)]

    detected = {}
    for field, candidates in ROLE_CANDIDATES.items():
        detected[field] = first_match(columns, candidates) or REQUIRED_FALLBACKS.get(field)

    tables = await get_tables(engine)
    lowered = {t.lower(): t for t in tables}
    for candidate in SESSION_TABLE_CANDIDATES:
        if candidate in lowered and lowered[candidate] != table_name:
            session_table = lowered[candidate]
            session_columns = [c["name"] for c in await get_table_columns(engine, session_table)]
            user_column = first_match(session_columns, SESSION_USER_COLUMN_CANDIDATES)
            if user_column:
                detected["session_table"] = session_table
                detected["session_user_id_column"] = user_column
                break

    logger.info(
        "Schema detected",
        extra={
            "event": "schema.detected",
            "table": table_name,
            "mapped": sorted(k for k, v in detected.items() if v),
        },
    )
    return SchemaMapping(**detected)


async def count_rows(engine: AsyncEngine, table_name: str) -> int:
    table = quote_identifier(engine.dialect, table_name)
    async with tenant_connection(engine) as conn:
        result = await conn.execute(text(f"SELECT COUNT(*) FROM {table}"))
        return int(result.scalar_one())


async def get_database_overview(engine: AsyncEngine) -> dict:
    """All tables with row counts and columns, plus a storage estimate.

    pageSize/pageCount are only known for SQLite-family databases; other
    backends report a page count of 0.
    """
    tables = []
    total_rows = 0
    for name in await get_tables(engine):
        columns = await get_table_columns(engine, name)
        row_count = await count_rows(engine, name)
        total_rows += row_count
        tables.append({"name": name, "rowCount": row_count, "columns": columns})

    page_size, page_count = 4096, 0
    if engine.dialect.name == "sqlite":
        async with tenant_connection(engine) as conn:
            page_size = int((await conn.execute(text("PRAGMA page_size"))).scalar_one())
            page_count = int((await conn.execute(text("PRAGMA page_count"))).scalar_one())

    return {
        "tables": tables,
        "totalRows": total_rows,
        "pageSize": page_size,
        "pageCount": page_count,
        "estimatedBytes": page_size * page_count,
    }
