"""Generic user repository over a tenant's own user table.

Statement shape comes from the schema mapping: every table and column name
is checked by validate_identifier and quoted for the tenant dialect right
before it is spliced in. Every value (ids, search terms, field contents) is
a bound parameter.
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from authbridge.bridge.identifiers import quote_identifier
from authbridge.bridge.registry import tenant_connection
from authbridge.errors import NoFieldsProvided, NoPasswordColumnMapped
from authbridge.schemas.mapping import SchemaMapping

logger = logging.getLogger(__name__)

ExternalUser = dict[str, Any]


def _to_user(row) -> ExternalUser:
    """Row -> ExternalUser; id is always a string, NULL fields are dropped."""
    data = dict(row._mapping)
    user: ExternalUser = {"id": str(data.pop("id"))}
    for key, value in data.items():
        if value is not None:
            user[key] = value
    return user


class UserRepository:
    """CRUD against one tenant's user table through its schema mapping."""

    def __init__(self, engine: AsyncEngine, table: str, mapping: SchemaMapping):
        self.engine = engine
        self.table = table
        self.mapping = mapping

    def _q(self, name: str) -> str:
        return quote_identifier(self.engine.dialect, name)

    def _table(self) -> str:
        return self._q(self.table)

    def _select_list(self) -> str:
        return ", ".join(
            f"{self._q(column)} AS \"{alias}\""
            for alias, column in self.mapping.projection()
        )

    def _order_column(self, sort_by: str | None) -> str:
        if sort_by:
            return self._q(self.mapping.column_for(sort_by) or sort_by)
        return self._q(self.mapping.created_at_column or self.mapping.id_column)

    async def query(
        self,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
        sort_by: str | None = None,
        sort_dir: str = "DESC",
    ) -> tuple[list[ExternalUser], int]:
        """One page of users plus the true total matching the same filter."""
        table = self._table()
        columns = self._select_list()
        order_column = self._order_column(sort_by)
        direction = "ASC" if str(sort_dir).upper() == "ASC" else "DESC"

        where = ""
        params: dict[str, Any] = {}
        if search:
            conditions = [
                f"{self._q(c)} LIKE :search"
                for c in self.mapping.searchable_columns()
            ]
            where = f"WHERE {' OR '.join(conditions)}"
            params["search"] = f"%{search}%"

        async with tenant_connection(self.engine) as conn:
            count = await conn.execute(
                text(f"SELECT COUNT(*) FROM {table} {where}"), params
            )
            total = int(count.scalar_one())
            result = await conn.execute(
                text(
                    f"SELECT {columns} FROM {table} {where} "
                    f"ORDER BY {order_column} {direction} LIMIT :limit OFFSET :offset"
                ),
                {**params, "limit": limit, "offset": offset},
            )
            users = [_to_user(row) for row in result]
        return users, total

    async def get_by_id(self, user_id) -> ExternalUser | None:
        table = self._table()
        id_column = self._q(self.mapping.id_column)
        async with tenant_connection(self.engine) as conn:
            result = await conn.execute(
                text(f"SELECT {self._select_list()} FROM {table} WHERE {id_column} = :id"),
                {"id": user_id},
            )
            row = result.first()
        return _to_user(row) if row is not None else None

    async def count(self) -> int:
        table = self._table()
        async with tenant_connection(self.engine) as conn:
            result = await conn.execute(text(f"SELECT COUNT(*) FROM {table}"))
            return int(result.scalar_one())

    async def update_field(self, user_id, column_name: str, value) -> int:
        """Set one column on one row. Returns rows affected."""
        table = self._table()
        column = self._q(column_name)
        id_column = self._q(self.mapping.id_column)
        async with tenant_connection(self.engine, write=True) as conn:
            result = await conn.execute(
                text(f"UPDATE {table} SET {column} = :value WHERE {id_column} = :id"),
                {"value": value, "id": user_id},
            )
            updated = result.rowcount
        logger.info(
            "External user field updated",
            extra={"event": "user.field_updated", "table": table, "column": column},
        )
        return updated

    async def update_password(self, user_id, password_hash: str) -> int:
        if not self.mapping.password_column:
            raise NoPasswordColumnMapped()
        return await self.update_field(user_id, self.mapping.password_column, password_hash)

    async def create(self, fields: dict[str, Any]):
        """Insert a row from column -> value; None and "" values are left out.

        Returns the id column's value, or the database-assigned row id when
        the id was not supplied.
        """
        table = self._table()
        # Every key is checked, including the ones whose value is dropped.
        quoted = {column: self._q(column) for column in fields}
        present = {c: v for c, v in fields.items() if v is not None and v != ""}
        if not present:
            raise NoFieldsProvided()

        names = list(present)
        column_list = ", ".join(quoted[name] for name in names)
        placeholders = ", ".join(f":p{i}" for i in range(len(names)))
        params = {f"p{i}": present[name] for i, name in enumerate(names)}
        async with tenant_connection(self.engine, write=True) as conn:
            result = await conn.execute(
                text(f"INSERT INTO {table} ({column_list}) VALUES ({placeholders})"),
                params,
            )
            row_id = result.lastrowid
        logger.info("External user created", extra={"event": "user.created", "table": table})
        if self.mapping.id_column in present:
            return present[self.mapping.id_column]
        return row_id

    async def delete(self, user_id) -> int:
        table = self._table()
        id_column = self._q(self.mapping.id_column)
        async with tenant_connection(self.engine, write=True) as conn:
            result = await conn.execute(
                text(f"DELETE FROM {table} WHERE {id_column} = :id"), {"id": user_id}
            )
            deleted = result.rowcount
        logger.info("External user deleted", extra={"event": "user.deleted", "table": table})
        return deleted

    async def list_sessions(self, user_id) -> list[dict]:
        if not self.mapping.has_sessions:
            return []
        session_table = self._q(self.mapping.session_table)
        user_column = self._q(self.mapping.session_user_id_column)
        async with tenant_connection(self.engine) as conn:
            result = await conn.execute(
                text(f"SELECT * FROM {session_table} WHERE {user_column} = :id"),
                {"id": user_id},
            )
            return [dict(row._mapping) for row in result]

    async def delete_sessions(self, user_id) -> int:
        """Force logout: remove every session row for the user."""
        if not self.mapping.has_sessions:
            return 0
        session_table = self._q(self.mapping.session_table)
        user_column = self._q(self.mapping.session_user_id_column)
        async with tenant_connection(self.engine, write=True) as conn:
            result = await conn.execute(
                text(f"DELETE FROM {session_table} WHERE {user_column} = :id"),
                {"id": user_id},
            )
            return result.rowcount
