"""Connection registry for tenant databases.

One async engine per endpoint, created lazily and reused for the life of
the process. Creating a duplicate engine for the same endpoint is wasteful
but harmless, so there is no lock around check-then-insert.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from authbridge.errors import TenantConnectionError, TenantQueryError

logger = logging.getLogger(__name__)


def _engine_url(endpoint: str, credential: str | None):
    """Work out the connection URL for an endpoint + credential pair.

    A URL with a username but no password takes the credential as its
    password. Otherwise the credential only authorizes tenant API calls.
    """
    url = make_url(endpoint)
    if credential and url.username and not url.password:
        url = url.set(password=credential)
    return url


class ConnectionRegistry:
    """Process-wide cache of tenant engines keyed by endpoint."""

    def __init__(self, engine_factory=create_async_engine):
        self._engine_factory = engine_factory
        self._engines: dict[str, AsyncEngine] = {}

    def get_or_create(self, endpoint: str, credential: str | None = None) -> AsyncEngine:
        engine = self._engines.get(endpoint)
        if engine is None:
            try:
                url = _engine_url(endpoint, credential)
                engine = self._engine_factory(url)
            except Exception as exc:
                raise TenantConnectionError(f"Cannot open connection: {exc}") from exc
            self._engines[endpoint] = engine
            logger.info(
                "Tenant engine created",
                extra={"event": "registry.engine_created", "dialect": url.get_backend_name()},
            )
        return engine

    def __len__(self) -> int:
        return len(self._engines)

    async def dispose_all(self) -> None:
        """Dispose every cached engine. Called at application shutdown."""
        engines, self._engines = list(self._engines.values()), {}
        for engine in engines:
            await engine.dispose()


registry = ConnectionRegistry()


def get_registry() -> ConnectionRegistry:
    """Dependency returning the process-wide registry."""
    return registry


@asynccontextmanager
async def tenant_connection(engine: AsyncEngine, write: bool = False) -> AsyncIterator[AsyncConnection]:
    """Open a connection to a tenant database.

    Failures to connect, and failures that invalidate the connection, are
    raised as TenantConnectionError. Statement errors (bad column, constraint
    violations) are raised as TenantQueryError with the driver message.
    With write=True the block runs in a transaction that commits on exit.
    """
    try:
        conn = await engine.connect()
    except (OperationalError, InterfaceError, OSError) as exc:
        raise TenantConnectionError(f"Could not reach database: {exc}") from exc
    try:
        if write:
            async with conn.begin():
                yield conn
        else:
            yield conn
    except DBAPIError as exc:
        if exc.connection_invalidated:
            raise TenantConnectionError(f"Connection lost: {exc}") from exc
        raise TenantQueryError(str(exc.orig)) from exc
    finally:
        await conn.close()


async def check_connection(engine: AsyncEngine) -> None:
    """Run SELECT 1; raise TenantConnectionError if the database is unreachable."""
    async with tenant_connection(engine) as conn:
        await conn.execute(text("SELECT 1"))
