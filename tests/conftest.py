"""Pytest configuration and fixtures.

Control plane and tenant databases are throwaway SQLite files under
tmp_path, driven through aiosqlite.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ADMIN_API_KEY", "test_admin_key")

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from authbridge.bridge.registry import ConnectionRegistry
from authbridge.database import Base
from authbridge.models import TokenType
from authbridge.services.notifier import DeliveryResult
from authbridge.services.tenants import connect_database

TENANT_TOKEN = "sk_test_tenant"
ADMIN_KEY = "test_admin_key"

USERS_DDL = """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL,
        full_name TEXT,
        username TEXT,
        password_hash TEXT,
        role TEXT,
        status TEXT,
        email_verified INTEGER DEFAULT 0,
        created_at TEXT
    )
"""

SESSIONS_DDL = """
    CREATE TABLE sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        token TEXT
    )
"""


class FakeNotifier:
    """Records every send; fails on demand."""

    def __init__(self, fail_with: str | None = None):
        self.fail_with = fail_with
        self.sent: list[tuple[TokenType, str, str, str]] = []

    async def send(self, token_type, to, link, app_name) -> DeliveryResult:
        self.sent.append((TokenType(token_type), to, link, app_name))
        if self.fail_with:
            return DeliveryResult(success=False, error=self.fail_with)
        return DeliveryResult(success=True)

    async def send_test(self, to, app_name) -> DeliveryResult:
        self.sent.append((None, to, "", app_name))
        if self.fail_with:
            return DeliveryResult(success=False, error=self.fail_with)
        return DeliveryResult(success=True)

    @property
    def last_token(self) -> str:
        return self.sent[-1][2].split("token=", 1)[1]


@pytest.fixture
def tenant_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'tenant.db'}"


@pytest_asyncio.fixture
async def tenant_engine(tenant_url):
    engine = create_async_engine(tenant_url)
    async with engine.begin() as conn:
        await conn.execute(text(USERS_DDL))
        await conn.execute(text(SESSIONS_DDL))
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'control.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def registry():
    reg = ConnectionRegistry()
    yield reg
    await reg.dispose_all()


@pytest_asyncio.fixture
async def tenant(db, registry, tenant_engine, tenant_url):
    """A connected database with a detected mapping, committed."""
    database, _ = await connect_database(
        db,
        registry,
        name="Test DB",
        app_name="Test App",
        endpoint=tenant_url,
        credential=TENANT_TOKEN,
        user_table="users",
    )
    await db.commit()
    return database


@pytest.fixture
def add_user(tenant_engine):
    """Insert a tenant user directly; returns its id."""

    async def insert_user(email, full_name=None, username=None, **extra) -> int:
        columns = {"email": email, "full_name": full_name, "username": username, **extra}
        columns = {k: v for k, v in columns.items() if v is not None}
        names = ", ".join(columns)
        params = ", ".join(f":{k}" for k in columns)
        async with tenant_engine.begin() as conn:
            result = await conn.execute(
                text(f"INSERT INTO users ({names}) VALUES ({params})"), columns
            )
            return result.lastrowid

    return insert_user


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def failing_notifier() -> FakeNotifier:
    return FakeNotifier(fail_with="mailbox unavailable")


@pytest.fixture
def tenant_headers() -> dict:
    return {"Authorization": f"Bearer {TENANT_TOKEN}"}


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_KEY}"}
