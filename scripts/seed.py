#!/usr/bin/env python3
"""
Seed script: creates a demo SQLite tenant database (users + sessions) and
registers it as a connected database with an auto-detected schema mapping.
Run after migrations: python scripts/seed.py
"""

import asyncio
import os
import sys
from datetime import datetime, timezone
from uuid import uuid4

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from authbridge.bridge.registry import registry
from authbridge.config import settings
from authbridge.models import ConnectedDatabase
from authbridge.services.passwords import hash_password
from authbridge.services.tenants import connect_database


TENANT_TOKEN = "sk_demo_tenant_12345"  # Demo tenant bearer - print this for user
TENANT_DB_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "demo_tenant.db")
TENANT_ENDPOINT = f"sqlite+aiosqlite:///{TENANT_DB_PATH}"

DEMO_USERS = [
    ("ann@example.com", "Ann Lee", "admin"),
    ("joanna@example.com", "Joanna Park", "user"),
    ("bob@example.com", "Bob Stone", "user"),
]


async def seed_tenant_database():
    engine = create_async_engine(TENANT_ENDPOINT)
    now = datetime.now(timezone.utc).isoformat()
    async with engine.begin() as conn:
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                full_name TEXT,
                password_hash TEXT,
                role TEXT,
                status TEXT,
                email_verified INTEGER NOT NULL DEFAULT 0,
                created_at TEXT
            )
        """))
        await conn.execute(text("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                created_at TEXT
            )
        """))
        for email, name, role in DEMO_USERS:
            exists = await conn.execute(
                text("SELECT 1 FROM users WHERE email = :email"), {"email": email}
            )
            if exists.first():
                continue
            user_id = str(uuid4())
            await conn.execute(
                text("""
                    INSERT INTO users (id, email, full_name, password_hash, role, status, created_at)
                    VALUES (:id, :email, :name, :pw, :role, 'active', :now)
                """),
                {"id": user_id, "email": email, "name": name,
                 "pw": hash_password("password123"), "role": role, "now": now},
            )
            await conn.execute(
                text("INSERT INTO sessions (id, user_id, created_at) VALUES (:id, :uid, :now)"),
                {"id": str(uuid4()), "uid": user_id, "now": now},
            )
    await engine.dispose()


async def seed():
    await seed_tenant_database()

    engine = create_async_engine(settings.database_url)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        result = await session.execute(
            select(ConnectedDatabase).where(ConnectedDatabase.credential == TENANT_TOKEN)
        )
        existing = result.scalars().first()
        if existing:
            print("Connected database already exists, using existing.")
        else:
            database, mapping = await connect_database(
                session,
                registry,
                name="Demo tenant",
                app_name="Demo App",
                endpoint=TENANT_ENDPOINT,
                credential=TENANT_TOKEN,
                user_table="users",
            )
            await session.commit()
            print(f"Connected database {database.database_id}")
            if mapping is not None:
                print(f"Detected mapping: {mapping.model_dump(by_alias=True, exclude_none=True)}")
            else:
                print("Schema detection failed; set the mapping through the admin API.")

    await registry.dispose_all()
    await engine.dispose()

    print("Seed complete!")
    print(f"Tenant token: {TENANT_TOKEN}")
    print(f"Use: Authorization: Bearer {TENANT_TOKEN}")
    print("Example: curl 'http://localhost:8000/v1/auth/check-ban?userId=123' \\")
    print('  -H "Authorization: Bearer ' + TENANT_TOKEN + '"')


if __name__ == "__main__":
    asyncio.run(seed())
