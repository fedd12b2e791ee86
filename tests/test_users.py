"""Tests for the generic user repository against a SQLite tenant table."""

import pytest
from sqlalchemy import text

from authbridge.bridge.introspection import detect_schema
from authbridge.bridge.users import UserRepository
from authbridge.errors import (
    InvalidIdentifier,
    NoFieldsProvided,
    NoPasswordColumnMapped,
    TenantQueryError,
)
from authbridge.schemas.mapping import SchemaMapping


@pytest.fixture
def mapping():
    return SchemaMapping(
        id_column="id",
        email_column="email",
        name_column="full_name",
        username_column="username",
        password_column="password_hash",
        role_column="role",
        status_column="status",
        created_at_column="created_at",
        email_verified_column="email_verified",
        session_table="sessions",
        session_user_id_column="user_id",
    )


@pytest.fixture
def repo(tenant_engine, mapping):
    return UserRepository(tenant_engine, "users", mapping)


@pytest.mark.asyncio
async def test_create_then_get_round_trip(repo):
    user_id = await repo.create({"email": "a@b.com", "full_name": "", "username": None})

    user = await repo.get_by_id(user_id)

    assert user["email"] == "a@b.com"
    assert user["id"] == str(user_id)
    # Empty and None values were never inserted; NULL columns are dropped.
    assert "name" not in user
    assert "username" not in user
    assert "password" not in user


@pytest.mark.asyncio
async def test_create_returns_supplied_id(repo):
    assert await repo.create({"id": 77, "email": "x@y.com"}) == 77
    assert (await repo.get_by_id(77))["email"] == "x@y.com"


@pytest.mark.asyncio
async def test_create_with_no_values_fails(repo):
    with pytest.raises(NoFieldsProvided):
        await repo.create({"email": "", "full_name": None})


@pytest.mark.asyncio
async def test_create_rejects_bad_column_name(repo):
    with pytest.raises(InvalidIdentifier):
        await repo.create({"email": "a@b.com", "role) VALUES ('admin'); --": "x"})
    assert await repo.count() == 0


@pytest.mark.asyncio
async def test_get_missing_user_returns_none(repo):
    assert await repo.get_by_id(12345) is None


@pytest.mark.asyncio
async def test_search_pagination_reports_true_total(repo, add_user):
    """30 users; 'ann' matches in name or email, never bounded by the page size."""
    for i in range(30):
        if i % 3 == 0:
            await add_user(f"user{i}@example.com", full_name=f"Ann Smith {i}")
        elif i % 5 == 0:
            await add_user(f"joann{i}@example.com", full_name=f"Jo {i}")
        else:
            await add_user(f"person{i}@example.com", full_name=f"Bob {i}")

    users, total = await repo.query(search="ann", limit=10, offset=0)

    # i % 3 == 0 -> 10 rows; i % 5 == 0 and not i % 3 -> 5, 10, 20, 25.
    assert total == 14
    assert len(users) == 10

    users, total = await repo.query(search="ann", limit=10, offset=10)
    assert total == 14
    assert len(users) == 4


@pytest.mark.asyncio
async def test_query_projects_role_aliases_and_sorts(repo, add_user):
    await add_user("b@x.com", full_name="Bea", role="admin")
    await add_user("a@x.com", full_name="Al", role="member")

    users, total = await repo.query(sort_by="email", sort_dir="ASC")

    assert total == 2
    assert [u["email"] for u in users] == ["a@x.com", "b@x.com"]
    assert users[0]["name"] == "Al"
    assert users[0]["role"] == "member"
    assert "password" not in users[0]


@pytest.mark.asyncio
async def test_query_rejects_unsafe_sort_column(repo):
    with pytest.raises(InvalidIdentifier):
        await repo.query(sort_by="email; DROP TABLE users")


@pytest.mark.asyncio
async def test_update_field_injection_attempt_changes_nothing(repo, add_user, tenant_engine):
    user_id = await add_user("victim@x.com")

    with pytest.raises(InvalidIdentifier):
        await repo.update_field(user_id, "email; DROP TABLE users", "x")

    async with tenant_engine.connect() as conn:
        email = (
            await conn.execute(text("SELECT email FROM users WHERE id = :id"), {"id": user_id})
        ).scalar_one()
    assert email == "victim@x.com"


@pytest.mark.asyncio
async def test_update_field_binds_value(repo, add_user):
    user_id = await add_user("a@b.com")
    hostile = "'; DROP TABLE users; --"

    assert await repo.update_field(user_id, "full_name", hostile) == 1

    assert (await repo.get_by_id(user_id))["name"] == hostile
    assert await repo.count() == 1


@pytest.mark.asyncio
async def test_update_field_unknown_column_is_a_query_error(repo, add_user):
    user_id = await add_user("a@b.com")

    with pytest.raises(TenantQueryError, match="no such column") as excinfo:
        await repo.update_field(user_id, "no_such_column", "x")

    assert excinfo.value.code == "tenant_query_failed"
    assert (await repo.get_by_id(user_id))["email"] == "a@b.com"


@pytest.mark.asyncio
async def test_update_password_needs_password_column(tenant_engine, add_user):
    user_id = await add_user("a@b.com")
    repo = UserRepository(tenant_engine, "users", SchemaMapping())

    with pytest.raises(NoPasswordColumnMapped):
        await repo.update_password(user_id, "hash")


@pytest.mark.asyncio
async def test_delete_removes_row(repo, add_user):
    user_id = await add_user("a@b.com")
    assert await repo.delete(user_id) == 1
    assert await repo.get_by_id(user_id) is None


@pytest.mark.asyncio
async def test_sessions_list_and_force_logout(repo, add_user, tenant_engine):
    user_id = await add_user("a@b.com")
    other_id = await add_user("c@d.com")
    async with tenant_engine.begin() as conn:
        for uid, token in ((user_id, "s1"), (user_id, "s2"), (other_id, "s3")):
            await conn.execute(
                text("INSERT INTO sessions (user_id, token) VALUES (:uid, :token)"),
                {"uid": uid, "token": token},
            )

    assert {s["token"] for s in await repo.list_sessions(user_id)} == {"s1", "s2"}
    assert await repo.delete_sessions(user_id) == 2
    assert await repo.list_sessions(user_id) == []
    assert len(await repo.list_sessions(other_id)) == 1


@pytest.mark.asyncio
async def test_sessions_are_noops_without_session_table(tenant_engine, add_user):
    user_id = await add_user("a@b.com")
    repo = UserRepository(tenant_engine, "users", SchemaMapping())

    assert await repo.list_sessions(user_id) == []
    assert await repo.delete_sessions(user_id) == 0


@pytest.mark.asyncio
async def test_mixed_case_columns_keep_their_names(registry, tenant_url):
    engine = registry.get_or_create(tenant_url)
    async with engine.begin() as conn:
        await conn.execute(
            text('CREATE TABLE "Members" ("ID" INTEGER PRIMARY KEY, "Email" TEXT, "Full_Name" TEXT)')
        )
    mapping = await detect_schema(engine, "Members")
    assert (mapping.id_column, mapping.email_column, mapping.name_column) == (
        "ID",
        "Email",
        "Full_Name",
    )

    repo = UserRepository(engine, "Members", mapping)
    user_id = await repo.create({"Email": "Ann@x.com", "Full_Name": "Ann"})
    await repo.update_field(user_id, "Full_Name", "Annie")

    user = await repo.get_by_id(user_id)
    assert user["email"] == "Ann@x.com"
    assert user["name"] == "Annie"
    _, total = await repo.query(search="ann")
    assert total == 1
