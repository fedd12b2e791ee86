"""HTTP-level tests for the tenant and operator routers."""

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select, text

from authbridge.bridge.registry import get_registry
from authbridge.config import settings
from authbridge.database import get_db
from authbridge.main import app
from authbridge.models import AuthToken
from authbridge.services.notifier import get_notifier
from authbridge.services.tenants import connect_database


@pytest_asyncio.fixture
async def client(session_maker, registry, notifier, tenant):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def _users(tenant) -> str:
    return f"/v1/admin/databases/{tenant.database_id}/users"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


# Tenant API


@pytest.mark.asyncio
async def test_tenant_routes_require_bearer(client):
    response = await client.get("/v1/auth/check-ban", params={"userId": "1"})
    assert response.status_code == 401

    response = await client.get(
        "/v1/auth/check-ban",
        params={"userId": "1"},
        headers={"Authorization": "Bearer sk_unknown"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_password_reset_flow(client, tenant_headers, notifier, add_user):
    user_id = await add_user("ann@example.com")

    response = await client.post(
        "/v1/auth/send-password-reset",
        json={
            "userId": str(user_id),
            "email": "ann@example.com",
            "resetUrl": "https://app.example.com/reset",
        },
        headers=tenant_headers,
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert "expiresAt" in response.json()
    assert notifier.sent[0][2].startswith("https://app.example.com/reset?token=")

    body = {"token": notifier.last_token, "newPassword": "brand-new-pw"}
    response = await client.post("/v1/auth/verify-reset", json=body, headers=tenant_headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "userId": str(user_id)}

    response = await client.post("/v1/auth/verify-reset", json=body, headers=tenant_headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "token_already_used"


@pytest.mark.asyncio
async def test_unknown_token_is_structured_error(client, tenant_headers):
    response = await client.post(
        "/v1/auth/verify-email", json={"token": "nope"}, headers=tenant_headers
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_token"


@pytest.mark.asyncio
async def test_delivery_failure_returns_502_and_keeps_token(
    client, tenant_headers, failing_notifier, add_user
):
    app.dependency_overrides[get_notifier] = lambda: failing_notifier
    user_id = await add_user("ann@example.com", full_name="Ann")

    response = await client.post(
        "/v1/auth/send-magic-link",
        json={"userId": str(user_id), "email": "ann@example.com"},
        headers=tenant_headers,
    )
    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "delivery_failed"
    assert "expiresAt" in error

    response = await client.post(
        "/v1/auth/verify-magic-link",
        json={"token": failing_notifier.last_token},
        headers=tenant_headers,
    )
    assert response.status_code == 200
    assert response.json()["user"]["name"] == "Ann"


@pytest.mark.asyncio
async def test_email_verification_flow(client, tenant_headers, notifier, add_user):
    user_id = await add_user("ann@example.com")

    await client.post(
        "/v1/auth/send-verification",
        json={"userId": str(user_id), "email": "ann@example.com"},
        headers=tenant_headers,
    )
    response = await client.post(
        "/v1/auth/verify-email", json={"token": notifier.last_token}, headers=tenant_headers
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "userId": str(user_id), "email": "ann@example.com"}


@pytest.mark.asyncio
async def test_magic_link_flow(client, tenant_headers, notifier, add_user):
    user_id = await add_user("ann@example.com", full_name="Ann", username="ann", role="admin")

    response = await client.post(
        "/v1/auth/send-magic-link",
        json={
            "userId": str(user_id),
            "email": "ann@example.com",
            "loginUrl": "https://app.example.com/magic",
        },
        headers=tenant_headers,
    )
    assert response.status_code == 200
    assert notifier.sent[-1][2].startswith("https://app.example.com/magic?token=")

    body = {"token": notifier.last_token}
    response = await client.post("/v1/auth/verify-magic-link", json=body, headers=tenant_headers)
    assert response.status_code == 200
    assert response.json()["user"] == {
        "id": str(user_id),
        "email": "ann@example.com",
        "name": "Ann",
        "username": "ann",
        "role": "admin",
    }

    response = await client.post("/v1/auth/verify-magic-link", json=body, headers=tenant_headers)
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "token_already_used"


@pytest.mark.asyncio
async def test_token_from_another_database_is_rejected(
    client, session_maker, registry, tenant_url, tenant_headers, notifier, add_user
):
    async with session_maker() as session:
        await connect_database(
            session,
            registry,
            name="Other DB",
            app_name="Other App",
            endpoint=tenant_url,
            credential="sk_other",
        )
        await session.commit()
    user_id = await add_user("ann@example.com")
    await client.post(
        "/v1/auth/send-magic-link",
        json={"userId": str(user_id), "email": "ann@example.com"},
        headers=tenant_headers,
    )

    response = await client.post(
        "/v1/auth/verify-magic-link",
        json={"token": notifier.last_token},
        headers={"Authorization": "Bearer sk_other"},
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "token_tenant_mismatch"

    # Still redeemable by the database that issued it.
    response = await client.post(
        "/v1/auth/verify-magic-link", json={"token": notifier.last_token}, headers=tenant_headers
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_ban_and_check_ban(client, tenant, tenant_headers, admin_headers, add_user):
    user_id = await add_user("ann@example.com", status="active")
    ban_url = f"{_users(tenant)}/{user_id}/ban"

    response = await client.post(ban_url, json={"reason": "spam"}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["statusSynced"] is True

    response = await client.get(
        "/v1/auth/check-ban", params={"userId": str(user_id)}, headers=tenant_headers
    )
    assert response.json()["banned"] is True
    assert response.json()["reason"] == "spam"

    response = await client.get(f"{_users(tenant)}/{user_id}", headers=admin_headers)
    assert response.json()["user"]["status"] == "banned"

    response = await client.delete(ban_url, headers=admin_headers)
    assert response.json()["lifted"] == 1

    response = await client.get(
        "/v1/auth/check-ban", params={"userId": str(user_id)}, headers=tenant_headers
    )
    assert response.json() == {"banned": False}


@pytest.mark.asyncio
async def test_zero_hour_ban_not_reported(client, tenant, tenant_headers, admin_headers):
    await client.post(
        f"{_users(tenant)}/7/ban",
        json={"type": "temporary", "durationHours": 0},
        headers=admin_headers,
    )

    response = await client.get(
        "/v1/auth/check-ban", params={"userId": "7"}, headers=tenant_headers
    )
    assert response.json() == {"banned": False}


# Operator API


@pytest.mark.asyncio
async def test_operator_routes_check_key(client, tenant_headers):
    response = await client.get("/v1/admin/databases", headers=tenant_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_databases(client, tenant, admin_headers):
    response = await client.get("/v1/admin/databases", headers=admin_headers)
    assert response.status_code == 200
    [info] = response.json()
    assert info["databaseId"] == tenant.database_id
    assert info["appName"] == "Test App"
    assert "credential" not in info


@pytest.mark.asyncio
async def test_unknown_database_is_404(client, admin_headers):
    response = await client.get("/v1/admin/databases/missing/users", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "tenant_not_found"


@pytest.mark.asyncio
async def test_user_listing_with_search_and_ban_status(client, tenant, admin_headers, add_user):
    banned_id = await add_user("ann@example.com", full_name="Ann")
    await add_user("joanna@example.com", full_name="Jo")
    await add_user("bob@example.com", full_name="Bob")
    await client.post(f"{_users(tenant)}/{banned_id}/ban", json={}, headers=admin_headers)

    response = await client.get(
        _users(tenant), params={"search": "ann", "limit": 1}, headers=admin_headers
    )
    data = response.json()
    assert data["total"] == 2
    assert len(data["users"]) == 1

    response = await client.get(_users(tenant), headers=admin_headers)
    by_id = {u["id"]: u for u in response.json()["users"]}
    assert by_id[str(banned_id)]["banStatus"]["reason"] == "No reason provided"
    assert all(u["banStatus"] is None for uid, u in by_id.items() if uid != str(banned_id))


@pytest.mark.asyncio
async def test_create_get_and_delete_user(client, tenant, admin_headers):
    response = await client.post(
        _users(tenant),
        json={"id": "501", "email": "new@example.com", "name": "New", "password": "secret-pw"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["userId"] == "501"

    response = await client.get(f"{_users(tenant)}/501", headers=admin_headers)
    user = response.json()["user"]
    assert user["email"] == "new@example.com"
    assert user["name"] == "New"
    assert "password" not in user

    response = await client.delete(f"{_users(tenant)}/501", headers=admin_headers)
    assert response.json() == {"success": True}
    response = await client.get(f"{_users(tenant)}/501", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "user_not_found"


@pytest.mark.asyncio
async def test_deleting_user_revokes_pending_tokens(
    client, tenant, tenant_headers, admin_headers, notifier, session_maker, add_user
):
    user_id = await add_user("ann@example.com")
    await client.post(
        f"{_users(tenant)}/{user_id}/send/password-reset",
        json={"email": "ann@example.com"},
        headers=admin_headers,
    )
    token = notifier.last_token

    response = await client.delete(f"{_users(tenant)}/{user_id}", headers=admin_headers)
    assert response.json() == {"success": True}

    response = await client.post(
        "/v1/auth/verify-reset",
        json={"token": token, "newPassword": "brand-new-pw"},
        headers=tenant_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "token_already_used"

    async with session_maker() as session:
        record = (
            await session.execute(select(AuthToken).where(AuthToken.token == token))
        ).scalar_one()
    assert record.used_at is not None

    response = await client.get("/v1/admin/audit", headers=admin_headers)
    deleted = next(e for e in response.json() if e["action"] == "auth_user_deleted")
    assert deleted["details"]["tokens_revoked"] == 1


@pytest.mark.asyncio
async def test_update_field_rejects_injection(client, tenant, admin_headers, add_user):
    user_id = await add_user("ann@example.com")

    response = await client.patch(
        f"{_users(tenant)}/{user_id}",
        json={"column": "email; DROP TABLE users", "value": "x"},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_identifier"

    response = await client.get(f"{_users(tenant)}/{user_id}", headers=admin_headers)
    assert response.json()["user"]["email"] == "ann@example.com"


@pytest.mark.asyncio
async def test_update_unknown_column_is_structured_error(client, tenant, admin_headers, add_user):
    user_id = await add_user("ann@example.com")

    response = await client.patch(
        f"{_users(tenant)}/{user_id}",
        json={"column": "no_such_column", "value": "x"},
        headers=admin_headers,
    )
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "tenant_query_failed"
    assert "no_such_column" in error["message"]


@pytest.mark.asyncio
async def test_mapping_override_validates_identifiers(client, tenant, admin_headers):
    url = f"/v1/admin/databases/{tenant.database_id}/mapping"

    response = await client.put(
        url, json={"idColumn": "id", "emailColumn": "email OR 1=1"}, headers=admin_headers
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_identifier"

    response = await client.put(
        url, json={"idColumn": "id", "emailColumn": "email", "nameColumn": "username"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    response = await client.get(url, headers=admin_headers)
    assert response.json()["nameColumn"] == "username"
    assert response.json()["passwordColumn"] is None


@pytest.mark.asyncio
async def test_force_logout(client, tenant, admin_headers, add_user, tenant_engine):
    user_id = await add_user("ann@example.com")
    async with tenant_engine.begin() as conn:
        await conn.execute(
            text("INSERT INTO sessions (user_id, token) VALUES (:uid, 'a'), (:uid, 'b')"),
            {"uid": user_id},
        )

    response = await client.post(f"{_users(tenant)}/{user_id}/logout", headers=admin_headers)
    assert response.json() == {"success": True, "sessionsDestroyed": 2}


@pytest.mark.asyncio
async def test_info_and_refresh_count(client, tenant, admin_headers, add_user):
    await add_user("ann@example.com")
    base = f"/v1/admin/databases/{tenant.database_id}"

    response = await client.get(f"{base}/info", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["totalRows"] == 1
    assert response.json()["appName"] == "Test App"

    response = await client.post(f"{base}/refresh-count", headers=admin_headers)
    assert response.json()["userCount"] == 1


@pytest.mark.asyncio
async def test_stats_and_audit(client, tenant, admin_headers, add_user):
    user_id = await add_user("ann@example.com")
    await client.post(f"{_users(tenant)}/{user_id}/ban", json={}, headers=admin_headers)
    await client.post(
        f"{_users(tenant)}/{user_id}/send/magic-link",
        json={"email": "ann@example.com"},
        headers=admin_headers,
    )

    response = await client.get("/v1/admin/stats", headers=admin_headers)
    assert response.json() == {"activeBans": 1, "pendingTokens": 1, "databases": 1}

    response = await client.get("/v1/admin/audit", headers=admin_headers)
    actions = [e["action"] for e in response.json()]
    assert actions[:2] == ["auth_magic_link_sent", "auth_user_banned"]
    assert all(e["actor"] == "operator" for e in response.json())


@pytest.mark.asyncio
async def test_introspect_missing_user_table_is_404(
    client, session_maker, registry, tenant_url, admin_headers
):
    async with session_maker() as session:
        database, mapping = await connect_database(
            session, registry, name="Typo", app_name="Typo", endpoint=tenant_url,
            user_table="members",
        )
        await session.commit()
    assert mapping is None

    response = await client.get(
        f"/v1/admin/databases/{database.database_id}/introspect",
        headers=admin_headers,
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "table_not_found"


# Content moderation


@pytest.mark.asyncio
async def test_content_listing_and_delete(client, tenant, admin_headers, add_user, tenant_engine):
    ann = await add_user("ann@example.com")
    bob = await add_user("bob@example.com")
    async with tenant_engine.begin() as conn:
        await conn.execute(
            text(
                "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER REFERENCES users(id), "
                "title TEXT, content TEXT, created_at TEXT)"
            )
        )
        await conn.execute(
            text(
                "INSERT INTO posts (user_id, title, content, created_at) VALUES "
                "(:ann, 'hello', 'first post', '2024-01-01'), "
                "(:bob, 'spam', 'buy now', '2024-01-02')"
            ),
            {"ann": ann, "bob": bob},
        )
    base = f"/v1/admin/databases/{tenant.database_id}/content"

    response = await client.get(base, headers=admin_headers)
    [posts] = response.json()["tables"]
    assert posts["name"] == "posts"
    assert posts["rowCount"] == 2
    assert posts["userFkColumn"] == "user_id"

    response = await client.get(f"{base}/posts", params={"userId": str(bob)}, headers=admin_headers)
    data = response.json()
    assert data["total"] == 1
    [spam] = data["rows"]
    assert spam["title"] == "spam"

    response = await client.delete(f"{base}/posts/{spam['id']}", headers=admin_headers)
    assert response.json() == {"success": True, "deleted": 1}

    response = await client.get(f"{base}/posts", headers=admin_headers)
    assert [r["title"] for r in response.json()["rows"]] == ["hello"]

    response = await client.get("/v1/admin/audit", headers=admin_headers)
    event = response.json()[0]
    assert event["action"] == "auth_content_deleted"
    assert event["details"]["table"] == "posts"


@pytest.mark.asyncio
async def test_user_table_is_not_content(client, tenant, admin_headers):
    base = f"/v1/admin/databases/{tenant.database_id}/content"

    response = await client.get(f"{base}/users", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "table_not_found"

    response = await client.delete(f"{base}/users/1", headers=admin_headers)
    assert response.status_code == 404


# Email


@pytest.mark.asyncio
async def test_email_settings_never_expose_key(client, admin_headers, monkeypatch):
    monkeypatch.setattr(settings, "resend_api_key", "re_live_secret")

    response = await client.get("/v1/admin/email-settings", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["configured"] is True
    assert "re_live_secret" not in response.text
    assert set(data) == {"configured", "fromEmail", "appUrl"}


@pytest.mark.asyncio
async def test_send_test_email(client, admin_headers, notifier, failing_notifier):
    response = await client.post(
        "/v1/admin/email-settings/test", json={"to": "ops@example.com"}, headers=admin_headers
    )
    assert response.json() == {"success": True}
    assert notifier.sent[-1][1] == "ops@example.com"

    app.dependency_overrides[get_notifier] = lambda: failing_notifier
    response = await client.post(
        "/v1/admin/email-settings/test", json={"to": "ops@example.com"}, headers=admin_headers
    )
    assert response.status_code == 502
    assert response.json()["error"]["code"] == "delivery_failed"

    response = await client.get("/v1/admin/audit", headers=admin_headers)
    assert [e["details"]["delivered"] for e in response.json()[:2]] == [False, True]
