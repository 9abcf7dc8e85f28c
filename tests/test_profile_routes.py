import pytest

from .conftest import make_user


@pytest.mark.asyncio
async def test_me_requires_token(client):
    response = await client.get("/me")
    assert response.status_code == 401
    assert response.json() == {"error": "Missing Authorization header"}


@pytest.mark.asyncio
async def test_me_rejects_garbage_token(client):
    response = await client.get("/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid or expired token"}


@pytest.mark.asyncio
async def test_me_rejects_token_for_deleted_user(client, app):
    token, _ = app.state.security.create_access_token(make_user())
    response = await client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json() == {"error": "user not found"}


@pytest.mark.asyncio
async def test_me_returns_public_profile(client, login_as):
    headers = login_as(make_user(passwordHash="secret-hash"))
    response = await client.get("/me", headers=headers)
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["email"] == "alice@example.com"
    assert "passwordHash" not in user


@pytest.mark.asyncio
async def test_update_name(client, db, login_as):
    headers = login_as(make_user())
    response = await client.patch("/me", json={"name": "  Alice Smith "}, headers=headers)

    assert response.status_code == 200
    update = db.raw("users").update_one.call_args[0][1]
    assert update["$set"]["name"] == "Alice Smith"


@pytest.mark.asyncio
async def test_blank_name_rejected(client, login_as):
    headers = login_as(make_user())
    response = await client.patch("/me", json={"name": "   "}, headers=headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_role_switch_disabled_by_default(client, db, login_as):
    headers = login_as(make_user())
    response = await client.patch("/me/role", json={"role": "admin"}, headers=headers)
    assert response.status_code == 403
    assert response.json() == {"error": "disabled in this env"}
    db.raw("users").update_one.assert_not_called()


@pytest.mark.asyncio
async def test_role_switch_when_unsafe_allowed(client, db, settings, login_as):
    settings.ALLOW_UNSAFE = True
    headers = login_as(make_user())
    response = await client.patch("/me/role", json={"role": "moderator"}, headers=headers)
    assert response.status_code == 200
    assert db.raw("users").update_one.call_args[0][1]["$set"]["role"] == "moderator"
