from datetime import datetime, timedelta, timezone

from pymongo.errors import DuplicateKeyError
import pytest

from .conftest import TENANT, make_user

SIGNUP = {
    "tenantId": TENANT,
    "email": "Alice@Example.com",
    "username": "Alice",
    "password": "correct-horse-battery",
    "name": "Alice Doe",
}


@pytest.mark.asyncio
async def test_signup_requires_verification_by_default(client, db):
    response = await client.post("/auth/signup", json=SIGNUP)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "verification_required"
    assert "token" not in body
    assert body["user"]["userId"] == "local:acme:alice@example.com"
    assert body["user"]["email"] == "alice@example.com"
    assert body["user"]["username"] == "alice"
    assert "passwordHash" not in body["user"]
    assert body["verificationToken"]
    assert body["verificationUrl"].startswith("http://localhost:8081/verify-email?")

    stored = db.raw("users").insert_one.call_args[0][0]
    assert stored["tenantId"] == TENANT
    assert stored["role"] == "member"
    assert stored["emailVerified"] is False
    assert stored["passwordHash"].startswith("$2")

    verification = db.raw("emailVerifications").insert_one.call_args[0][0]
    assert verification["token"] == body["verificationToken"]
    assert verification["usedAt"] is None


@pytest.mark.asyncio
async def test_signup_returns_session_without_verification(client, app, settings):
    settings.REQUIRE_EMAIL_VERIFICATION = False
    response = await client.post("/auth/signup", json=SIGNUP)

    assert response.status_code == 201
    body = response.json()
    claims = app.state.security.decode_token(body["token"])
    assert claims["userId"] == body["user"]["userId"]
    assert body["refreshToken"]


@pytest.mark.asyncio
async def test_signup_conflict_on_existing_user(client, db):
    db.raw("users").find_one.return_value = make_user()
    response = await client.post("/auth/signup", json=SIGNUP)
    assert response.status_code == 409
    assert response.json() == {"error": "Email or username already in use"}
    db.raw("users").insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_signup_conflict_on_duplicate_key_race(client, db):
    db.raw("users").insert_one.side_effect = DuplicateKeyError("E11000")
    response = await client.post("/auth/signup", json=SIGNUP)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_signup_validation_errors_are_400(client):
    response = await client.post("/auth/signup", json={**SIGNUP, "password": "short", "username": "ab"})
    assert response.status_code == 400
    paths = {issue["path"] for issue in response.json()["error"]}
    assert {"password", "username"} <= paths


@pytest.mark.asyncio
async def test_signup_then_login_yields_same_user(client, app, db, settings):
    settings.REQUIRE_EMAIL_VERIFICATION = False
    signup = await client.post("/auth/signup", json=SIGNUP)
    stored = db.raw("users").insert_one.call_args[0][0]

    db.raw("users").find_one.return_value = stored
    response = await client.post(
        "/auth/login",
        json={"tenantId": TENANT, "emailOrUsername": "ALICE", "password": SIGNUP["password"]},
    )

    assert response.status_code == 200
    claims = app.state.security.decode_token(response.json()["token"])
    assert claims["userId"] == signup.json()["user"]["userId"]
    assert db.raw("users").find_one.call_args[0][0] == {
        "$or": [{"email": "alice"}, {"username": "alice"}],
        "tenantId": TENANT,
    }


@pytest.mark.asyncio
async def test_login_wrong_password(client, app, db):
    user = make_user(passwordHash=await app.state.security.hash_password("correct-horse-battery"))
    db.raw("users").find_one.return_value = user
    response = await client.post(
        "/auth/login", json={"tenantId": TENANT, "emailOrUsername": "alice", "password": "wrong-password"}
    )
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}


@pytest.mark.asyncio
async def test_login_unknown_user(client):
    response = await client.post(
        "/auth/login", json={"tenantId": TENANT, "emailOrUsername": "nobody", "password": "whatever-123"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_refused_until_verified(client, app, db):
    user = make_user(emailVerified=False, passwordHash=await app.state.security.hash_password("correct-horse-battery"))
    db.raw("users").find_one.return_value = user
    response = await client.post(
        "/auth/login", json={"tenantId": TENANT, "emailOrUsername": "alice", "password": "correct-horse-battery"}
    )
    assert response.status_code == 403
    assert response.json() == {"error": "EMAIL_NOT_VERIFIED"}


@pytest.mark.asyncio
async def test_refresh_issues_new_access_token(client, app, db):
    user = make_user()
    db.raw("users").find_one.return_value = user
    refresh = app.state.security.create_refresh_token(user)

    response = await client.post("/auth/refresh", json={"refreshToken": refresh})
    assert response.status_code == 200
    assert app.state.security.decode_token(response.json()["accessToken"])["userId"] == user["userId"]


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(client, app):
    access, _ = app.state.security.create_access_token(make_user())
    response = await client.post("/auth/refresh", json={"refreshToken": access})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_password_reset_request_does_not_reveal_accounts(client, db):
    unknown = await client.post("/auth/password-reset/request", json={"tenantId": TENANT, "email": "x@example.com"})
    assert unknown.status_code == 200
    assert "token" not in unknown.json()
    db.raw("passwordResets").insert_one.assert_not_called()

    db.raw("users").find_one.return_value = make_user()
    known = await client.post("/auth/password-reset/request", json={"tenantId": TENANT, "email": "alice@example.com"})
    assert known.status_code == 200
    assert known.json()["message"] == unknown.json()["message"]
    assert known.json()["resetUrl"].startswith("http://localhost:8081/reset-password?")

    record = db.raw("passwordResets").insert_one.call_args[0][0]
    assert record["token"] == known.json()["token"]
    assert record["expiresAt"] - record["createdAt"] == timedelta(minutes=60)


@pytest.mark.asyncio
async def test_password_reset_confirm(client, db):
    user = make_user()
    db.raw("passwordResets").find_one_and_update.return_value = {"userId": user["userId"], "token": "t"}

    response = await client.post(
        "/auth/password-reset/confirm",
        json={"tenantId": TENANT, "token": "t", "newPassword": "brand-new-password"},
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    consume_filter = db.raw("passwordResets").find_one_and_update.call_args[0][0]
    assert consume_filter["token"] == "t"
    assert consume_filter["usedAt"] is None
    assert consume_filter["tenantId"] == TENANT
    assert consume_filter["expiresAt"]["$gt"] <= datetime.now(timezone.utc)

    update = db.raw("users").update_one.call_args[0][1]
    assert update["$set"]["passwordHash"].startswith("$2")
    db.raw("passwordResets").update_many.assert_awaited_once()


@pytest.mark.asyncio
async def test_password_reset_confirm_rejects_used_token(client, db):
    response = await client.post(
        "/auth/password-reset/confirm",
        json={"tenantId": TENANT, "token": "used", "newPassword": "brand-new-password"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "invalid or expired token"}
    db.raw("users").update_one.assert_not_called()


@pytest.mark.asyncio
async def test_email_verification_confirm(client, db):
    db.raw("emailVerifications").find_one_and_update.return_value = {"userId": "local:acme:alice@example.com"}
    response = await client.post("/auth/email-verification/confirm", json={"tenantId": TENANT, "token": "t"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "emailVerified": True}
    assert db.raw("users").update_one.call_args[0][1]["$set"]["emailVerified"] is True


@pytest.mark.asyncio
async def test_email_verification_confirm_invalid(client):
    response = await client.post("/auth/email-verification/confirm", json={"tenantId": TENANT, "token": "nope"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_resend_skips_verified_accounts(client, db):
    db.raw("users").find_one.return_value = make_user(emailVerified=True)
    response = await client.post("/auth/email-verification/resend", json={"tenantId": TENANT, "email": "alice@example.com"})
    assert response.status_code == 200
    assert "verificationToken" not in response.json()
    db.raw("emailVerifications").insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_resend_for_unverified_account(client, db):
    db.raw("users").find_one.return_value = make_user(emailVerified=False)
    response = await client.post("/auth/email-verification/resend", json={"tenantId": TENANT, "email": "alice@example.com"})
    assert response.status_code == 200
    assert response.json()["verificationToken"]
