import pytest

from .conftest import TENANT, make_user


@pytest.mark.asyncio
async def test_member_cannot_invite(client, db, login_as):
    response = await client.post("/invitations", json={"email": "bob@example.com"}, headers=login_as(make_user()))
    assert response.status_code == 403
    assert response.json() == {"error": "forbidden"}
    db.raw("invitations").insert_one.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["moderator", "admin"])
async def test_moderator_and_admin_invite(client, db, login_as, role):
    response = await client.post(
        "/invitations", json={"email": "Bob@Example.com"}, headers=login_as(make_user(role=role))
    )

    assert response.status_code == 201
    invitation = response.json()["invitation"]
    assert invitation["email"] == "bob@example.com"
    assert len(invitation["token"]) == 40

    stored = db.raw("invitations").insert_one.call_args[0][0]
    assert stored["token"] == invitation["token"]
    assert stored["usedAt"] is None
    assert stored["tenantId"] == TENANT


@pytest.mark.asyncio
async def test_accept_invitation(client, db, login_as):
    db.raw("invitations").find_one_and_update.return_value = {"token": "t", "email": "bob@example.com"}
    bob = make_user(email="bob@example.com", username="bob")

    response = await client.post("/invitations/accept", json={"token": "t"}, headers=login_as(bob))

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    call = db.raw("invitations").find_one_and_update.call_args[0]
    assert call[0] == {"token": "t", "usedAt": None, "tenantId": TENANT}
    assert call[1]["$set"]["usedBy"] == bob["userId"]


@pytest.mark.asyncio
async def test_accept_used_invitation(client, login_as):
    response = await client.post("/invitations/accept", json={"token": "t"}, headers=login_as(make_user()))
    assert response.status_code == 400
    assert response.json() == {"error": "invalid or used token"}
