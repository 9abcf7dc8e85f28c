from datetime import datetime, timedelta, timezone

from bson import ObjectId
import pytest

from .conftest import TENANT, make_cursor, make_user

ALICE = "local:acme:alice@example.com"
BOB = "local:acme:bob@example.com"
CAROL = "local:acme:carol@example.com"


@pytest.fixture
def headers(login_as):
    return login_as(make_user())


@pytest.mark.asyncio
async def test_direct_chat_is_reused(client, db, headers):
    existing = {"_id": ObjectId(), "isGroup": False, "participantIds": [BOB, ALICE], "title": None}
    db.raw("chats").find_one.return_value = existing

    response = await client.post("/chats", json={"participantIds": [BOB, BOB]}, headers=headers)

    assert response.status_code == 201
    assert response.json()["chat"]["_id"] == str(existing["_id"])
    lookup = db.raw("chats").find_one.call_args[0][0]
    assert lookup == {"isGroup": False, "participantIds": {"$all": [ALICE, BOB], "$size": 2}, "tenantId": TENANT}
    db.raw("chats").insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_direct_chat_created_when_missing(client, db, headers):
    response = await client.post("/chats", json={"participantIds": [BOB]}, headers=headers)

    assert response.status_code == 201
    chat = response.json()["chat"]
    assert chat["isGroup"] is False
    assert chat["participantIds"] == [ALICE, BOB]
    assert chat["title"] is None


@pytest.mark.asyncio
async def test_group_chat_never_reuses(client, db, headers):
    response = await client.post("/chats", json={"participantIds": [BOB, CAROL], "title": "Street party"}, headers=headers)

    assert response.status_code == 201
    assert response.json()["chat"]["isGroup"] is True
    db.raw("chats").find_one.assert_not_called()


@pytest.mark.asyncio
async def test_titled_pair_is_a_group(client, db, headers):
    response = await client.post("/chats", json={"participantIds": [BOB], "title": "Planning"}, headers=headers)
    assert response.json()["chat"]["isGroup"] is True
    db.raw("chats").find_one.assert_not_called()


@pytest.mark.asyncio
async def test_chat_with_only_self_rejected(client, headers):
    response = await client.post("/chats", json={"participantIds": [ALICE]}, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"error": "need at least 2 participants"}


@pytest.mark.asyncio
async def test_list_chats_unread_flags(client, db, headers):
    now = datetime.now(timezone.utc)
    read_chat = {"_id": ObjectId(), "participantIds": [ALICE, BOB]}
    unread_chat = {"_id": ObjectId(), "participantIds": [ALICE, CAROL]}
    quiet_chat = {"_id": ObjectId(), "participantIds": [ALICE, BOB, CAROL]}
    db.raw("chats").find.return_value = make_cursor([read_chat, unread_chat, quiet_chat])

    last_messages = {read_chat["_id"]: now - timedelta(minutes=5), unread_chat["_id"]: now}
    markers = {read_chat["_id"]: now}

    async def last_message(query, *args, **kwargs):
        ts = last_messages.get(query["chatId"])
        return {"timestamp": ts} if ts else None

    async def read_marker(query, *args, **kwargs):
        ts = markers.get(query["chatId"])
        return {"lastReadAt": ts} if ts else None

    db.raw("messages").find_one.side_effect = last_message
    db.raw("messageReads").find_one.side_effect = read_marker

    response = await client.get("/chats", headers=headers)

    chats = response.json()["chats"]
    assert [chat["unread"] for chat in chats] == [False, True, False]
    assert chats[2]["lastMessageAt"] is None
    db.raw("chats").find.assert_called_once_with({"participantIds": ALICE, "tenantId": TENANT})
    db.raw("chats").find.return_value.sort.assert_called_once_with("updatedAt", -1)


@pytest.mark.asyncio
async def test_send_message(client, db, headers):
    chat_id = ObjectId()
    db.raw("chats").find_one.return_value = {"_id": chat_id, "participantIds": [ALICE, BOB]}

    response = await client.post(f"/chats/{chat_id}/messages", json={"text": "Hi Bob"}, headers=headers)

    assert response.status_code == 201
    message = response.json()["message"]
    assert message["senderId"] == ALICE
    assert message["chatId"] == str(chat_id)
    assert db.raw("chats").find_one.call_args[0][0] == {"_id": chat_id, "participantIds": ALICE, "tenantId": TENANT}
    assert "updatedAt" in db.raw("chats").update_one.call_args[0][1]["$set"]


@pytest.mark.asyncio
async def test_send_message_not_participant(client, db, headers):
    response = await client.post(f"/chats/{ObjectId()}/messages", json={"text": "Hi"}, headers=headers)
    assert response.status_code == 404
    assert response.json() == {"error": "chat not found"}
    db.raw("messages").insert_one.assert_not_called()


@pytest.mark.asyncio
async def test_list_messages_oldest_first_and_marks_read(client, db, headers):
    chat_id = ObjectId()
    db.raw("chats").find_one.return_value = {"_id": chat_id, "participantIds": [ALICE, BOB]}
    newest_first = [{"_id": ObjectId(), "text": "second"}, {"_id": ObjectId(), "text": "first"}]
    db.raw("messages").find.return_value = make_cursor(newest_first)

    response = await client.get(f"/chats/{chat_id}/messages?limit=2&skip=4", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert [m["text"] for m in body["messages"]] == ["first", "second"]
    assert body["page"] == {"limit": 2, "skip": 4}

    cursor = db.raw("messages").find.return_value
    cursor.sort.assert_called_once_with("timestamp", -1)
    cursor.skip.assert_called_once_with(4)
    cursor.limit.assert_called_once_with(2)

    marker = db.raw("messageReads").update_one.call_args
    assert marker[0][0] == {"chatId": chat_id, "userId": ALICE, "tenantId": TENANT}
    assert "lastReadAt" in marker[0][1]["$set"]
    assert marker[1] == {"upsert": True}


@pytest.mark.asyncio
async def test_list_messages_limit_capped(client, db, headers):
    db.raw("chats").find_one.return_value = {"_id": ObjectId(), "participantIds": [ALICE]}
    response = await client.get(f"/chats/{ObjectId()}/messages?limit=500", headers=headers)
    assert response.json()["page"]["limit"] == 200
    db.raw("messages").find.return_value.limit.assert_called_once_with(200)
