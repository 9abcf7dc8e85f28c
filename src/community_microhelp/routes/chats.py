"""
# Chat Routes

Direct (1:1) and group chats between members of a tenant.

- A chat with exactly two participants and no title is a direct chat; asking
  for the same pair again returns the existing chat.
- Each participant has a read marker in `messageReads`; a chat is `unread`
  when its newest message is later than the marker.
- Fetching messages moves the caller's marker to now.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_database
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.models.chat_models import ChatCreate, MessageCreate
from community_microhelp.routes.auth.dependencies import get_current_user_dep
from community_microhelp.utils.serialization import parse_object_id, serialize_document, utcnow

logger = get_logger(prefix="[Chat Routes]")

router = APIRouter(prefix="/chats", tags=["Chats"])

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
DEFAULT_MESSAGES_LIMIT = 50
MAX_MESSAGES_LIMIT = 200


def unique_participants(requester_id: str, participant_ids: List[str]) -> List[str]:
    """Requester first, then the other ids in request order without repeats or blanks."""
    seen = [requester_id]
    for pid in participant_ids:
        if pid and pid not in seen:
            seen.append(pid)
    return seen


async def get_chat_for_member(db: DatabaseManager, tenant_id: str, chat_id: str, user_id: str) -> Dict[str, Any]:
    oid = parse_object_id(chat_id)
    chat = await db.get_tenant_collection("chats", tenant_id).find_one({"_id": oid, "participantIds": user_id})
    if not chat:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="chat not found")
    return chat


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_chat(
    payload: ChatCreate,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    Create a chat, or return the existing direct chat between the same two users.

    Raises:
        HTTPException(400): Fewer than two distinct participants.
    """
    tenant_id = current_user["tenantId"]
    participants = unique_participants(current_user["userId"], payload.participant_ids)
    if len(participants) < 2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="need at least 2 participants")

    chats = db.get_tenant_collection("chats", tenant_id)
    is_direct = len(participants) == 2 and not payload.title
    if is_direct:
        existing = await chats.find_one(
            {"isGroup": False, "participantIds": {"$all": participants, "$size": 2}}
        )
        if existing:
            return {"chat": serialize_document(existing)}

    now = utcnow()
    chat = {
        "isGroup": not is_direct,
        "participantIds": participants,
        "title": payload.title or None,
        "createdBy": current_user["userId"],
        "createdAt": now,
        "updatedAt": now,
    }
    result = await chats.insert_one(chat)
    chat["_id"] = result.inserted_id
    logger.info("Created %s chat %s in tenant %s", "group" if chat["isGroup"] else "direct", result.inserted_id, tenant_id)
    return {"chat": serialize_document(chat)}


@router.get("")
async def list_chats(
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """List the caller's chats, most recently active first, with an `unread` flag."""
    tenant_id = current_user["tenantId"]
    user_id = current_user["userId"]
    chats = db.get_tenant_collection("chats", tenant_id)
    messages = db.get_tenant_collection("messages", tenant_id)
    reads = db.get_tenant_collection("messageReads", tenant_id)

    items = await chats.find({"participantIds": user_id}).sort("updatedAt", -1).to_list(length=None)
    result = []
    for chat in items:
        last = await messages.find_one({"chatId": chat["_id"]}, sort=[("timestamp", -1)])
        marker = await reads.find_one({"chatId": chat["_id"], "userId": user_id})
        last_message_at = last["timestamp"] if last else None
        last_read_at = marker["lastReadAt"] if marker else EPOCH
        chat["lastMessageAt"] = last_message_at
        chat["unread"] = bool(last_message_at and last_message_at > last_read_at)
        result.append(chat)
    return {"chats": serialize_document(result)}


@router.post("/{chat_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: str,
    payload: MessageCreate,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    tenant_id = current_user["tenantId"]
    chat = await get_chat_for_member(db, tenant_id, chat_id, current_user["userId"])

    now = utcnow()
    message = {
        "chatId": chat["_id"],
        "senderId": current_user["userId"],
        "text": payload.text,
        "timestamp": now,
    }
    result = await db.get_tenant_collection("messages", tenant_id).insert_one(message)
    message["_id"] = result.inserted_id
    await db.get_tenant_collection("chats", tenant_id).update_one({"_id": chat["_id"]}, {"$set": {"updatedAt": now}})
    return {"message": serialize_document(message)}


@router.get("/{chat_id}/messages")
async def list_messages(
    chat_id: str,
    limit: int = Query(default=DEFAULT_MESSAGES_LIMIT, ge=1),
    skip: int = Query(default=0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    Page through a chat's messages.

    Pages are counted from the newest message backwards; each page is returned
    oldest first. Marks the chat as read for the caller.
    """
    limit = min(limit, MAX_MESSAGES_LIMIT)
    tenant_id = current_user["tenantId"]
    user_id = current_user["userId"]
    chat = await get_chat_for_member(db, tenant_id, chat_id, user_id)

    messages = db.get_tenant_collection("messages", tenant_id)
    page = await messages.find({"chatId": chat["_id"]}).sort("timestamp", -1).skip(skip).limit(limit).to_list(length=limit)
    page.reverse()

    await db.get_tenant_collection("messageReads", tenant_id).update_one(
        {"chatId": chat["_id"], "userId": user_id},
        {"$set": {"lastReadAt": utcnow()}},
        upsert=True,
    )
    return {"messages": serialize_document(page), "page": {"limit": limit, "skip": skip}}
