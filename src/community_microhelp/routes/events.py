"""
# Event Routes

Tenant events, optionally hosted by a group, and per-user RSVPs. An RSVP is
an upsert keyed by `(event, user)`, so the latest answer wins.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_database
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.models.base import as_utc
from community_microhelp.models.event_models import EventCreate, RsvpRequest
from community_microhelp.routes.auth.dependencies import get_current_user_dep
from community_microhelp.utils.serialization import parse_object_id, serialize_document, utcnow

logger = get_logger(prefix="[Event Routes]")

router = APIRouter(prefix="/events", tags=["Events"])

DEFAULT_LOOKBACK = timedelta(days=7)
DEFAULT_LOOKAHEAD = timedelta(days=30)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: EventCreate,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    Create an event.

    Raises:
        HTTPException(400): Validation failure, `endsAt` before `startsAt`, or a malformed `groupId`.
        HTTPException(404): `groupId` does not name a group of the tenant.
    """
    tenant_id = current_user["tenantId"]
    group_oid = None
    if payload.group_id:
        group_oid = parse_object_id(payload.group_id, detail="invalid groupId")
        group = await db.get_tenant_collection("groups", tenant_id).find_one({"_id": group_oid})
        if not group:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="group not found")

    now = utcnow()
    event = {
        "title": payload.title,
        "description": payload.description or "",
        "startsAt": payload.starts_at,
        "endsAt": payload.ends_at,
        "groupId": group_oid,
        "createdBy": current_user["userId"],
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        result = await db.get_tenant_collection("events", tenant_id).insert_one(event)
    except Exception as e:
        logger.error("Failed to create event: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create event")
    event["_id"] = result.inserted_id

    logger.info("Created event %s in tenant %s", result.inserted_id, tenant_id)
    return {"event": serialize_document(event)}


@router.get("")
async def list_events(
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = Query(default=None),
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    List events starting inside a window, earliest first.

    The window defaults to the last 7 days through the next 30 days.
    """
    now = utcnow()
    start = as_utc(from_) if from_ else now - DEFAULT_LOOKBACK
    end = as_utc(to) if to else now + DEFAULT_LOOKAHEAD

    query: Dict[str, Any] = {"startsAt": {"$gte": start, "$lte": end}}
    if group_id:
        query["groupId"] = parse_object_id(group_id, detail="invalid groupId")

    events = db.get_tenant_collection("events", current_user["tenantId"])
    items = await events.find(query).sort("startsAt", 1).to_list(length=None)
    return {"events": serialize_document(items)}


@router.post("/{event_id}/rsvp")
async def rsvp_event(
    event_id: str,
    payload: Optional[RsvpRequest] = Body(default=None),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """Record the caller's RSVP (`going` by default), replacing any earlier answer."""
    oid = parse_object_id(event_id)
    tenant_id = current_user["tenantId"]
    event = await db.get_tenant_collection("events", tenant_id).find_one({"_id": oid})
    if not event:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="event not found")

    rsvp_status = (payload or RsvpRequest()).status.value
    now = utcnow()
    rsvps = db.get_tenant_collection("eventRsvps", tenant_id)
    await rsvps.update_one(
        {"eventId": oid, "userId": current_user["userId"]},
        {"$set": {"status": rsvp_status, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
        upsert=True,
    )
    return {"ok": True, "eventId": str(oid), "status": rsvp_status, "eventTitle": event.get("title")}
