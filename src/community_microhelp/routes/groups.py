"""
# Group Routes

Community groups and their membership. Slugs are unique per tenant and
membership is unique per `(group, user)`, so joining twice is harmless.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pymongo.errors import DuplicateKeyError

from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_database
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.models.group_models import GroupCreate
from community_microhelp.routes.auth.dependencies import get_current_user_dep
from community_microhelp.utils.serialization import parse_object_id, serialize_document, utcnow

logger = get_logger(prefix="[Group Routes]")

router = APIRouter(prefix="/groups", tags=["Groups"])

OWNER_ROLE = "owner"
MEMBER_ROLE = "member"


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_group(
    payload: GroupCreate,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    Create a group and make the creator its owner.

    Raises:
        HTTPException(400): Missing name or malformed slug.
        HTTPException(409): The slug is already used in the tenant.
    """
    tenant_id = current_user["tenantId"]
    groups = db.get_tenant_collection("groups", tenant_id)
    members = db.get_tenant_collection("groupMembers", tenant_id)

    now = utcnow()
    group = {
        "name": payload.name,
        "slug": payload.slug,
        "description": payload.description or "",
        "createdBy": current_user["userId"],
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        result = await groups.insert_one(group)
    except DuplicateKeyError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slug already in use")
    group["_id"] = result.inserted_id

    try:
        await members.insert_one(
            {"groupId": result.inserted_id, "userId": current_user["userId"], "role": OWNER_ROLE, "createdAt": now}
        )
    except Exception as e:
        # a group without an owner row must not survive
        logger.error("Failed to add owner to group %s, removing it: %s", result.inserted_id, e, exc_info=True)
        await groups.delete_one({"_id": result.inserted_id})
        raise HTTPException(status_code=500, detail="Failed to create group")
    logger.info("Created group %s (%s) in tenant %s", payload.slug, result.inserted_id, tenant_id)
    return {"group": serialize_document(group)}


@router.get("")
async def list_groups(
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    groups = db.get_tenant_collection("groups", current_user["tenantId"])
    items = await groups.find({}).sort("createdAt", -1).to_list(length=None)
    return {"groups": serialize_document(items)}


@router.post("/{group_id}/join", status_code=status.HTTP_201_CREATED)
async def join_group(
    group_id: str,
    response: Response,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """Join a group as a member. Joining again answers 200."""
    oid = parse_object_id(group_id)
    tenant_id = current_user["tenantId"]
    group = await db.get_tenant_collection("groups", tenant_id).find_one({"_id": oid})
    if not group:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="group not found")

    members = db.get_tenant_collection("groupMembers", tenant_id)
    try:
        await members.insert_one(
            {"groupId": oid, "userId": current_user["userId"], "role": MEMBER_ROLE, "createdAt": utcnow()}
        )
    except DuplicateKeyError:
        response.status_code = status.HTTP_200_OK
        return {"joined": True}

    logger.info("User %s joined group %s", current_user["userId"], group_id)
    return {"joined": True}


@router.get("/{group_id}/members")
async def list_group_members(
    group_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    oid = parse_object_id(group_id)
    members = db.get_tenant_collection("groupMembers", current_user["tenantId"])
    items = await members.find({"groupId": oid}).sort("createdAt", 1).to_list(length=None)
    return {"members": serialize_document(items)}
