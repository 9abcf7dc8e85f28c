"""Profile endpoints for the authenticated user (`/me`)."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from community_microhelp.config import Settings
from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_app_settings, get_database
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.routes.auth.dependencies import get_current_user_dep
from community_microhelp.routes.auth.models import ProfileUpdate, RoleUpdate
from community_microhelp.utils.logging_utils import log_security_event
from community_microhelp.utils.serialization import public_user, utcnow

logger = get_logger(prefix="[Profile Routes]")

router = APIRouter(prefix="/me", tags=["Profile"])


async def _update_self(db: DatabaseManager, current_user: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    users = db.get_tenant_collection("users", current_user["tenantId"])
    changes["updatedAt"] = utcnow()
    await users.update_one({"userId": current_user["userId"]}, {"$set": changes})
    updated = await users.find_one({"userId": current_user["userId"]}, {"passwordHash": 0})
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="user not found")
    return {"user": public_user(updated)}


@router.get("")
async def read_me(current_user: Dict[str, Any] = Depends(get_current_user_dep)):
    """Return the authenticated user's public profile."""
    return {"user": public_user(current_user)}


@router.patch("")
async def update_me(
    payload: ProfileUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """Change the display name. Blank names are rejected with 400."""
    try:
        return await _update_self(db, current_user, {"name": payload.name})
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to update profile of %s: %s", current_user["userId"], e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update profile")


@router.patch("/role")
async def update_my_role(
    payload: RoleUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    """
    Switch the caller's own role.

    Development convenience only: refused with 403 unless `ALLOW_UNSAFE` is set.
    """
    if not settings.ALLOW_UNSAFE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="disabled in this env")

    log_security_event(
        "role_self_change",
        current_user["userId"],
        current_user["tenantId"],
        details={"from": current_user.get("role"), "to": payload.role.value},
    )
    return await _update_self(db, current_user, {"role": payload.role.value})
