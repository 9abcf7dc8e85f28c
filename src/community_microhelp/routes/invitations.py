"""
# Invitation Routes

Moderators and admins invite people by email; the invitee redeems the token
once. Redemption is a single `find_one_and_update` on `usedAt: null`.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_database, get_security
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.managers.security_manager import SecurityManager
from community_microhelp.models.invitation_models import InvitationAccept, InvitationCreate
from community_microhelp.routes.auth.dependencies import get_current_user_dep, require_roles
from community_microhelp.routes.auth.models import UserRole
from community_microhelp.utils.logging_utils import log_security_event
from community_microhelp.utils.serialization import utcnow

logger = get_logger(prefix="[Invitation Routes]")

router = APIRouter(prefix="/invitations", tags=["Invitations"])

require_inviter = require_roles(UserRole.ADMIN.value, UserRole.MODERATOR.value)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_invitation(
    payload: InvitationCreate,
    current_user: Dict[str, Any] = Depends(require_inviter),
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
):
    """
    Create an invitation token for an email address.

    Raises:
        HTTPException(403): Caller is not an admin or moderator.
    """
    token = security.generate_invitation_token()
    invitations = db.get_tenant_collection("invitations", current_user["tenantId"])
    await invitations.insert_one(
        {
            "email": payload.email,
            "token": token,
            "createdBy": current_user["userId"],
            "createdAt": utcnow(),
            "usedAt": None,
            "usedBy": None,
        }
    )
    logger.info("Invitation for %s created by %s", payload.email, current_user["userId"])
    return {"invitation": {"email": payload.email, "token": token}}


@router.post("/accept")
async def accept_invitation(
    payload: InvitationAccept,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    Redeem an invitation token for the calling user.

    Raises:
        HTTPException(400): Unknown token, or the token was already used.
    """
    invitations = db.get_tenant_collection("invitations", current_user["tenantId"])
    invitation = await invitations.find_one_and_update(
        {"token": payload.token, "usedAt": None},
        {"$set": {"usedAt": utcnow(), "usedBy": current_user["userId"]}},
    )
    if not invitation:
        log_security_event("invitation_rejected", current_user["userId"], current_user["tenantId"], success=False)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid or used token")

    log_security_event("invitation_accepted", current_user["userId"], current_user["tenantId"])
    return {"ok": True}
