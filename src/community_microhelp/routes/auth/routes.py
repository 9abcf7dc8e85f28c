"""
# Authentication Routes

Account lifecycle endpoints under `/auth`:

| Endpoint | Purpose |
|---|---|
| `POST /auth/signup` | Create an account (and start email verification when required) |
| `POST /auth/login` | Exchange credentials for access and refresh tokens |
| `POST /auth/refresh` | Exchange a refresh token for a new access token |
| `POST /auth/password-reset/request` | Email a single-use reset link |
| `POST /auth/password-reset/confirm` | Consume the reset token and set a new password |
| `POST /auth/email-verification/resend` | Email a new verification link |
| `POST /auth/email-verification/confirm` | Consume the verification token |

**Enumeration resistance:** reset and resend requests answer with the same
body whether or not the account exists.

**Single-use tokens:** reset and verification tokens are consumed with one
`find_one_and_update` whose filter requires `usedAt: null` and an unexpired
`expiresAt`, so a token can be redeemed exactly once. Expired records are
removed by the TTL index on `expiresAt`.
"""

from datetime import timedelta
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from community_microhelp.config import Settings
from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_app_settings, get_database, get_email_manager, get_security
from community_microhelp.managers.email_manager import EmailManager
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.managers.security_manager import REFRESH_TOKEN_TYPE, SecurityManager, TokenError
from community_microhelp.routes.auth.models import (
    EmailVerificationConfirm,
    EmailVerificationResend,
    LoginRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshRequest,
    SignupRequest,
    UserRole,
)
from community_microhelp.utils.logging_utils import log_security_event
from community_microhelp.utils.serialization import public_user, utcnow

logger = get_logger(prefix="[Auth Routes]")

router = APIRouter(prefix="/auth", tags=["Authentication"])

EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_TOKEN = "invalid or expired token"
RESET_REQUEST_MESSAGE = "If an account exists for that email, check your inbox for the reset link."
RESEND_MESSAGE = "If the account exists and is not yet verified, a new verification email has been sent."
VERIFICATION_REQUIRED_MESSAGE = "Check your email to verify your account before logging in."


async def _issue_single_use_token(
    db: DatabaseManager,
    security: SecurityManager,
    collection_name: str,
    user: Dict[str, Any],
    ttl: timedelta,
) -> str:
    """Store a new single-use token for `user` and return it."""
    now = utcnow()
    token = security.generate_token()
    tokens = db.get_tenant_collection(collection_name, user["tenantId"])
    await tokens.insert_one(
        {
            "userId": user["userId"],
            "email": user["email"],
            "token": token,
            "expiresAt": now + ttl,
            "usedAt": None,
            "createdAt": now,
        }
    )
    return token


async def _start_email_verification(
    db: DatabaseManager,
    security: SecurityManager,
    email_manager: EmailManager,
    settings: Settings,
    user: Dict[str, Any],
    body: Dict[str, Any],
) -> None:
    token = await _issue_single_use_token(
        db, security, "emailVerifications", user, timedelta(hours=settings.EMAIL_VERIFICATION_TTL_HOURS)
    )
    await email_manager.send_verification_email(user["email"], user["tenantId"], token)
    if settings.EXPOSE_DEBUG_TOKENS:
        body["verificationToken"] = token
        body["verificationUrl"] = email_manager.build_link("/verify-email", user["tenantId"], token)


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
    email_manager: EmailManager = Depends(get_email_manager),
    settings: Settings = Depends(get_app_settings),
):
    """
    Register a new account inside a tenant.

    **Process:**
    1.  Rejects the request with 409 if the email or username is taken in the tenant.
    2.  Stores the user with a peppered bcrypt hash and the `member` role.
    3.  With email verification required, sends a verification link and
        returns `status: verification_required` without tokens.
    4.  Otherwise returns an access token, a refresh token and the user.

    Raises:
        HTTPException(400): Validation failure.
        HTTPException(409): Email or username already in use.
    """
    users = db.get_tenant_collection("users", payload.tenant_id)
    try:
        existing = await users.find_one({"$or": [{"email": payload.email}, {"username": payload.username}]})
        if existing:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email or username already in use")

        now = utcnow()
        user = {
            "userId": f"local:{payload.tenant_id}:{payload.email}",
            "tenantId": payload.tenant_id,
            "email": payload.email,
            "username": payload.username,
            "name": payload.name,
            "role": UserRole.MEMBER.value,
            "providers": ["local"],
            "passwordHash": await security.hash_password(payload.password),
            "emailVerified": False,
            "emailVerifiedAt": None,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            await users.insert_one(user)
        except DuplicateKeyError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email or username already in use")

        log_security_event("signup", user["userId"], payload.tenant_id)
        logger.info("Created user %s in tenant %s", user["userId"], payload.tenant_id)

        if settings.REQUIRE_EMAIL_VERIFICATION:
            body: Dict[str, Any] = {
                "status": "verification_required",
                "message": VERIFICATION_REQUIRED_MESSAGE,
                "user": public_user(user),
            }
            await _start_email_verification(db, security, email_manager, settings, user, body)
            return body

        return {**security.issue_session(user), "user": public_user(user)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to create account in tenant %s: %s", payload.tenant_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create account")


@router.post("/login")
async def login(
    payload: LoginRequest,
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
    settings: Settings = Depends(get_app_settings),
):
    """
    Authenticate with email or username and password.

    Wrong identifier and wrong password are indistinguishable (401). A correct
    password on an unverified account is refused with 403 `EMAIL_NOT_VERIFIED`
    while verification is required.
    """
    users = db.get_tenant_collection("users", payload.tenant_id)
    identifier = payload.email_or_username
    try:
        user = await users.find_one({"$or": [{"email": identifier}, {"username": identifier}]})
        if not user or not await security.verify_password(payload.password, user.get("passwordHash")):
            log_security_event("login", identifier, payload.tenant_id, success=False)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

        if settings.REQUIRE_EMAIL_VERIFICATION and not user.get("emailVerified"):
            log_security_event("login_unverified", user["userId"], payload.tenant_id, success=False)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=EMAIL_NOT_VERIFIED)

        log_security_event("login", user["userId"], payload.tenant_id)
        return {**security.issue_session(user), "user": public_user(user)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to log in to tenant %s: %s", payload.tenant_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to log in")


@router.post("/refresh")
async def refresh_token(
    payload: RefreshRequest,
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
):
    """Issue a new access token for a valid refresh token. The user must still exist."""
    try:
        claims = security.decode_token(payload.refresh_token, token_type=REFRESH_TOKEN_TYPE)
    except TokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired refresh token")

    users = db.get_tenant_collection("users", claims["tenantId"])
    user = await users.find_one({"userId": claims["userId"]})
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="user not found")

    access_token, expires_at = security.create_access_token(user)
    return {"token": access_token, "accessToken": access_token, "expiresAt": expires_at.isoformat()}


@router.post("/password-reset/request")
async def request_password_reset(
    payload: PasswordResetRequest,
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
    email_manager: EmailManager = Depends(get_email_manager),
    settings: Settings = Depends(get_app_settings),
):
    """
    Start a password reset.

    Always answers 200 with the same message; a token is only created and
    emailed when the account exists.
    """
    body: Dict[str, Any] = {"ok": True, "message": RESET_REQUEST_MESSAGE}
    try:
        users = db.get_tenant_collection("users", payload.tenant_id)
        user = await users.find_one({"email": payload.email})
        if not user:
            log_security_event("password_reset_unknown_email", None, payload.tenant_id, success=False)
            return body

        token = await _issue_single_use_token(
            db, security, "passwordResets", user, timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES)
        )
        await email_manager.send_password_reset_email(user["email"], user["tenantId"], token)
        log_security_event("password_reset_requested", user["userId"], payload.tenant_id)
        if settings.EXPOSE_DEBUG_TOKENS:
            body["token"] = token
            body["resetUrl"] = email_manager.build_link("/reset-password", user["tenantId"], token)
        return body

    except Exception as e:
        logger.error("Failed to start password reset: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to start password reset")


@router.post("/password-reset/confirm")
async def confirm_password_reset(
    payload: PasswordResetConfirm,
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
):
    """
    Set a new password using a reset token.

    The token is consumed and the hash replaced inside one transaction when
    the deployment supports it. Every other outstanding reset token of the
    user is invalidated as well.

    Raises:
        HTTPException(400): Unknown, used or expired token.
    """
    resets = db.get_tenant_collection("passwordResets", payload.tenant_id)
    users = db.get_tenant_collection("users", payload.tenant_id)
    password_hash = await security.hash_password(payload.new_password)
    now = utcnow()

    try:
        async with db.transaction() as session:
            record = await resets.find_one_and_update(
                {"token": payload.token, "usedAt": None, "expiresAt": {"$gt": now}},
                {"$set": {"usedAt": now}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if not record:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN)

            result = await users.update_one(
                {"userId": record["userId"]},
                {"$set": {"passwordHash": password_hash, "updatedAt": now}},
                session=session,
            )
            if result.matched_count == 0:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN)

            await resets.update_many(
                {"userId": record["userId"], "usedAt": None},
                {"$set": {"usedAt": now}},
                session=session,
            )

        log_security_event("password_reset_completed", record["userId"], payload.tenant_id)
        return {"ok": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to reset password: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to reset password")


@router.post("/email-verification/resend")
async def resend_email_verification(
    payload: EmailVerificationResend,
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
    email_manager: EmailManager = Depends(get_email_manager),
    settings: Settings = Depends(get_app_settings),
):
    """Send a fresh verification link. Verified or unknown accounts get the same answer and no email."""
    body: Dict[str, Any] = {"ok": True, "message": RESEND_MESSAGE}
    try:
        users = db.get_tenant_collection("users", payload.tenant_id)
        user = await users.find_one({"email": payload.email})
        if user and not user.get("emailVerified"):
            await _start_email_verification(db, security, email_manager, settings, user, body)
            logger.info("Resent verification email for %s", user["userId"])
        return body

    except Exception as e:
        logger.error("Failed to resend verification email: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to resend verification email")


@router.post("/email-verification/confirm")
async def confirm_email_verification(
    payload: EmailVerificationConfirm,
    db: DatabaseManager = Depends(get_database),
):
    """
    Mark the account's email as verified.

    Raises:
        HTTPException(400): Unknown, used or expired token.
    """
    verifications = db.get_tenant_collection("emailVerifications", payload.tenant_id)
    users = db.get_tenant_collection("users", payload.tenant_id)
    now = utcnow()

    try:
        async with db.transaction() as session:
            record = await verifications.find_one_and_update(
                {"token": payload.token, "usedAt": None, "expiresAt": {"$gt": now}},
                {"$set": {"usedAt": now}},
                return_document=ReturnDocument.AFTER,
                session=session,
            )
            if not record:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN)

            result = await users.update_one(
                {"userId": record["userId"]},
                {"$set": {"emailVerified": True, "emailVerifiedAt": now, "updatedAt": now}},
                session=session,
            )
            if result.matched_count == 0:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=INVALID_TOKEN)

        log_security_event("email_verified", record["userId"], payload.tenant_id)
        return {"ok": True, "emailVerified": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error("Failed to verify email: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to verify email")
