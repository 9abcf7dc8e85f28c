"""
# Authentication Dependencies

`get_current_user_dep` is the single gate in front of every protected route:

1. Reads the `Authorization: Bearer <token>` header.
2. Verifies the access token's signature, expiry and type.
3. Loads the user by `(userId, tenantId)` from the token so the role is
   always current.

Every failure is a 401 with an `{"error": ...}` body.

```python
@router.get("/me")
async def read_me(current_user: dict = Depends(get_current_user_dep)):
    return {"user": public_user(current_user)}
```

`require_roles(...)` builds a dependency that additionally checks the
stored role and answers 403 `forbidden`.
"""

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from community_microhelp.database import DatabaseManager
from community_microhelp.dependencies import get_database, get_security
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.managers.security_manager import SecurityManager, TokenError
from community_microhelp.utils.logging_utils import log_security_event, user_id_context

logger = get_logger(prefix="[Auth Dependencies]")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_dep(
    token: Optional[str] = Depends(oauth2_scheme),
    db: DatabaseManager = Depends(get_database),
    security: SecurityManager = Depends(get_security),
) -> Dict[str, Any]:
    """
    Resolve the authenticated user for the request.

    Returns:
        dict: The stored user document (including `tenantId` and `role`).

    Raises:
        HTTPException(401): Missing header, bad or expired token, or unknown user.
    """
    if not token:
        raise _unauthorized("Missing Authorization header")

    try:
        claims = security.decode_token(token)
    except TokenError as e:
        logger.debug("Rejected access token: %s", e)
        raise _unauthorized("Invalid or expired token")

    users = db.get_tenant_collection("users", claims["tenantId"])
    user = await users.find_one({"userId": claims["userId"]})
    if not user:
        log_security_event("token_user_missing", claims["userId"], claims["tenantId"], success=False)
        raise _unauthorized("user not found")

    user_id_context.set(user["userId"])
    return user


def require_roles(*roles: str):
    """Dependency factory allowing only users whose stored role is in `roles`."""

    async def dependency(current_user: Dict[str, Any] = Depends(get_current_user_dep)) -> Dict[str, Any]:
        if current_user.get("role") not in roles:
            log_security_event(
                "role_denied",
                current_user.get("userId"),
                current_user.get("tenantId"),
                success=False,
                details={"required": ",".join(roles)},
            )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
        return current_user

    return dependency
