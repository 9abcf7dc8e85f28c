"""
# Security Manager

Password hashing and token handling for authentication.

- **Passwords**: `bcrypt` over `password + PASSWORD_PEPPER`. Hashing runs in
  the threadpool so the event loop is never blocked by the bcrypt work factor.
- **Access / refresh tokens**: HS256 JWTs signed with `python-jose`. Access
  tokens carry `userId`, `tenantId`, `role`, `email`, `name`; refresh tokens
  carry only the identity and are signed with `REFRESH_TOKEN_SECRET_KEY`.
- **Opaque tokens**: url-safe random strings for email verification, password
  reset and invitations.
"""

from datetime import datetime, timedelta, timezone
import secrets
from typing import Any, Dict, Optional, Tuple

import bcrypt
from jose import JWTError, jwt
from starlette.concurrency import run_in_threadpool

from community_microhelp.config import Settings
from community_microhelp.managers.logging_manager import get_logger

logger = get_logger(prefix="[Security Manager]")

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
# bcrypt only considers the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72


class TokenError(Exception):
    """Raised when a JWT is malformed, expired, or of the wrong type."""


class SecurityManager:
    def __init__(self, settings: Settings):
        self.settings = settings

    def _peppered(self, password: str) -> bytes:
        pepper = self.settings.PASSWORD_PEPPER.get_secret_value()
        return (password + pepper).encode("utf-8")[:BCRYPT_MAX_BYTES]

    def _hash_sync(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.settings.BCRYPT_ROUNDS)
        return bcrypt.hashpw(self._peppered(password), salt).decode("utf-8")

    def _verify_sync(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(self._peppered(password), password_hash.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is not a valid bcrypt hash")
            return False

    async def hash_password(self, password: str) -> str:
        return await run_in_threadpool(self._hash_sync, password)

    async def verify_password(self, password: str, password_hash: Optional[str]) -> bool:
        if not password_hash:
            return False
        return await run_in_threadpool(self._verify_sync, password, password_hash)

    def create_access_token(self, user: Dict[str, Any]) -> Tuple[str, datetime]:
        """
        Sign an access token for a user document.

        Args:
            user: The stored user (needs `userId`, `tenantId`, `role`, `email`, `name`).

        Returns:
            Tuple[str, datetime]: The encoded token and its expiry.
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        claims = {
            "sub": user["userId"],
            "userId": user["userId"],
            "tenantId": user["tenantId"],
            "role": user.get("role", "member"),
            "email": user.get("email"),
            "name": user.get("name"),
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": expires_at,
        }
        token = jwt.encode(claims, self.settings.SECRET_KEY.get_secret_value(), algorithm=self.settings.ALGORITHM)
        return token, expires_at

    def create_refresh_token(self, user: Dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": user["userId"],
            "userId": user["userId"],
            "tenantId": user["tenantId"],
            "type": REFRESH_TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS),
        }
        return jwt.encode(claims, self.settings.refresh_secret, algorithm=self.settings.ALGORITHM)

    def decode_token(self, token: str, token_type: str = ACCESS_TOKEN_TYPE) -> Dict[str, Any]:
        """
        Verify signature, expiry and type of a JWT and return its claims.

        Raises:
            TokenError: If verification fails for any reason.
        """
        secret = (
            self.settings.refresh_secret
            if token_type == REFRESH_TOKEN_TYPE
            else self.settings.SECRET_KEY.get_secret_value()
        )
        try:
            claims = jwt.decode(token, secret, algorithms=[self.settings.ALGORITHM])
        except JWTError as e:
            raise TokenError(str(e)) from e
        if claims.get("type") != token_type:
            raise TokenError(f"expected a {token_type} token")
        if not claims.get("userId") or not claims.get("tenantId"):
            raise TokenError("token is missing identity claims")
        return claims

    def issue_session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        """Build the token bundle returned by signup and login."""
        access_token, expires_at = self.create_access_token(user)
        return {
            "token": access_token,
            "accessToken": access_token,
            "refreshToken": self.create_refresh_token(user),
            "expiresAt": expires_at.isoformat(),
        }

    @staticmethod
    def generate_token(nbytes: int = 32) -> str:
        return secrets.token_urlsafe(nbytes)

    @staticmethod
    def generate_invitation_token() -> str:
        """Return a 40 character hex token."""
        return secrets.token_hex(20)
