"""
# Authentication Models

Request bodies for signup, login, token refresh, password reset, email
verification and profile updates.

**Normalization:**
*   Emails and usernames are lowercased before they reach a handler, so
    lookups and uniqueness checks are case-insensitive.
*   Surrounding whitespace is stripped from every string field.
"""

from enum import Enum

from pydantic import EmailStr, Field, field_validator

from community_microhelp.models.base import BaseDocumentedModel

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128
USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 40
NAME_MAX_LENGTH = 100


class UserRole(str, Enum):
    MEMBER = "member"
    MODERATOR = "moderator"
    ADMIN = "admin"


class SignupRequest(BaseDocumentedModel):
    """
    Input model for new account registration.

    **Validation Rules:**
    *   **tenantId**: Required, non-empty.
    *   **username**: 3-40 characters, lowercased.
    *   **email**: Valid address, lowercased.
    *   **password**: At least 8 characters.
    *   **name**: 1-100 characters.
    """

    tenant_id: str = Field(..., min_length=1, max_length=100, description="Community the account belongs to.", examples=["acme"])
    email: EmailStr = Field(..., description="Account email address.", examples=["alice@example.com"])
    username: str = Field(
        ...,
        min_length=USERNAME_MIN_LENGTH,
        max_length=USERNAME_MAX_LENGTH,
        description="Handle unique within the tenant.",
        examples=["alice"],
    )
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH, examples=["correct-horse-battery"])
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH, description="Display name.", examples=["Alice Doe"])

    @field_validator("username", mode="after")
    @classmethod
    def username_lowercase(cls, v: str) -> str:
        return v.lower()

    @field_validator("email", mode="after")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.lower()


class LoginRequest(BaseDocumentedModel):
    """Credentials for `POST /auth/login`. Either the email or the username may be used."""

    tenant_id: str = Field(..., min_length=1, max_length=100, examples=["acme"])
    email_or_username: str = Field(..., min_length=3, max_length=254, examples=["alice@example.com"])
    password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)

    @field_validator("email_or_username", mode="after")
    @classmethod
    def identifier_lowercase(cls, v: str) -> str:
        return v.lower()


class RefreshRequest(BaseDocumentedModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordResetRequest(BaseDocumentedModel):
    tenant_id: str = Field(..., min_length=1, max_length=100)
    email: EmailStr

    @field_validator("email", mode="after")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.lower()


class PasswordResetConfirm(BaseDocumentedModel):
    tenant_id: str = Field(..., min_length=1, max_length=100)
    token: str = Field(..., min_length=1, max_length=200)
    new_password: str = Field(..., min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)


class EmailVerificationResend(BaseDocumentedModel):
    tenant_id: str = Field(..., min_length=1, max_length=100)
    email: EmailStr

    @field_validator("email", mode="after")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.lower()


class EmailVerificationConfirm(BaseDocumentedModel):
    tenant_id: str = Field(..., min_length=1, max_length=100)
    token: str = Field(..., min_length=1, max_length=200)


class ProfileUpdate(BaseDocumentedModel):
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)


class RoleUpdate(BaseDocumentedModel):
    role: UserRole
