from pydantic import EmailStr, Field, field_validator

from community_microhelp.models.base import BaseDocumentedModel


class InvitationCreate(BaseDocumentedModel):
    email: EmailStr = Field(..., description="Address of the person being invited.", examples=["neighbour@example.com"])

    @field_validator("email", mode="after")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class InvitationAccept(BaseDocumentedModel):
    token: str = Field(..., min_length=1, max_length=200)
