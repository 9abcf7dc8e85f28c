from typing import Optional

from pydantic import Field, field_validator

from community_microhelp.models.base import BaseDocumentedModel

SLUG_PATTERN = r"^[a-z0-9-]+$"


class GroupCreate(BaseDocumentedModel):
    """Body of `POST /groups`. The slug is lowercased before validation."""

    name: str = Field(..., min_length=1, max_length=100, examples=["Riverside Neighbours"])
    slug: str = Field(
        ...,
        min_length=1,
        max_length=60,
        pattern=SLUG_PATTERN,
        description="URL-friendly identifier, unique per tenant.",
        examples=["riverside"],
    )
    description: Optional[str] = Field(default="", max_length=2000)

    @field_validator("slug", mode="before")
    @classmethod
    def lowercase_slug(cls, v):
        return v.strip().lower() if isinstance(v, str) else v
