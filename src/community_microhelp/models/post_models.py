from typing import Optional

from pydantic import Field, field_validator

from community_microhelp.models.base import BaseDocumentedModel

COMMENT_MAX_LENGTH = 2000
TITLE_MAX_LENGTH = 200
CONTENT_MAX_LENGTH = 10000
CATEGORY_MAX_LENGTH = 50
DEFAULT_SHARE_TARGET = "link"


class CommentCreate(BaseDocumentedModel):
    """Body of `POST /posts/{id}/comments`."""

    text: str = Field(
        ...,
        min_length=1,
        max_length=COMMENT_MAX_LENGTH,
        description="Comment text. Leading and trailing whitespace is removed.",
        examples=["I can lend you mine this weekend."],
    )


class ShareCreate(BaseDocumentedModel):
    target: Optional[str] = Field(
        default=DEFAULT_SHARE_TARGET,
        max_length=50,
        description="Where the post was shared to, e.g. 'link', 'whatsapp'.",
        examples=["link"],
    )

    @field_validator("target", mode="after")
    @classmethod
    def default_target(cls, v: Optional[str]) -> str:
        return v or DEFAULT_SHARE_TARGET
