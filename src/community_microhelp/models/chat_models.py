from typing import List, Optional

from pydantic import Field

from community_microhelp.models.base import BaseDocumentedModel

MESSAGE_MAX_LENGTH = 4000


class ChatCreate(BaseDocumentedModel):
    """
    Body of `POST /chats`.

    The requester is always added to `participantIds`. Two participants and no
    title reuse an existing direct chat; anything else creates a group chat.
    """

    participant_ids: List[str] = Field(default_factory=list, examples=[["local:acme:bob@example.com"]])
    title: Optional[str] = Field(default=None, max_length=200)


class MessageCreate(BaseDocumentedModel):
    text: str = Field(..., min_length=1, max_length=MESSAGE_MAX_LENGTH)
