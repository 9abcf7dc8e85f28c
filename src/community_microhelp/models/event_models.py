from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator, model_validator

from community_microhelp.models.base import BaseDocumentedModel, as_utc


class RsvpStatus(str, Enum):
    GOING = "going"
    MAYBE = "maybe"
    DECLINED = "declined"


class EventCreate(BaseDocumentedModel):
    """
    Body of `POST /events`.

    Datetimes without an offset are interpreted as UTC. `endsAt`, when given,
    may not precede `startsAt`.
    """

    title: str = Field(..., min_length=1, max_length=200, examples=["Park clean-up"])
    description: Optional[str] = Field(default="", max_length=5000)
    starts_at: datetime = Field(..., examples=["2026-05-01T09:00:00Z"])
    ends_at: Optional[datetime] = Field(default=None, examples=["2026-05-01T12:00:00Z"])
    group_id: Optional[str] = Field(default=None, description="Id of the group hosting the event.")

    @field_validator("starts_at", "ends_at", mode="after")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else None

    @model_validator(mode="after")
    def check_range(self) -> "EventCreate":
        if self.ends_at is not None and self.ends_at < self.starts_at:
            raise ValueError("endsAt must not be before startsAt")
        return self


class RsvpRequest(BaseDocumentedModel):
    status: RsvpStatus = Field(default=RsvpStatus.GOING, description="One of going, maybe, declined.")
