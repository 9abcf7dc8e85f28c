"""Helpers for turning stored documents into JSON-ready dictionaries."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import HTTPException, status

PRIVATE_USER_FIELDS = ("passwordHash",)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_document(value: Any) -> Any:
    """
    Recursively convert ObjectIds to strings and datetimes to ISO-8601.

    Naive datetimes are treated as UTC.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_document(item) for item in value]
    return value


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a user document without credentials."""
    return serialize_document({k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS})


def parse_object_id(value: Optional[str], detail: str = "invalid id") -> ObjectId:
    """
    Parse a path or body id.

    Raises:
        HTTPException: 400 when the value is not a valid ObjectId.
    """
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
    return ObjectId(value)
