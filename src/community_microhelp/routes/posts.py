"""
# Post Routes

Posts and the social interactions around them:

- **Posts**: multipart creation with up to `MAX_UPLOAD_FILES` attachments and
  an optional location; listing either by distance (`$geoNear`) or newest
  first; single post with its first page of comments.
- **Comments**: create, list, delete (author or tenant admin).
- **Likes / favorites**: idempotent toggles backed by unique indexes on
  `(tenantId, postId, userId)`. A duplicate insert is answered with 200 and
  leaves the counter alone.
- **Shares**: append-only rows.

Counters (`commentsCount`, `likesCount`, `sharesCount`) are maintained with
`$inc` after the row write. The two writes are not transactional, so a
failure between them can leave a counter off by one.
"""

import math
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from pymongo.errors import DuplicateKeyError

from community_microhelp.config import Settings
from community_microhelp.database import DatabaseManager
from community_microhelp.database.tenant_collection import TenantAwareCollection
from community_microhelp.dependencies import get_app_settings, get_database, get_upload_manager
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.managers.upload_manager import UploadManager, UploadTooLargeError
from community_microhelp.models.post_models import (
    CATEGORY_MAX_LENGTH,
    CONTENT_MAX_LENGTH,
    TITLE_MAX_LENGTH,
    CommentCreate,
    ShareCreate,
)
from community_microhelp.routes.auth.dependencies import get_current_user_dep
from community_microhelp.routes.auth.models import UserRole
from community_microhelp.utils.serialization import parse_object_id, serialize_document, utcnow

logger = get_logger(prefix="[Post Routes]")

router = APIRouter(prefix="/posts", tags=["Posts"])

DEFAULT_COMMENTS_LIMIT = 20
MAX_COMMENTS_LIMIT = 100


def liked_by_me_stages(user_id: str) -> List[Dict[str, Any]]:
    """Pipeline stages adding a boolean `likedByMe` to every post."""
    return [
        {
            "$lookup": {
                "from": "likes",
                "let": {"pid": "$_id", "t": "$tenantId", "me": user_id},
                "pipeline": [
                    {
                        "$match": {
                            "$expr": {
                                "$and": [
                                    {"$eq": ["$tenantId", "$$t"]},
                                    {"$eq": ["$postId", "$$pid"]},
                                    {"$eq": ["$userId", "$$me"]},
                                ]
                            }
                        }
                    },
                    {"$limit": 1},
                ],
                "as": "myLike",
            }
        },
        {"$addFields": {"likedByMe": {"$gt": [{"$size": "$myLike"}, 0]}}},
        {"$project": {"myLike": 0}},
    ]


def parse_location(lat: Optional[str], lng: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Build a GeoJSON point from form values.

    Returns `None` when neither coordinate is given.

    Raises:
        HTTPException(400): Only one coordinate given, a non-numeric value, or
            a coordinate outside [-90, 90] / [-180, 180].
    """
    if not lat and not lng:
        return None
    try:
        lat_value = float(lat)
        lng_value = float(lng)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="lat and lng must both be numbers")
    if not (math.isfinite(lat_value) and math.isfinite(lng_value)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="lat and lng must both be numbers")
    if not -90 <= lat_value <= 90 or not -180 <= lng_value <= 180:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="lat/lng out of range")
    # GeoJSON order is [longitude, latitude]
    return {"type": "Point", "coordinates": [lng_value, lat_value]}


def normalize_category(category: Optional[str]) -> Optional[str]:
    if category is None:
        return None
    category = category.strip().lower()
    return category or None


def build_post_filters(q: Optional[str], category: Optional[str]) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}
    if q and q.strip():
        pattern = {"$regex": re.escape(q.strip()), "$options": "i"}
        filters["$or"] = [{"title": pattern}, {"content": pattern}]
    category = normalize_category(category)
    if category:
        filters["category"] = category
    return filters


async def get_post_or_404(posts: TenantAwareCollection, post_id: ObjectId) -> Dict[str, Any]:
    post = await posts.find_one({"_id": post_id})
    if not post:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return post


async def bump_counter(posts: TenantAwareCollection, post_id: ObjectId, field: str, amount: int) -> None:
    await posts.update_one({"_id": post_id}, {"$inc": {field: amount}, "$set": {"updatedAt": utcnow()}})


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_post(
    title: Optional[str] = Form(default=None, max_length=TITLE_MAX_LENGTH),
    content: Optional[str] = Form(default=None, max_length=CONTENT_MAX_LENGTH),
    category: Optional[str] = Form(default=None, max_length=CATEGORY_MAX_LENGTH),
    lat: Optional[str] = Form(default=None),
    lng: Optional[str] = Form(default=None),
    attachments: Optional[List[UploadFile]] = File(default=None),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
    uploads: UploadManager = Depends(get_upload_manager),
    settings: Settings = Depends(get_app_settings),
):
    """
    Create a post from a multipart form.

    **Fields:** `title`, `content`, `category`, `lat`, `lng` and up to
    `MAX_UPLOAD_FILES` files under `attachments`. The location is stored only
    when both coordinates are present and valid. Attachments are written to
    disk before the post is stored.

    Raises:
        HTTPException(400): No title or content, bad coordinates, too many files.
        HTTPException(413): A file exceeds `MAX_UPLOAD_SIZE_BYTES`.
    """
    title = (title or "").strip()
    content = (content or "").strip()
    if not title and not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="title or content required")
    location = parse_location(lat, lng)

    files = [upload for upload in (attachments or []) if upload.filename]
    if len(files) > settings.MAX_UPLOAD_FILES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"at most {settings.MAX_UPLOAD_FILES} attachments allowed",
        )

    try:
        stored = await uploads.save_attachments(files)
    except UploadTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))

    try:
        now = utcnow()
        post: Dict[str, Any] = {
            "userId": current_user["userId"],
            "title": title,
            "content": content,
            "category": normalize_category(category),
            "attachments": stored,
            "commentsCount": 0,
            "likesCount": 0,
            "sharesCount": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        if location:
            post["location"] = location

        posts = db.get_tenant_collection("posts", current_user["tenantId"])
        result = await posts.insert_one(post)
        post["_id"] = result.inserted_id

        logger.info("Created post %s by %s with %d attachment(s)", result.inserted_id, current_user["userId"], len(stored))
        return {"ok": True, "post": serialize_document(post)}

    except Exception as e:
        logger.error("Failed to create post: %s", e, exc_info=True)
        uploads.discard(stored)
        raise HTTPException(status_code=500, detail="Failed to create post")


@router.get("")
async def list_posts(
    lat: Optional[float] = Query(default=None),
    lng: Optional[float] = Query(default=None),
    radius_km: Optional[float] = Query(default=None, alias="radiusKm"),
    limit: Optional[int] = Query(default=None, ge=1),
    q: Optional[str] = Query(default=None, max_length=200),
    category: Optional[str] = Query(default=None, max_length=CATEGORY_MAX_LENGTH),
    after: Optional[str] = Query(default=None, description="Cursor returned as nextCursor (list mode only)."),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
    settings: Settings = Depends(get_app_settings),
):
    """
    List posts of the caller's tenant.

    **Geo mode** (both `lat` and `lng` finite): posts within `radiusKm`
    (default `DEFAULT_RADIUS_KM`, clamped to `[0, MAX_RADIUS_KM]`), nearest
    first, each with `distanceMeters`.

    **List mode**: newest first, paged with `after`/`nextCursor`.

    Both modes honour `q` (case-insensitive substring of title or content),
    `category` (exact) and `limit`, and mark each post with `likedByMe`.
    """
    limit = min(limit or settings.DEFAULT_POSTS_LIMIT, settings.MAX_POSTS_LIMIT)
    filters = build_post_filters(q, category)
    posts = db.get_tenant_collection("posts", current_user["tenantId"])
    geo_mode = lat is not None and lng is not None and math.isfinite(lat) and math.isfinite(lng)

    if geo_mode:
        radius = settings.DEFAULT_RADIUS_KM if radius_km is None or not math.isfinite(radius_km) else radius_km
        radius = max(0.0, min(radius, settings.MAX_RADIUS_KM))
        pipeline: List[Dict[str, Any]] = [
            {
                "$geoNear": {
                    "near": {"type": "Point", "coordinates": [lng, lat]},
                    "distanceField": "distanceMeters",
                    "maxDistance": radius * 1000,
                    "query": {**filters, "location": {"$exists": True}},
                    "spherical": True,
                }
            },
            {"$sort": {"distanceMeters": 1, "createdAt": -1}},
            {"$limit": limit},
        ]
        meta: Dict[str, Any] = {"mode": "geo", "lat": lat, "lng": lng, "radiusKm": radius}
    else:
        if after:
            filters["_id"] = {"$lt": parse_object_id(after, detail="invalid cursor")}
        pipeline = []
        if filters:
            pipeline.append({"$match": filters})
        pipeline += [{"$sort": {"createdAt": -1, "_id": -1}}, {"$limit": limit}]
        meta = {"mode": "list"}

    pipeline += liked_by_me_stages(current_user["userId"])

    try:
        items = await posts.aggregate(pipeline).to_list(length=limit)
    except Exception as e:
        logger.error("Failed to list posts (%s mode): %s", meta["mode"], e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list posts")

    body: Dict[str, Any] = {"posts": serialize_document(items), "meta": meta}
    if not geo_mode:
        body["nextCursor"] = str(items[-1]["_id"]) if len(items) == limit else None
    return body


@router.get("/{post_id}")
async def get_post(
    post_id: str,
    limit: int = Query(default=DEFAULT_COMMENTS_LIMIT, ge=1),
    skip: int = Query(default=0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """Return one post with the newest page of its comments."""
    oid = parse_object_id(post_id)
    tenant_id = current_user["tenantId"]
    post = await get_post_or_404(db.get_tenant_collection("posts", tenant_id), oid)

    limit = min(limit, MAX_COMMENTS_LIMIT)
    comments = db.get_tenant_collection("comments", tenant_id)
    items = await comments.find({"postId": oid}).sort("createdAt", -1).skip(skip).limit(limit).to_list(length=limit)
    return {
        "post": serialize_document(post),
        "comments": serialize_document(items),
        "page": {"skip": skip, "limit": limit},
    }


@router.post("/{post_id}/comments", status_code=status.HTTP_201_CREATED)
async def create_comment(
    post_id: str,
    payload: CommentCreate,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    Add a comment and increment the post's `commentsCount`.

    Raises:
        HTTPException(400): Invalid id or empty text.
        HTTPException(404): The post does not exist in the tenant.
    """
    oid = parse_object_id(post_id)
    tenant_id = current_user["tenantId"]
    posts = db.get_tenant_collection("posts", tenant_id)
    await get_post_or_404(posts, oid)

    try:
        now = utcnow()
        comment = {
            "postId": oid,
            "userId": current_user["userId"],
            "text": payload.text,
            "createdAt": now,
            "updatedAt": now,
        }
        result = await db.get_tenant_collection("comments", tenant_id).insert_one(comment)
        comment["_id"] = result.inserted_id
        await bump_counter(posts, oid, "commentsCount", 1)

        logger.info("Created comment %s on post %s", result.inserted_id, post_id)
        return {"comment": serialize_document(comment)}

    except Exception as e:
        logger.error("Failed to create comment on post %s: %s", post_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create comment")


@router.get("/{post_id}/comments")
async def list_comments(
    post_id: str,
    limit: int = Query(default=DEFAULT_COMMENTS_LIMIT, ge=1),
    skip: int = Query(default=0, ge=0),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    oid = parse_object_id(post_id)
    limit = min(limit, MAX_COMMENTS_LIMIT)
    comments = db.get_tenant_collection("comments", current_user["tenantId"])
    items = await comments.find({"postId": oid}).sort("createdAt", -1).skip(skip).limit(limit).to_list(length=limit)
    return {"comments": serialize_document(items), "page": {"skip": skip, "limit": limit}}


@router.delete("/{post_id}/comments/{comment_id}")
async def delete_comment(
    post_id: str,
    comment_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """
    Delete a comment. Only its author or a tenant admin may do so.

    Raises:
        HTTPException(403): Caller is neither the author nor an admin.
        HTTPException(404): No such comment on this post.
    """
    post_oid = parse_object_id(post_id)
    comment_oid = parse_object_id(comment_id)
    tenant_id = current_user["tenantId"]
    comments = db.get_tenant_collection("comments", tenant_id)

    comment = await comments.find_one({"_id": comment_oid, "postId": post_oid})
    if not comment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")

    is_owner = comment["userId"] == current_user["userId"]
    is_admin = current_user.get("role") == UserRole.ADMIN.value
    if not is_owner and not is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")

    result = await comments.delete_one({"_id": comment_oid})
    if result.deleted_count:
        await bump_counter(db.get_tenant_collection("posts", tenant_id), post_oid, "commentsCount", -1)
    logger.info("Deleted comment %s on post %s by %s", comment_id, post_id, current_user["userId"])
    return {"ok": True}


@router.post("/{post_id}/like", status_code=status.HTTP_201_CREATED)
async def like_post(
    post_id: str,
    response: Response,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """Like a post. Repeating the call answers 200 without counting twice."""
    oid = parse_object_id(post_id)
    tenant_id = current_user["tenantId"]
    posts = db.get_tenant_collection("posts", tenant_id)
    await get_post_or_404(posts, oid)

    likes = db.get_tenant_collection("likes", tenant_id)
    try:
        await likes.insert_one({"postId": oid, "userId": current_user["userId"], "createdAt": utcnow()})
    except DuplicateKeyError:
        response.status_code = status.HTTP_200_OK
        return {"liked": True}

    await bump_counter(posts, oid, "likesCount", 1)
    return {"liked": True}


@router.delete("/{post_id}/like")
async def unlike_post(
    post_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """Remove a like. The counter is only decremented if a like was actually removed."""
    oid = parse_object_id(post_id)
    tenant_id = current_user["tenantId"]
    likes = db.get_tenant_collection("likes", tenant_id)
    result = await likes.delete_one({"postId": oid, "userId": current_user["userId"]})
    if result.deleted_count > 0:
        await bump_counter(db.get_tenant_collection("posts", tenant_id), oid, "likesCount", -1)
    return {"liked": False}


@router.post("/{post_id}/favorite", status_code=status.HTTP_201_CREATED)
async def favorite_post(
    post_id: str,
    response: Response,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    oid = parse_object_id(post_id)
    tenant_id = current_user["tenantId"]
    await get_post_or_404(db.get_tenant_collection("posts", tenant_id), oid)

    favorites = db.get_tenant_collection("favorites", tenant_id)
    try:
        await favorites.insert_one({"postId": oid, "userId": current_user["userId"], "createdAt": utcnow()})
    except DuplicateKeyError:
        response.status_code = status.HTTP_200_OK
    return {"favorited": True}


@router.delete("/{post_id}/favorite")
async def unfavorite_post(
    post_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    oid = parse_object_id(post_id)
    favorites = db.get_tenant_collection("favorites", current_user["tenantId"])
    await favorites.delete_one({"postId": oid, "userId": current_user["userId"]})
    return {"favorited": False}


@router.post("/{post_id}/share", status_code=status.HTTP_201_CREATED)
async def share_post(
    post_id: str,
    payload: Optional[ShareCreate] = Body(default=None),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    db: DatabaseManager = Depends(get_database),
):
    """Record a share (target defaults to `link`) and increment `sharesCount`."""
    oid = parse_object_id(post_id)
    tenant_id = current_user["tenantId"]
    posts = db.get_tenant_collection("posts", tenant_id)
    await get_post_or_404(posts, oid)

    target = payload.target if payload else ShareCreate().target
    shares = db.get_tenant_collection("shares", tenant_id)
    await shares.insert_one({"postId": oid, "userId": current_user["userId"], "target": target, "createdAt": utcnow()})
    await bump_counter(posts, oid, "sharesCount", 1)
    return {"shared": True}
