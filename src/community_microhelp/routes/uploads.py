"""
Private attachment download.

Uploaded files are never served statically; `GET /uploads/{name}` requires a
valid bearer token and sets headers that keep the file out of shared caches.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from community_microhelp.dependencies import get_upload_manager
from community_microhelp.managers.logging_manager import get_logger
from community_microhelp.managers.upload_manager import UploadManager
from community_microhelp.routes.auth.dependencies import get_current_user_dep

logger = get_logger(prefix="[Upload Routes]")

router = APIRouter(prefix="/uploads", tags=["Uploads"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("/{name}")
async def download_upload(
    name: str,
    download: Optional[str] = Query(default=None, description="Set to 1 to force a file download."),
    current_user: Dict[str, Any] = Depends(get_current_user_dep),
    uploads: UploadManager = Depends(get_upload_manager),
):
    """
    Stream a stored attachment to an authenticated user.

    Raises:
        HTTPException(401): No or invalid bearer token.
        HTTPException(404): The sanitized name does not match a stored file.
    """
    path = uploads.resolve(name)
    if path is None:
        logger.info("Upload %r requested by %s not found", name, current_user["userId"])
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="file not found")

    if download == "1":
        return FileResponse(path, filename=path.name, headers=NO_STORE_HEADERS)
    return FileResponse(path, headers=NO_STORE_HEADERS)
