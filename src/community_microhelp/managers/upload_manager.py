"""
# Upload Manager

Stores post attachments on local disk and resolves them for the private
`/uploads/{name}` route.

Stored names look like `<unix-ms>-<random>-<sanitized original name>`, where
sanitizing replaces every character outside `[a-zA-Z0-9._-]` with `_`. Lookups
sanitize the requested name the same way and refuse anything that would
resolve outside the upload directory.
"""

from pathlib import Path
import re
import secrets
import time
from typing import Any, Dict, List, Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from community_microhelp.config import Settings
from community_microhelp.managers.logging_manager import get_logger

logger = get_logger(prefix="[Upload Manager]")

UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
READ_CHUNK_SIZE = 1024 * 1024


class UploadTooLargeError(Exception):
    """Raised when an attachment exceeds the configured size limit."""

    def __init__(self, filename: str, limit: int):
        super().__init__(f"{filename} exceeds the {limit} byte upload limit")
        self.filename = filename
        self.limit = limit


def sanitize_filename(name: str) -> str:
    return UNSAFE_FILENAME_CHARS.sub("_", name or "")


class UploadManager:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.upload_dir = Path(settings.UPLOAD_DIR).resolve()

    def ensure_directory(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

    def _stored_name(self, original_name: str) -> str:
        unique = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}"
        return f"{unique}-{sanitize_filename(original_name) or 'file'}"

    async def _read_limited(self, upload: UploadFile) -> bytes:
        limit = self.settings.MAX_UPLOAD_SIZE_BYTES
        chunks: List[bytes] = []
        total = 0
        while True:
            chunk = await upload.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > limit:
                raise UploadTooLargeError(upload.filename or "attachment", limit)
            chunks.append(chunk)
        return b"".join(chunks)

    async def save_attachments(self, uploads: List[UploadFile]) -> List[Dict[str, Any]]:
        """
        Write every upload to disk and describe it as a post attachment.

        All files are written before returning. If any file is rejected or a
        write fails, the files already written for this request are removed again.

        Raises:
            UploadTooLargeError: If a file exceeds `MAX_UPLOAD_SIZE_BYTES`.
        """
        self.ensure_directory()
        written: List[Path] = []
        attachments: List[Dict[str, Any]] = []
        try:
            for upload in uploads:
                content = await self._read_limited(upload)
                name = self._stored_name(upload.filename or "")
                target = self.upload_dir / name
                await run_in_threadpool(target.write_bytes, content)
                written.append(target)
                attachments.append(
                    {
                        "filename": upload.filename,
                        "path": f"/uploads/{name}",
                        "absoluteUrl": f"{self.settings.BASE_URL.rstrip('/')}/uploads/{name}",
                        "size": len(content),
                        "mimetype": upload.content_type or "application/octet-stream",
                    }
                )
        except Exception:
            for path in written:
                path.unlink(missing_ok=True)
            raise
        logger.info("Stored %d attachment(s) in %s", len(attachments), self.upload_dir)
        return attachments

    def discard(self, attachments: List[Dict[str, Any]]) -> None:
        """Remove the stored files of attachments that never made it into a post."""
        for attachment in attachments:
            name = attachment["path"].rsplit("/", 1)[-1]
            (self.upload_dir / name).unlink(missing_ok=True)
        if attachments:
            logger.info("Discarded %d orphaned attachment(s)", len(attachments))

    def resolve(self, name: str) -> Optional[Path]:
        """
        Map a requested upload name to a file inside the upload directory.

        Returns:
            Optional[Path]: The file path, or `None` if the sanitized name does not
            point at a regular file directly inside the upload directory.
        """
        safe = sanitize_filename(name)
        if not safe or safe in (".", ".."):
            return None
        candidate = (self.upload_dir / safe).resolve()
        if candidate.parent != self.upload_dir or not candidate.is_file():
            return None
        return candidate
