from io import BytesIO
from unittest.mock import AsyncMock, MagicMock

from fastapi import UploadFile
import pytest
from starlette.datastructures import Headers

from community_microhelp.managers.upload_manager import UploadManager, UploadTooLargeError, sanitize_filename


def make_upload(name, content=b"hello", content_type="text/plain"):
    return UploadFile(file=BytesIO(content), filename=name, headers=Headers({"content-type": content_type}))


@pytest.fixture
def uploads(settings):
    return UploadManager(settings)


def test_sanitize_filename():
    assert sanitize_filename("my photo (1).jpg") == "my_photo__1_.jpg"
    assert sanitize_filename("../../etc/passwd") == ".._.._etc_passwd"
    assert sanitize_filename("") == ""


@pytest.mark.asyncio
async def test_save_attachments_writes_files(uploads, settings):
    [attachment] = await uploads.save_attachments([make_upload("ladder pic.png", b"\x89PNG", "image/png")])

    stored_name = attachment["path"].rsplit("/", 1)[-1]
    assert attachment["path"].startswith("/uploads/")
    assert stored_name.endswith("-ladder_pic.png")
    assert attachment["absoluteUrl"] == f"{settings.BASE_URL}/uploads/{stored_name}"
    assert attachment["filename"] == "ladder pic.png"
    assert attachment["size"] == 4
    assert attachment["mimetype"] == "image/png"
    assert (uploads.upload_dir / stored_name).read_bytes() == b"\x89PNG"


@pytest.mark.asyncio
async def test_too_large_upload_removes_written_files(uploads, settings):
    settings.MAX_UPLOAD_SIZE_BYTES = 8
    files = [make_upload("small.txt", b"ok"), make_upload("big.txt", b"x" * 9)]

    with pytest.raises(UploadTooLargeError):
        await uploads.save_attachments(files)
    assert list(uploads.upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_failed_read_removes_written_files(uploads):
    broken = MagicMock(filename="broken.txt")
    broken.read = AsyncMock(side_effect=OSError("connection reset"))

    with pytest.raises(OSError):
        await uploads.save_attachments([make_upload("first.txt"), broken])
    assert list(uploads.upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_discard_removes_stored_files(uploads):
    attachments = await uploads.save_attachments([make_upload("a.txt"), make_upload("b.txt")])

    uploads.discard(attachments)
    assert list(uploads.upload_dir.iterdir()) == []


@pytest.mark.asyncio
async def test_resolve_finds_stored_file(uploads):
    [attachment] = await uploads.save_attachments([make_upload("note.txt")])
    name = attachment["path"].rsplit("/", 1)[-1]
    assert uploads.resolve(name) == uploads.upload_dir / name


def test_resolve_rejects_traversal_and_missing(uploads, tmp_path):
    uploads.ensure_directory()
    (tmp_path / "secret.txt").write_text("nope")
    assert uploads.resolve("../secret.txt") is None
    assert uploads.resolve("..") is None
    assert uploads.resolve(".") is None
    assert uploads.resolve("missing.txt") is None
