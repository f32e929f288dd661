"""Attachment storage.

Uploads are staged under ``<user_id>/temp/`` before the message exists and
moved to ``<user_id>/<message_id>/`` once it is persisted. ``LocalStorage``
keeps one directory per bucket under ``settings.storage_root``; the app
serves that tree read-only at ``/files``.
"""

import asyncio
import mimetypes
import secrets
import shutil
import time
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger

from backend.app.config import settings
from backend.app.errors import Forbidden, InvalidInput, StorageError
from backend.app.schemas.message import AttachmentIn
from backend.app.services.auth import CallerSession

IMAGE_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp"}
DOCUMENT_MIME_TYPES = {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

TEMP_SEGMENT = "/temp/"


class Storage(ABC):
    """Bucket-style file storage used for message attachments."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def move(self, src: str, dest: str) -> None: ...

    @abstractmethod
    async def remove(self, paths: list[str]) -> None: ...

    @abstractmethod
    def public_url(self, path: str) -> str: ...

    def path_for_url(self, url: str) -> str | None:
        """Bucket path behind a public URL produced by this storage, if any."""
        prefix = self.public_url("")
        if not url.startswith(prefix):
            return None
        return url[len(prefix) :] or None


class LocalStorage(Storage):
    def __init__(self, root: Path, bucket: str, base_url: str) -> None:
        self.bucket = bucket
        self.bucket_dir = (root / bucket).resolve()
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        full = (self.bucket_dir / path).resolve()
        if not full.is_relative_to(self.bucket_dir):
            raise StorageError(f"Invalid storage path: {path}")
        return full

    async def upload(self, path: str, data: bytes, content_type: str) -> None:  # noqa: ARG002
        target = self._resolve(path)

        def _run() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_run)
        except OSError as exc:
            raise StorageError(f"Failed to upload file: {exc}") from exc

    async def move(self, src: str, dest: str) -> None:
        source, target = self._resolve(src), self._resolve(dest)

        def _run() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(source, target)

        try:
            await asyncio.to_thread(_run)
        except OSError as exc:
            raise StorageError(f"Failed to move {src}: {exc}") from exc

    async def remove(self, paths: list[str]) -> None:
        for path in paths:
            target = self._resolve(path)
            try:
                await asyncio.to_thread(target.unlink, missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Failed to remove {path}: {exc}") from exc

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/files/{self.bucket}/{path}"


def get_storage() -> Storage:
    """FastAPI dependency returning the configured storage backend."""
    return LocalStorage(settings.storage_root, settings.storage_bucket, settings.base_url)


def classify_upload(mime_type: str, size: int) -> str:
    """Return ``"image"`` or ``"document"`` or raise ``InvalidInput``."""
    if mime_type in IMAGE_MIME_TYPES:
        file_type, limit = "image", settings.max_image_bytes
    elif mime_type in DOCUMENT_MIME_TYPES:
        file_type, limit = "document", settings.max_document_bytes
    else:
        raise InvalidInput(
            "Invalid file type. Allowed: images (PNG, JPEG, GIF, WebP) "
            "and documents (PDF, DOC, DOCX, TXT, XLS, XLSX)"
        )

    if size <= 0:
        raise InvalidInput("File is empty")
    if size > limit:
        raise InvalidInput(f"File too large. Maximum size: {limit // (1024 * 1024)}MB")
    return file_type


def finalized_path(storage_path: str, message_id: str) -> str | None:
    """Destination of a staged upload once its message exists, or None if not staged."""
    if TEMP_SEGMENT not in storage_path:
        return None
    return storage_path.replace(TEMP_SEGMENT, f"/{message_id}/", 1)


def ensure_own_uploads(
    storage: Storage, session: CallerSession, attachments: list[AttachmentIn]
) -> None:
    """Reject attachments that point at files the caller did not stage.

    A staged attachment must sit directly in the caller's temp area and
    carry that file's public URL. Attachments without a ``storage_path``
    may only link outside this storage.
    """
    own_temp = f"{session.user_id}{TEMP_SEGMENT}"
    for att in attachments:
        if att.storage_path is None:
            if storage.path_for_url(att.file_url) is not None:
                raise Forbidden("You can only attach files you uploaded")
            continue
        name = att.storage_path.removeprefix(own_temp)
        if (
            not att.storage_path.startswith(own_temp)
            or not name
            or "/" in name
            or name in (".", "..")
            or att.file_url != storage.public_url(att.storage_path)
        ):
            raise Forbidden("You can only attach files you uploaded")


async def stage_upload(
    storage: Storage,
    session: CallerSession,
    file_name: str,
    mime_type: str,
    data: bytes,
) -> AttachmentIn:
    """Validate and store an upload in the caller's temp area."""
    file_type = classify_upload(mime_type, len(data))

    ext = Path(file_name).suffix.lstrip(".").lower()
    if not ext:
        ext = (mimetypes.guess_extension(mime_type) or ".bin").lstrip(".")
    path = f"{session.user_id}/temp/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"

    await storage.upload(path, data, mime_type)
    logger.debug("Staged upload {} ({} bytes) for {}", path, len(data), session.user_id)

    return AttachmentIn(
        file_name=file_name,
        file_url=storage.public_url(path),
        file_type=file_type,
        file_size=len(data),
        storage_path=path,
    )


async def finalize_attachments(
    storage: Storage, message_id: str, attachments: list[AttachmentIn]
) -> list[str | None]:
    """Move staged uploads next to their message.

    Returns the new public URL for each attachment that was moved, aligned
    with ``attachments``; None where nothing moved. A failed move leaves the
    file reachable at its temp location.
    """
    moved: list[str | None] = []
    for att in attachments:
        dest = finalized_path(att.storage_path, message_id) if att.storage_path else None
        if dest is None:
            moved.append(None)
            continue
        try:
            await storage.move(att.storage_path, dest)
        except StorageError as exc:
            logger.warning(
                "Failed to move attachment {} for message {}: {}", att.storage_path, message_id, exc
            )
            moved.append(None)
        else:
            moved.append(storage.public_url(dest))
    return moved


async def discard_uploads(storage: Storage, paths: list[str]) -> None:
    """Best-effort removal of uploaded files after a failed write."""
    for path in paths:
        try:
            await storage.remove([path])
        except StorageError as exc:
            logger.warning("Failed to clean up uploaded file {}: {}", path, exc)
