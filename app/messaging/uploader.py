# =============================================================================
# File: app/messaging/uploader.py
# Description: AttachmentUploader - validates a blob, stores it and returns
#              durable attachment metadata
# =============================================================================

from __future__ import annotations

import secrets
import time
from typing import Callable, Optional

from app.common.base.base_storage_provider import BaseStorageProvider
from app.common.exceptions.exceptions import CampusChatException, ValidationError
from app.config.logging_config import get_logger
from app.config.storage_config import StorageConfig, get_storage_config
from app.infra.metrics import messaging_metrics as metrics
from app.messaging.enums import AttachmentKind, ScopeKind
from app.messaging.exceptions import (
    AttachmentTooLargeError,
    AttachmentUploadError,
    UnsupportedAttachmentError,
)
from app.messaging.models import Attachment
from app.messaging.value_objects import AttachmentBlob
from app.utils.file_utils import format_file_size

log = get_logger("campus.messaging.uploader")

# Non-media types accepted as generic files
ALLOWED_FILE_TYPES = frozenset({
    "application/pdf",
    "text/plain",
    "text/csv",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "application/zip",
})

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
ALLOWED_VIDEO_TYPES = frozenset({"video/mp4", "video/webm", "video/quicktime"})


def classify_content_type(content_type: str) -> Optional[AttachmentKind]:
    """Attachment kind for an allowed content type, None if not allowed."""
    normalized = (content_type or "").split(";")[0].strip().lower()
    if normalized in ALLOWED_IMAGE_TYPES:
        return AttachmentKind.IMAGE
    if normalized in ALLOWED_VIDEO_TYPES:
        return AttachmentKind.VIDEO
    if normalized in ALLOWED_FILE_TYPES:
        return AttachmentKind.FILE
    return None


def scope_storage_prefix(scope_kind: ScopeKind, scope_id: str) -> str:
    """Object key prefix for a scope, e.g. "class-chat/<scope id>" """
    return f"{scope_kind.value}-chat/{scope_id}"


class AttachmentUploader:
    """
    Stores attachment blobs through a storage backend.

    Failures surface as AttachmentUploadError (an UploadError), distinct from
    message send failures, so the user knows to resend media rather than text.
    """

    def __init__(
            self,
            storage: BaseStorageProvider,
            config: Optional[StorageConfig] = None,
            clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._config = config or get_storage_config()
        self._clock = clock

    def size_limit(self, kind: AttachmentKind) -> int:
        if kind is AttachmentKind.IMAGE:
            return self._config.max_image_size
        if kind is AttachmentKind.VIDEO:
            return self._config.max_video_size
        return self._config.max_file_size

    def validate(self, blob: AttachmentBlob) -> AttachmentKind:
        """
        Check type and size before any bytes are written.

        Raises:
            UnsupportedAttachmentError, AttachmentTooLargeError, ValidationError
        """
        kind = classify_content_type(blob.content_type)
        if kind is None:
            raise UnsupportedAttachmentError(blob.filename, blob.content_type)
        if blob.size == 0:
            raise ValidationError(f"Attachment {blob.filename} is empty")
        limit = self.size_limit(kind)
        if blob.size > limit:
            raise AttachmentTooLargeError(blob.filename, blob.size, limit)
        return kind

    def _object_name(self, blob: AttachmentBlob, suffix: str = "") -> str:
        extension = self._storage.get_extension(blob.content_type, blob.filename)
        return f"{int(self._clock() * 1000)}-{secrets.token_hex(4)}{suffix}{extension}"

    async def upload(self, scope_id: str, scope_kind: ScopeKind, blob: AttachmentBlob) -> Attachment:
        """
        Validate and store one blob.

        Returns:
            Attachment with the durable URL, kind, filename and size
        """
        kind = self.validate(blob)
        prefix = scope_storage_prefix(scope_kind, scope_id)
        target_path = f"{prefix}/{self._object_name(blob)}"

        result = await self._put(target_path, blob.content, blob.content_type, blob.filename, kind)

        thumbnail_url = None
        if blob.thumbnail:
            thumb_path = f"{prefix}/{self._object_name(blob, suffix='-thumb')}"
            thumb = await self._put(thumb_path, blob.thumbnail, blob.thumbnail_content_type, blob.filename, kind)
            thumbnail_url = thumb.public_url

        metrics.uploads_total.labels(kind=kind.value, outcome="success").inc()
        metrics.upload_bytes.labels(kind=kind.value).observe(blob.size)
        log.info(
            f"Attachment {blob.filename} ({format_file_size(blob.size)}) stored for scope {scope_id}"
        )

        return Attachment(
            url=result.public_url,
            kind=kind,
            filename=blob.filename,
            size=blob.size,
            content_type=blob.content_type,
            duration=blob.duration,
            thumbnail=thumbnail_url,
        )

    async def _put(self, target_path: str, content: bytes, content_type: str, filename: str, kind: AttachmentKind):
        try:
            result = await self._storage.put_object(target_path, content, content_type)
        except CampusChatException:
            raise
        except Exception as e:
            metrics.uploads_total.labels(kind=kind.value, outcome="error").inc()
            log.error(f"Storage backend raised while storing {target_path}: {e}", exc_info=True)
            raise AttachmentUploadError(filename, str(e)) from e

        if not result.success or not result.public_url:
            metrics.uploads_total.labels(kind=kind.value, outcome="error").inc()
            raise AttachmentUploadError(filename, result.error)
        return result
