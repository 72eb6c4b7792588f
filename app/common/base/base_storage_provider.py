# =============================================================================
# File: app/common/base/base_storage_provider.py
# Description: Abstract base class for attachment storage backends
# =============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional


@dataclass
class UploadResult:
    """Result of a put_object call"""

    success: bool
    file_path: Optional[str] = None
    public_url: Optional[str] = None
    error: Optional[str] = None


class BaseStorageProvider(ABC):
    """
    Abstract base class for storage backends used by the attachment uploader.

    Implementations:
        - LocalStorageAdapter (filesystem, development)
        - MinIOStorageProvider (MinIO/S3)

    Providers report failures through UploadResult.success rather than
    raising, so the uploader can translate them into upload errors.
    """

    @abstractmethod
    async def put_object(
        self,
        target_path: str,
        file_content: bytes,
        content_type: str,
    ) -> UploadResult:
        """
        Store bytes at target_path.

        Args:
            target_path: Relative object path, e.g. "class-chat/<id>/<name>.png"
            file_content: File content as bytes
            content_type: MIME type

        Returns:
            UploadResult with the stored path and its durable public URL
        """

    @abstractmethod
    async def delete_object(self, target_path: str) -> bool:
        """Delete a stored object. Returns True if it existed."""

    @abstractmethod
    async def object_exists(self, target_path: str) -> bool:
        """Check if an object exists in storage."""

    @abstractmethod
    def get_public_url(self, target_path: str) -> str:
        """Get the public URL for a stored object."""

    @staticmethod
    def get_extension(content_type: str, original_filename: Optional[str] = None) -> str:
        """Get file extension from the original filename or the content type"""
        if original_filename:
            ext = PurePosixPath(original_filename).suffix
            if ext:
                return ext.lower()

        content_type_map = {
            "image/webp": ".webp",
            "image/png": ".png",
            "image/jpeg": ".jpg",
            "image/gif": ".gif",
            "application/pdf": ".pdf",
            "text/plain": ".txt",
            "text/csv": ".csv",
            "video/mp4": ".mp4",
            "video/webm": ".webm",
            "video/quicktime": ".mov",
            "application/msword": ".doc",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
            "application/vnd.ms-excel": ".xls",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
            "application/vnd.ms-powerpoint": ".ppt",
            "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
            "application/zip": ".zip",
        }

        return content_type_map.get(content_type, "")
