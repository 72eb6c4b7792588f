# =============================================================================
# File: app/infra/storage/local_adapter.py
# Description: Local filesystem storage for attachments (development)
# Production should use MinIO/S3
# =============================================================================

from __future__ import annotations

from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

from app.common.base.base_storage_provider import BaseStorageProvider, UploadResult
from app.config.logging_config import get_logger

log = get_logger("campus.infra.storage.local")


class LocalStorageAdapter(BaseStorageProvider):
    """
    Stores attachments under a local directory; the API serves them as
    static files under base_url.
    """

    def __init__(self, base_path: str = "storage", base_url: str = "/storage"):
        self.base_path = Path(base_path)
        self.base_url = base_url.rstrip("/")
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, target_path: str) -> Path:
        relative = PurePosixPath(target_path)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Refusing storage path outside base directory: {target_path}")
        return self.base_path.joinpath(*relative.parts)

    async def put_object(self, target_path: str, file_content: bytes, content_type: str) -> UploadResult:
        try:
            file_path = self._resolve(target_path)
            await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
            async with aiofiles.open(file_path, "wb") as f:
                await f.write(file_content)
        except (OSError, ValueError) as e:
            log.error(f"Failed to store {target_path}: {e}", exc_info=True)
            return UploadResult(success=False, error=str(e))

        public_url = self.get_public_url(target_path)
        log.info(f"File stored: {file_path} -> {public_url} ({content_type}, {len(file_content)} bytes)")
        return UploadResult(success=True, file_path=target_path, public_url=public_url)

    async def delete_object(self, target_path: str) -> bool:
        try:
            file_path = self._resolve(target_path)
            if await aiofiles.os.path.exists(file_path):
                await aiofiles.os.remove(file_path)
                log.info(f"File deleted: {file_path}")
                return True
        except (OSError, ValueError) as e:
            log.error(f"Failed to delete {target_path}: {e}", exc_info=True)
            return False

        log.warning(f"File not found for deletion: {target_path}")
        return False

    async def object_exists(self, target_path: str) -> bool:
        try:
            return await aiofiles.os.path.exists(self._resolve(target_path))
        except ValueError:
            return False

    def get_public_url(self, target_path: str) -> str:
        return f"{self.base_url}/{target_path}"
