# =============================================================================
# File: app/infra/storage/__init__.py
# Description: Attachment storage backends
# =============================================================================

from typing import Optional

from app.common.base.base_storage_provider import BaseStorageProvider
from app.config.storage_config import StorageConfig, get_storage_config
from app.infra.storage.local_adapter import LocalStorageAdapter
from app.infra.storage.minio_provider import MinIOStorageProvider


def build_storage_provider(config: Optional[StorageConfig] = None) -> BaseStorageProvider:
    """Create the storage backend selected by STORAGE_PROVIDER."""
    config = config or get_storage_config()
    if config.provider == "minio":
        return MinIOStorageProvider(config)
    if config.provider == "local":
        return LocalStorageAdapter(base_path=config.local_path, base_url=config.local_url)
    raise ValueError(f"Unknown storage provider: {config.provider}")


__all__ = ["LocalStorageAdapter", "MinIOStorageProvider", "build_storage_provider"]
