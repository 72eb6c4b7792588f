# =============================================================================
# File: app/config/storage_config.py
# Description: Attachment storage configuration (local filesystem or MinIO/S3)
# =============================================================================

from functools import lru_cache
from pydantic import Field, SecretStr
from pydantic_settings import SettingsConfigDict

from app.common.base.base_config import BaseConfig, BASE_CONFIG_DICT


class StorageConfig(BaseConfig):
    """
    Storage configuration for chat attachments.
    """

    model_config = SettingsConfigDict(
        **BASE_CONFIG_DICT,
        env_prefix='STORAGE_',
    )

    provider: str = Field(default="local", description="local | minio")

    # Local filesystem provider
    local_path: str = Field(default="storage", description="Base directory for local uploads")
    local_url: str = Field(default="/storage", description="URL prefix for local uploads")

    # MinIO/S3 provider
    endpoint_url: str = Field(default="http://localhost:9000", description="MinIO/S3 endpoint")
    access_key: SecretStr = Field(default=SecretStr("minioadmin"), description="Access key")
    secret_key: SecretStr = Field(default=SecretStr("minioadmin"), description="Secret key")
    region: str = Field(default="us-east-1", description="AWS region")
    bucket_name: str = Field(default="uploads", description="Bucket name")
    public_url: str = Field(default="http://localhost:9000/uploads", description="Public URL")

    # Performance settings
    connect_timeout: int = Field(default=5, description="Connection timeout (seconds)")
    read_timeout: int = Field(default=30, description="Read timeout (seconds)")
    max_pool_connections: int = Field(default=25, description="Max connection pool size")

    # Upload policy
    max_image_size: int = Field(default=10 * 1024 * 1024, description="Max image size (bytes)")
    max_video_size: int = Field(default=100 * 1024 * 1024, description="Max video size (bytes)")
    max_file_size: int = Field(default=50 * 1024 * 1024, description="Max document size (bytes)")

    def get_access_key(self) -> str:
        """Get access key as plain string"""
        return self.access_key.get_secret_value()

    def get_secret_key(self) -> str:
        """Get secret key as plain string"""
        return self.secret_key.get_secret_value()


@lru_cache(maxsize=1)
def get_storage_config() -> StorageConfig:
    """Get storage configuration singleton (cached)."""
    return StorageConfig()


def reset_storage_config() -> None:
    """Reset config singleton (for testing)."""
    get_storage_config.cache_clear()
