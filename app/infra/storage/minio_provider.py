# =============================================================================
# File: app/infra/storage/minio_provider.py
# Description: MinIO/S3 storage provider for attachments
# =============================================================================

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Any, Optional

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.common.base.base_storage_provider import BaseStorageProvider, UploadResult
from app.config.logging_config import get_logger
from app.config.reliability_config import ReliabilityConfigs
from app.config.storage_config import StorageConfig, get_storage_config
from app.infra.reliability.retry import retry_async

log = get_logger("campus.infra.storage.minio")


class MinIOStorageProvider(BaseStorageProvider):
    """
    MinIO/S3 storage provider.

    Works with both MinIO (development) and AWS S3 (production) through
    aioboto3 with S3v4 signatures and a persistent client. Retries use the
    storage retry policy; botocore's own retries are disabled.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or get_storage_config()
        self.session = aioboto3.Session()

        self._boto_config = BotoConfig(
            signature_version="s3v4",
            connect_timeout=self.config.connect_timeout,
            read_timeout=self.config.read_timeout,
            max_pool_connections=self.config.max_pool_connections,
            retries={"max_attempts": 0},
        )
        self._retry_config = ReliabilityConfigs.storage_retry()

        self._client: Optional[Any] = None
        self._exit_stack: Optional[AsyncExitStack] = None

    async def _get_client(self) -> Any:
        """Get or create persistent S3 client (connection reuse)"""
        if self._client is None:
            self._exit_stack = AsyncExitStack()
            self._client = await self._exit_stack.enter_async_context(
                self.session.client(
                    service_name="s3",
                    endpoint_url=self.config.endpoint_url,
                    aws_access_key_id=self.config.get_access_key(),
                    aws_secret_access_key=self.config.get_secret_key(),
                    region_name=self.config.region,
                    config=self._boto_config,
                )
            )
            log.info("MinIO S3 client initialized (persistent connection)")
        return self._client

    async def close(self) -> None:
        if self._exit_stack is not None:
            await self._exit_stack.aclose()
            self._client = None
            self._exit_stack = None
            log.info("MinIO S3 client closed")

    async def put_object(self, target_path: str, file_content: bytes, content_type: str) -> UploadResult:
        async def _do_upload():
            s3 = await self._get_client()
            await s3.put_object(
                Bucket=self.config.bucket_name,
                Key=target_path,
                Body=file_content,
                ContentType=content_type,
            )

        try:
            await retry_async(_do_upload, retry_config=self._retry_config, context="storage.put_object")
        except (ClientError, BotoCoreError) as e:
            log.error(f"S3 error uploading {target_path}: {e}")
            return UploadResult(success=False, error=str(e))

        public_url = self.get_public_url(target_path)
        log.info(f"File uploaded: {target_path} -> {public_url}")
        return UploadResult(success=True, file_path=target_path, public_url=public_url)

    async def delete_object(self, target_path: str) -> bool:
        async def _do_delete():
            s3 = await self._get_client()
            await s3.delete_object(Bucket=self.config.bucket_name, Key=target_path)

        try:
            await retry_async(_do_delete, retry_config=self._retry_config, context="storage.delete_object")
        except (ClientError, BotoCoreError) as e:
            log.error(f"S3 error deleting {target_path}: {e}")
            return False

        log.info(f"File deleted: {target_path}")
        return True

    async def object_exists(self, target_path: str) -> bool:
        s3 = await self._get_client()
        try:
            await s3.head_object(Bucket=self.config.bucket_name, Key=target_path)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def get_public_url(self, target_path: str) -> str:
        return f"{self.config.public_url.rstrip('/')}/{target_path}"
