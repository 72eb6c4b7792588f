# =============================================================================
# File: tests/fakes/fake_storage_provider.py
# Description: Fake attachment storage backend for unit testing
# Pattern: Ports & Adapters - Fake/Stub adapter
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.common.base.base_storage_provider import BaseStorageProvider, UploadResult


@dataclass
class CallRecord:
    """Record of a method call for verification."""
    method: str
    args: tuple
    kwargs: Dict[str, Any]


class FakeStorageProvider(BaseStorageProvider):
    """
    In-memory BaseStorageProvider.

    Usage:
        storage = FakeStorageProvider()
        storage.configure_failure("put_object", "disk full")       # UploadResult(success=False)
        storage.configure_failure("put_object", "boom", raise_exception=True)
        storage.hold_uploads()                                     # block until release_uploads()

        assert storage.get_call_count("put_object") == 1
    """

    def __init__(self, base_url: str = "https://files.test"):
        self.base_url = base_url
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}

        self._calls: List[CallRecord] = []
        self._should_fail: Dict[str, str] = {}
        self._raise: Dict[str, bool] = {}
        self._gate: Optional[asyncio.Event] = None

    # =========================================================================
    # Test Setup Methods
    # =========================================================================

    def configure_failure(self, method: str, error_message: str, raise_exception: bool = False) -> None:
        self._should_fail[method] = error_message
        self._raise[method] = raise_exception

    def clear_failure(self, method: str) -> None:
        self._should_fail.pop(method, None)
        self._raise.pop(method, None)

    def hold_uploads(self) -> None:
        """Make put_object wait until release_uploads() is called."""
        self._gate = asyncio.Event()

    def release_uploads(self) -> None:
        if self._gate is not None:
            self._gate.set()

    # =========================================================================
    # Test Verification Methods
    # =========================================================================

    def was_called(self, method: str) -> bool:
        return any(c.method == method for c in self._calls)

    def get_call_count(self, method: str) -> int:
        return sum(1 for c in self._calls if c.method == method)

    def get_calls(self, method: str) -> List[CallRecord]:
        return [c for c in self._calls if c.method == method]

    # =========================================================================
    # BaseStorageProvider Implementation
    # =========================================================================

    async def put_object(self, target_path: str, file_content: bytes, content_type: str) -> UploadResult:
        self._calls.append(CallRecord("put_object", (target_path, content_type), {}))
        if self._gate is not None:
            await self._gate.wait()
        if "put_object" in self._should_fail:
            if self._raise.get("put_object"):
                raise ConnectionError(self._should_fail["put_object"])
            return UploadResult(success=False, error=self._should_fail["put_object"])

        self.objects[target_path] = file_content
        self.content_types[target_path] = content_type
        return UploadResult(success=True, file_path=target_path, public_url=self.get_public_url(target_path))

    async def delete_object(self, target_path: str) -> bool:
        self._calls.append(CallRecord("delete_object", (target_path,), {}))
        return self.objects.pop(target_path, None) is not None

    async def object_exists(self, target_path: str) -> bool:
        return target_path in self.objects

    def get_public_url(self, target_path: str) -> str:
        return f"{self.base_url}/{target_path}"
