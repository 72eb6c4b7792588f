# =============================================================================
# File: tests/fakes/fake_message_repository.py
# Description: In-memory message repository with injectable failures and
#              pauses, for exercising store and session error paths
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from app.infra.read_repos.memory_repo import InMemoryMessageRepository


class FlakyMessageRepository(InMemoryMessageRepository):
    """
    Usage:
        repo = FlakyMessageRepository()
        repo.fail_next("insert", ConnectionError("db down"))   # one failure
        repo.hold("insert")                                    # pause inserts
        repo.release("insert")
    """

    def __init__(self):
        super().__init__()
        self._failures: Dict[str, List[Exception]] = {}
        self._gates: Dict[str, asyncio.Event] = {}
        self.inserted_seqs: List[Optional[int]] = []

    def fail_next(self, method: str, error: Exception, times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([error] * times)

    def hold(self, method: str) -> None:
        self._gates[method] = asyncio.Event()

    def release(self, method: str) -> None:
        gate = self._gates.pop(method, None)
        if gate is not None:
            gate.set()

    async def _before(self, method: str) -> None:
        gate = self._gates.get(method)
        if gate is not None:
            await gate.wait()
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    async def insert(self, message, session_id, session_seq):
        await self._before("insert")
        self.inserted_seqs.append(session_seq)
        await super().insert(message, session_id, session_seq)

    async def seal(self, message_id, attachments):
        await self._before("seal")
        return await super().seal(message_id, attachments)

    async def list_recent(self, scope_id, limit, before_id=None):
        await self._before("list_recent")
        return await super().list_recent(scope_id, limit, before_id)

    async def get_many(self, message_ids):
        await self._before("get_many")
        return await super().get_many(message_ids)
