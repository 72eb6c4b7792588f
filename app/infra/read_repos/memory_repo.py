# =============================================================================
# File: app/infra/read_repos/memory_repo.py
# Description: In-process repositories for the message store, reaction ledger
#              and profile lookup. Used by tests and the "memory" backend.
# =============================================================================

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from app.messaging.enums import ReactionKind, ScopeKind
from app.messaging.models import Attachment, Message
from app.messaging.value_objects import AuthorProfile, MembershipChange, ReactionSummary


class InMemoryMessageRepository:
    """
    Dict-backed MessageRepository. Not shared between processes; callers
    (MessageStore) serialize writes per scope.
    """

    def __init__(self):
        self._scopes: Dict[str, ScopeKind] = {}
        self._messages: Dict[str, Message] = {}
        self._by_scope: Dict[str, List[str]] = defaultdict(list)
        self._submissions: Dict[Tuple[str, str], str] = {}
        self._session_seqs: Dict[Tuple[str, str], int] = {}

    async def register_scope(self, scope_id: str, kind: ScopeKind) -> None:
        self._scopes.setdefault(scope_id, kind)

    async def get_scope_kind(self, scope_id: str) -> Optional[ScopeKind]:
        return self._scopes.get(scope_id)

    async def find_by_submission(self, author_id: str, submission_id: str) -> Optional[Message]:
        message_id = self._submissions.get((author_id, submission_id))
        return self._messages.get(message_id) if message_id else None

    async def get_session_seq(self, scope_id: str, session_id: str) -> int:
        return self._session_seqs.get((scope_id, session_id), 0)

    async def insert(self, message: Message, session_id: Optional[str], session_seq: Optional[int]) -> None:
        self._messages[message.id] = message
        # Ids are snowflakes issued in order, so appending keeps the list sorted
        self._by_scope[message.scope_id].append(message.id)
        if message.submission_id:
            self._submissions[(message.author_id, message.submission_id)] = message.id
        if session_id and session_seq is not None:
            self._session_seqs[(message.scope_id, session_id)] = session_seq

    async def get(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        return {mid: self._messages[mid] for mid in message_ids if mid in self._messages}

    async def list_recent(self, scope_id: str, limit: int, before_id: Optional[str] = None) -> List[Message]:
        boundary = int(before_id) if before_id is not None else None
        result: List[Message] = []
        for message_id in reversed(self._by_scope.get(scope_id, [])):
            if boundary is not None and int(message_id) >= boundary:
                continue
            message = self._messages.get(message_id)
            if message is None or not message.is_active:
                continue
            result.append(message)
            if len(result) >= limit:
                break
        return result

    async def seal(self, message_id: str, attachments: List[Attachment]) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None or message.sealed:
            return None
        sealed = message.model_copy(update={"attachments": tuple(attachments), "sealed": True})
        self._messages[message_id] = sealed
        return sealed

    async def mark_deleted(self, message_id: str, deleted_at: datetime) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None:
            return None
        if message.deleted_at is None:
            message = message.model_copy(update={"deleted_at": deleted_at})
            self._messages[message_id] = message
        return message

    async def purge(self, message_id: str) -> bool:
        message = self._messages.pop(message_id, None)
        if message is None:
            return False
        ids = self._by_scope.get(message.scope_id)
        if ids and message_id in ids:
            ids.remove(message_id)
        if message.submission_id:
            self._submissions.pop((message.author_id, message.submission_id), None)
        return True

    async def list_stale_reservations(self, older_than: datetime) -> List[Message]:
        return [m for m in self._messages.values() if not m.sealed and m.created_at < older_than]


class InMemoryReactionRepository:
    """Set of (user, kind) per message plus a per-message revision counter."""

    def __init__(self):
        self._members: Dict[str, Dict[ReactionKind, Set[str]]] = defaultdict(lambda: defaultdict(set))
        self._revisions: Dict[str, int] = defaultdict(int)

    async def set_membership(
            self, message_id: str, user_id: str, kind: ReactionKind, active: bool
    ) -> MembershipChange:
        members = self._members[message_id][kind]
        changed = (user_id in members) != active
        if changed:
            if active:
                members.add(user_id)
            else:
                members.discard(user_id)
            self._revisions[message_id] += 1
        return MembershipChange(
            active=active,
            count=len(members),
            changed=changed,
            revision=self._revisions[message_id],
        )

    async def get_state(self, message_id: str, user_id: str, kind: ReactionKind) -> MembershipChange:
        members = self._members.get(message_id, {}).get(kind, set())
        return MembershipChange(
            active=user_id in members,
            count=len(members),
            changed=False,
            revision=self._revisions.get(message_id, 0),
        )

    async def summarize(self, message_ids: Iterable[str], viewer_id: Optional[str]) -> Mapping[str, ReactionSummary]:
        result: Dict[str, ReactionSummary] = {}
        for message_id in message_ids:
            kinds = self._members.get(message_id)
            if not kinds:
                continue
            result[message_id] = ReactionSummary(
                message_id=message_id,
                counts={kind: len(users) for kind, users in kinds.items() if users},
                mine=frozenset(kind for kind, users in kinds.items() if viewer_id in users),
                revision=self._revisions.get(message_id, 0),
            )
        return result

    async def purge_message(self, message_id: str) -> None:
        self._members.pop(message_id, None)
        self._revisions.pop(message_id, None)


class InMemoryProfileDirectory:
    """ProfileLookupPort over a dict of known profiles"""

    def __init__(self, profiles: Optional[Iterable[AuthorProfile]] = None):
        self._profiles: Dict[str, AuthorProfile] = {p.user_id: p for p in profiles or ()}

    def upsert(self, profile: AuthorProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def lookup(self, user_ids: Set[str]) -> Dict[str, AuthorProfile]:
        return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}
