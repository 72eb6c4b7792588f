# =============================================================================
# File: app/messaging/ports.py
# Description: Interfaces the messaging core calls out through
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Set, runtime_checkable

from app.messaging.enums import ReactionKind, ScopeAction, ScopeKind
from app.messaging.events import ScopeEvent
from app.messaging.models import Attachment, Message
from app.messaging.value_objects import AuthorProfile, MembershipChange, ReactionSummary


# =============================================================================
# External collaborators
# =============================================================================

@runtime_checkable
class AuthorizationPort(Protocol):
    """Decides whether an actor may perform an action in a scope"""

    async def is_allowed(self, actor_id: str, scope_id: str, action: ScopeAction) -> bool:
        ...


@runtime_checkable
class ProfileLookupPort(Protocol):
    """Resolves author ids to display data; missing ids are simply absent"""

    async def lookup(self, user_ids: Set[str]) -> Dict[str, AuthorProfile]:
        ...


@runtime_checkable
class BroadcastRelay(Protocol):
    """Carries scope events to subscribers connected to other server instances"""

    async def relay(self, scope_id: str, event: ScopeEvent) -> None:
        ...


# =============================================================================
# Persistence
# =============================================================================

class MessageRepository(Protocol):
    """
    Durable storage behind MessageStore. Raising anything other than a
    CampusChatException means the backend is unavailable.
    """

    async def register_scope(self, scope_id: str, kind: ScopeKind) -> None:
        ...

    async def get_scope_kind(self, scope_id: str) -> Optional[ScopeKind]:
        ...

    async def find_by_submission(self, author_id: str, submission_id: str) -> Optional[Message]:
        ...

    async def get_session_seq(self, scope_id: str, session_id: str) -> int:
        """Last accepted sequence number for a session in a scope, 0 if none"""
        ...

    async def insert(self, message: Message, session_id: Optional[str], session_seq: Optional[int]) -> None:
        ...

    async def get(self, message_id: str) -> Optional[Message]:
        ...

    async def get_many(self, message_ids: Iterable[str]) -> Dict[str, Message]:
        ...

    async def list_recent(self, scope_id: str, limit: int, before_id: Optional[str] = None) -> List[Message]:
        """Active (sealed, not deleted) messages, newest first"""
        ...

    async def seal(self, message_id: str, attachments: List[Attachment]) -> Optional[Message]:
        """Attach media to an unsealed message; None if it was already sealed"""
        ...

    async def mark_deleted(self, message_id: str, deleted_at: datetime) -> Optional[Message]:
        ...

    async def purge(self, message_id: str) -> bool:
        ...

    async def list_stale_reservations(self, older_than: datetime) -> List[Message]:
        ...


class ReactionRepository(Protocol):
    """Set-semantics storage of (message, user, kind) memberships"""

    async def set_membership(
            self, message_id: str, user_id: str, kind: ReactionKind, active: bool
    ) -> MembershipChange:
        ...

    async def get_state(self, message_id: str, user_id: str, kind: ReactionKind) -> MembershipChange:
        ...

    async def summarize(self, message_ids: Iterable[str], viewer_id: Optional[str]) -> Mapping[str, ReactionSummary]:
        ...

    async def purge_message(self, message_id: str) -> None:
        ...
