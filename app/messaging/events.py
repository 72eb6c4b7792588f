# =============================================================================
# File: app/messaging/events.py
# Description: Scope events fanned out by the ScopeBroadcaster.
#              Published only after the mutation is committed to the store.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, Literal, Type, Union

from pydantic import Field

from app.common.base.base_model import BaseEvent
from app.messaging.enums import ReactionKind, ScopeEventType
from app.messaging.models import Message


class ScopeEvent(BaseEvent):
    """Base for all events delivered to scope subscribers"""
    scope_id: str


class MessageInserted(ScopeEvent):
    """A message became visible in the scope"""
    event_type: Literal["inserted"] = ScopeEventType.INSERTED.value
    message: Message


class MessageDeleted(ScopeEvent):
    """A message left the active view"""
    event_type: Literal["deleted"] = ScopeEventType.DELETED.value
    message_id: str
    hard: bool = False


class ReactionChanged(ScopeEvent):
    """
    Reaction membership changed. Carries absolute values (count, active) so
    duplicate delivery is harmless; `revision` orders events per message.
    """
    event_type: Literal["reacted"] = ScopeEventType.REACTED.value
    message_id: str
    user_id: str
    kind: ReactionKind
    active: bool
    count: int = Field(ge=0)
    delta: int
    revision: int


AnyScopeEvent = Union[MessageInserted, MessageDeleted, ReactionChanged]

SCOPE_EVENT_TYPES: Dict[str, Type[ScopeEvent]] = {
    ScopeEventType.INSERTED.value: MessageInserted,
    ScopeEventType.DELETED.value: MessageDeleted,
    ScopeEventType.REACTED.value: ReactionChanged,
}


def parse_scope_event(data: Dict[str, Any]) -> AnyScopeEvent:
    """Rebuild a scope event from its bus dictionary."""
    event_type = data.get("event_type")
    event_cls = SCOPE_EVENT_TYPES.get(event_type)
    if event_cls is None:
        raise ValueError(f"Unknown scope event type: {event_type!r}")
    return event_cls.model_validate(data)
