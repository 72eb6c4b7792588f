# =============================================================================
# File: app/messaging/reply_resolver.py
# Description: ReplyResolver - denormalized previews of reply targets and the
#              "jump to message" navigation contract
# =============================================================================

from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol

from app.config.logging_config import get_logger
from app.config.messaging_config import MessagingConfig, get_messaging_config
from app.messaging.enums import JumpStatus, MessageKind
from app.messaging.models import Message
from app.messaging.ports import ProfileLookupPort
from app.messaging.store import MessageStore
from app.messaging.value_objects import (
    AuthorProfile,
    JumpResult,
    ReplyPreview,
    ReplyResolution,
    ReplyUnavailable,
)

log = get_logger("campus.messaging.reply_resolver")

KIND_LABELS: Dict[MessageKind, str] = {
    MessageKind.IMAGE: "Photo",
    MessageKind.VIDEO: "Video",
    MessageKind.FILE: "File",
}

ELLIPSIS = "…"


class Replying(Protocol):
    """Anything carrying a reply reference (a Message or a working-list Entry)"""
    reply_to_id: Optional[str]


class LoadedWindow(Protocol):
    """The part of a ReconciliationEngine that jump_to needs"""

    def index_of(self, message_id: str) -> Optional[int]:
        ...

    def is_deleted(self, message_id: str) -> bool:
        ...


def truncate_snippet(text: str, max_length: int) -> str:
    text = " ".join(text.split())
    if len(text) <= max_length:
        return text
    return text[:max(max_length - 1, 0)].rstrip() + ELLIPSIS


class ReplyResolver:
    """
    Resolves reply references lazily, in batches, through MessageStore.resolve.
    Never raises: anything that cannot be resolved becomes ReplyUnavailable,
    flagged retryable when the store itself failed.
    """

    def __init__(
            self,
            store: MessageStore,
            profiles: ProfileLookupPort,
            config: Optional[MessagingConfig] = None,
    ):
        self._store = store
        self._profiles = profiles
        self._config = config or get_messaging_config()

    async def resolve_preview(self, message: Replying) -> Optional[ReplyResolution]:
        """Preview of the message's reply target, or None if it is not a reply."""
        if not message.reply_to_id:
            return None
        resolved = await self.resolve_many([message.reply_to_id])
        return resolved[message.reply_to_id]

    async def resolve_many(self, target_ids: Iterable[str]) -> Dict[str, ReplyResolution]:
        """Batch variant; every requested id gets a resolution."""
        wanted = list(dict.fromkeys(i for i in target_ids if i))
        if not wanted:
            return {}

        try:
            found = await self._store.resolve(wanted)
        except Exception as e:
            log.warning(f"Reply resolution failed for {len(wanted)} target(s): {e}")
            return {i: ReplyUnavailable(i, retryable=True) for i in wanted}

        active = {mid: m for mid, m in found.items() if m.is_active}
        profiles = await self._lookup_profiles({m.author_id for m in active.values()})

        result: Dict[str, ReplyResolution] = {}
        for target_id in wanted:
            target = active.get(target_id)
            if target is None:
                result[target_id] = ReplyUnavailable(target_id)
            else:
                profile = profiles.get(target.author_id) or AuthorProfile.unknown(target.author_id)
                result[target_id] = self.build_preview(target, profile)
        return result

    def build_preview(self, target: Message, author: AuthorProfile) -> ReplyPreview:
        kind = target.kind
        max_length = self._config.snippet_max_length
        if kind is MessageKind.TEXT:
            return ReplyPreview(
                message_id=target.id,
                author_id=target.author_id,
                author_name=author.display_name,
                kind=kind,
                snippet=truncate_snippet(target.body, max_length),
            )

        label = KIND_LABELS[kind]
        first = target.attachments[0]
        return ReplyPreview(
            message_id=target.id,
            author_id=target.author_id,
            author_name=author.display_name,
            kind=kind,
            snippet=truncate_snippet(target.body, max_length) if target.body else label,
            label=label,
            filename=first.filename or None,
        )

    @staticmethod
    def jump_to(message_id: str, window: LoadedWindow) -> JumpResult:
        """Where the target sits in the loaded window, if it is there at all."""
        if window.is_deleted(message_id):
            return JumpResult(message_id=message_id, status=JumpStatus.UNAVAILABLE)
        index = window.index_of(message_id)
        if index is None:
            return JumpResult(message_id=message_id, status=JumpStatus.NOT_LOADED)
        return JumpResult(message_id=message_id, status=JumpStatus.LOADED, index=index)

    async def _lookup_profiles(self, author_ids: set) -> Dict[str, AuthorProfile]:
        if not author_ids:
            return {}
        try:
            return await self._profiles.lookup(author_ids)
        except Exception as e:
            log.warning(f"Profile lookup failed, rendering authors as Unknown: {e}")
            return {}
