# =============================================================================
# File: app/messaging/models.py
# Description: Durable message records and store submissions
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from app.messaging.enums import AttachmentKind, MessageKind


class Attachment(BaseModel):
    """Stored attachment metadata; immutable once attached to a message"""
    model_config = ConfigDict(frozen=True)

    url: str
    kind: AttachmentKind
    filename: str
    size: int = Field(ge=0)
    content_type: Optional[str] = None
    duration: Optional[float] = Field(default=None, ge=0, description="Seconds, for video")
    thumbnail: Optional[str] = Field(default=None, description="Thumbnail URL")


class Message(BaseModel):
    """
    A confirmed message as held by the store.

    `id` and `created_at` are assigned by the store only. A tombstoned message
    keeps its id and scope forever so replies can still resolve it.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    scope_id: str
    author_id: str
    body: str = ""
    attachments: Tuple[Attachment, ...] = ()
    reply_to_id: Optional[str] = None
    created_at: datetime
    submission_id: Optional[str] = None
    deleted_at: Optional[datetime] = None
    # False while the message's attachments are still uploading
    sealed: bool = True

    @property
    def kind(self) -> MessageKind:
        if not self.attachments:
            return MessageKind.TEXT
        return MessageKind(self.attachments[0].kind.value)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_active(self) -> bool:
        return self.sealed and self.deleted_at is None

    @property
    def order_key(self) -> Tuple[datetime, int]:
        """Total display order within a scope: (created_at, id)"""
        return self.created_at, int(self.id)


class NewMessage(BaseModel):
    """A submission to MessageStore.append"""
    model_config = ConfigDict(frozen=True)

    scope_id: str
    author_id: str
    body: str = ""
    attachments: Tuple[Attachment, ...] = ()
    reply_to_id: Optional[str] = None
    # Idempotency key; a retried submission reuses it
    submission_id: Optional[str] = None
    # Per-session ordering; seq must grow for every append from one session
    session_id: Optional[str] = None
    session_seq: Optional[int] = Field(default=None, ge=1)
    # Reserve id and position now, attachments follow via seal()
    awaiting_attachments: bool = False

    @property
    def has_content(self) -> bool:
        return bool(self.body.strip()) or bool(self.attachments) or self.awaiting_attachments
