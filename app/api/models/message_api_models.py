# =============================================================================
#  File: app/api/models/message_api_models.py
#  Campus Chat API Models - Messaging
# =============================================================================
#  Pydantic models for scope, message, reaction and upload endpoints
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, StringConstraints

from app.messaging.enums import AttachmentKind, JumpStatus, MessageKind, ReactionKind, ScopeKind
from app.messaging.models import Attachment, Message
from app.messaging.value_objects import (
    AuthorProfile,
    ReactionState,
    ReactionSummary,
    ReplyPreview,
    ReplyResolution,
)


# =============================================================================
#  TYPE ALIASES
# =============================================================================

ScopeId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=128)]
SubmissionId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]


# =============================================================================
#  SCOPE MODELS
# =============================================================================

class RegisterScopeRequest(BaseModel):
    """Register a conversational scope before messages can be appended."""
    scope_id: ScopeId
    kind: ScopeKind = Field(..., description="campus | class | post")


class ScopeResponse(BaseModel):
    scope_id: str
    kind: ScopeKind


# =============================================================================
#  MESSAGE MODELS
# =============================================================================

class AttachmentPayload(BaseModel):
    """Attachment already stored through the upload endpoint."""
    url: str = Field(..., min_length=1)
    kind: AttachmentKind
    filename: str = Field(..., min_length=1, max_length=255)
    size: int = Field(..., ge=0)
    content_type: Optional[str] = None
    duration: Optional[float] = Field(default=None, ge=0)
    thumbnail: Optional[str] = None

    def to_attachment(self) -> Attachment:
        return Attachment(**self.model_dump())


class SendMessageRequest(BaseModel):
    """
    Append a message to a scope.

    submission_id makes retries idempotent: resending the same id returns the
    original message. session_id + seq order a client's sends; a seq that
    does not advance is rejected with 409.
    """
    body: str = Field(default="", max_length=100_000)
    attachments: List[AttachmentPayload] = Field(default_factory=list)
    reply_to_id: Optional[str] = None
    submission_id: Optional[SubmissionId] = None
    session_id: Optional[str] = Field(default=None, max_length=64)
    seq: Optional[int] = Field(default=None, ge=1)
    awaiting_attachments: bool = Field(
        default=False,
        description="Reserve the position now; attachments follow via /seal",
    )


class SealMessageRequest(BaseModel):
    attachments: List[AttachmentPayload] = Field(..., min_length=1)


class AuthorView(BaseModel):
    user_id: str
    display_name: str
    avatar_url: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: AuthorProfile) -> AuthorView:
        return cls(user_id=profile.user_id, display_name=profile.display_name, avatar_url=profile.avatar_url)


class ReplyPreviewView(BaseModel):
    message_id: str
    available: bool
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    kind: Optional[MessageKind] = None
    snippet: Optional[str] = None
    label: Optional[str] = None
    filename: Optional[str] = None

    @classmethod
    def from_resolution(cls, resolution: ReplyResolution) -> ReplyPreviewView:
        if isinstance(resolution, ReplyPreview):
            return cls(
                message_id=resolution.message_id,
                available=True,
                author_id=resolution.author_id,
                author_name=resolution.author_name,
                kind=resolution.kind,
                snippet=resolution.snippet,
                label=resolution.label,
                filename=resolution.filename,
            )
        return cls(message_id=resolution.message_id, available=False)


class MessageView(BaseModel):
    """A message as served to clients, with author and reaction data attached."""
    id: str
    scope_id: str
    author_id: str
    body: str
    kind: MessageKind
    attachments: List[Attachment] = Field(default_factory=list)
    reply_to_id: Optional[str] = None
    created_at: datetime
    submission_id: Optional[str] = None
    sealed: bool = True
    deleted: bool = False

    author: Optional[AuthorView] = None
    reply_preview: Optional[ReplyPreviewView] = None
    reactions: Dict[ReactionKind, int] = Field(default_factory=dict)
    likes_count: int = 0
    user_liked: bool = False

    @classmethod
    def from_message(cls, message: Message) -> MessageView:
        return cls(
            id=message.id,
            scope_id=message.scope_id,
            author_id=message.author_id,
            body=message.body,
            kind=message.kind,
            attachments=list(message.attachments),
            reply_to_id=message.reply_to_id,
            created_at=message.created_at,
            submission_id=message.submission_id,
            sealed=message.sealed,
            deleted=message.is_deleted,
        )


class MessagePage(BaseModel):
    scope_id: str
    messages: List[MessageView]
    next_before: Optional[str] = Field(
        default=None, description="Pass as `before` to load the next older page"
    )


class DeleteMessageResponse(BaseModel):
    message_id: str
    hard: bool
    deleted: bool = True


# =============================================================================
#  REACTION MODELS
# =============================================================================

class ReactionRequest(BaseModel):
    """Without `active` the membership is toggled; with it, set explicitly."""
    kind: ReactionKind = ReactionKind.LIKE
    active: Optional[bool] = None


class ReactionResponse(BaseModel):
    message_id: str
    kind: ReactionKind
    active: bool
    count: int
    revision: int

    @classmethod
    def from_state(cls, message_id: str, kind: ReactionKind, state: ReactionState) -> ReactionResponse:
        return cls(message_id=message_id, kind=kind, active=state.active, count=state.count, revision=state.revision)


class ReactionSummaryResponse(BaseModel):
    message_id: str
    counts: Dict[ReactionKind, int]
    mine: List[ReactionKind]
    likes_count: int
    user_liked: bool
    revision: int

    @classmethod
    def from_summary(cls, summary: ReactionSummary) -> ReactionSummaryResponse:
        return cls(
            message_id=summary.message_id,
            counts=dict(summary.counts),
            mine=sorted(summary.mine, key=lambda k: k.value),
            likes_count=summary.likes_count,
            user_liked=summary.user_liked,
            revision=summary.revision,
        )


# =============================================================================
#  UPLOAD / NAVIGATION MODELS
# =============================================================================

class UploadResponse(BaseModel):
    """Stored attachment; send it back in SendMessageRequest.attachments."""
    attachment: Attachment
    size_label: str


class JumpResponse(BaseModel):
    message_id: str
    status: JumpStatus
    index: Optional[int] = None


# =============================================================================
#  ENRICHMENT
# =============================================================================

def enrich(
        messages: Sequence[Message],
        profiles: Mapping[str, AuthorProfile],
        summaries: Optional[Mapping[str, ReactionSummary]] = None,
        replies: Optional[Mapping[str, ReplyResolution]] = None,
) -> List[MessageView]:
    """
    Build API views, attaching author profile, reaction counts and reply
    previews. Authors missing from `profiles` render as Unknown.
    """
    summaries = summaries or {}
    replies = replies or {}
    views = []
    for message in messages:
        view = MessageView.from_message(message)
        profile = profiles.get(message.author_id) or AuthorProfile.unknown(message.author_id)
        view.author = AuthorView.from_profile(profile)

        summary = summaries.get(message.id)
        if summary is not None:
            view.reactions = dict(summary.counts)
            view.likes_count = summary.likes_count
            view.user_liked = summary.user_liked

        if message.reply_to_id and message.reply_to_id in replies:
            view.reply_preview = ReplyPreviewView.from_resolution(replies[message.reply_to_id])
        views.append(view)
    return views
