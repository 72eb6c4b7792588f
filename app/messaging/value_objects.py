# =============================================================================
# File: app/messaging/value_objects.py
# Description: Messaging value objects
# =============================================================================

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Mapping, Optional, Tuple, Union

from app.messaging.enums import JumpStatus, MessageKind, ReactionKind
from app.messaging.models import Attachment
from app.utils.uuid_utils import generate_submission_id

UNKNOWN_AUTHOR_NAME = "Unknown"


@dataclass(frozen=True)
class AttachmentBlob:
    """Raw media waiting to be uploaded"""
    content: bytes
    content_type: str
    filename: str
    duration: Optional[float] = None
    thumbnail: Optional[bytes] = None
    thumbnail_content_type: str = "image/jpeg"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.content).hexdigest()


@dataclass(frozen=True)
class Draft:
    """
    What a user asked to send. Blobs are uploaded in parallel with the
    append; `attachments` are media that was uploaded beforehand.
    """
    scope_id: str
    author_id: str
    body: str = ""
    blobs: Tuple[AttachmentBlob, ...] = ()
    attachments: Tuple[Attachment, ...] = ()
    reply_to_id: Optional[str] = None
    submission_id: str = field(default_factory=generate_submission_id)

    @property
    def has_content(self) -> bool:
        return bool(self.body.strip()) or bool(self.blobs) or bool(self.attachments)

    def fingerprint(self) -> str:
        """Digest of everything the user would see; identical drafts share it"""
        h = hashlib.sha256()
        for part in (self.scope_id, self.author_id, self.body.strip(), self.reply_to_id or ""):
            h.update(part.encode("utf-8"))
            h.update(b"\x00")
        for blob in self.blobs:
            h.update(f"{blob.filename}:{blob.content_type}:{blob.digest}".encode("utf-8"))
        for attachment in self.attachments:
            h.update(attachment.url.encode("utf-8"))
        return h.hexdigest()


@dataclass(frozen=True)
class ReactionState:
    """Result of a reaction change for one (message, user, kind)"""
    active: bool
    count: int
    revision: int = 0


@dataclass(frozen=True)
class ReactionSummary:
    """Aggregated reaction counts for a message plus the viewer's own memberships"""
    message_id: str
    counts: Mapping[ReactionKind, int] = field(default_factory=dict)
    mine: FrozenSet[ReactionKind] = frozenset()
    revision: int = 0

    @property
    def likes_count(self) -> int:
        return self.count(ReactionKind.LIKE)

    @property
    def user_liked(self) -> bool:
        return ReactionKind.LIKE in self.mine

    def count(self, kind: ReactionKind) -> int:
        return self.counts.get(kind, 0)

    def with_kind(self, kind: ReactionKind, active: bool, count: int, revision: Optional[int] = None) -> ReactionSummary:
        counts = dict(self.counts)
        counts[kind] = max(count, 0)
        mine = self.mine | {kind} if active else self.mine - {kind}
        return replace(
            self,
            counts=counts,
            mine=frozenset(mine),
            revision=self.revision if revision is None else revision,
        )

    def with_count(self, kind: ReactionKind, count: int, revision: int) -> ReactionSummary:
        counts = dict(self.counts)
        counts[kind] = max(count, 0)
        return replace(self, counts=counts, revision=revision)


@dataclass(frozen=True)
class AuthorProfile:
    """Display data for an author, from the external profile lookup"""
    user_id: str
    display_name: str
    avatar_url: Optional[str] = None

    @classmethod
    def unknown(cls, user_id: str) -> AuthorProfile:
        return cls(user_id=user_id, display_name=UNKNOWN_AUTHOR_NAME)


@dataclass(frozen=True)
class ReplyPreview:
    """Denormalized summary of a reply target; a cache, never authoritative"""
    message_id: str
    author_id: str
    author_name: str
    kind: MessageKind
    snippet: str
    label: Optional[str] = None
    filename: Optional[str] = None
    available: bool = True


@dataclass(frozen=True)
class ReplyUnavailable:
    """
    Placeholder for a reply target that was deleted or never existed.
    ``retryable`` marks a lookup that failed and may succeed later.
    """
    message_id: str
    available: bool = False
    retryable: bool = False


ReplyResolution = Union[ReplyPreview, ReplyUnavailable]


@dataclass(frozen=True)
class JumpResult:
    """Answer to "scroll to this message": is it in the loaded window?"""
    message_id: str
    status: JumpStatus
    index: Optional[int] = None

    @property
    def loaded(self) -> bool:
        return self.status is JumpStatus.LOADED


@dataclass(frozen=True)
class MembershipChange:
    """Repository outcome of setting one membership: resulting state and whether it changed"""
    active: bool
    count: int
    changed: bool
    revision: int
