# =============================================================================
# File: app/messaging/exceptions.py
# Description: Messaging domain exceptions
# =============================================================================

from typing import Optional

from app.common.exceptions.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    TransientError,
    UnavailableError,
    UploadError,
    ValidationError,
)


# =============================================================================
# Validation
# =============================================================================

class EmptyMessageError(ValidationError):
    """Message has neither text nor attachments"""
    def __init__(self):
        super().__init__("Message must contain text or at least one attachment")


class MessageTooLongError(ValidationError):
    """Message body exceeds the configured limit"""
    def __init__(self, length: int, limit: int):
        super().__init__(f"Message body is {length} characters, limit is {limit}")
        self.length = length
        self.limit = limit


class TooManyAttachmentsError(ValidationError):
    """More attachments than allowed on one message"""
    def __init__(self, count: int, limit: int):
        super().__init__(f"Message has {count} attachments, limit is {limit}")
        self.count = count
        self.limit = limit


class AttachmentTooLargeError(ValidationError):
    """Attachment exceeds the size limit for its kind"""
    def __init__(self, filename: str, size: int, limit: int):
        super().__init__(f"Attachment {filename} is {size} bytes, limit is {limit}")
        self.filename = filename
        self.size = size
        self.limit = limit


class UnsupportedAttachmentError(ValidationError):
    """Attachment content type is not allowed"""
    def __init__(self, filename: str, content_type: str):
        super().__init__(f"Attachment {filename} has unsupported type {content_type}")
        self.filename = filename
        self.content_type = content_type


class UnknownScopeError(ValidationError):
    """A session was asked to work on a scope it was not opened for"""
    def __init__(self, scope_id: str):
        super().__init__(f"Scope not known to this session: {scope_id}")
        self.scope_id = scope_id


# =============================================================================
# Not found
# =============================================================================

class ScopeNotFoundError(NotFoundError):
    """Scope does not exist in the store"""
    def __init__(self, scope_id: str):
        super().__init__(f"Scope not found: {scope_id}")
        self.scope_id = scope_id


class MessageNotFoundError(NotFoundError):
    """Message not found (or no longer active)"""
    def __init__(self, message_id: str):
        super().__init__(f"Message not found: {message_id}")
        self.message_id = message_id


class ReplyTargetNotFoundError(NotFoundError):
    """reply_to_id does not point at an active message in the same scope"""
    def __init__(self, message_id: str, scope_id: str):
        super().__init__(f"Reply target {message_id} not found in scope {scope_id}")
        self.message_id = message_id
        self.scope_id = scope_id


# =============================================================================
# Authorization
# =============================================================================

class NotScopeMemberError(AuthorizationError):
    """Actor may not perform the action in the scope"""
    def __init__(self, user_id: str, scope_id: str, action: str):
        super().__init__(f"User {user_id} may not {action} in scope {scope_id}")
        self.user_id = user_id
        self.scope_id = scope_id
        self.action = action


class NotMessageAuthorError(AuthorizationError):
    """Only the author may delete or complete a message"""
    def __init__(self, message_id: str, user_id: str):
        super().__init__(f"User {user_id} is not the author of message {message_id}")
        self.message_id = message_id
        self.user_id = user_id


# =============================================================================
# Conflict
# =============================================================================

class DuplicateSubmissionError(ConflictError):
    """Identical content from the same author inside the recency window"""
    def __init__(self, author_id: str, scope_id: str, window_seconds: float):
        super().__init__(
            f"Duplicate message from {author_id} in scope {scope_id} within {window_seconds:g}s"
        )
        self.author_id = author_id
        self.scope_id = scope_id


class OutOfOrderSubmissionError(ConflictError):
    """Session sequence number is not greater than the last accepted one"""
    def __init__(self, session_id: str, session_seq: int, last_seq: int):
        super().__init__(
            f"Session {session_id} submitted seq {session_seq} after already accepting {last_seq}"
        )
        self.session_id = session_id
        self.session_seq = session_seq
        self.last_seq = last_seq


class MessageAlreadySealedError(ConflictError):
    """Attachments were already attached to this message"""
    def __init__(self, message_id: str):
        super().__init__(f"Message {message_id} already has its attachments")
        self.message_id = message_id


# =============================================================================
# Transient / Unavailable / Upload
# =============================================================================

class PersistenceTimeoutError(TransientError):
    """Pending entry was not confirmed in time"""
    def __init__(self, handle: str, timeout_seconds: float):
        super().__init__(f"Message {handle} was not confirmed within {timeout_seconds:g}s")
        self.handle = handle
        self.timeout_seconds = timeout_seconds


class StoreUnavailableError(UnavailableError):
    """Message store backend is down"""
    def __init__(self, operation: str, reason: Optional[str] = None):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Message store unavailable during {operation}{detail}")
        self.operation = operation


class AttachmentUploadError(UploadError):
    """Storage backend failed to store an attachment"""
    def __init__(self, filename: str, reason: Optional[str] = None):
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to upload {filename}{detail}")
        self.filename = filename
