# =============================================================================
# File: app/messaging/enums.py
# Description: Messaging domain enumerations
# =============================================================================

from enum import Enum


class ScopeKind(str, Enum):
    """Conversational boundaries a message can live in"""
    CAMPUS = "campus"
    CLASS = "class"
    POST = "post"


class AttachmentKind(str, Enum):
    """Media kinds an attachment can have"""
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"


class MessageKind(str, Enum):
    """Kind of a message, taken from its first attachment"""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"


class DeliveryState(str, Enum):
    """Client-local delivery state of a working-list entry"""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class ScopeEventType(str, Enum):
    """Events fanned out to scope subscribers"""
    INSERTED = "inserted"
    DELETED = "deleted"
    REACTED = "reacted"


class ReactionKind(str, Enum):
    """Reaction kinds; LIKE is the default"""
    LIKE = "like"
    LOVE = "love"
    LAUGH = "laugh"
    CELEBRATE = "celebrate"


class ScopeAction(str, Enum):
    """Actions checked against the authorization port"""
    READ = "read"
    APPEND = "append"
    DELETE = "delete"
    REACT = "react"
    MODERATE = "moderate"


class JumpStatus(str, Enum):
    """Outcome of a jump-to-message request"""
    LOADED = "loaded"
    NOT_LOADED = "not_loaded"
    UNAVAILABLE = "unavailable"
