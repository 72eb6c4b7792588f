# app/common/exceptions/exceptions.py
# =============================================================================
# Custom exceptions for Campus Chat
# =============================================================================


class CampusChatException(Exception):
    """Base exception for Campus Chat"""

    # Transient failures may succeed on an explicit retry
    retryable: bool = False


class AuthorizationError(CampusChatException):
    """Raised when the actor may not perform the action in this scope"""
    pass


class ValidationError(CampusChatException):
    """Raised when validation fails"""
    pass


class NotFoundError(CampusChatException):
    """Raised when a resource is not found"""
    pass


# Alias for compatibility
ResourceNotFoundError = NotFoundError


class ConflictError(CampusChatException):
    """Raised when there's a conflict (e.g., duplicate or reordered submission)"""
    pass


class TransientError(CampusChatException):
    """Raised for network/timeout failures that may succeed on retry"""
    retryable = True


class UnavailableError(CampusChatException):
    """Raised when a dependent service is down"""
    retryable = True


class UploadError(CampusChatException):
    """Raised when an attachment cannot be stored; distinct from send failures"""
    retryable = True


class DomainError(CampusChatException):
    """Raised for domain-specific errors"""
    pass
