"""Errors surfaced by the matching and intro-request core.

Each class maps to a distinct client message, so callers should catch the
specific type rather than the base class where they can.
"""
from datetime import datetime


class WarmIntroError(Exception):
    """Base class for errors raised by the core."""


class RequestValidationError(WarmIntroError):
    """Malformed or unacceptable input."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(WarmIntroError):
    """The record does not exist, or the caller is not allowed to see it."""


class ConflictError(WarmIntroError):
    """The request is not in a state that allows the attempted transition."""

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message)
        self.current_status = current_status


class InsufficientNetworkError(WarmIntroError):
    """Requester owns too few contacts to ask for introductions."""

    def __init__(self, message: str, contact_count: int, required: int):
        super().__init__(message)
        self.contact_count = contact_count
        self.required = required


class RateLimitExceeded(WarmIntroError):
    """Raised when a user exceeds their weekly intro request limit."""

    def __init__(self, message: str, used: int, limit: int, reset_time: datetime):
        super().__init__(message)
        self.used = used
        self.limit = limit
        self.reset_time = reset_time
        self.is_recoverable = True  # User can try again next week
