"""Exceptions raised across the Y-Chat client and service."""
from typing import Any, Optional


class YChatError(Exception):
    """Base exception for Y-Chat."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StoreError(YChatError):
    """A read or write against the data store failed."""
    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code
        super().__init__(message)


class RowNotFound(StoreError):
    """A single-row read matched nothing."""
    def __init__(self, table: str):
        super().__init__(f"No {table} row matched the query", code="not_found")


class ConflictError(StoreError):
    """A write collided with a unique key."""
    def __init__(self, table: str):
        super().__init__(f"Duplicate {table} row", code="conflict")


class PolicyViolation(StoreError):
    """A row-level policy rejected the operation."""
    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, code="forbidden")


class AuthError(YChatError):
    """Sign-up, sign-in or token validation failed."""


class UploadError(YChatError):
    """The media upload service did not return a usable result."""


class InferenceError(YChatError):
    """The hosted text-generation service failed."""


class AccessDenied(YChatError):
    """The moderation console refused the current identity."""
    def __init__(self, decision: Any):
        self.decision = decision
        super().__init__(f"Studio access denied: {decision.value}")
