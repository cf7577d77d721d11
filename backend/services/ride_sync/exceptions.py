"""Custom exceptions for ride plan synchronization."""


class RideSyncError(Exception):
    """Base class for every error raised by the ride sync engine."""
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class NotFoundError(RideSyncError):
    """Raised when the ride plan (or content item) does not exist."""
    kind = "not_found"


class ForbiddenError(RideSyncError):
    """Raised when the acting user is not the record owner, or is signed out."""
    kind = "forbidden"


class ValidationFailedError(RideSyncError):
    """Raised when a required field is missing or a value is out of range."""
    kind = "validation_failed"

    def __init__(self, message: str = "", field: str = None):
        super().__init__(message)
        self.field = field


class SubscriptionFailedError(RideSyncError):
    """Raised when the live feed for a record errors out."""
    kind = "subscription_failed"


class WriteFailedError(RideSyncError):
    """Raised when the document store rejects or times out a mutation."""
    kind = "write_failed"


class InvalidStateError(RideSyncError):
    """Raised when an operation is not allowed in the session's current state."""
    kind = "invalid_state"
