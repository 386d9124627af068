"""
Exception hierarchy for the work-log service and its client.

Server side raises StoreError subclasses; the HTTP layer maps them to
JSON error responses. Client side raises DataClientError for
server-reported failures and TransportError for network failures.
"""


class WorklogError(Exception):
    """Base class for all work-log errors."""
    pass


class StoreError(WorklogError):
    """Persistence failure in the backing store."""
    pass


class NotFoundError(StoreError):
    """A referenced row does not exist."""
    pass


class ConflictError(StoreError):
    """A conditional write lost against a newer version."""
    pass


class InvalidRequestError(StoreError):
    """Unknown table, column, action or malformed filter."""
    pass


class DataClientError(WorklogError):
    """The server answered with {"error": ...}."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class TransportError(WorklogError):
    """The request never produced a usable response."""
    pass


class PreconditionError(WorklogError):
    """A local precondition failed before any remote call was made."""
    pass


class ValidationError(WorklogError):
    """Missing required fields or malformed input."""
    pass


class ShiftUploadError(ValidationError):
    """The shift schedule CSV is structurally invalid."""
    pass
