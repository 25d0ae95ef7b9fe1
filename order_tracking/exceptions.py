"""Error taxonomy shared by every layer of the tracker."""

from __future__ import annotations

from typing import Any, Optional


class TrackingError(Exception):
    """Base exception for all tracker errors."""


class ValidationError(TrackingError):
    """Raised for malformed input, before anything is written."""


class InvalidTransitionError(ValidationError):
    """Raised when a progress step is moved outside pending -> in_progress -> completed."""


class AuthenticationError(ValidationError):
    """Raised when the identity provider rejects the supplied credentials or token."""


class NotFoundError(TrackingError):
    """Raised when a referenced company, order or progress step is absent."""


class DuplicateError(TrackingError):
    """Raised when a unique key (such as an order number) already exists."""


class PartialFailureError(TrackingError):
    """The order was created but its progress steps could not be initialised.

    The created order is kept on the exception so callers can report it.
    """

    def __init__(self, message: str, *, order: Any = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.order = order
        self.cause = cause


class TransportError(TrackingError):
    """Raised when the store or the identity provider is unreachable or errors.

    Carries the backend's structured error fields when there are any.
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.details = details


class RecordFormatError(TransportError):
    """Raised when a record returned by the store does not have the expected shape."""


__all__ = [
    "TrackingError",
    "ValidationError",
    "InvalidTransitionError",
    "AuthenticationError",
    "NotFoundError",
    "DuplicateError",
    "PartialFailureError",
    "TransportError",
    "RecordFormatError",
]
