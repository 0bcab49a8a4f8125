"""
Exception types for the metering API.

Services and routes raise these; the handlers registered in
metering.api.errors turn them into JSON responses with the matching status.
"""
from typing import Any, List, Optional

from fastapi import status


class MeteringError(Exception):
    """Base error. Unexpected failures surface as this generic 500."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Optional[List[Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class AuthenticationError(MeteringError):
    """No valid bearer token."""
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class AuthorizationError(MeteringError):
    """Authenticated, but lacking membership or role."""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class ValidationError(MeteringError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request data"


class NotFoundError(MeteringError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(MeteringError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class StorageError(MeteringError):
    """A backing store call failed. The message is safe to show clients."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Storage failure"
