# src/shared/exceptions.py
from typing import Optional

from fastapi import HTTPException, status


class BaseHTTPException(HTTPException):
    """
    Base for application errors.

    Subclasses set ``status_code`` and a default ``message``; a specific
    message may be passed at construction and becomes the response detail.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            status_code=self.__class__.status_code,
            detail=message or self.__class__.message,
        )


# Authentication & Authorization Exceptions
class InvalidTokenError(BaseHTTPException):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Invalid or expired token"


class UnauthorizedError(BaseHTTPException):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authentication required"


class ForbiddenError(BaseHTTPException):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Forbidden"


class UnlinkedProfileError(BaseHTTPException):
    status_code = status.HTTP_404_NOT_FOUND
    message = "User profile not found"


# Resource Exceptions
class NotFoundError(BaseHTTPException):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class ConflictError(BaseHTTPException):
    status_code = status.HTTP_409_CONFLICT
    message = "Resource already exists"


# Validation / Request Exceptions
class ValidationError(BaseHTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid request data"


class InvalidPermissionFormatError(ValidationError):
    message = (
        'Invalid permission format. Use "resource:action" or '
        '"resource:action:scope"'
    )


# Server-side Exceptions
class BrokerContextMissingError(BaseHTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Broker context not available"


class ProfileCreationError(BaseHTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Failed to create user profile"


# Integration Exceptions
class AuthProviderError(BaseHTTPException):
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Authentication provider error"
