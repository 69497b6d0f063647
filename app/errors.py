"""
Error taxonomy for the article service.

Service code raises these; ``app.responses`` turns each class into exactly
one wire code.  Messages are written for the caller and must never embed
raw text from the database or the user service.
"""


class ServiceError(Exception):
    """Base class for every failure that is rendered as an envelope."""

    default_message = "request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidArgumentError(ServiceError):
    default_message = "invalid request"


class NotFoundError(ServiceError):
    default_message = "resource not found"


class AlreadyExistsError(ServiceError):
    default_message = "resource already exists"


class PermissionDeniedError(ServiceError):
    default_message = "permission denied"


class UnauthenticatedError(ServiceError):
    default_message = "authentication required"


class TokenRevokedError(ServiceError):
    default_message = "token has been revoked"


class UnavailableError(ServiceError):
    default_message = "service is currently unavailable"


class InternalError(ServiceError):
    default_message = "internal error"


class RequestCancelledError(ServiceError):
    """The caller cancelled the request or its deadline passed."""

    default_message = "request cancelled or deadline exceeded"
