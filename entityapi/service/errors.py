from __future__ import annotations

from typing import Any, Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - validation_error (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - server_error (500/502)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[Any] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class MissingPreconditionError(ValidationError):
    """Required request context (workspace, body, field) is missing."""


class SchemaValidationError(ValidationError):
    """A payload does not conform to its entity schema.

    ``errors`` holds every violation, not just the first one.
    """

    def __init__(self, message: str, errors: list[dict], **kwargs: Any) -> None:
        super().__init__(message, detail=errors, **kwargs)
        self.errors = errors


class SchemaCompilationError(ValidationError):
    """An entity schema definition is structurally invalid."""


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class EntityNotFoundError(NotFoundError):
    pass


class ObjectNotFoundError(NotFoundError):
    pass


class SchemaNotFoundError(NotFoundError):
    pass


class ExpressionNotFoundError(NotFoundError):
    pass


class WebhookNotFoundError(NotFoundError):
    pass


class ActionNotFoundError(NotFoundError):
    pass


class RoleNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class MismatchError(NotFoundError):
    """Route id and payload id disagree.

    Reported as 404 for compatibility with existing clients.
    """


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class AlreadyExistsError(ConflictError):
    pass


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class UnexpectedError(ServerError):
    """Wraps untyped failures so internals never reach the client."""

    def __init__(self, message: str = "something went wrong", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ActionFailedError(ServerError):
    """An action call in the post-mutation chain failed (502)."""
    status_code = 502


__all__ = [
    "ServiceError",
    "ValidationError",
    "MissingPreconditionError",
    "SchemaValidationError",
    "SchemaCompilationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "EntityNotFoundError",
    "ObjectNotFoundError",
    "SchemaNotFoundError",
    "ExpressionNotFoundError",
    "WebhookNotFoundError",
    "ActionNotFoundError",
    "RoleNotFoundError",
    "UserNotFoundError",
    "MismatchError",
    "ConflictError",
    "AlreadyExistsError",
    "ServerError",
    "UnexpectedError",
    "ActionFailedError",
]
