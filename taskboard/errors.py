"""Error taxonomy shared by the service, the HTTP boundary and the client."""

from __future__ import annotations

from typing import Optional


class KanbanError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(KanbanError):
    """Resource is absent or belongs to another user."""

    status_code = 404
    default_message = "Resource not found"


class ValidationError(KanbanError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(KanbanError):
    status_code = 401
    default_message = "Authentication required"


class ConflictError(KanbanError):
    """A unique value (position, default board) would be duplicated."""

    status_code = 409
    default_message = "Conflicting update"


class InternalError(KanbanError):
    status_code = 500


_BY_STATUS = {
    cls.status_code: cls
    for cls in (NotFoundError, ValidationError, AuthenticationError, ConflictError)
}


def error_for_status(status_code: int, message: Optional[str] = None) -> KanbanError:
    """Rebuild the typed error for a response status (client side)."""
    cls = _BY_STATUS.get(status_code, InternalError)
    return cls(message)
