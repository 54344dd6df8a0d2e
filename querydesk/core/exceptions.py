"""
Service-layer exception hierarchy.

Every service raises one of these types; the application-level handlers in
``querydesk.utils.errors`` translate them into the structured JSON failure
body and an HTTP status once, so blueprints never build error responses for
business rules themselves.

Usage:
    from querydesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Query", resource_id=42)
    raise ValidationError("remarks are required to revert a query")
"""

from querydesk.utils.errors import E


class NotFoundError(Exception):
    """Raised when a query, request, assignment or user does not resolve.

    Args:
        resource: Human-readable entity name (e.g. "Query", "ApprovalRequest").
        resource_id: The key that was looked up. Included in the message.
    """

    code = E.NOT_FOUND

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a field is missing or malformed.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
        code: Machine-readable code, ``E.VALIDATION_REQUIRED`` for absent
              fields and ``E.VALIDATION_INVALID`` for bad values.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        code: str = E.VALIDATION_INVALID,
    ) -> None:
        self.details = details or {}
        self.code = code
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation collides with existing state.

    Covers duplicate open approval requests, transitions out of a terminal
    status, re-deciding a processed request and branch exclusivity.

    Args:
        message: Human-readable explanation.
        resource: Entity name the conflict is about.
        code: ``E.CONFLICT_DUPLICATE`` or ``E.CONFLICT_STATE``.
    """

    def __init__(
        self,
        message: str,
        resource: str | None = None,
        code: str = E.CONFLICT_STATE,
        details: dict | None = None,
    ) -> None:
        self.resource = resource
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ForbiddenError(Exception):
    """Raised when the acting role/team may not perform an action."""

    code = E.FORBIDDEN

    def __init__(self, actor: str, action: str, reason: str | None = None) -> None:
        msg = f"{actor} is not permitted to {action}"
        if reason:
            msg += f": {reason}"
        self.actor = actor
        self.action = action
        self.reason = reason
        super().__init__(msg)
