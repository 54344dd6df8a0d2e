"""Standardised API error responses.

Usage
-----
    from querydesk.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Query not found")
    return api_error(E.VALIDATION_REQUIRED, "query_id is required")

``register_error_handlers(app)`` maps the service exceptions of
``querydesk.core.exceptions`` onto these responses for every blueprint.
"""

from __future__ import annotations

import logging

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON failure response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, conflicting ids, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def api_success(data=None, *, status: int = 200, message: str | None = None, **extra):
    """Return the matching success envelope ``{"success": true, "data": ...}``."""
    body: dict = {"success": True, "data": data}
    if isinstance(data, list):
        body["count"] = len(data)
    if message:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def register_error_handlers(app) -> None:
    """Translate service exceptions into structured failure responses."""
    from querydesk.core.exceptions import (
        ConflictError,
        ForbiddenError,
        NotFoundError,
        ValidationError,
    )
    from querydesk.models import db

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(error.code, str(error), details=error.details)

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(error.code, str(error), details=error.details)

    @app.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(SQLAlchemyError)
    def _handle_database(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error on %s", _endpoint())
        return api_error(E.DATABASE, "A storage error occurred; no changes were saved.")

    @app.errorhandler(404)
    def _handle_http_404(error):
        return api_error(E.NOT_FOUND, "Not found")

    @app.errorhandler(405)
    def _handle_http_405(error):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def _handle_http_429(error):
        return api_error(E.RATE_LIMITED, f"Too many requests: {error.description}")

    @app.errorhandler(500)
    def _handle_http_500(error):
        logger.error("500 error: %s", error, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return api_error(E.VALIDATION_INVALID, error.description or error.name, status=error.code)
        db.session.rollback()
        logger.exception("Unexpected error on %s", _endpoint())
        return api_error(E.INTERNAL, "Internal server error")


def _endpoint() -> str | None:
    from flask import request

    return request.endpoint
