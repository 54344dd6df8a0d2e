"""
Loan Query Desk
Blueprint registry and request helpers shared by the API blueprints.
"""

from flask import request

from querydesk.core.exceptions import ValidationError
from querydesk.services import user_directory
from querydesk.utils.errors import E


def current_actor():
    """Resolve the acting user from the ``X-User-Id`` header."""
    return user_directory.resolve_actor(request.headers.get("X-User-Id", ""))


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def optional_int(value, field: str):
    """Coerce an optional id from JSON or the query string."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: value}, code=E.VALIDATION_INVALID) from None


def register_blueprints(app) -> None:
    from querydesk.blueprints.approval_bp import approval_bp
    from querydesk.blueprints.branch_bp import branch_bp
    from querydesk.blueprints.chat_bp import chat_bp
    from querydesk.blueprints.health_bp import health_bp
    from querydesk.blueprints.query_bp import query_bp

    app.register_blueprint(query_bp)
    app.register_blueprint(approval_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(branch_bp)
    app.register_blueprint(health_bp)
