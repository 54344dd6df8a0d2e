"""
User directory lookups.

Resolves the employee id sent in ``X-User-Id`` into an ``Actor``. Inactive
users are treated as unknown.
"""

import logging

from sqlalchemy import select

from querydesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from querydesk.models import db
from querydesk.models.approval import REQUEST_TYPE_PERMISSIONS
from querydesk.models.user import VALID_ROLES, User
from querydesk.services.visibility import Actor
from querydesk.utils.errors import E

logger = logging.getLogger(__name__)

VALID_PERMISSIONS = frozenset(REQUEST_TYPE_PERMISSIONS.values())


def get_user(employee_id) -> User:
    employee_id = (employee_id or "").strip()
    if not employee_id:
        raise ValidationError("user id is required (X-User-Id header)", code=E.VALIDATION_REQUIRED)
    user = db.session.execute(
        select(User).where(User.employee_id == employee_id)
    ).scalar_one_or_none()
    if user is None or not user.is_active:
        raise NotFoundError(resource="User", resource_id=employee_id)
    return user


def resolve_actor(employee_id) -> Actor:
    return Actor.from_user(get_user(employee_id))


def create_user(employee_id, full_name, role, *, permissions=None, is_active=True) -> User:
    """Add a directory entry. ``permissions`` only applies to authorities."""
    employee_id = (employee_id or "").strip()
    full_name = (full_name or "").strip()
    if not employee_id or not full_name:
        raise ValidationError("employee_id and full_name are required", code=E.VALIDATION_REQUIRED)
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role '{role}'. Must be one of: {sorted(VALID_ROLES)}")
    if permissions is not None:
        unknown = set(permissions) - VALID_PERMISSIONS
        if unknown:
            raise ValidationError(f"Unknown permissions: {sorted(unknown)}", details={"permissions": sorted(unknown)})

    if db.session.execute(select(User.id).where(User.employee_id == employee_id)).scalar_one_or_none():
        raise ConflictError(f"User {employee_id} already exists", resource="User", code=E.CONFLICT_DUPLICATE)

    user = User(
        employee_id=employee_id,
        full_name=full_name,
        role=role,
        permissions=list(permissions) if permissions is not None else None,
        is_active=is_active,
    )
    db.session.add(user)
    db.session.commit()
    logger.info("User %s (%s) added", employee_id, role, extra={"user_id": employee_id})
    return user
