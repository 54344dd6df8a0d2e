"""
Branch Assignment Resolver.

Maps a Sales/Credit user onto the one branch they currently work for a team.
An admin marks branches for a user (pending); accepting one branch declines
every other assignment the user holds for that team in the same transaction.

Usage:
    from querydesk.services import branch_assignment_service as branches

    branches.assign("E100", "B1", branch_code="GGN", team="sales", marked_by="admin")
    branches.accept("E100", "B1", "sales")
    branches.get_accepted("E100", "sales")  # → BranchAssignment | None
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from querydesk.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from querydesk.models import db
from querydesk.models.branch import VALID_TEAMS, BranchAssignment
from querydesk.utils.errors import E

logger = logging.getLogger(__name__)


def _normalise_team(team) -> str:
    team = (team or "").strip().lower()
    if not team:
        raise ValidationError("team is required", code=E.VALIDATION_REQUIRED)
    if team not in VALID_TEAMS:
        raise ValidationError(
            f"Invalid team '{team}'. Must be one of: {sorted(VALID_TEAMS)}",
            details={"team": team},
        )
    return team


def _require(value, field: str) -> str:
    value = str(value).strip() if value is not None else ""
    if not value:
        raise ValidationError(f"{field} is required", code=E.VALIDATION_REQUIRED)
    return value


def _ensure_self_or_admin(actor, user_id: str, action: str) -> None:
    if actor is None or actor.employee_id == user_id or actor.capability.can_act("assign_branch"):
        return
    raise ForbiddenError(actor.name, action, f"assignments of {user_id} belong to that user")


def _get_assignment(user_id: str, branch_id: str, team: str) -> BranchAssignment:
    assignment = db.session.execute(
        select(BranchAssignment).where(
            BranchAssignment.user_id == user_id,
            BranchAssignment.branch_id == branch_id,
            BranchAssignment.team == team,
        )
    ).scalar_one_or_none()
    if assignment is None:
        raise NotFoundError(resource="BranchAssignment", resource_id=f"{user_id}/{branch_id}/{team}")
    return assignment


def list_assigned(user_id, team) -> list[BranchAssignment]:
    """All assignments for (user, team), newest first."""
    user_id = _require(user_id, "user_id")
    team = _normalise_team(team)
    return list(
        db.session.execute(
            select(BranchAssignment)
            .where(BranchAssignment.user_id == user_id, BranchAssignment.team == team)
            .order_by(BranchAssignment.marked_at.desc(), BranchAssignment.id.desc())
        ).scalars()
    )


def get_accepted(user_id, team) -> BranchAssignment | None:
    """Return the accepted assignment for (user, team) or None."""
    if not user_id or not team:
        return None
    return db.session.execute(
        select(BranchAssignment).where(
            BranchAssignment.user_id == str(user_id),
            BranchAssignment.team == str(team).lower(),
            BranchAssignment.status == "accepted",
        )
    ).scalar_one_or_none()


def assign(
    user_id,
    branch_id,
    *,
    branch_code,
    team,
    branch_name: str = "",
    marked_by: str | None = None,
    actor=None,
) -> BranchAssignment:
    """Mark a branch for a user; the assignment starts out pending."""
    if actor is not None:
        if not actor.capability.can_act("assign_branch"):
            raise ForbiddenError(actor.name, "assign_branch", "only admins mark branches")
        marked_by = marked_by or actor.name
    user_id = _require(user_id, "user_id")
    branch_id = _require(branch_id, "branch_id")
    branch_code = _require(branch_code, "branch_code").upper()
    team = _normalise_team(team)

    existing = db.session.execute(
        select(BranchAssignment.id).where(
            BranchAssignment.user_id == user_id,
            BranchAssignment.branch_id == branch_id,
            BranchAssignment.team == team,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(
            f"Branch {branch_id} is already assigned to {user_id} for {team}",
            resource="BranchAssignment",
            code=E.CONFLICT_DUPLICATE,
        )

    assignment = BranchAssignment(
        user_id=user_id,
        branch_id=branch_id,
        branch_code=branch_code,
        branch_name=branch_name or "",
        team=team,
        status="pending",
        marked_by=marked_by,
    )
    db.session.add(assignment)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            f"Branch {branch_id} is already assigned to {user_id} for {team}",
            resource="BranchAssignment",
            code=E.CONFLICT_DUPLICATE,
        ) from exc

    logger.info(
        "Branch %s marked for %s (%s)", branch_code, user_id, team,
        extra={"user_id": user_id, "team": team, "branch_id": branch_id},
    )
    return assignment


def accept(user_id, branch_id, team, *, actor=None) -> BranchAssignment:
    """
    Accept one branch and decline every sibling for the same team.

    Both writes commit together. Siblings are flushed before the target is
    flipped so the one-accepted-per-team index never sees two rows.
    """
    user_id = _require(user_id, "user_id")
    branch_id = _require(branch_id, "branch_id")
    team = _normalise_team(team)
    _ensure_self_or_admin(actor, user_id, "accept_branch")

    target = _get_assignment(user_id, branch_id, team)
    now = datetime.now(timezone.utc)

    try:
        siblings = db.session.execute(
            select(BranchAssignment).where(
                BranchAssignment.user_id == user_id,
                BranchAssignment.team == team,
                BranchAssignment.id != target.id,
                BranchAssignment.status != "declined",
            )
        ).scalars().all()
        for sibling in siblings:
            sibling.status = "declined"
            sibling.declined_at = now
        db.session.flush()

        target.status = "accepted"
        target.accepted_at = now
        target.declined_at = None
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            f"{user_id} already holds an accepted branch for {team}",
            resource="BranchAssignment",
        ) from exc
    except SQLAlchemyError:
        db.session.rollback()
        raise

    logger.info(
        "Branch %s accepted by %s (%s); %d sibling(s) declined",
        target.branch_code, user_id, team, len(siblings),
        extra={"user_id": user_id, "team": team, "branch_id": branch_id},
    )
    return target


def decline(user_id, branch_id, team, *, actor=None) -> BranchAssignment:
    """Decline one assignment; siblings are left as they are."""
    user_id = _require(user_id, "user_id")
    branch_id = _require(branch_id, "branch_id")
    team = _normalise_team(team)
    _ensure_self_or_admin(actor, user_id, "decline_branch")

    target = _get_assignment(user_id, branch_id, team)
    target.status = "declined"
    target.declined_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info(
        "Branch %s declined by %s (%s)", target.branch_code, user_id, team,
        extra={"user_id": user_id, "team": team, "branch_id": branch_id},
    )
    return target
