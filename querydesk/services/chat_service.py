"""
Messaging / Chat Subsystem: append-only per-query message log.

Human messages go through ``append_message`` (validates, commits); the
lifecycle and the approval router write audit entries with
``append_system_message``, which only adds to the caller's transaction.
Reads are always ordered by timestamp, ties by id.

Usage:
    from querydesk.services import chat_service

    chat_service.append_message(42, "Salary slip attached", sender="Ravi", sender_role="sales")
    chat_service.list_messages(42)
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from querydesk.core.exceptions import ForbiddenError, ValidationError
from querydesk.models import db
from querydesk.models.chat import SYSTEM_SENDER_ROLE, ChatMessage
from querydesk.services import query_service
from querydesk.services.visibility import (
    TEAM_DISPLAY_NAMES,
    Role,
    accepted_branch_code,
    allows_messaging,
    get_capability,
)
from querydesk.utils.errors import E

logger = logging.getLogger(__name__)

LATEST_MESSAGES_LIMIT = 50


def _role(sender_role) -> Role:
    value = (sender_role or "").strip().lower()
    if not value:
        raise ValidationError("sender_role is required", code=E.VALIDATION_REQUIRED)
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(
            f"Invalid sender_role '{value}'. Must be one of: {[r.value for r in Role]}",
            details={"sender_role": value},
        ) from None


def append_message(query_id, message, *, sender=None, sender_role=None, team=None, actor=None) -> ChatMessage:
    """
    Append a human message and commit it.

    Sales/Credit may only post where at least one sub-query is routed to
    their team. When ``actor`` is given it supplies sender, role and team,
    and a branch-scoped actor must also see one of those sub-queries on
    their accepted branch.
    """
    if actor is not None:
        sender, sender_role, team = actor.name, actor.role.value, team or actor.team
    text = (message or "").strip()
    if not text:
        raise ValidationError("message is required", code=E.VALIDATION_REQUIRED)
    sender = (sender or "").strip()
    if not sender:
        raise ValidationError("sender is required", code=E.VALIDATION_REQUIRED)
    role = _role(sender_role)
    cap = get_capability(role)
    if not cap.can_act("chat"):
        raise ForbiddenError(sender, "chat", f"role '{role.value}' cannot post messages")

    query = query_service.get_query(query_id)
    if role in (Role.SALES, Role.CREDIT):
        if not any(allows_messaging(i.marked_for_team, role.value) for i in query.items):
            raise ForbiddenError(sender, "chat", f"query {query.id} is not routed to {role.value}")
    if actor is not None and cap.branch_scoped:
        branch_code = accepted_branch_code(actor)
        if branch_code is None:
            raise ForbiddenError(sender, "chat", "no accepted branch for this team")
        if not any(cap.can_view(i, branch_code) for i in query.items):
            raise ForbiddenError(sender, "chat", f"query {query.id} is not on branch {branch_code}")

    entry = ChatMessage(
        query_id=query.id,
        message=text,
        sender=sender,
        sender_role=role.value,
        team=team or TEAM_DISPLAY_NAMES[role],
        is_system_message=False,
    )
    db.session.add(entry)
    db.session.commit()

    logger.info(
        "Message %s on query %s from %s", entry.id, query.id, sender,
        extra={"query_id": query.id, "team": entry.team},
    )
    return entry


def append_system_message(
    query_id,
    message,
    *,
    action_type,
    sender,
    sender_role=SYSTEM_SENDER_ROLE,
    team="System",
    request_id=None,
    rejection_reason=None,
    meta=None,
) -> ChatMessage:
    """Add an audit entry to the current transaction; the caller commits."""
    entry = ChatMessage(
        query_id=query_id,
        message=message,
        sender=sender,
        sender_role=sender_role,
        team=team,
        is_system_message=True,
        action_type=action_type,
        request_id=request_id,
        rejection_reason=rejection_reason,
        meta=meta or None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_messages(query_id) -> list[ChatMessage]:
    """Every message for the query, oldest first."""
    query_service.get_query(query_id)
    return list(
        db.session.execute(
            select(ChatMessage)
            .where(ChatMessage.query_id == query_id)
            .order_by(ChatMessage.timestamp.asc(), ChatMessage.id.asc())
        ).scalars()
    )


def latest_messages(team=None, since=None, hours=24) -> list[ChatMessage]:
    """Recent human messages, newest first, optionally from one team only."""
    if since is None:
        since = datetime.now(timezone.utc) - timedelta(hours=hours)

    stmt = (
        select(ChatMessage)
        .where(ChatMessage.is_system_message.is_(False), ChatMessage.timestamp >= since)
        .order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .limit(LATEST_MESSAGES_LIMIT)
    )
    if team:
        stmt = stmt.where(func.lower(ChatMessage.team) == team.strip().lower())
    return list(db.session.execute(stmt).scalars())
