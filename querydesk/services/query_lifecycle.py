"""
Status State Machine: direct status changes on queries and sub-queries.

    pending ──approve/deferral/otc──▶ approved | deferred | otc ──resolve──▶ resolved
                                           └───────revert (remarks)───────▶ pending

``resolved`` is terminal. A change may target one sub-query (``item_id``),
after which the overall status is rolled up, or the whole query, in which
case every open sub-query moves with it. Every direct change appends one
system chat message.

Status changes are also the commands the approval router stores and
replays; ``execute_command`` dispatches a stored command to its handler.

Usage:
    from querydesk.services.query_lifecycle import change_status

    result = change_status(42, "approve", actor=actor, remarks="Docs verified")
    result = change_status(42, "revert", actor=actor, item_id=7, remarks="Wrong item")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from querydesk.core.exceptions import ConflictError, ValidationError
from querydesk.models import db
from querydesk.models.query import (
    ACTION_TO_STATUS,
    QUERY_STATUSES,
    STATUS_TO_ACTION,
    TERMINAL_STATUSES,
    validate_query_transition,
)
from querydesk.services import chat_service, query_service, visibility
from querydesk.utils.errors import E

logger = logging.getLogger(__name__)

_ACTION_HEADLINES = {
    "approve": "APPROVED",
    "deferral": "DEFERRED",
    "otc": "marked as OTC",
    "resolve": "RESOLVED",
    "revert": "REVERTED to pending",
}


@dataclass
class StatusChangeResult:
    query: object
    action: str
    new_status: str
    items: list = field(default_factory=list)
    message: str = ""

    def to_dict(self):
        return {
            "query_id": self.query.id,
            "action": self.action,
            "new_status": self.new_status,
            "overall_status": self.query.status,
            "item_ids": [i.id for i in self.items],
            "message": self.message,
        }


def resolve_target(new_status) -> tuple[str, str]:
    """Map an action verb or status name onto ``(status, action)``."""
    value = str(new_status or "").strip().lower()
    if not value:
        raise ValidationError("new_status is required", code=E.VALIDATION_REQUIRED)
    if value in ACTION_TO_STATUS:
        return ACTION_TO_STATUS[value], value
    if value in QUERY_STATUSES:
        return value, STATUS_TO_ACTION[value]
    raise ValidationError(
        f"Unknown status '{value}'. Use one of {sorted(QUERY_STATUSES)} or {sorted(ACTION_TO_STATUS)}",
        details={"new_status": value},
    )


def _check_transition(current: str, target: str, label: str) -> None:
    if current in TERMINAL_STATUSES:
        raise ConflictError(f"{label} is already {current}; no further transition is allowed", resource=label)
    if not validate_query_transition(current, target):
        raise ConflictError(
            f"Invalid transition for {label}: {current} → {target}",
            resource=label,
            details={"from": current, "to": target},
        )


def _apply_to_item(item, target, action, *, actor_name, remarks, assigned_to, now) -> None:
    if action == "revert":
        item.status = "pending"
        item.resolution_type = None
        item.resolved_by = None
        item.resolved_at = None
        item.assigned_to = None
        item.reverted_by = actor_name
        item.reverted_at = now
        item.revert_reason = remarks
        return
    item.status = target
    item.resolution_type = action if action != "approve" else "approved"
    item.resolved_by = actor_name
    item.resolved_at = now
    item.remarks = remarks or item.remarks
    if assigned_to:
        item.assigned_to = assigned_to


def _compose_message(action, subject, actor_name, *, remarks, assigned_to) -> str:
    lines = [f"{subject} {_ACTION_HEADLINES[action]} by {actor_name}"]
    if assigned_to and action != "revert":
        lines.append(f"Assigned to: {assigned_to}")
    if remarks:
        lines.append(f"{'Reason' if action == 'revert' else 'Remarks'}: {remarks}")
    return "\n".join(lines)


def apply_status_change(
    query,
    new_status,
    *,
    actor_name,
    sender_role="system",
    team="System",
    remarks=None,
    item_id=None,
    assigned_to=None,
    emit_message=True,
    check_visibility=None,
) -> StatusChangeResult:
    """
    Validate and apply a status change inside the caller's transaction.

    Nothing is committed here. ``check_visibility`` is called with the
    sub-queries about to change so the caller can veto before any write.
    """
    target, action = resolve_target(new_status)
    remarks = (remarks or "").strip() or None
    if action == "revert" and not remarks:
        raise ValidationError("remarks are required to revert a query", code=E.VALIDATION_REQUIRED)

    if query.status in TERMINAL_STATUSES:
        raise ConflictError(f"Query {query.id} is already {query.status}; no further transition is allowed",
                            resource="Query")

    if item_id is not None:
        item = query_service.get_item(query, item_id)
        _check_transition(item.status, target, f"Sub-query {item.id}")
        changing = [item]
        subject = f"Sub-query {item.id}"
    else:
        _check_transition(query.status, target, f"Query {query.id}")
        changing = [i for i in query.items if i.status != target and i.status not in TERMINAL_STATUSES]
        for item in changing:
            _check_transition(item.status, target, f"Sub-query {item.id}")
        subject = "Query"

    if check_visibility is not None:
        check_visibility(changing)

    now = datetime.now(timezone.utc)
    for item in changing:
        _apply_to_item(item, target, action, actor_name=actor_name, remarks=remarks,
                       assigned_to=assigned_to, now=now)

    previous = query.status
    query.status = target if item_id is None else query.rollup_status()
    if query.status in TERMINAL_STATUSES:
        query.resolved_by = actor_name
        query.resolved_at = now
    elif action == "revert":
        query.resolved_by = None
        query.resolved_at = None

    message = _compose_message(action, subject, actor_name, remarks=remarks, assigned_to=assigned_to)
    if emit_message:
        chat_service.append_system_message(
            query.id,
            message,
            action_type=action,
            sender=actor_name,
            sender_role=sender_role,
            team=team,
            meta={
                "item_id": item_id,
                "from_status": previous,
                "to_status": query.status,
                "assigned_to": assigned_to,
                "remarks": remarks,
            },
        )
    db.session.flush()

    return StatusChangeResult(query=query, action=action, new_status=target, items=changing, message=message)


def change_status(query_id, new_status, *, actor, remarks=None, item_id=None, assigned_to=None) -> StatusChangeResult:
    """Direct status change by ``actor``; commits or rolls back as a unit."""
    target, action = resolve_target(new_status)
    visibility.ensure_can_act(actor, "revert" if action == "revert" else "change_status")
    query = query_service.get_query(query_id)

    try:
        result = apply_status_change(
            query,
            target,
            actor_name=actor.name,
            sender_role=actor.role.value,
            team=actor.team,
            remarks=remarks,
            item_id=item_id,
            assigned_to=assigned_to,
            check_visibility=lambda items: visibility.ensure_items_visible(actor, items, action),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Query %s %s by %s → %s", query.id, action, actor.name, query.status,
        extra={"query_id": query.id, "item_id": item_id, "action": action, "user_id": actor.employee_id},
    )
    return result


# ── Replayable commands ──────────────────────────────────────────────────────

COMMAND_HANDLERS = {}


def command_handler(name):
    def decorator(fn):
        COMMAND_HANDLERS[name] = fn
        return fn
    return decorator


def build_change_status_command(request_type, *, query_id, item_id=None, assigned_to=None, remarks=None) -> dict:
    return {
        "type": "change_status",
        "request_type": request_type,
        "payload": {
            "query_id": query_id,
            "item_id": item_id,
            "new_status": ACTION_TO_STATUS[request_type],
            "assigned_to": assigned_to,
            "remarks": remarks,
        },
    }


@command_handler("change_status")
def _replay_change_status(command, *, actor_name, remarks, sender_role, team, emit_message):
    payload = command["payload"]
    query = query_service.get_query(payload["query_id"])
    return apply_status_change(
        query,
        payload["new_status"],
        actor_name=actor_name,
        sender_role=sender_role,
        team=team,
        remarks=remarks,
        item_id=payload.get("item_id"),
        assigned_to=payload.get("assigned_to"),
        emit_message=emit_message,
    )


def execute_command(command, *, actor_name, remarks=None, sender_role="system", team="System", emit_message=True):
    """Replay a stored command inside the caller's transaction."""
    handler = COMMAND_HANDLERS.get((command or {}).get("type"))
    if handler is None:
        raise ValidationError(f"Unknown command type: {(command or {}).get('type')!r}")
    return handler(command, actor_name=actor_name, remarks=remarks, sender_role=sender_role,
                   team=team, emit_message=emit_message)
