"""
Approval Request Router.

Separates "ask for a status change" from "apply it". The originator files
an ApprovalRequest carrying the status change as a stored command; an
authority later approves (the command is replayed under a composed actor
identity) or rejects (the query keeps its status). Both outcomes leave one
system message in the query chat.

Guards:
    - one pending request per (query, request type)
    - the requested change must be a valid edge from the current status
    - a request is decided exactly once (conditional UPDATE, row count 1)
    - the authority needs the permission matching the request type

Usage:
    from querydesk.services import approval_router

    req = approval_router.create_request(42, "otc", requested_by="Operations", remarks="VIP")
    outcome = approval_router.decide(req.id, "approve", remarks="ok", actor=authority)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from querydesk.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from querydesk.models import db
from querydesk.models.approval import (
    REQUEST_TYPE_PERMISSIONS,
    URGENT_KEYWORDS,
    VALID_DECISIONS,
    VALID_REQUEST_STATUSES,
    VALID_REQUEST_TYPES,
    ApprovalRequest,
)
from querydesk.models.query import ACTION_TO_STATUS, TERMINAL_STATUSES, validate_query_transition
from querydesk.services import chat_service, query_lifecycle, query_service, visibility
from querydesk.services.visibility import Role
from querydesk.utils.errors import E

logger = logging.getLogger(__name__)

_REQUEST_LABELS = {"approve": "APPROVAL", "deferral": "DEFERRAL", "otc": "OTC"}
DEFAULT_REJECTION_REASON = "No reason provided"
DEFAULT_APPROVAL_REMARKS = "Approved by Management"


def _format_ts(ts: datetime) -> str:
    return ts.strftime("%B %d, %Y %I:%M %p UTC")


def compute_priority(request_type: str, query) -> str:
    """otc → high; urgent wording in the query → urgent; deferral → low."""
    if request_type == "otc":
        return "high"
    text = " ".join(item.text for item in query.items).lower()
    if any(word in text for word in URGENT_KEYWORDS):
        return "urgent"
    if request_type == "deferral":
        return "low"
    return "medium"


def may_decide(actor, request_type: str) -> bool:
    """Authorities with ``permissions=None`` may decide every request type."""
    if not actor.capability.can_act("decide_approval"):
        return False
    if actor.permissions is None:
        return True
    return REQUEST_TYPE_PERMISSIONS[request_type] in actor.permissions


def _decidable_types(actor) -> list[str] | None:
    if actor is None or actor.role is not Role.AUTHORITY or actor.permissions is None:
        return None
    return [t for t in sorted(VALID_REQUEST_TYPES) if may_decide(actor, t)]


# ── Create ───────────────────────────────────────────────────────────────────

def create_request(
    query_id,
    request_type,
    *,
    requested_by=None,
    assigned_to=None,
    remarks=None,
    item_id=None,
    actor=None,
) -> ApprovalRequest:
    """File a pending request; writes the request and its chat entry together."""
    if actor is not None:
        visibility.ensure_can_act(actor, "request_approval")
        requested_by = requested_by or actor.name

    request_type = (request_type or "").strip().lower()
    if not request_type:
        raise ValidationError("request_type is required", code=E.VALIDATION_REQUIRED)
    if request_type not in VALID_REQUEST_TYPES:
        raise ValidationError(
            f"Invalid request_type '{request_type}'. Must be one of: {sorted(VALID_REQUEST_TYPES)}",
            details={"request_type": request_type},
        )
    requested_by = (requested_by or "").strip()
    if not requested_by:
        raise ValidationError("requested_by is required", code=E.VALIDATION_REQUIRED)

    query = query_service.get_query(query_id)
    if query.status in TERMINAL_STATUSES:
        raise ConflictError(f"Query {query.id} is already {query.status}", resource="Query")
    requested_status = ACTION_TO_STATUS[request_type]
    if item_id is not None:
        item = query_service.get_item(query, item_id)
        targets = [(f"Sub-query {item.id}", item.status)]
    else:
        targets = [(f"Query {query.id}", query.status)] + [
            (f"Sub-query {i.id}", i.status)
            for i in query.items
            if i.status != requested_status and i.status not in TERMINAL_STATUSES
        ]
    for label, current in targets:
        if not validate_query_transition(current, requested_status):
            raise ConflictError(
                f"{label} is {current}; a {request_type} request cannot move it to {requested_status}",
                resource="ApprovalRequest",
                details={"from": current, "to": requested_status},
            )

    existing = db.session.execute(
        select(ApprovalRequest.id).where(
            ApprovalRequest.query_id == query.id,
            ApprovalRequest.request_type == request_type,
            ApprovalRequest.status == "pending",
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(
            f"A pending {request_type} request already exists for query {query.id}",
            resource="ApprovalRequest",
            code=E.CONFLICT_DUPLICATE,
            details={"existing_request_id": existing},
        )

    remarks = (remarks or "").strip() or None
    req = ApprovalRequest(
        query_id=query.id,
        item_id=item_id,
        request_type=request_type,
        status="pending",
        priority=compute_priority(request_type, query),
        requested_by=requested_by,
        assigned_to=assigned_to,
        remarks=remarks,
        command=query_lifecycle.build_change_status_command(
            request_type, query_id=query.id, item_id=item_id, assigned_to=assigned_to, remarks=remarks,
        ),
    )
    try:
        db.session.add(req)
        db.session.flush()

        lines = [
            f"{_REQUEST_LABELS[request_type]} REQUEST sent to Management by {requested_by}",
            f"Application: {query.app_no}",
            f"Customer: {query.customer_name or 'Not specified'}",
            f"Branch: {query.branch} ({query.branch_code})",
            f"Priority: {req.priority.upper()}",
            f"Proposed assignment: {assigned_to or 'Not specified'}",
            f"Remarks: {remarks or 'No additional remarks'}",
            f"Requested on: {_format_ts(req.created_at)}",
        ]
        chat_service.append_system_message(
            query.id,
            "\n".join(lines),
            action_type=f"request-{request_type}",
            sender=requested_by,
            sender_role=Role.ORIGINATOR.value,
            team=visibility.TEAM_DISPLAY_NAMES[Role.ORIGINATOR],
            request_id=req.id,
            meta={"item_id": item_id, "assigned_to": assigned_to, "remarks": remarks, "priority": req.priority},
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            f"A pending {request_type} request already exists for query {query_id}",
            resource="ApprovalRequest",
            code=E.CONFLICT_DUPLICATE,
        ) from exc
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Approval request %s (%s) filed on query %s by %s", req.id, request_type, query.id, requested_by,
        extra={"query_id": query.id, "approval_request_id": req.id, "action": request_type},
    )
    return req


# ── Decide ───────────────────────────────────────────────────────────────────

def get_request(request_id) -> ApprovalRequest:
    req = db.session.get(ApprovalRequest, request_id)
    if req is None:
        raise NotFoundError(resource="ApprovalRequest", resource_id=request_id)
    return req


def decide(request_id, decision, *, actor, remarks=None) -> dict:
    """
    Approve or reject a pending request as ``actor`` (an authority).

    On approve the stored command is replayed with composed remarks and the
    actor ``"<authority> (via <requested_by>)"``; the replay, the request
    update and the approval message commit together. The replay's own
    status message is folded into the approval message.
    """
    decision = (decision or "").strip().lower()
    if not decision:
        raise ValidationError("decision is required", code=E.VALIDATION_REQUIRED)
    if decision not in VALID_DECISIONS:
        raise ValidationError(
            f"Invalid decision '{decision}'. Must be one of: {sorted(VALID_DECISIONS)}",
            details={"decision": decision},
        )

    req = get_request(request_id)
    if not may_decide(actor, req.request_type):
        raise ForbiddenError(
            actor.name, "decide_approval",
            f"no permission to decide {req.request_type} requests",
        )
    if req.status != "pending":
        raise ConflictError(
            f"Approval request {req.id} was already {req.status} by {req.processed_by}",
            resource="ApprovalRequest",
        )

    remarks = (remarks or "").strip() or None
    now = datetime.now(timezone.utc)
    new_status = "approved" if decision == "approve" else "rejected"
    label = req.request_type.upper()
    query_id = req.query_id
    requested_by = req.requested_by
    outcome = {"decision": new_status}

    try:
        guarded = db.session.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == req.id, ApprovalRequest.status == "pending")
            .values(status=new_status, processed_by=actor.name, process_date=now, decision_remarks=remarks)
        )
        if guarded.rowcount != 1:
            raise ConflictError(f"Approval request {req.id} was decided concurrently", resource="ApprovalRequest")

        if decision == "approve":
            composed_remarks = "\n\n".join(
                part for part in (req.remarks, f"[Management Approval] {remarks or DEFAULT_APPROVAL_REMARKS}") if part
            )
            replay = query_lifecycle.execute_command(
                req.command,
                actor_name=f"{actor.name} (via {requested_by})",
                remarks=composed_remarks,
                sender_role=actor.role.value,
                team=actor.team,
                emit_message=False,
            )
            message = "\n\n".join([
                f"MANAGEMENT APPROVED the {label} request by {actor.name}",
                f"Management Remarks: {remarks or 'No additional remarks'}",
                f"Approved on: {_format_ts(now)}",
                f"Original request by: {requested_by}",
                replay.message,
            ])
            chat_service.append_system_message(
                query_id,
                message,
                action_type="approval",
                sender=actor.name,
                sender_role=actor.role.value,
                team=actor.team,
                request_id=req.id,
                meta={"request_type": req.request_type, "remarks": composed_remarks, "new_status": replay.query.status},
            )
            outcome["original_action_result"] = replay.to_dict()
        else:
            reason = remarks or DEFAULT_REJECTION_REASON
            message = "\n\n".join([
                f"MANAGEMENT REJECTED the {label} request by {actor.name}",
                f"Rejection Reason: {reason}",
                f"Rejected on: {_format_ts(now)}",
                f"Original request by: {requested_by}",
                "Query remains in its current status.",
            ])
            chat_service.append_system_message(
                query_id,
                message,
                action_type="rejection",
                sender=actor.name,
                sender_role=actor.role.value,
                team=actor.team,
                request_id=req.id,
                rejection_reason=reason,
                meta={"request_type": req.request_type},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    outcome["message"] = message
    outcome["request"] = req.to_dict()
    logger.info(
        "Approval request %s %s by %s", req.id, new_status, actor.name,
        extra={"query_id": query_id, "approval_request_id": req.id, "decision": new_status,
               "user_id": actor.employee_id},
    )
    return outcome


# ── List ─────────────────────────────────────────────────────────────────────

def list_requests(status="pending", query_id=None, actor=None) -> list[ApprovalRequest]:
    """Requests newest first; restricted authorities only see what they may decide."""
    stmt = select(ApprovalRequest).order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc())
    if status and status != "all":
        if status not in VALID_REQUEST_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {sorted(VALID_REQUEST_STATUSES)} or 'all'",
                details={"status": status},
            )
        stmt = stmt.where(ApprovalRequest.status == status)
    if query_id is not None:
        stmt = stmt.where(ApprovalRequest.query_id == query_id)

    types = _decidable_types(actor)
    if types is not None:
        stmt = stmt.where(ApprovalRequest.request_type.in_(types))
    return list(db.session.execute(stmt).scalars())
