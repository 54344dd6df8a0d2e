"""
Query Store: create and read Query records.

Status changes live in ``query_lifecycle``; this module owns creation,
lookups and the role-aware dashboard listing.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import func, select

from querydesk.core.exceptions import NotFoundError, ValidationError
from querydesk.models import db
from querydesk.models.query import PRIORITIES, QUERY_STATUSES, TEAM_TAGS, Query, QueryItem
from querydesk.services import visibility
from querydesk.utils.errors import E

logger = logging.getLogger(__name__)


@dataclass
class QueryListing:
    """Serialised queries plus an optional soft-fail explanation."""

    queries: list = field(default_factory=list)
    message: str | None = None


# ── Helpers ──────────────────────────────────────────────────────────────────

def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


def _team_tag(value, field_name: str) -> str:
    tag = _clean(value).lower() or "both"
    if tag not in TEAM_TAGS:
        raise ValidationError(
            f"Invalid {field_name} '{tag}'. Must be one of: {sorted(TEAM_TAGS)}",
            details={field_name: tag},
        )
    return tag


def _build_items(sub_queries, default_team: str) -> list[QueryItem]:
    if not sub_queries or not isinstance(sub_queries, list):
        raise ValidationError("sub_queries must be a non-empty list", code=E.VALIDATION_REQUIRED)

    items = []
    for idx, raw in enumerate(sub_queries):
        if isinstance(raw, dict):
            text = _clean(raw.get("text"))
            tag = _team_tag(raw.get("marked_for_team") or default_team, f"sub_queries[{idx}].marked_for_team")
        else:
            text = _clean(raw)
            tag = default_team
        if not text:
            raise ValidationError(
                f"sub_queries[{idx}] text is required", code=E.VALIDATION_REQUIRED,
            )
        items.append(QueryItem(text=text, marked_for_team=tag, status="pending"))
    return items


# ── Operations ───────────────────────────────────────────────────────────────

def create_query(
    app_no,
    sub_queries,
    *,
    submitted_by=None,
    customer_name="",
    branch="",
    branch_code="",
    marked_for_team="both",
    priority="medium",
    actor=None,
) -> Query:
    """
    Raise a new query against a loan application.

    ``sub_queries`` is a list of texts or ``{"text", "marked_for_team"}``
    dicts; items without their own tag inherit ``marked_for_team``.
    """
    if actor is not None:
        visibility.ensure_can_act(actor, "create_query")
        submitted_by = submitted_by or actor.name

    app_no = _clean(app_no)
    if not app_no:
        raise ValidationError("app_no is required", code=E.VALIDATION_REQUIRED)
    submitted_by = _clean(submitted_by)
    if not submitted_by:
        raise ValidationError("submitted_by is required", code=E.VALIDATION_REQUIRED)

    priority = _clean(priority).lower() or "medium"
    if priority not in PRIORITIES:
        raise ValidationError(
            f"Invalid priority '{priority}'. Must be one of: {sorted(PRIORITIES)}",
            details={"priority": priority},
        )
    default_team = _team_tag(marked_for_team, "marked_for_team")

    query = Query(
        app_no=app_no,
        customer_name=_clean(customer_name),
        branch=_clean(branch),
        branch_code=_clean(branch_code).upper(),
        marked_for_team=default_team,
        priority=priority,
        status="pending",
        submitted_by=submitted_by,
    )
    query.items = _build_items(sub_queries, default_team)
    db.session.add(query)
    db.session.commit()

    logger.info(
        "Query %s raised for %s with %d sub-queries", query.id, app_no, len(query.items),
        extra={"query_id": query.id, "team": default_team},
    )
    return query


def get_query(query_id) -> Query:
    query = db.session.get(Query, query_id)
    if query is None:
        raise NotFoundError(resource="Query", resource_id=query_id)
    return query


def get_item(query: Query, item_id) -> QueryItem:
    for item in query.items:
        if item.id == item_id:
            return item
    raise NotFoundError(resource="QueryItem", resource_id=item_id)


def list_queries_for_app(app_no, team=None) -> list[dict]:
    """All queries for an application, newest first, annotated per ``team``."""
    app_no = _clean(app_no)
    if not app_no:
        raise ValidationError("app_no is required", code=E.VALIDATION_REQUIRED)
    team = _clean(team).lower() or None

    queries = db.session.execute(
        select(Query)
        .where(Query.app_no == app_no)
        .order_by(Query.submitted_at.desc(), Query.id.desc())
    ).scalars().all()
    return [visibility.annotate_query(q, team) for q in queries]


def list_queries_for_actor(actor, status=None) -> QueryListing:
    """
    Dashboard listing.

    Sales/Credit get only their accepted branch and only the sub-queries
    routed to their team; everyone else sees every branch. A downstream user
    with no accepted branch gets an empty listing and an explanation.
    """
    stmt = select(Query).order_by(Query.submitted_at.desc(), Query.id.desc())
    if status:
        status = _clean(status).lower()
        if status not in QUERY_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {sorted(QUERY_STATUSES)}",
                details={"status": status},
            )
        stmt = stmt.where(Query.status == status)

    cap = actor.capability
    if not cap.branch_scoped:
        return QueryListing([visibility.annotate_query(q) for q in db.session.execute(stmt).scalars()])

    branch_code = visibility.accepted_branch_code(actor)
    if branch_code is None:
        return QueryListing(
            message=f"No branch accepted for {actor.team}. Accept a branch assignment to see its queries.",
        )

    listing = QueryListing()
    for query in db.session.execute(stmt.where(Query.branch_code == branch_code)).scalars():
        items = [i for i in query.items if cap.can_view(i, branch_code)]
        if items:
            listing.queries.append(visibility.annotate_query(query, cap.team_tag, items=items))
    if not listing.queries:
        listing.message = f"No queries found for branch {branch_code}"
    return listing


def query_stats() -> dict:
    """Query counts by overall status."""
    rows = db.session.execute(
        select(Query.status, func.count(Query.id)).group_by(Query.status)
    ).all()
    counts = {status: 0 for status in sorted(QUERY_STATUSES)}
    counts.update({status: n for status, n in rows})
    counts["total"] = sum(n for _, n in rows)
    return counts
