"""
Loan Query Desk
Query domain model.

Models:
    - Query: clarification request raised by Operations against a loan application
    - QueryItem: one sub-query inside a Query, with its own status and team routing
"""

from datetime import datetime, timezone

from querydesk.models import db


# ── Constants ────────────────────────────────────────────────────────────────

QUERY_STATUSES = {"pending", "approved", "deferred", "otc", "resolved"}
TERMINAL_STATUSES = {"resolved"}

# Overall status for a query whose items sit in different open escalations
ROLLUP_PRECEDENCE = ("deferred", "otc", "approved")

TEAM_TAGS = {"sales", "credit", "both"}
PRIORITIES = {"high", "medium", "low"}

# Action verbs accepted by ChangeStatus, and the status each one lands on
ACTION_TO_STATUS = {
    "approve": "approved",
    "deferral": "deferred",
    "otc": "otc",
    "resolve": "resolved",
    "revert": "pending",
}
STATUS_TO_ACTION = {status: action for action, status in ACTION_TO_STATUS.items()}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

QUERY_TRANSITIONS = {
    "pending":  ["approved", "deferred", "otc"],
    "approved": ["resolved", "pending"],
    "deferred": ["resolved", "pending"],
    "otc":      ["resolved", "pending"],
    "resolved": [],
}


def validate_query_transition(old_status, new_status):
    """Return True if a Query / QueryItem status transition is valid."""
    return new_status in QUERY_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


class Query(db.Model):
    """
    A clarification request against one loan application.

    ``status`` is the overall status; for item-level changes it is rolled
    up from the items (see ``rollup_status``).
    """

    __tablename__ = "queries"
    __table_args__ = (
        db.Index("ix_queries_branch_status", "branch_code", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    app_no = db.Column(db.String(50), nullable=False, index=True)
    customer_name = db.Column(db.String(200), nullable=False, default="")
    branch = db.Column(db.String(200), nullable=False, default="")
    branch_code = db.Column(db.String(20), nullable=False, default="", index=True)

    marked_for_team = db.Column(
        db.String(10), nullable=False, default="both",
        comment="sales | credit | both: default routing for new items",
    )
    priority = db.Column(db.String(10), nullable=False, default="medium")
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)

    submitted_by = db.Column(db.String(150), nullable=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    resolved_by = db.Column(db.String(200), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "QueryItem",
        back_populates="loan_query",
        cascade="all, delete-orphan",
        order_by="QueryItem.id",
        lazy="selectin",
    )

    def rollup_status(self) -> str:
        """Derive the overall status from the items.

        pending while any item is pending; resolved only once every item is
        resolved. Otherwise the open escalations decide, the one furthest
        from closure first (deferred, then otc, then approved).
        """
        statuses = {item.status for item in self.items}
        if not statuses:
            return self.status
        if "pending" in statuses:
            return "pending"
        open_statuses = statuses - TERMINAL_STATUSES
        if not open_statuses:
            return "resolved"
        for status in ROLLUP_PRECEDENCE:
            if status in open_statuses:
                return status
        return self.status

    def to_dict(self, items=None):
        items = self.items if items is None else items
        return {
            "id": self.id,
            "app_no": self.app_no,
            "customer_name": self.customer_name,
            "branch": self.branch,
            "branch_code": self.branch_code,
            "marked_for_team": self.marked_for_team,
            "priority": self.priority,
            "status": self.status,
            "submitted_by": self.submitted_by,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "items": [i.to_dict() for i in items],
        }

    def __repr__(self):
        return f"<Query {self.id}: {self.app_no} [{self.status}]>"


class QueryItem(db.Model):
    """A single sub-query with independent status and team routing."""

    __tablename__ = "query_items"

    id = db.Column(db.Integer, primary_key=True)
    query_id = db.Column(
        db.Integer, db.ForeignKey("queries.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    text = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    marked_for_team = db.Column(db.String(10), nullable=False, default="both")

    assigned_to = db.Column(db.String(150), nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    resolution_type = db.Column(db.String(20), nullable=True, comment="approved | deferral | otc | resolved")
    resolved_by = db.Column(db.String(200), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    reverted_by = db.Column(db.String(200), nullable=True)
    reverted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revert_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    loan_query = db.relationship("Query", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "query_id": self.query_id,
            "text": self.text,
            "status": self.status,
            "marked_for_team": self.marked_for_team,
            "assigned_to": self.assigned_to,
            "remarks": self.remarks,
            "resolution_type": self.resolution_type,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "reverted_by": self.reverted_by,
            "reverted_at": self.reverted_at.isoformat() if self.reverted_at else None,
            "revert_reason": self.revert_reason,
            "is_resolved": self.status != "pending",
        }

    def __repr__(self):
        return f"<QueryItem {self.id} of Query {self.query_id} [{self.status}]>"
