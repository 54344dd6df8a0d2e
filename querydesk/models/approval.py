"""
Approval routing: ApprovalRequest model.

An ApprovalRequest is an originator's ask for Management sign-off on an
escalation-type status change (approve / deferral / otc). The status change
itself is stored verbatim as a tagged ``command`` value and only replayed
once an authority approves it.
"""

from datetime import datetime, timezone

from querydesk.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

VALID_REQUEST_TYPES = frozenset({"approve", "deferral", "otc"})
VALID_REQUEST_STATUSES = frozenset({"pending", "approved", "rejected"})
VALID_DECISIONS = frozenset({"approve", "reject"})
VALID_PRIORITIES = frozenset({"low", "medium", "high", "urgent"})

# Authority permission required to decide each request type
REQUEST_TYPE_PERMISSIONS = {
    "approve": "approve_queries",
    "otc": "approve_otc_queries",
    "deferral": "approve_deferral_queries",
}

URGENT_KEYWORDS = ("urgent", "emergency", "immediate", "asap", "critical")


class ApprovalRequest(db.Model):
    """
    Pending ask for authority sign-off.

    Business rules:
    - At most one pending request per (query_id, request_type); enforced in
      the router and by the partial unique index below.
    - pending → approved | rejected exactly once; the router guards the
      transition with a conditional UPDATE.
    - ``command`` is never rewritten after creation.
    """

    __tablename__ = "approval_requests"
    __table_args__ = (
        db.Index(
            "uq_approval_pending_per_type",
            "query_id",
            "request_type",
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
        db.Index("ix_approval_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    query_id = db.Column(
        db.Integer,
        db.ForeignKey("queries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id = db.Column(
        db.Integer,
        db.ForeignKey("query_items.id", ondelete="SET NULL"),
        nullable=True,
        comment="Target sub-query; NULL means the whole query",
    )
    request_type = db.Column(db.String(20), nullable=False, comment="approve | deferral | otc")
    status = db.Column(db.String(20), nullable=False, default="pending")
    priority = db.Column(db.String(10), nullable=False, default="medium")

    requested_by = db.Column(db.String(150), nullable=False)
    assigned_to = db.Column(db.String(150), nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    command = db.Column(
        db.JSON,
        nullable=False,
        comment='Tagged command replayed on approval: {"type": "change_status", ...}',
    )

    processed_by = db.Column(db.String(150), nullable=True)
    process_date = db.Column(db.DateTime(timezone=True), nullable=True)
    decision_remarks = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    loan_query = db.relationship("Query")

    def to_dict(self):
        return {
            "id": self.id,
            "query_id": self.query_id,
            "item_id": self.item_id,
            "request_type": self.request_type,
            "status": self.status,
            "priority": self.priority,
            "requested_by": self.requested_by,
            "assigned_to": self.assigned_to,
            "remarks": self.remarks,
            "command": self.command,
            "processed_by": self.processed_by,
            "process_date": self.process_date.isoformat() if self.process_date else None,
            "decision_remarks": self.decision_remarks,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalRequest {self.id}: query={self.query_id} {self.request_type} [{self.status}]>"
