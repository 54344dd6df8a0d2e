"""
Branch assignments: links a Sales/Credit user to the branch whose queries
they work. An admin marks a branch for a user (pending); the user accepts
or declines. A user holds at most one accepted branch per team.
"""

from datetime import datetime, timezone

from querydesk.models import db

VALID_TEAMS = frozenset({"sales", "credit"})
VALID_ASSIGNMENT_STATUSES = frozenset({"pending", "accepted", "declined"})


class BranchAssignment(db.Model):
    __tablename__ = "branch_assignments"
    __table_args__ = (
        db.UniqueConstraint("user_id", "branch_id", "team", name="uq_branch_assignment_user_branch_team"),
        db.Index(
            "uq_branch_assignment_one_accepted",
            "user_id",
            "team",
            unique=True,
            sqlite_where=db.text("status = 'accepted'"),
            postgresql_where=db.text("status = 'accepted'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(50), nullable=False, index=True, comment="Employee id")
    branch_id = db.Column(db.String(50), nullable=False)
    branch_code = db.Column(db.String(20), nullable=False)
    branch_name = db.Column(db.String(200), nullable=False, default="")
    team = db.Column(db.String(10), nullable=False, comment="sales | credit")
    status = db.Column(db.String(10), nullable=False, default="pending")

    marked_by = db.Column(db.String(150), nullable=True)
    marked_at = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    declined_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "branch_id": self.branch_id,
            "branch_code": self.branch_code,
            "branch_name": self.branch_name,
            "team": self.team,
            "status": self.status,
            "marked_by": self.marked_by,
            "marked_at": self.marked_at.isoformat() if self.marked_at else None,
            "accepted_at": self.accepted_at.isoformat() if self.accepted_at else None,
            "declined_at": self.declined_at.isoformat() if self.declined_at else None,
        }

    def __repr__(self):
        return f"<BranchAssignment {self.user_id} → {self.branch_code} ({self.team}) [{self.status}]>"
