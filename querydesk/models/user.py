"""
User directory: the employees who raise, work and decide queries.

Authentication lives outside this service; the directory only maps an
employee id onto a display name, a role and, for authorities, the request
types they may decide.
"""

from datetime import datetime, timezone

from querydesk.models import db

VALID_ROLES = frozenset({"originator", "sales", "credit", "authority", "admin"})


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.String(50), nullable=False, unique=True)
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, comment="originator | sales | credit | authority | admin")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    permissions = db.Column(
        db.JSON,
        nullable=True,
        comment="Authority approval permissions; NULL means every request type",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "permissions": self.permissions,
        }

    def __repr__(self):
        return f"<User {self.employee_id} ({self.role})>"
