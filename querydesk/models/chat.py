"""
Per-query messaging log: ChatMessage model.

Human and system messages share one table. Rows are append-only: the
mapper events at the bottom of this module refuse ORM updates and deletes,
so a message can only ever be added.
"""

from datetime import datetime, timezone

from sqlalchemy import event

from querydesk.models import db

SYSTEM_SENDER_ROLE = "system"


class ImmutableMessageError(RuntimeError):
    """Raised on an attempt to update or delete a stored ChatMessage."""


class ChatMessage(db.Model):
    """One entry in a query's chat log, ordered by ``timestamp`` then ``id``."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        db.Index("ix_chat_query_time", "query_id", "timestamp", "id"),
        db.Index("ix_chat_team_time", "team", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    query_id = db.Column(
        db.Integer,
        db.ForeignKey("queries.id", ondelete="CASCADE"),
        nullable=False,
    )
    message = db.Column(db.Text, nullable=False)
    sender = db.Column(db.String(200), nullable=False)
    sender_role = db.Column(db.String(20), nullable=False, comment="originator | sales | credit | authority | system")
    team = db.Column(db.String(30), nullable=False, comment="Display team: Operations | Sales | Credit | Management")
    timestamp = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    is_system_message = db.Column(db.Boolean, nullable=False, default=False)
    action_type = db.Column(
        db.String(40),
        nullable=True,
        comment="approve | deferral | otc | resolve | revert | request-<type> | approval | rejection",
    )
    request_id = db.Column(db.Integer, nullable=True, index=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    meta = db.Column(db.JSON, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "query_id": self.query_id,
            "message": self.message,
            "sender": self.sender,
            "sender_role": self.sender_role,
            "team": self.team,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "is_system_message": self.is_system_message,
            "action_type": self.action_type,
            "request_id": self.request_id,
            "rejection_reason": self.rejection_reason,
            "meta": self.meta or {},
        }

    def __repr__(self):
        return f"<ChatMessage {self.id} on Query {self.query_id} by {self.sender}>"


@event.listens_for(ChatMessage, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableMessageError(f"ChatMessage {target.id} is append-only and cannot be updated")


@event.listens_for(ChatMessage, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableMessageError(f"ChatMessage {target.id} is append-only and cannot be deleted")
