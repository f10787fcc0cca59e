"""
Ideku — Idea Workflow Core
Notification inbox model.

One row per recipient for every rendered workflow template. Rows are
written by ``NotificationDispatcher`` after the idea transaction commits,
so an inbox entry never points at a transition that was rolled back.
"""

from datetime import datetime, timezone

from ideku.models import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient = db.Column(db.String(150), default="all", nullable=False,
                          comment="username, or 'all' for a broadcast row")
    recipient_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    template = db.Column(db.String(50), default="", comment="idea_submitted, idea_approved, ...")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system", comment="approval | decision | workflow | feedback | system")
    severity = db.Column(db.String(20), default="info", comment="info | success | warning | error")

    entity_type = db.Column(db.String(30), default="idea")
    entity_id = db.Column(db.Integer, nullable=True)

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_notifications_inbox", "recipient", "is_read"),
    )

    def mark_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient": self.recipient,
            "recipient_user_id": self.recipient_user_id,
            "template": self.template,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id} {self.template or 'custom'} → {self.recipient}>"
