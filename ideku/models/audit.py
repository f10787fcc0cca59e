"""
Ideku — Idea Workflow Core
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for state transitions
      and workflow configuration changes.
"""

import json
from datetime import UTC, datetime

from ideku.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "idea", "workflow", "workflow_stage", "workflow_condition", "user",
}

AUDIT_ACTIONS = {
    # Idea lifecycle
    "idea.submit",
    "idea.approve",
    "idea.reject",
    "idea.bypass",
    "idea.feedback",
    "idea.change_workflow",
    "idea.delete",
    # Workflow configuration
    "workflow.create",
    "workflow.update",
    "workflow.delete",
    "workflow.add_stage",
    "workflow.remove_stage",
    "workflow.add_condition",
    "workflow.remove_condition",
    # Acting delegation
    "user.set_acting",
    "user.clear_acting",
    "user.revert_acting",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every lifecycle event.

    One row per action. ``diff_json`` carries the old→new snapshot
    of the fields the action changed.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="idea | workflow | workflow_stage | …",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="idea.approve | idea.change_workflow | workflow.create | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system", comment="username or 'system'")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Change payload
    diff_json = db.Column(db.Text, default="{}", comment="JSON: {field: {old, new}}")
    reason = db.Column(db.Text, nullable=True)

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    actor_user_id: int | None = None,
    diff: dict | None = None,
    reason: str | None = None,
) -> AuditLog:
    """
    Append a single audit row. Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back together with
    the state change it describes.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
        reason=reason,
    )
    db.session.add(log)
    db.session.flush()
    return log


def list_audit(entity_type: str, entity_id, limit: int = 100) -> list[dict]:
    """Audit rows for one entity, oldest first."""
    rows = (
        AuditLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(AuditLog.id)
        .limit(limit)
        .all()
    )
    return [r.to_dict() for r in rows]
