"""
Ideku — Idea Workflow Core
Idea domain models.

Models:
    - Idea: the subject moving through an approval workflow.
    - StageSignoff: one approval/bypass per (idea, workflow, stage).
    - WorkflowHistory: user-facing approval history of an idea.

State fields on Idea (workflow_id, current_stage, max_stage,
current_status, is_rejected, completed_date) are mutated only by
``ideku.services.transition_engine`` and ``ideku.services.change_workflow``.
"""

from datetime import datetime, timezone

from ideku.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_DRAFT = "Draft"
STATUS_COMPLETED = "Completed"
STATUS_REJECTED = "Rejected"
_WAITING_PREFIX = "Waiting Approval S"

HISTORY_ACTIONS = {
    "Submitted",
    "Approved",
    "Rejected",
    "Bypassed",
    "Feedback",
    "WorkflowChanged",
    "Deleted",
}

SIGNOFF_ACTIONS = {"approved", "bypassed", "skipped"}


def waiting_status(stage: int) -> str:
    """Status text for an idea awaiting sign-off at *stage*."""
    return f"{_WAITING_PREFIX}{stage}"


def format_idea_code(idea_id: int, prefix: str = "IMS") -> str:
    return f"{prefix}-{idea_id:07d}"


class Idea(db.Model):
    """
    Improvement idea submitted by an employee.

    ``current_stage`` is the highest stage already passed (0 before the
    first sign-off). ``version_id`` is the optimistic-lock counter; every
    UPDATE is guarded by it.
    """

    __tablename__ = "ideas"
    __table_args__ = (
        db.Index("ix_ideas_workflow", "workflow_id"),
        db.Index("ix_ideas_status", "current_status"),
        db.Index("ix_ideas_initiator", "initiator_user_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    idea_code = db.Column(db.String(20), unique=True, nullable=True)
    idea_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")

    initiator_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False)
    target_division_id = db.Column(db.String(3), db.ForeignKey("divisions.id"), nullable=False)
    target_department_id = db.Column(db.String(3), db.ForeignKey("departments.id"), nullable=False)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True)
    saving_cost = db.Column(db.BigInteger, default=0, nullable=False)
    saving_cost_validated = db.Column(db.BigInteger, nullable=True)

    # Workflow state
    workflow_id = db.Column(db.Integer, db.ForeignKey("workflows.id"), nullable=True)
    current_stage = db.Column(db.Integer, default=0, nullable=False)
    max_stage = db.Column(db.Integer, default=0, nullable=False)
    current_status = db.Column(db.String(50), default=STATUS_DRAFT, nullable=False)
    is_rejected = db.Column(db.Boolean, default=False, nullable=False)
    rejected_reason = db.Column(db.Text, nullable=True)

    # Tombstone
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by = db.Column(db.String(100), nullable=True)

    submitted_date = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    initiator = db.relationship("User", foreign_keys=[initiator_user_id])
    workflow = db.relationship("Workflow")
    history = db.relationship(
        "WorkflowHistory", back_populates="idea", lazy="dynamic",
        order_by="WorkflowHistory.id",
    )

    # ── State helpers ────────────────────────────────────────────────────

    @property
    def is_draft(self) -> bool:
        return self.workflow_id is None and self.current_status == STATUS_DRAFT

    @property
    def is_completed(self) -> bool:
        return self.current_status == STATUS_COMPLETED

    @property
    def is_terminal(self) -> bool:
        return self.is_rejected or self.is_completed

    @property
    def is_pending(self) -> bool:
        return not (self.is_draft or self.is_terminal or self.is_deleted)

    def soft_delete(self, deleted_by: str | None = None) -> None:
        self.is_deleted = True
        self.deleted_at = datetime.now(timezone.utc)
        self.deleted_by = deleted_by

    def to_dict(self):
        return {
            "id": self.id,
            "idea_code": self.idea_code,
            "idea_name": self.idea_name,
            "description": self.description,
            "initiator_user_id": self.initiator_user_id,
            "category_id": self.category_id,
            "target_division_id": self.target_division_id,
            "target_department_id": self.target_department_id,
            "event_id": self.event_id,
            "saving_cost": self.saving_cost,
            "saving_cost_validated": self.saving_cost_validated,
            "workflow_id": self.workflow_id,
            "current_stage": self.current_stage,
            "max_stage": self.max_stage,
            "current_status": self.current_status,
            "is_rejected": self.is_rejected,
            "rejected_reason": self.rejected_reason,
            "is_deleted": self.is_deleted,
            "submitted_date": self.submitted_date.isoformat() if self.submitted_date else None,
            "updated_date": self.updated_date.isoformat() if self.updated_date else None,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
        }

    def __repr__(self):
        return f"<Idea {self.idea_code or self.id}: stage {self.current_stage}/{self.max_stage} {self.current_status}>"


class StageSignoff(db.Model):
    """
    Sign-off of a single stage.

    Parallel stages share one sequence position; the idea advances past
    the position once each of its stages holds a live sign-off. Sign-offs
    for stages not yet passed are voided when the idea changes workflow.
    """

    __tablename__ = "stage_signoffs"
    __table_args__ = (
        db.Index("ix_signoff_idea_stage", "idea_id", "workflow_id", "stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    idea_id = db.Column(db.Integer, db.ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False)
    workflow_id = db.Column(db.Integer, db.ForeignKey("workflows.id"), nullable=False)
    stage = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(20), nullable=False, comment="approved | bypassed | skipped")
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "idea_id": self.idea_id,
            "workflow_id": self.workflow_id,
            "stage": self.stage,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "voided_at": self.voided_at.isoformat() if self.voided_at else None,
        }


class WorkflowHistory(db.Model):
    __tablename__ = "workflow_history"

    id = db.Column(db.Integer, primary_key=True)
    idea_id = db.Column(db.Integer, db.ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action = db.Column(db.String(20), nullable=False)
    from_stage = db.Column(db.Integer, nullable=False, default=0)
    to_stage = db.Column(db.Integer, nullable=True)
    comments = db.Column(db.Text, nullable=True)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    idea = db.relationship("Idea", back_populates="history")
    actor = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "idea_id": self.idea_id,
            "actor_user_id": self.actor_user_id,
            "actor": self.actor.username if self.actor else None,
            "action": self.action,
            "from_stage": self.from_stage,
            "to_stage": self.to_stage,
            "comments": self.comments,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<WorkflowHistory idea={self.idea_id} {self.action} {self.from_stage}->{self.to_stage}>"
