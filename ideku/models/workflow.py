"""
Ideku — Idea Workflow Core
Workflow definition models.

Models:
    - Level: approval level (e.g. "Department Head", "Division GM").
    - LevelApprover: roles permitted to sign off at a level.
    - Workflow: named, prioritised approval route.
    - WorkflowCondition: typed predicate gating workflow applicability.
    - WorkflowStage: ordered stage bound to a level.
"""

from datetime import datetime, timezone

from ideku.models import db


# ── Constants ────────────────────────────────────────────────────────────────

CONDITION_TYPES = {"SAVING_COST", "CATEGORY", "DIVISION", "DEPARTMENT", "EVENT"}

CONDITION_OPERATORS = {">=", "<=", ">", "<", "=", "!=", "IN", "NOT_IN"}


# ═══════════════════════════════════════════════════════════════
# 1. LEVELS
# ═══════════════════════════════════════════════════════════════
class Level(db.Model):
    __tablename__ = "levels"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    approvers = db.relationship(
        "LevelApprover", back_populates="level", lazy="selectin", cascade="all, delete-orphan",
    )

    @property
    def role_ids(self) -> set[int]:
        return {a.role_id for a in self.approvers}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "role_ids": sorted(self.role_ids),
        }

    def __repr__(self):
        return f"<Level {self.id}: {self.name}>"


class LevelApprover(db.Model):
    __tablename__ = "level_approvers"

    id = db.Column(db.Integer, primary_key=True)
    level_id = db.Column(db.Integer, db.ForeignKey("levels.id", ondelete="CASCADE"), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        db.UniqueConstraint("level_id", "role_id", name="uq_level_role"),
    )

    level = db.relationship("Level", back_populates="approvers")
    role = db.relationship("Role")


# ═══════════════════════════════════════════════════════════════
# 2. WORKFLOWS
# ═══════════════════════════════════════════════════════════════
class Workflow(db.Model):
    """
    Approval route for ideas.

    Lower ``priority`` wins when several workflows qualify for one idea.
    A workflow without active conditions qualifies for every idea.
    """

    __tablename__ = "workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    priority = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_workflows_active_priority", "is_active", "priority"),
    )

    stages = db.relationship(
        "WorkflowStage", back_populates="workflow", lazy="selectin",
        cascade="all, delete-orphan", order_by="WorkflowStage.stage",
    )
    conditions = db.relationship(
        "WorkflowCondition", back_populates="workflow", lazy="selectin",
        cascade="all, delete-orphan", order_by="WorkflowCondition.id",
    )

    @property
    def active_conditions(self):
        return [c for c in self.conditions if c.is_active]

    @property
    def max_stage(self) -> int:
        return max((s.stage for s in self.stages), default=0)

    def to_dict(self, include_children=True):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "priority": self.priority,
            "max_stage": self.max_stage,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_children:
            d["stages"] = [s.to_dict() for s in self.stages]
            d["conditions"] = [c.to_dict() for c in self.conditions]
        return d

    def __repr__(self):
        return f"<Workflow {self.id}: {self.name} (priority={self.priority})>"


class WorkflowCondition(db.Model):
    __tablename__ = "workflow_conditions"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    condition_type = db.Column(db.String(20), nullable=False, comment="SAVING_COST | CATEGORY | DIVISION | …")
    operator = db.Column(db.String(10), nullable=False, comment=">= | <= | = | != | IN | NOT_IN | …")
    condition_value = db.Column(db.String(500), nullable=False, comment="number or comma-separated list")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    workflow = db.relationship("Workflow", back_populates="conditions")

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "condition_type": self.condition_type,
            "operator": self.operator,
            "condition_value": self.condition_value,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<WorkflowCondition {self.condition_type} {self.operator} {self.condition_value}>"


class WorkflowStage(db.Model):
    __tablename__ = "workflow_stages"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage = db.Column(db.Integer, nullable=False)
    level_id = db.Column(db.Integer, db.ForeignKey("levels.id"), nullable=False)
    is_mandatory = db.Column(db.Boolean, default=True, nullable=False)
    is_parallel = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("workflow_id", "stage", name="uq_workflow_stage"),
    )

    workflow = db.relationship("Workflow", back_populates="stages")
    level = db.relationship("Level", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "stage": self.stage,
            "level_id": self.level_id,
            "level": self.level.name if self.level else None,
            "is_mandatory": self.is_mandatory,
            "is_parallel": self.is_parallel,
        }

    def __repr__(self):
        return f"<WorkflowStage wf={self.workflow_id} stage={self.stage}>"
