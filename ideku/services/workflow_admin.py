"""
Workflow administration — create and maintain workflow definitions.

Every mutation validates the resulting configuration before it is
written and raises ``ConfigurationError`` when the definition would be
inconsistent:

    - workflow names are unique, case-insensitively
    - stage numbers are positive and unique within a workflow
    - stages reference an existing level
    - conditions parse (see ``ideku.services.conditions``)
    - the stage set of a workflow with in-flight ideas is frozen
    - a workflow referenced by any idea cannot be deleted
    - with WORKFLOW_STRICT_PRIORITY on, two active workflows may not
      share a priority

Each successful mutation writes an audit row and commits.
"""

import logging

from flask import current_app
from sqlalchemy import func, select

from ideku.core.exceptions import ConfigurationError, NotFoundError
from ideku.models import db
from ideku.models.audit import write_audit
from ideku.models.idea import STATUS_COMPLETED, Idea
from ideku.models.workflow import Level, Workflow, WorkflowCondition, WorkflowStage
from ideku.services.conditions import parse_condition

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _get_workflow_or_raise(workflow_id: int) -> Workflow:
    workflow = db.session.get(Workflow, workflow_id)
    if workflow is None:
        raise NotFoundError(resource="Workflow", resource_id=workflow_id)
    return workflow


def _check_name_unique(name: str, exclude_id: int | None = None) -> str:
    clean = (name or "").strip()
    if not clean:
        raise ConfigurationError("Workflow name is required", details={"name": "required"})
    stmt = select(Workflow.id).where(func.lower(Workflow.name) == clean.lower())
    if exclude_id is not None:
        stmt = stmt.where(Workflow.id != exclude_id)
    if db.session.execute(stmt).first() is not None:
        raise ConfigurationError(
            f"Workflow name '{clean}' already exists", details={"name": "duplicate"},
        )
    return clean


def _check_priority(priority: int, is_active: bool, exclude_id: int | None = None) -> None:
    if not isinstance(priority, int) or isinstance(priority, bool):
        raise ConfigurationError("Priority must be an integer", details={"priority": priority})
    if not is_active or not current_app.config.get("WORKFLOW_STRICT_PRIORITY", False):
        return
    stmt = select(Workflow.id, Workflow.name).where(
        Workflow.is_active.is_(True), Workflow.priority == priority,
    )
    if exclude_id is not None:
        stmt = stmt.where(Workflow.id != exclude_id)
    clash = db.session.execute(stmt).first()
    if clash is not None:
        raise ConfigurationError(
            f"Priority {priority} is already used by active workflow '{clash.name}'",
            details={"priority": priority, "workflow_id": clash.id},
        )


def _in_flight_count(workflow_id: int) -> int:
    stmt = select(func.count(Idea.id)).where(
        Idea.workflow_id == workflow_id,
        Idea.is_deleted.is_(False),
        Idea.is_rejected.is_(False),
        Idea.current_status != STATUS_COMPLETED,
    )
    return db.session.execute(stmt).scalar() or 0


def _check_stages_editable(workflow: Workflow) -> None:
    count = _in_flight_count(workflow.id)
    if count:
        raise ConfigurationError(
            f"Workflow '{workflow.name}' has {count} idea(s) in progress; "
            "its stages cannot change. Move the ideas to another workflow first.",
            details={"in_flight": count},
        )


def _audit(workflow: Workflow, action: str, actor: str, diff: dict) -> None:
    write_audit(entity_type="workflow", entity_id=workflow.id, action=action, actor=actor, diff=diff)


# ── Workflows ─────────────────────────────────────────────────────────────────


def create_workflow(*, name: str, description: str = "", priority: int = 0,
                    is_active: bool = True, actor: str = "system") -> dict:
    clean = _check_name_unique(name)
    _check_priority(priority, is_active)
    workflow = Workflow(name=clean, description=description or "", priority=priority, is_active=is_active)
    db.session.add(workflow)
    db.session.flush()
    _audit(workflow, "workflow.create", actor, {
        "name": {"old": None, "new": clean},
        "priority": {"old": None, "new": priority},
        "is_active": {"old": None, "new": is_active},
    })
    db.session.commit()
    logger.info("Workflow '%s' created", clean, extra={"workflow_id": workflow.id})
    return workflow.to_dict()


def update_workflow(workflow_id: int, *, actor: str = "system", **fields) -> dict:
    """Update name / description / priority / is_active."""
    allowed = {"name", "description", "priority", "is_active"}
    unknown = set(fields) - allowed
    if unknown:
        raise ConfigurationError(
            f"Unknown workflow field(s): {', '.join(sorted(unknown))}",
            details={k: "unknown" for k in unknown},
        )
    workflow = _get_workflow_or_raise(workflow_id)

    if "name" in fields:
        fields["name"] = _check_name_unique(fields["name"], exclude_id=workflow.id)
    priority = fields.get("priority", workflow.priority)
    is_active = fields.get("is_active", workflow.is_active)
    if "priority" in fields or "is_active" in fields:
        _check_priority(priority, is_active, exclude_id=workflow.id)

    diff = {}
    for key, value in fields.items():
        old = getattr(workflow, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(workflow, key, value)
    if diff:
        _audit(workflow, "workflow.update", actor, diff)
        db.session.commit()
        logger.info("Workflow %s updated: %s", workflow.id, ", ".join(diff),
                    extra={"workflow_id": workflow.id})
    return workflow.to_dict()


def delete_workflow(workflow_id: int, *, actor: str = "system") -> None:
    workflow = _get_workflow_or_raise(workflow_id)
    referenced = db.session.execute(
        select(func.count(Idea.id)).where(Idea.workflow_id == workflow.id)
    ).scalar()
    if referenced:
        raise ConfigurationError(
            f"Workflow '{workflow.name}' is used by {referenced} idea(s) and cannot be deleted; "
            "deactivate it instead.",
            details={"ideas": referenced},
        )
    _audit(workflow, "workflow.delete", actor, {"name": {"old": workflow.name, "new": None}})
    db.session.delete(workflow)
    db.session.commit()
    logger.info("Workflow %s deleted", workflow_id, extra={"workflow_id": workflow_id})


def get_workflow(workflow_id: int) -> dict:
    return _get_workflow_or_raise(workflow_id).to_dict()


def list_workflows(active_only: bool = False) -> list[dict]:
    q = Workflow.query
    if active_only:
        q = q.filter_by(is_active=True)
    return [w.to_dict(include_children=False) for w in q.order_by(Workflow.priority, Workflow.id).all()]


# ── Stages ────────────────────────────────────────────────────────────────────


def add_stage(workflow_id: int, *, stage: int, level_id: int, is_mandatory: bool = True,
              is_parallel: bool = False, actor: str = "system") -> dict:
    workflow = _get_workflow_or_raise(workflow_id)
    if not isinstance(stage, int) or isinstance(stage, bool) or stage < 1:
        raise ConfigurationError("Stage must be a positive integer", details={"stage": stage})
    if db.session.get(Level, level_id) is None:
        raise ConfigurationError(f"Level {level_id} does not exist", details={"level_id": level_id})
    if any(s.stage == stage for s in workflow.stages):
        raise ConfigurationError(
            f"Stage {stage} already exists in workflow '{workflow.name}'", details={"stage": "duplicate"},
        )
    _check_stages_editable(workflow)

    row = WorkflowStage(stage=stage, level_id=level_id, is_mandatory=is_mandatory, is_parallel=is_parallel)
    workflow.stages.append(row)
    db.session.flush()
    _audit(workflow, "workflow.add_stage", actor, {
        "stage": {"old": None, "new": stage},
        "level_id": {"old": None, "new": level_id},
    })
    db.session.commit()
    logger.info("Stage %s added to workflow %s", stage, workflow.id,
                extra={"workflow_id": workflow.id, "stage": stage})
    return row.to_dict()


def remove_stage(workflow_id: int, stage: int, *, actor: str = "system") -> None:
    workflow = _get_workflow_or_raise(workflow_id)
    row = next((s for s in workflow.stages if s.stage == stage), None)
    if row is None:
        raise NotFoundError(resource="WorkflowStage", resource_id=f"{workflow_id}/{stage}")
    _check_stages_editable(workflow)

    workflow.stages.remove(row)
    _audit(workflow, "workflow.remove_stage", actor, {"stage": {"old": stage, "new": None}})
    db.session.commit()
    logger.info("Stage %s removed from workflow %s", stage, workflow.id,
                extra={"workflow_id": workflow.id, "stage": stage})


# ── Conditions ────────────────────────────────────────────────────────────────


def add_condition(workflow_id: int, *, condition_type: str, operator: str, condition_value,
                  is_active: bool = True, actor: str = "system") -> dict:
    workflow = _get_workflow_or_raise(workflow_id)
    parsed = parse_condition(condition_type, operator, condition_value)

    row = WorkflowCondition(
        condition_type=parsed.condition_type,
        operator=parsed.operator,
        condition_value=str(condition_value).strip(),
        is_active=is_active,
    )
    workflow.conditions.append(row)
    db.session.flush()
    _audit(workflow, "workflow.add_condition", actor, {
        "condition": {"old": None, "new": f"{row.condition_type} {row.operator} {row.condition_value}"},
    })
    db.session.commit()
    logger.info("Condition %s %s %s added to workflow %s",
                row.condition_type, row.operator, row.condition_value, workflow.id,
                extra={"workflow_id": workflow.id})
    return row.to_dict()


def remove_condition(workflow_id: int, condition_id: int, *, actor: str = "system") -> None:
    workflow = _get_workflow_or_raise(workflow_id)
    row = next((c for c in workflow.conditions if c.id == condition_id), None)
    if row is None:
        raise NotFoundError(resource="WorkflowCondition", resource_id=condition_id)
    workflow.conditions.remove(row)
    _audit(workflow, "workflow.remove_condition", actor, {
        "condition": {"old": f"{row.condition_type} {row.operator} {row.condition_value}", "new": None},
    })
    db.session.commit()
    logger.info("Condition %s removed from workflow %s", condition_id, workflow.id,
                extra={"workflow_id": workflow.id})


def validate_all_conditions() -> list[dict]:
    """Stored conditions that no longer parse."""
    problems = []
    for row in WorkflowCondition.query.order_by(WorkflowCondition.id).all():
        try:
            parse_condition(row.condition_type, row.operator, row.condition_value)
        except ConfigurationError as exc:
            problems.append({"condition_id": row.id, "workflow_id": row.workflow_id, "error": str(exc)})
    return problems
