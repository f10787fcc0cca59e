"""
Change-Workflow Orchestrator — reassign an in-flight idea to another workflow.

Preconditions, checked in order (first failure wins):
    1. idea exists and is not deleted
    2. target workflow exists and is active
    3. idea is not rejected
    4. idea is not completed (nor still a draft)
    5. target differs from the current workflow (same one: success, no-op)

Stage reconciliation:
    current_stage >= new max stage → current_stage = new max, Completed
    current_stage <  new max stage → stage and status untouched; the idea
                                     resumes at the same stage number under
                                     the new definition

Sign-offs recorded for stages not yet passed belong to the old
definition and are voided.

Usage:
    from ideku.services.change_workflow import change_workflow, reassign_workflow

    success, message, workflow_name = change_workflow(idea_id=7, new_workflow_id=3, actor_id=1)
    result, err = reassign_workflow(idea_id=7, new_workflow_id=3, actor_id=1)
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ideku.models import db
from ideku.models.audit import write_audit
from ideku.models.idea import STATUS_COMPLETED, Idea, StageSignoff, WorkflowHistory
from ideku.models.organization import User, as_utc
from ideku.models.workflow import Workflow
from ideku.services import notification
from ideku.services.stage_planner import get_max_stage
from ideku.utils.errors import E, service_error

logger = logging.getLogger(__name__)


def _void_open_signoffs(idea: Idea, at: datetime) -> int:
    stmt = (
        update(StageSignoff)
        .where(
            StageSignoff.idea_id == idea.id,
            StageSignoff.voided_at.is_(None),
            StageSignoff.stage > idea.current_stage,
        )
        .values(voided_at=at)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount or 0


def _abort(code: str, message: str, **details):
    """Release the idea row lock and build the error half of the result."""
    db.session.rollback()
    return None, service_error(code, message, details=details or None)


def reassign_workflow(idea_id: int, new_workflow_id: int, actor_id: int | None,
                      *, at: datetime | None = None):
    """Reassign *idea_id* to *new_workflow_id*.

    Returns:
        ({"idea", "workflow_name", "auto_completed", "changed", "message"}, None)
        on success, (None, error) otherwise. Failures carry ERR_NOT_FOUND,
        ERR_INVALID_TRANSITION or ERR_CONCURRENCY_CONFLICT.
    """
    at = as_utc(at) if at else datetime.now(timezone.utc)
    try:
        idea = db.session.get(Idea, idea_id, with_for_update=True, populate_existing=True)
        if idea is None:
            return _abort(E.NOT_FOUND, "Idea not found")
        if idea.is_deleted:
            return _abort(E.INVALID_TRANSITION, "Cannot change workflow of a deleted idea")

        new_workflow = db.session.get(Workflow, new_workflow_id)
        if new_workflow is None:
            return _abort(E.NOT_FOUND, "Workflow not found", workflow_id=new_workflow_id)
        if not new_workflow.is_active:
            return _abort(E.INVALID_TRANSITION, f"Workflow '{new_workflow.name}' is not active",
                          workflow_id=new_workflow.id)

        if idea.is_rejected:
            return _abort(E.INVALID_TRANSITION, "Cannot change workflow of a rejected idea")
        if idea.current_status == STATUS_COMPLETED:
            return _abort(E.INVALID_TRANSITION, "Cannot change workflow of a completed idea")
        if idea.is_draft:
            return _abort(E.INVALID_TRANSITION, "Idea has not been submitted yet")

        if idea.workflow_id == new_workflow.id:
            result = {
                "idea": idea.to_dict(),
                "workflow_name": new_workflow.name,
                "auto_completed": False,
                "changed": False,
                "message": f"Idea is already using workflow '{new_workflow.name}'",
            }
            db.session.rollback()
            return result, None

        actor = db.session.get(User, actor_id) if actor_id is not None else None
        old_workflow = db.session.get(Workflow, idea.workflow_id) if idea.workflow_id else None
        old_workflow_name = old_workflow.name if old_workflow else "none"
        old = {
            "workflow_id": idea.workflow_id,
            "max_stage": idea.max_stage,
            "current_stage": idea.current_stage,
            "current_status": idea.current_status,
        }

        new_max = get_max_stage(new_workflow.id)
        voided = _void_open_signoffs(idea, at)
        idea.workflow_id = new_workflow.id
        idea.workflow = new_workflow
        idea.max_stage = new_max
        idea.updated_date = at
        auto_completed = idea.current_stage >= new_max
        if auto_completed:
            idea.current_stage = new_max
            idea.current_status = STATUS_COMPLETED
            idea.completed_date = at

        new = {
            "workflow_id": idea.workflow_id,
            "max_stage": idea.max_stage,
            "current_stage": idea.current_stage,
            "current_status": idea.current_status,
        }
        db.session.add(WorkflowHistory(
            idea_id=idea.id,
            actor_user_id=actor.id if actor else None,
            action="WorkflowChanged",
            from_stage=old["current_stage"],
            to_stage=idea.current_stage,
            comments=f"Workflow changed from '{old_workflow_name}' to '{new_workflow.name}'",
        ))
        write_audit(
            entity_type="idea",
            entity_id=idea.id,
            action="idea.change_workflow",
            actor=actor.username if actor else "system",
            actor_user_id=actor.id if actor else None,
            diff={
                **{k: {"old": old[k], "new": new[k]} for k in old if old[k] != new[k]},
                "auto_completed": {"old": False, "new": auto_completed},
                "voided_signoffs": {"old": None, "new": voided},
            },
        )

        recipients = [(idea.initiator.username, idea.initiator.id)] if idea.initiator else []
        ctx = {
            "idea_code": idea.idea_code,
            "idea_name": idea.idea_name,
            "workflow_name": new_workflow.name,
            "old_workflow_name": old_workflow_name,
            "actor": actor.name if actor else "system",
            "status": idea.current_status,
        }
        result = {
            "idea": idea.to_dict(),
            "workflow_name": new_workflow.name,
            "auto_completed": auto_completed,
            "changed": True,
            "message": f"Workflow successfully changed to '{new_workflow.name}'",
        }
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent update lost on idea %s (change workflow)", idea_id,
                       extra={"idea_id": idea_id, "workflow_id": new_workflow_id})
        return None, service_error(
            E.CONCURRENCY_CONFLICT,
            "The idea was modified by another request; reload and try again",
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Failed to change workflow of idea %s to %s", idea_id, new_workflow_id,
            extra={"idea_id": idea_id, "workflow_id": new_workflow_id, "actor_id": actor_id},
        )
        raise

    logger.info(
        "Idea workflow changed%s", " (auto-completed)" if auto_completed else "",
        extra={
            "idea_id": idea_id,
            "workflow_id": new_workflow_id,
            "old_workflow_id": old["workflow_id"],
            "from_stage": old["current_stage"],
            "to_stage": new["current_stage"],
            "actor_id": actor_id,
            "action": "change_workflow",
        },
    )
    notification.dispatcher.notify(recipients, "workflow_changed", ctx, entity_id=idea_id)
    return result, None


def change_workflow(idea_id: int, new_workflow_id: int, actor_id: int | None,
                    *, at: datetime | None = None) -> tuple[bool, str, str | None]:
    """Reassign *idea_id* to *new_workflow_id*.

    Returns:
        (success, message, workflow_name). ``workflow_name`` is the name of
        the workflow the idea is on after the call, None on failure. Use
        ``reassign_workflow`` when the error code matters.
    """
    result, err = reassign_workflow(idea_id, new_workflow_id, actor_id, at=at)
    if err:
        return False, err["error"], None
    return True, result["message"], result["workflow_name"]
