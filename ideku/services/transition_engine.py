"""
Idea Transition Engine

Owns every mutation of an idea's workflow state:

    Draft ──submit──▶ Waiting Approval S{n} ──approve/bypass──▶ … ──▶ Completed
                               │
                               └──reject──▶ Rejected

``current_stage`` is the highest stage already passed; the idea waits on
the stages of the next sequence position (see ``stage_planner``).

Each public operation runs check-then-act inside one transaction:
    1. load the idea (SELECT … FOR UPDATE where the dialect supports it)
    2. validate state, stage and actor
    3. mutate, append WorkflowHistory + AuditLog rows
    4. commit; the ``version_id`` guard turns a lost race into
       ERR_CONCURRENCY_CONFLICT
    5. dispatch notifications (after commit, best effort)

Validation failures change nothing and come back as data:
    (result_dict, None) on success
    (None, {"error", "code", "status"[, "details"]}) on failure

Usage:
    from ideku.services.transition_engine import approve_idea

    result, err = approve_idea(idea_id=7, stage=1, actor_id=42, comments="LGTM")
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ideku.core.exceptions import NotFoundError
from ideku.models import db
from ideku.models.audit import write_audit
from ideku.models.idea import (
    STATUS_COMPLETED,
    STATUS_DRAFT,
    STATUS_REJECTED,
    Idea,
    StageSignoff,
    WorkflowHistory,
    format_idea_code,
    waiting_status,
)
from ideku.models.organization import User, as_utc
from ideku.services import notification
from ideku.services.approver_resolver import approvers_for_idea
from ideku.services.stage_planner import (
    get_max_stage,
    get_stage_sequence,
    pending_stages,
    position_after,
    signed_stages,
)
from ideku.services.workflow_resolver import resolve_for_idea
from ideku.utils.errors import E, service_error

logger = logging.getLogger(__name__)


# ── Private helpers ────────────────────────────────────────────────────────────


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _load_idea_for_update(idea_id: int) -> Idea | None:
    stmt = (
        select(Idea)
        .where(Idea.id == idea_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def _abort(err: dict):
    """Release the row lock taken by ``_load_idea_for_update`` and fail."""
    db.session.rollback()
    return None, err


def _actor_name(actor: User | None) -> str:
    return actor.username if actor else "system"


def _is_superuser(actor: User, at: datetime) -> bool:
    role_name = current_app.config.get("SUPERUSER_ROLE", "Superuser")
    if actor.role and actor.role.name == role_name:
        return True
    return bool(actor.is_acting_at(at) and actor.acting_role and actor.acting_role.name == role_name)


def _guard_active(idea: Idea | None, idea_id: int) -> dict | None:
    """Common precondition: idea exists, is submitted and not terminal."""
    if idea is None:
        return service_error(E.NOT_FOUND, f"Idea {idea_id} not found")
    if idea.is_deleted:
        return service_error(E.INVALID_TRANSITION, f"Idea {idea.idea_code} has been deleted")
    if idea.is_rejected:
        return service_error(E.INVALID_TRANSITION, f"Idea {idea.idea_code} has already been rejected")
    if idea.is_completed:
        return service_error(E.INVALID_TRANSITION, f"Idea {idea.idea_code} is already completed")
    if idea.is_draft:
        return service_error(E.INVALID_TRANSITION, f"Idea {idea.idea_code} has not been submitted")
    return None


def _find_waiting_stage(idea: Idea, stages, stage: int):
    waiting = pending_stages(idea, stages)
    match = next((s for s in waiting if s.stage == stage), None)
    if match is None:
        return None, service_error(
            E.INVALID_TRANSITION,
            f"Idea {idea.idea_code} is not pending at stage {stage}",
            details={"pending_stages": [s.stage for s in waiting]},
        )
    return match, None


def _state_snapshot(idea: Idea) -> dict:
    return {
        "workflow_id": idea.workflow_id,
        "current_stage": idea.current_stage,
        "max_stage": idea.max_stage,
        "current_status": idea.current_status,
        "is_rejected": idea.is_rejected,
        "is_deleted": idea.is_deleted,
    }


def _diff(before: dict, after: dict) -> dict:
    return {k: {"old": before[k], "new": after[k]} for k in before if before[k] != after[k]}


def _add_history(idea: Idea, actor: User | None, action: str, from_stage: int,
                 to_stage: int | None, comments: str | None) -> None:
    db.session.add(WorkflowHistory(
        idea_id=idea.id,
        actor_user_id=actor.id if actor else None,
        action=action,
        from_stage=from_stage,
        to_stage=to_stage,
        comments=(comments or "").strip() or None,
    ))


def _complete(idea: Idea, at: datetime) -> None:
    idea.current_stage = idea.max_stage
    idea.current_status = STATUS_COMPLETED
    idea.completed_date = at


def _settle(idea: Idea, stages, *, enforce_approvers: bool, at: datetime,
            actor: User | None, skipped: list[int]) -> dict | None:
    """Move the idea forward past every fully signed position.

    Optional stages without any eligible approver are signed off as
    ``skipped``. A mandatory stage without approvers either blocks
    (``enforce_approvers``) or is left waiting with a warning.

    Returns an error dict when blocked, otherwise None.
    """
    while True:
        position = position_after(stages, idea.current_stage)
        if not position:
            _complete(idea, at)
            return None

        done = signed_stages(idea)
        open_stages = [s for s in position if s.stage not in done]
        if not open_stages:
            idea.current_stage = position[-1].stage
            continue

        empty_optional = []
        for stage_row in open_stages:
            if approvers_for_idea(idea, stage_row, at=at):
                continue
            if not stage_row.is_mandatory:
                empty_optional.append(stage_row)
            elif enforce_approvers:
                return service_error(
                    E.NO_ELIGIBLE_APPROVER,
                    f"No eligible approver for mandatory stage {stage_row.stage}",
                    details={"workflow_id": idea.workflow_id, "stage": stage_row.stage},
                )
            else:
                logger.warning(
                    "Idea %s waits on mandatory stage %s with no eligible approver",
                    idea.idea_code, stage_row.stage,
                    extra={"idea_id": idea.id, "workflow_id": idea.workflow_id, "stage": stage_row.stage},
                )

        if empty_optional:
            for stage_row in empty_optional:
                db.session.add(StageSignoff(
                    idea_id=idea.id,
                    workflow_id=idea.workflow_id,
                    stage=stage_row.stage,
                    action="skipped",
                    actor_user_id=actor.id if actor else None,
                ))
                skipped.append(stage_row.stage)
            db.session.flush()
            continue

        idea.current_status = waiting_status(open_stages[0].stage)
        return None


def _pending_recipients(idea: Idea, stages, at: datetime) -> list[tuple[str, int]]:
    users = set()
    for stage_row in pending_stages(idea, stages):
        users |= approvers_for_idea(idea, stage_row, at=at)
    return [(u.username, u.id) for u in users]


def _initiator_target(idea: Idea) -> list[tuple[str, int]]:
    return [(idea.initiator.username, idea.initiator.id)] if idea.initiator else []


def _base_context(idea: Idea, actor: User | None) -> dict:
    return {
        "idea_code": idea.idea_code,
        "idea_name": idea.idea_name,
        "workflow_name": idea.workflow.name if idea.workflow else "",
        "actor": actor.name if actor else "system",
        "status": idea.current_status,
        "stage": idea.current_stage,
    }


def _dispatch(queued: list[tuple]) -> None:
    for recipients, template, context, idea_id in queued:
        notification.dispatcher.notify(recipients, template, context, entity_id=idea_id)


def _signoff(idea_id: int, stage: int, actor_id: int, *, action: str,
             comments: str | None, reason: str | None,
             validated_saving_cost: int | None, at: datetime | None):
    """Shared approve/bypass path."""
    at = as_utc(at) if at else _now()
    bypass = action == "bypassed"
    queued: list[tuple] = []
    try:
        idea = _load_idea_for_update(idea_id)
        err = _guard_active(idea, idea_id)
        if err:
            return _abort(err)
        if bypass and not (reason or "").strip():
            return _abort(service_error(E.VALIDATION_REQUIRED, "A reason is required to bypass a stage"))

        actor = db.session.get(User, actor_id)
        if actor is None:
            return _abort(service_error(E.NOT_FOUND, f"User {actor_id} not found"))

        stages = get_stage_sequence(idea.workflow_id)
        stage_row, err = _find_waiting_stage(idea, stages, stage)
        if err:
            return _abort(err)

        if not bypass and not _is_superuser(actor, at):
            approvers = approvers_for_idea(idea, stage_row, at=at)
            if not approvers and stage_row.is_mandatory:
                return _abort(service_error(
                    E.NO_ELIGIBLE_APPROVER,
                    f"No eligible approver for mandatory stage {stage}",
                    details={"workflow_id": idea.workflow_id, "stage": stage},
                ))
            if actor not in approvers:
                return _abort(service_error(
                    E.FORBIDDEN,
                    f"User {actor.username} is not an approver for stage {stage}",
                ))

        before = _state_snapshot(idea)
        db.session.add(StageSignoff(
            idea_id=idea.id,
            workflow_id=idea.workflow_id,
            stage=stage,
            action=action,
            actor_user_id=actor.id,
        ))
        db.session.flush()
        if validated_saving_cost is not None:
            idea.saving_cost_validated = validated_saving_cost

        skipped: list[int] = []
        err = _settle(idea, stages, enforce_approvers=not bypass, at=at, actor=actor, skipped=skipped)
        if err:
            return _abort(err)

        idea.updated_date = at
        history_action = "Bypassed" if bypass else "Approved"
        _add_history(idea, actor, history_action, before["current_stage"], stage,
                     reason if bypass else comments)
        after = _state_snapshot(idea)
        write_audit(
            entity_type="idea",
            entity_id=idea.id,
            action="idea.bypass" if bypass else "idea.approve",
            actor=actor.username,
            actor_user_id=actor.id,
            diff={**_diff(before, after), "stage": {"old": None, "new": stage},
                  "skipped_stages": {"old": None, "new": skipped or None}},
            reason=reason if bypass else None,
        )

        ctx = _base_context(idea, actor)
        ctx["stage"] = stage
        if idea.is_completed:
            queued.append((_initiator_target(idea), "idea_completed", ctx, idea.id))
        else:
            if idea.current_stage != before["current_stage"] or skipped:
                next_ctx = {**ctx, "stage": pending_stages(idea, stages)[0].stage}
                queued.append((_pending_recipients(idea, stages, at), "idea_submitted", next_ctx, idea.id))
        if bypass:
            queued.append((_initiator_target(idea), "stage_bypassed", {**ctx, "reason": reason}, idea.id))
        elif not idea.is_completed:
            queued.append((_initiator_target(idea), "idea_approved", ctx, idea.id))

        result = {
            "idea": idea.to_dict(),
            "action": history_action,
            "stage": stage,
            "from_stage": before["current_stage"],
            "to_stage": idea.current_stage,
            "skipped_stages": skipped,
            "message": f"Stage {stage} {'bypassed' if bypass else 'approved'}",
        }
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent update lost on idea %s stage %s", idea_id, stage,
            extra={"idea_id": idea_id, "stage": stage, "actor_id": actor_id},
        )
        return None, service_error(
            E.CONCURRENCY_CONFLICT,
            "The idea was modified by another request; reload and try again",
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Failed to record %s on idea %s stage %s", action, idea_id, stage,
            extra={"idea_id": idea_id, "stage": stage, "actor_id": actor_id},
        )
        raise

    log = logger.warning if bypass else logger.info
    log(
        "Idea stage %s", action,
        extra={
            "idea_id": idea_id,
            "stage": stage,
            "from_stage": result["from_stage"],
            "to_stage": result["to_stage"],
            "actor_id": actor_id,
            "action": action,
        },
    )
    _dispatch(queued)
    return result, None


# ── Public API ─────────────────────────────────────────────────────────────────


def create_idea(
    *,
    idea_name: str,
    initiator_user_id: int,
    category_id: int,
    target_division_id: str,
    target_department_id: str,
    saving_cost: int = 0,
    event_id: int | None = None,
    description: str = "",
) -> dict:
    """Create a Draft idea with its ``IMS-0000001`` style code.

    Raises:
        NotFoundError: initiator does not exist.
    """
    if db.session.get(User, initiator_user_id) is None:
        raise NotFoundError(resource="User", resource_id=initiator_user_id)

    idea = Idea(
        idea_name=idea_name.strip(),
        description=description,
        initiator_user_id=initiator_user_id,
        category_id=category_id,
        target_division_id=target_division_id,
        target_department_id=target_department_id,
        saving_cost=saving_cost,
        event_id=event_id,
        current_status=STATUS_DRAFT,
    )
    db.session.add(idea)
    db.session.flush()
    idea.idea_code = format_idea_code(idea.id, current_app.config.get("IDEA_CODE_PREFIX", "IMS"))
    db.session.commit()
    logger.info("Idea %s created", idea.idea_code, extra={"idea_id": idea.id})
    return idea.to_dict()


def submit_idea(idea_id: int, actor_id: int | None = None, *, at: datetime | None = None):
    """Draft → Waiting Approval: resolve and assign the governing workflow.

    Returns:
        ({"idea", "workflow_name", "skipped_stages", "message"}, None) on success.
        (None, error) when the idea is not a draft or no workflow applies.
    """
    at = as_utc(at) if at else _now()
    queued: list[tuple] = []
    try:
        idea = _load_idea_for_update(idea_id)
        if idea is None:
            return _abort(service_error(E.NOT_FOUND, f"Idea {idea_id} not found"))
        if idea.is_deleted or not idea.is_draft:
            return _abort(service_error(
                E.INVALID_TRANSITION,
                f"Idea {idea.idea_code} cannot be submitted (status={idea.current_status})",
            ))
        actor = db.session.get(User, actor_id) if actor_id is not None else idea.initiator

        workflow = resolve_for_idea(idea)
        if workflow is None:
            return _abort(service_error(
                E.NOT_FOUND,
                "No applicable workflow found for this idea. Please contact administrator.",
            ))

        before = _state_snapshot(idea)
        idea.workflow_id = workflow.id
        idea.workflow = workflow
        idea.max_stage = get_max_stage(workflow.id)
        idea.current_stage = 0
        idea.submitted_date = at
        idea.updated_date = at

        stages = get_stage_sequence(workflow.id)
        skipped: list[int] = []
        err = _settle(idea, stages, enforce_approvers=True, at=at, actor=actor, skipped=skipped)
        if err:
            return _abort(err)

        _add_history(idea, actor, "Submitted", 0, idea.current_stage, None)
        write_audit(
            entity_type="idea",
            entity_id=idea.id,
            action="idea.submit",
            actor=_actor_name(actor),
            actor_user_id=actor.id if actor else None,
            diff=_diff(before, _state_snapshot(idea)),
        )

        ctx = _base_context(idea, actor)
        if idea.is_completed:
            queued.append((_initiator_target(idea), "idea_completed", ctx, idea.id))
        else:
            ctx["stage"] = pending_stages(idea, stages)[0].stage
            queued.append((_pending_recipients(idea, stages, at), "idea_submitted", ctx, idea.id))

        result = {
            "idea": idea.to_dict(),
            "workflow_name": workflow.name,
            "skipped_stages": skipped,
            "message": f"Idea submitted to workflow '{workflow.name}'",
        }
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        return None, service_error(
            E.CONCURRENCY_CONFLICT,
            "The idea was modified by another request; reload and try again",
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to submit idea %s", idea_id, extra={"idea_id": idea_id})
        raise

    logger.info(
        "Idea submitted to workflow %s", result["workflow_name"],
        extra={"idea_id": idea_id, "workflow_id": result["idea"]["workflow_id"], "actor_id": actor_id},
    )
    _dispatch(queued)
    return result, None


def approve_idea(idea_id: int, stage: int, actor_id: int, *, comments: str | None = None,
                 validated_saving_cost: int | None = None, at: datetime | None = None):
    """Sign off *stage* on behalf of *actor_id*.

    The actor must be an eligible approver of the stage or a superuser.
    Once every stage of the current position is signed, the idea moves
    on; reaching past the last stage completes it.
    """
    return _signoff(idea_id, stage, actor_id, action="approved", comments=comments,
                    reason=None, validated_saving_cost=validated_saving_cost, at=at)


def bypass_stage(idea_id: int, stage: int, actor_id: int, reason: str, *,
                 at: datetime | None = None):
    """Administrative override: advance past *stage* without an approver sign-off.

    Recorded as a ``bypassed`` sign-off, a ``Bypassed`` history row and an
    ``idea.bypass`` audit entry carrying the reason.
    """
    return _signoff(idea_id, stage, actor_id, action="bypassed", comments=None,
                    reason=reason, validated_saving_cost=None, at=at)


def reject_idea(idea_id: int, stage: int, actor_id: int, reason: str, *,
                at: datetime | None = None):
    """Reject the idea at *stage*. Terminal."""
    at = as_utc(at) if at else _now()
    queued: list[tuple] = []
    try:
        idea = _load_idea_for_update(idea_id)
        err = _guard_active(idea, idea_id)
        if err:
            return _abort(err)
        if not (reason or "").strip():
            return _abort(service_error(E.VALIDATION_REQUIRED, "A reason is required to reject an idea"))

        actor = db.session.get(User, actor_id)
        if actor is None:
            return _abort(service_error(E.NOT_FOUND, f"User {actor_id} not found"))

        stages = get_stage_sequence(idea.workflow_id)
        stage_row, err = _find_waiting_stage(idea, stages, stage)
        if err:
            return _abort(err)
        if not _is_superuser(actor, at) and actor not in approvers_for_idea(idea, stage_row, at=at):
            return _abort(service_error(
                E.FORBIDDEN, f"User {actor.username} is not an approver for stage {stage}",
            ))

        before = _state_snapshot(idea)
        idea.is_rejected = True
        idea.current_status = STATUS_REJECTED
        idea.rejected_reason = reason.strip()
        idea.completed_date = at
        idea.updated_date = at

        _add_history(idea, actor, "Rejected", idea.current_stage, None, reason)
        write_audit(
            entity_type="idea",
            entity_id=idea.id,
            action="idea.reject",
            actor=actor.username,
            actor_user_id=actor.id,
            diff={**_diff(before, _state_snapshot(idea)), "stage": {"old": None, "new": stage}},
            reason=reason.strip(),
        )
        ctx = {**_base_context(idea, actor), "stage": stage, "reason": reason.strip()}
        queued.append((_initiator_target(idea), "idea_rejected", ctx, idea.id))

        result = {
            "idea": idea.to_dict(),
            "action": "Rejected",
            "stage": stage,
            "message": f"Idea rejected at stage {stage}",
        }
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning("Concurrent update lost on idea %s (reject)", idea_id, extra={"idea_id": idea_id})
        return None, service_error(
            E.CONCURRENCY_CONFLICT,
            "The idea was modified by another request; reload and try again",
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to reject idea %s", idea_id, extra={"idea_id": idea_id, "stage": stage})
        raise

    logger.info(
        "Idea rejected",
        extra={"idea_id": idea_id, "stage": stage, "actor_id": actor_id, "action": "rejected"},
    )
    _dispatch(queued)
    return result, None


def give_feedback(idea_id: int, actor_id: int, comment: str):
    """Leave reviewer feedback on a pending idea. No state change."""
    idea = db.session.get(Idea, idea_id)
    err = _guard_active(idea, idea_id)
    if err:
        return None, err
    if not (comment or "").strip():
        return None, service_error(E.VALIDATION_REQUIRED, "Feedback comment is required")
    actor = db.session.get(User, actor_id)
    if actor is None:
        return None, service_error(E.NOT_FOUND, f"User {actor_id} not found")

    _add_history(idea, actor, "Feedback", idea.current_stage, None, comment)
    write_audit(
        entity_type="idea",
        entity_id=idea.id,
        action="idea.feedback",
        actor=actor.username,
        actor_user_id=actor.id,
        reason=comment.strip(),
    )
    ctx = {**_base_context(idea, actor), "comment": comment.strip()}
    db.session.commit()

    notification.dispatcher.notify(_initiator_target(idea), "feedback_sent", ctx, entity_id=idea.id)
    return {"idea": idea.to_dict(), "message": "Feedback recorded"}, None


def delete_idea(idea_id: int, actor_id: int | None = None):
    """Tombstone a non-terminal idea; halts all further transitions."""
    idea = db.session.get(Idea, idea_id)
    if idea is None:
        return None, service_error(E.NOT_FOUND, f"Idea {idea_id} not found")
    if idea.is_deleted:
        return None, service_error(E.INVALID_TRANSITION, f"Idea {idea.idea_code} is already deleted")
    if idea.is_terminal:
        return None, service_error(
            E.INVALID_TRANSITION,
            f"Idea {idea.idea_code} is {idea.current_status.lower()} and cannot be deleted",
        )
    actor = db.session.get(User, actor_id) if actor_id is not None else None

    idea.soft_delete(_actor_name(actor))
    idea.updated_date = _now()
    _add_history(idea, actor, "Deleted", idea.current_stage, None, None)
    write_audit(
        entity_type="idea",
        entity_id=idea.id,
        action="idea.delete",
        actor=_actor_name(actor),
        actor_user_id=actor.id if actor else None,
        diff={"is_deleted": {"old": False, "new": True}},
    )
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        return None, service_error(
            E.CONCURRENCY_CONFLICT,
            "The idea was modified by another request; reload and try again",
        )
    logger.info("Idea deleted", extra={"idea_id": idea_id, "actor_id": actor_id})
    return {"idea": idea.to_dict(), "message": "Idea deleted"}, None


# ── Queries ────────────────────────────────────────────────────────────────────


def get_idea(idea_id: int) -> dict:
    """Idea snapshot plus the stages it is waiting on.

    Raises:
        NotFoundError: unknown idea.
    """
    idea = db.session.get(Idea, idea_id)
    if idea is None:
        raise NotFoundError(resource="Idea", resource_id=idea_id)
    d = idea.to_dict()
    d["pending_stages"] = [] if not idea.is_pending else [s.stage for s in pending_stages(idea)]
    return d


def get_workflow_history(idea_id: int) -> list[dict]:
    """Approval history of an idea, oldest first."""
    idea = db.session.get(Idea, idea_id)
    if idea is None:
        raise NotFoundError(resource="Idea", resource_id=idea_id)
    return [h.to_dict() for h in idea.history.all()]


def list_pending_approvals(user_id: int, *, at: datetime | None = None) -> list[dict]:
    """Ideas currently waiting on a stage *user_id* may sign off."""
    at = as_utc(at) if at else _now()
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)

    stmt = (
        select(Idea)
        .where(
            Idea.workflow_id.is_not(None),
            Idea.is_deleted.is_(False),
            Idea.is_rejected.is_(False),
            Idea.current_status != STATUS_COMPLETED,
        )
        .order_by(Idea.id)
    )
    superuser = _is_superuser(user, at)
    items = []
    for idea in db.session.execute(stmt).scalars():
        for stage_row in pending_stages(idea):
            if superuser or user in approvers_for_idea(idea, stage_row, at=at):
                items.append({**idea.to_dict(), "pending_stage": stage_row.stage})
                break
    return items
