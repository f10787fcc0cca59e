"""
Stage Planner — ordered stage sequence of a workflow.

Stage numbers are unique per workflow but need not be contiguous.
Consecutive stages flagged ``is_parallel`` share one sequence
*position*: each of them must be signed off (in any order) before the
idea moves past the position. Every other stage is a position on its own.

    stages   1   2P  3P  4   5P
    position [1] [2, 3]  [4] [5]
"""

from sqlalchemy import func, select

from ideku.core.exceptions import NotFoundError
from ideku.models import db
from ideku.models.idea import StageSignoff
from ideku.models.workflow import Workflow, WorkflowStage


def _require_workflow(workflow_id: int) -> Workflow:
    workflow = db.session.get(Workflow, workflow_id)
    if not workflow:
        raise NotFoundError(resource="Workflow", resource_id=workflow_id)
    return workflow


def get_max_stage(workflow_id: int) -> int:
    """Highest stage number of the workflow (0 when it has no stages)."""
    _require_workflow(workflow_id)
    stmt = select(func.max(WorkflowStage.stage)).where(WorkflowStage.workflow_id == workflow_id)
    return db.session.execute(stmt).scalar() or 0


def get_stage(workflow_id: int, stage: int) -> WorkflowStage | None:
    stmt = select(WorkflowStage).where(
        WorkflowStage.workflow_id == workflow_id,
        WorkflowStage.stage == stage,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def get_stage_sequence(workflow_id: int) -> list[WorkflowStage]:
    """All stages of the workflow in ascending stage order."""
    _require_workflow(workflow_id)
    stmt = (
        select(WorkflowStage)
        .where(WorkflowStage.workflow_id == workflow_id)
        .order_by(WorkflowStage.stage.asc())
    )
    return list(db.session.execute(stmt).scalars())


def group_positions(stages: list[WorkflowStage]) -> list[list[WorkflowStage]]:
    """Split an ordered stage list into sequence positions."""
    positions: list[list[WorkflowStage]] = []
    for stage in stages:
        if positions and stage.is_parallel and positions[-1][-1].is_parallel:
            positions[-1].append(stage)
        else:
            positions.append([stage])
    return positions


def position_after(stages: list[WorkflowStage], passed_stage: int) -> list[WorkflowStage]:
    """Stages of the first position not yet fully passed.

    Only stages greater than *passed_stage* are returned, so a position
    entered half-way (after a workflow change) yields its remainder.
    Empty when every stage has been passed.
    """
    for position in group_positions(stages):
        remaining = [s for s in position if s.stage > passed_stage]
        if remaining:
            return remaining
    return []


def signed_stages(idea) -> set[int]:
    """Stages ahead of ``idea.current_stage`` that already hold a live sign-off."""
    if idea.workflow_id is None:
        return set()
    stmt = select(StageSignoff.stage).where(
        StageSignoff.idea_id == idea.id,
        StageSignoff.workflow_id == idea.workflow_id,
        StageSignoff.voided_at.is_(None),
        StageSignoff.stage > idea.current_stage,
    )
    return set(db.session.execute(stmt).scalars())


def pending_stages(idea, stages: list[WorkflowStage] | None = None) -> list[WorkflowStage]:
    """Stages the idea is currently waiting on.

    Empty for drafts and for ideas that have passed their last stage.
    """
    if idea.workflow_id is None:
        return []
    if stages is None:
        stages = get_stage_sequence(idea.workflow_id)
    done = signed_stages(idea)
    return [s for s in position_after(stages, idea.current_stage) if s.stage not in done]
