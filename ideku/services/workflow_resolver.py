"""
Workflow Resolver — picks the single workflow that governs an idea.

Rules:
    - Only active workflows take part.
    - A workflow qualifies when every one of its active conditions holds
      for the idea; a workflow without active conditions always qualifies.
    - Among qualifying workflows the lowest ``priority`` wins; equal
      priorities fall back to the lowest workflow id, so the answer is
      stable for identical inputs.

Usage:
    from ideku.services.workflow_resolver import resolve_applicable_workflow

    wf = resolve_applicable_workflow(
        category_id=3, division_id="D01", department_id="P02",
        saving_cost=75_000, event_id=None,
    )
"""

import logging

from sqlalchemy import func, select

from ideku.core.exceptions import ConfigurationError
from ideku.models import db
from ideku.models.workflow import Workflow
from ideku.services.conditions import IdeaContext, parse_stored

logger = logging.getLogger(__name__)


def workflow_matches(workflow: Workflow, ctx: IdeaContext) -> bool:
    """True when all active conditions of *workflow* hold for *ctx*."""
    for row in workflow.active_conditions:
        try:
            condition = parse_stored(row)
        except ConfigurationError as exc:
            # Rows written before validation existed; treat as not matching
            logger.warning(
                "Ignoring workflow %s: malformed condition %s (%s)",
                workflow.id, row.id, exc,
                extra={"workflow_id": workflow.id},
            )
            return False
        if not condition.evaluate(ctx):
            return False
    return True


def _active_workflows_in_order() -> list[Workflow]:
    stmt = (
        select(Workflow)
        .where(Workflow.is_active.is_(True))
        .order_by(Workflow.priority.asc(), Workflow.id.asc())
    )
    return list(db.session.execute(stmt).scalars())


def resolve_for_context(ctx: IdeaContext) -> Workflow | None:
    for workflow in _active_workflows_in_order():
        if workflow_matches(workflow, ctx):
            logger.debug(
                "Resolved workflow %s (%s) priority=%s",
                workflow.id, workflow.name, workflow.priority,
                extra={"workflow_id": workflow.id},
            )
            return workflow
    logger.info("No applicable workflow for context %s", ctx)
    return None


def resolve_applicable_workflow(
    category_id: int | None,
    division_id: str | None,
    department_id: str | None,
    saving_cost,
    event_id: int | None = None,
) -> Workflow | None:
    """Return the applicable workflow for the given idea facts, or None."""
    ctx = IdeaContext(
        category_id=category_id,
        division_id=division_id,
        department_id=department_id,
        saving_cost=saving_cost,
        event_id=event_id,
    )
    return resolve_for_context(ctx)


def resolve_for_idea(idea) -> Workflow | None:
    return resolve_for_context(IdeaContext.from_idea(idea))


def find_priority_conflicts() -> list[dict]:
    """List priorities shared by more than one active workflow.

    Resolution is still deterministic for these (lowest id wins), but the
    configuration is ambiguous to an administrator reading it.
    """
    shared = (
        select(Workflow.priority)
        .where(Workflow.is_active.is_(True))
        .group_by(Workflow.priority)
        .having(func.count(Workflow.id) > 1)
    )
    conflicts = []
    for priority in db.session.execute(shared).scalars():
        rows = (
            Workflow.query
            .filter_by(is_active=True, priority=priority)
            .order_by(Workflow.id)
            .all()
        )
        conflicts.append({
            "priority": priority,
            "workflows": [{"id": w.id, "name": w.name} for w in rows],
            "winner_id": rows[0].id,
        })
    return sorted(conflicts, key=lambda c: c["priority"])
