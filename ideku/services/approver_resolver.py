"""
Approver Resolver — who may sign off a given workflow stage.

Resolution chain:
    stage → level → permitted roles (LevelApprover) → active users

Each user is evaluated through one or two *identities*:
    home    (role_id, division_id, department_id)
    acting  (acting_role_id, acting_division_id, acting_department_id),
            only while the acting window covers the resolution time; unset
            acting fields fall back to the home values (an acting division
            without a department acts division-wide).

A user is eligible when any identity qualifies, so an acting delegation
adds capabilities and never removes the home ones.

Scope matching against the idea's target location:
    1. identities in the target division AND target department
    2. if none: division-level identities (target division, no department)
No target division disables scope filtering; no target department matches
on division only.
"""

import logging
from datetime import datetime, timezone
from typing import NamedTuple

from sqlalchemy import and_, or_, select

from ideku.core.exceptions import NoEligibleApproverError, NotFoundError
from ideku.models import db
from ideku.models.organization import User
from ideku.services.stage_planner import get_stage

logger = logging.getLogger(__name__)


class _Identity(NamedTuple):
    user: User
    role_id: int
    division_id: str | None
    department_id: str | None
    acting: bool


def is_acting_active(user: User, at: datetime | None = None) -> bool:
    return user.is_acting_at(at)


def effective_scope(user: User, at: datetime | None = None) -> tuple[str | None, str | None]:
    """(division_id, department_id) the user currently acts for."""
    if not is_acting_active(user, at):
        return user.division_id, user.department_id
    if user.acting_division_id:
        # A department never carries over into another division
        return user.acting_division_id, user.acting_department_id
    return user.division_id, user.acting_department_id or user.department_id


def _identities(user: User, at: datetime) -> list[_Identity]:
    ids = [_Identity(user, user.role_id, user.division_id, user.department_id, False)]
    if is_acting_active(user, at):
        division_id, department_id = effective_scope(user, at)
        ids.append(_Identity(
            user, user.acting_role_id or user.role_id, division_id, department_id, True,
        ))
    return ids


def _candidates(role_ids: set[int]) -> list[User]:
    stmt = select(User).where(
        User.is_active.is_(True),
        or_(
            User.role_id.in_(role_ids),
            and_(User.is_acting.is_(True), User.acting_role_id.in_(role_ids)),
        ),
    ).order_by(User.id)
    return list(db.session.execute(stmt).scalars())


def _match_scope(identities: list[_Identity], division_id, department_id) -> list[_Identity]:
    if not division_id:
        return identities
    in_division = [i for i in identities if i.division_id == division_id]
    if not department_id:
        return in_division
    exact = [i for i in in_division if i.department_id == department_id]
    if exact:
        return exact
    return [i for i in in_division if not i.department_id]


def approvers_for_stage(
    stage_row,
    target_division_id: str | None = None,
    target_department_id: str | None = None,
    *,
    at: datetime | None = None,
) -> set[User]:
    """Eligible approvers for an already-loaded stage; never raises on empty."""
    at = at or datetime.now(timezone.utc)
    level = stage_row.level
    if level is None or not level.is_active:
        return set()
    role_ids = level.role_ids
    if not role_ids:
        return set()

    identities = [
        ident
        for user in _candidates(role_ids)
        for ident in _identities(user, at)
        if ident.role_id in role_ids
    ]
    matched = _match_scope(identities, target_division_id, target_department_id)
    return {ident.user for ident in matched}


def resolve_approvers(
    workflow_id: int,
    stage: int,
    target_division_id: str | None = None,
    target_department_id: str | None = None,
    *,
    at: datetime | None = None,
) -> set[User]:
    """Eligible approvers for *stage* of *workflow_id*.

    Raises:
        NotFoundError: the workflow has no such stage.
        NoEligibleApproverError: the stage is mandatory and nobody qualifies.
    """
    stage_row = get_stage(workflow_id, stage)
    if stage_row is None:
        raise NotFoundError(resource="WorkflowStage", resource_id=f"{workflow_id}/{stage}")

    approvers = approvers_for_stage(stage_row, target_division_id, target_department_id, at=at)
    if not approvers and stage_row.is_mandatory:
        logger.warning(
            "Mandatory stage %s of workflow %s has no eligible approver (division=%s department=%s)",
            stage, workflow_id, target_division_id, target_department_id,
            extra={"workflow_id": workflow_id, "stage": stage},
        )
        raise NoEligibleApproverError(workflow_id, stage)
    return approvers


def approvers_for_idea(idea, stage_row, *, at: datetime | None = None) -> set[User]:
    return approvers_for_stage(
        stage_row, idea.target_division_id, idea.target_department_id, at=at,
    )
