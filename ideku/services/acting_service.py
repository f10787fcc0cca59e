"""
Acting delegation — temporarily grant a user another role and location.

The delegation only overlays the user's home identity (see
``approver_resolver``); nothing here touches ``role_id``,
``division_id`` or ``department_id``. ``revert_expired_acting`` is
housekeeping for the flag itself: resolution already ignores windows
that have ended.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from ideku.core.exceptions import NotFoundError, ValidationError
from ideku.models import db
from ideku.models.audit import write_audit
from ideku.models.organization import Department, Division, Role, User, as_utc

logger = logging.getLogger(__name__)


def _get_user_or_raise(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def _acting_snapshot(user: User) -> dict:
    return {
        "is_acting": user.is_acting,
        "acting_role_id": user.acting_role_id,
        "acting_division_id": user.acting_division_id,
        "acting_department_id": user.acting_department_id,
        "acting_start_date": user.acting_start_date,
        "acting_end_date": user.acting_end_date,
    }


def _clear(user: User) -> None:
    user.is_acting = False
    user.acting_role_id = None
    user.acting_division_id = None
    user.acting_department_id = None
    user.acting_start_date = None
    user.acting_end_date = None


def set_acting(
    user_id: int,
    *,
    acting_role_id: int,
    start: datetime,
    end: datetime,
    acting_division_id: str | None = None,
    acting_department_id: str | None = None,
    actor: str = "system",
) -> dict:
    """Grant *user_id* an acting role (and optionally location) for [start, end].

    Raises:
        NotFoundError: unknown user, role, division or department.
        ValidationError: ``end`` is not after ``start``, or the department
            is not part of the acting division.
    """
    user = _get_user_or_raise(user_id)
    if db.session.get(Role, acting_role_id) is None:
        raise NotFoundError(resource="Role", resource_id=acting_role_id)
    if as_utc(end) <= as_utc(start):
        raise ValidationError(
            "Acting end date must be after the start date",
            details={"acting_end_date": "must be after acting_start_date"},
        )
    if acting_division_id and db.session.get(Division, acting_division_id) is None:
        raise NotFoundError(resource="Division", resource_id=acting_division_id)
    if acting_department_id:
        department = db.session.get(Department, acting_department_id)
        if department is None:
            raise NotFoundError(resource="Department", resource_id=acting_department_id)
        division_id = acting_division_id or user.division_id
        if division_id and department.division_id != division_id:
            raise ValidationError(
                f"Department {acting_department_id} does not belong to division {division_id}",
                details={"acting_department_id": "division mismatch"},
            )

    before = _acting_snapshot(user)
    user.is_acting = True
    user.acting_role_id = acting_role_id
    user.acting_division_id = acting_division_id
    user.acting_department_id = acting_department_id
    user.acting_start_date = as_utc(start)
    user.acting_end_date = as_utc(end)
    after = _acting_snapshot(user)

    write_audit(
        entity_type="user",
        entity_id=user.id,
        action="user.set_acting",
        actor=actor,
        diff={k: {"old": before[k], "new": after[k]} for k in before if before[k] != after[k]},
    )
    db.session.commit()
    logger.info("User %s acting as role %s until %s", user.username, acting_role_id, user.acting_end_date.isoformat())
    return user.to_dict()


def clear_acting(user_id: int, *, actor: str = "system") -> dict:
    user = _get_user_or_raise(user_id)
    if not user.is_acting:
        return user.to_dict()
    before = _acting_snapshot(user)
    _clear(user)
    write_audit(
        entity_type="user",
        entity_id=user.id,
        action="user.clear_acting",
        actor=actor,
        diff={k: {"old": before[k], "new": None} for k in before if before[k] is not None},
    )
    db.session.commit()
    logger.info("Acting delegation of %s cleared", user.username)
    return user.to_dict()


def revert_expired_acting(now: datetime | None = None) -> int:
    """Clear acting flags whose window has ended. Returns the number of users reverted."""
    now = now or datetime.now(timezone.utc)
    stmt = select(User).where(User.is_acting.is_(True)).order_by(User.id)
    reverted = 0
    for user in db.session.execute(stmt).scalars():
        if not _expired(user, now):
            continue
        before = _acting_snapshot(user)
        _clear(user)
        write_audit(
            entity_type="user",
            entity_id=user.id,
            action="user.revert_acting",
            actor="system",
            diff={k: {"old": before[k], "new": None} for k in before if before[k] is not None},
        )
        reverted += 1
    db.session.commit()
    if reverted:
        logger.info("Reverted %d expired acting delegation(s)", reverted)
    return reverted


def _expired(user: User, now: datetime) -> bool:
    """Window ended, or the flag was set without a complete window."""
    if user.acting_start_date is None or user.acting_end_date is None:
        return True
    return as_utc(user.acting_end_date) < as_utc(now)
