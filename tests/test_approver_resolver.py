"""
Tests: Approver Resolver — role chain, scope matching and acting delegation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ideku.core.exceptions import NoEligibleApproverError, NotFoundError
from ideku.models import db as _db
from ideku.services.approver_resolver import effective_scope, resolve_approvers

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _acting(user, role, division_id=None, department_id=None, *, start=T0 - timedelta(days=1),
            end=T0 + timedelta(days=1)):
    user.is_acting = True
    user.acting_role_id = role.id
    user.acting_division_id = division_id
    user.acting_department_id = department_id
    user.acting_start_date = start
    user.acting_end_date = end
    _db.session.commit()
    return user


# ═══════════════════════════════════════════════════════════════
# 1. SCOPE MATCHING
# ═══════════════════════════════════════════════════════════════
class TestScope:
    def test_exact_department_match(self, org, make_workflow):
        wf = make_workflow(stages=["Department"])
        approvers = resolve_approvers(wf.id, 1, "D01", "P01", at=T0)
        assert approvers == {org.users.dept_mgr}

    def test_exact_match_excludes_other_departments(self, org, make_workflow, new_user):
        new_user("mgr.p02", "Mgr Dept", "D01", "P02")
        wf = make_workflow(stages=["Department"])
        approvers = resolve_approvers(wf.id, 1, "D01", "P01", at=T0)
        assert {u.username for u in approvers} == {"dept.mgr"}

    def test_falls_back_to_division_level_user(self, org, make_workflow):
        wf = make_workflow(stages=["Division"])
        approvers = resolve_approvers(wf.id, 1, "D01", "P02", at=T0)
        assert approvers == {org.users.gm_div}

    def test_department_user_does_not_cover_sibling_department(self, org, make_workflow):
        wf = make_workflow(stages=[("Finance", False, False)])
        assert resolve_approvers(wf.id, 1, "D01", "P02", at=T0) == set()

    def test_no_target_division_disables_scope(self, org, make_workflow):
        wf = make_workflow(stages=["Executive"])
        assert resolve_approvers(wf.id, 1, None, None, at=T0) == {org.users.coo}

    def test_inactive_user_is_never_eligible(self, org, make_workflow):
        org.users.dept_mgr.is_active = False
        _db.session.commit()
        wf = make_workflow(stages=[("Department", False, False)])
        assert resolve_approvers(wf.id, 1, "D01", "P01", at=T0) == set()


# ═══════════════════════════════════════════════════════════════
# 2. EMPTY STAGES
# ═══════════════════════════════════════════════════════════════
class TestEmptyStage:
    def test_mandatory_stage_without_approvers_raises(self, org, make_workflow):
        wf = make_workflow(stages=["Executive"])
        with pytest.raises(NoEligibleApproverError) as exc_info:
            resolve_approvers(wf.id, 1, "D01", "P01", at=T0)
        assert exc_info.value.stage == 1

    def test_optional_stage_without_approvers_is_empty(self, org, make_workflow):
        wf = make_workflow(stages=[("Executive", False, False)])
        assert resolve_approvers(wf.id, 1, "D01", "P01", at=T0) == set()

    def test_unknown_stage_raises_not_found(self, org, make_workflow):
        wf = make_workflow(stages=["Workstream"])
        with pytest.raises(NotFoundError):
            resolve_approvers(wf.id, 9, "D01", "P01", at=T0)


# ═══════════════════════════════════════════════════════════════
# 3. ACTING DELEGATION
# ═══════════════════════════════════════════════════════════════
class TestActing:
    def test_acting_user_joins_approvers_inside_window(self, org, make_workflow, new_user):
        stand_in = new_user("stand.in", "Initiator", "D02", "F01")
        _acting(stand_in, org.roles["Mgr Dept"], "D01", "P01")
        wf = make_workflow(stages=["Department"])

        approvers = resolve_approvers(wf.id, 1, "D01", "P01", at=T0)
        assert approvers == {org.users.dept_mgr, stand_in}

    def test_expired_window_is_ignored_without_revert(self, org, make_workflow, new_user):
        stand_in = new_user("stand.in", "Initiator", "D02", "F01")
        _acting(stand_in, org.roles["Mgr Dept"], "D01", "P01")
        wf = make_workflow(stages=["Department"])

        later = T0 + timedelta(days=2)
        assert resolve_approvers(wf.id, 1, "D01", "P01", at=later) == {org.users.dept_mgr}
        assert stand_in.is_acting is True

    def test_window_bounds_are_inclusive(self, org, make_workflow, new_user):
        stand_in = new_user("stand.in", "Initiator", "D02", "F01")
        end = T0 + timedelta(days=1)
        _acting(stand_in, org.roles["Mgr Dept"], "D01", "P01", end=end)
        wf = make_workflow(stages=["Department"])

        assert stand_in in resolve_approvers(wf.id, 1, "D01", "P01", at=end)
        assert stand_in not in resolve_approvers(
            wf.id, 1, "D01", "P01", at=end + timedelta(seconds=1),
        )

    def test_acting_keeps_home_capabilities(self, org, make_workflow):
        ws_lead = _acting(org.users.ws_lead, org.roles["GM Division"], "D02")
        wf = make_workflow(stages=["Workstream", "Division"])

        assert ws_lead in resolve_approvers(wf.id, 1, "D01", "P01", at=T0)
        assert ws_lead in resolve_approvers(wf.id, 2, "D02", "F01", at=T0)

    def test_acting_location_falls_back_to_home(self, org, make_workflow, new_user):
        stand_in = _acting(new_user("stand.in", "Initiator", "D01", "P01"),
                           org.roles["Mgr Dept"])
        assert effective_scope(stand_in, T0) == ("D01", "P01")
        wf = make_workflow(stages=["Department"])
        assert stand_in in resolve_approvers(wf.id, 1, "D01", "P01", at=T0)
