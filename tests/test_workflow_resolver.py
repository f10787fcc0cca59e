"""
Tests: Workflow Resolver — condition matching, priority and tie-break.
"""

from ideku.models import db as _db
from ideku.models.workflow import WorkflowCondition
from ideku.services.workflow_resolver import (
    find_priority_conflicts,
    resolve_applicable_workflow,
    resolve_for_idea,
)


def _resolve(**overrides):
    args = {
        "category_id": 1,
        "division_id": "D01",
        "department_id": "P01",
        "saving_cost": 6000,
        "event_id": None,
    }
    args.update(overrides)
    return resolve_applicable_workflow(**args)


class TestConditionMatching:
    def test_all_conditions_must_hold(self, make_workflow):
        wf = make_workflow("Big D01", conditions=[("SAVING_COST", ">=", "5000"), ("DIVISION", "=", "D01")])

        assert _resolve(saving_cost=6000).id == wf.id
        assert _resolve(saving_cost=4000) is None
        assert _resolve(division_id="D02") is None

    def test_workflow_without_conditions_always_qualifies(self, make_workflow):
        wf = make_workflow("Catch-all", priority=99)
        assert _resolve(saving_cost=0, division_id="D02").id == wf.id

    def test_inactive_workflow_is_ignored(self, make_workflow):
        make_workflow("Off", priority=1, is_active=False)
        on = make_workflow("On", priority=5)
        assert _resolve().id == on.id

    def test_inactive_condition_is_ignored(self, make_workflow):
        wf = make_workflow("WF", conditions=[("SAVING_COST", ">=", "1000000")])
        cond = WorkflowCondition.query.filter_by(workflow_id=wf.id).one()
        cond.is_active = False
        _db.session.commit()
        assert _resolve(saving_cost=10).id == wf.id

    def test_malformed_stored_condition_disqualifies(self, make_workflow):
        bad = make_workflow("Legacy", priority=1, conditions=[("SAVING_COST", ">=", "lots")])
        good = make_workflow("Fallback", priority=2)
        result = _resolve()
        assert result.id == good.id
        assert result.id != bad.id

    def test_no_match_returns_none(self, make_workflow):
        make_workflow("Only IT", conditions=[("DIVISION", "IN", "D03")])
        assert _resolve() is None


class TestPriority:
    def test_lowest_priority_wins(self, make_workflow):
        make_workflow("Standard", priority=2)
        high = make_workflow("High Value", priority=1, conditions=[("SAVING_COST", ">=", "5000")])
        assert _resolve(saving_cost=6000).id == high.id
        assert _resolve(saving_cost=10).name == "Standard"

    def test_equal_priority_breaks_tie_on_lowest_id(self, make_workflow):
        first = make_workflow("A", priority=1)
        make_workflow("B", priority=1)
        picks = {_resolve().id for _ in range(5)}
        assert picks == {first.id}

    def test_find_priority_conflicts(self, make_workflow):
        a = make_workflow("A", priority=1)
        b = make_workflow("B", priority=1)
        make_workflow("C", priority=2)
        make_workflow("D", priority=2, is_active=False)

        conflicts = find_priority_conflicts()
        assert len(conflicts) == 1
        assert conflicts[0]["priority"] == 1
        assert [w["id"] for w in conflicts[0]["workflows"]] == [a.id, b.id]
        assert conflicts[0]["winner_id"] == a.id


class TestResolveForIdea:
    def test_uses_idea_facts(self, make_workflow, make_idea):
        wf = make_workflow("Maintenance", conditions=[("DEPARTMENT", "=", "P02")])
        make_workflow("Other", priority=9)
        idea = make_idea(department="P02")
        assert resolve_for_idea(idea).id == wf.id
