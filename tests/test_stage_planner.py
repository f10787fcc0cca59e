"""
Tests: Stage Planner — max stage, ordering and parallel positions.
"""

import pytest

from ideku.core.exceptions import NotFoundError
from ideku.services.stage_planner import (
    get_max_stage,
    get_stage,
    get_stage_sequence,
    group_positions,
    position_after,
)


class TestSequence:
    def test_max_stage_is_highest_stage_number(self, make_workflow):
        wf = make_workflow(stages=["Workstream", "Department", "Division"], numbers=[1, 2, 5])
        assert get_max_stage(wf.id) == 5

    def test_max_stage_without_stages_is_zero(self, make_workflow):
        wf = make_workflow(stages=[])
        assert get_max_stage(wf.id) == 0

    def test_unknown_workflow_raises(self):
        with pytest.raises(NotFoundError):
            get_max_stage(999)

    def test_sequence_is_ascending(self, make_workflow):
        wf = make_workflow(stages=["Workstream", "Department", "Division"], numbers=[3, 1, 2])
        assert [s.stage for s in get_stage_sequence(wf.id)] == [1, 2, 3]

    def test_get_stage(self, make_workflow, org):
        wf = make_workflow(stages=["Workstream", "Department"])
        assert get_stage(wf.id, 2).level_id == org.levels["Department"].id
        assert get_stage(wf.id, 3) is None


class TestPositions:
    def test_parallel_run_shares_a_position(self, make_workflow):
        wf = make_workflow(stages=[
            "Workstream",
            ("Division", True, True),
            ("Finance", True, True),
            "Executive",
            ("Department", True, True),
        ])
        positions = group_positions(get_stage_sequence(wf.id))
        assert [[s.stage for s in p] for p in positions] == [[1], [2, 3], [4], [5]]

    def test_position_after_returns_remainder(self, make_workflow):
        wf = make_workflow(stages=[
            "Workstream",
            ("Division", True, True),
            ("Finance", True, True),
        ])
        stages = get_stage_sequence(wf.id)
        assert [s.stage for s in position_after(stages, 0)] == [1]
        assert [s.stage for s in position_after(stages, 1)] == [2, 3]
        assert [s.stage for s in position_after(stages, 2)] == [3]
        assert position_after(stages, 3) == []
