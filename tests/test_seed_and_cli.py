"""
Tests: demo seed data and CLI commands.
"""

from ideku.models.workflow import Workflow
from ideku.services.seed_service import seed_demo_data
from ideku.services.workflow_resolver import resolve_applicable_workflow


class TestSeed:
    def test_seed_is_idempotent(self):
        first = seed_demo_data()
        assert first["workflows"] == 2
        assert first["divisions"] == 3

        again = seed_demo_data()
        assert set(again.values()) == {0}
        assert Workflow.query.count() == 2

    def test_seeded_workflows_split_on_saving_cost(self):
        seed_demo_data()
        high = resolve_applicable_workflow(1, "D01", "P01", 25_000)
        standard = resolve_applicable_workflow(1, "D01", "P01", 19_999)
        assert high.name == "WF_High Value"
        assert high.max_stage == 5
        assert standard.name == "WF_Standard"


class TestCli:
    def test_check_workflows_reports_shared_priority(self, app, make_workflow, caplog):
        make_workflow("A", priority=1)
        make_workflow("B", priority=1)

        result = app.test_cli_runner().invoke(args=["check-workflows"])
        assert result.exit_code == 0
        assert "Priority 1 shared by A, B" in caplog.text

    def test_revert_expired_acting_runs(self, app):
        result = app.test_cli_runner().invoke(args=["revert-expired-acting"])
        assert result.exit_code == 0
