"""
Tests: workflow condition parsing and evaluation.

Conditions are validated when parsed, so malformed triples surface as
ConfigurationError instead of silently failing at resolution time.
"""

from decimal import Decimal

import pytest

from ideku.core.exceptions import ConfigurationError
from ideku.services.conditions import (
    IdeaContext,
    MembershipCondition,
    NumericCondition,
    parse_condition,
)


# ═══════════════════════════════════════════════════════════════
# 1. PARSING
# ═══════════════════════════════════════════════════════════════
class TestParseCondition:
    def test_saving_cost_builds_numeric_condition(self):
        cond = parse_condition("SAVING_COST", ">=", "5000")
        assert isinstance(cond, NumericCondition)
        assert cond.threshold == Decimal("5000")

    def test_membership_types_build_membership_condition(self):
        cond = parse_condition("division", "in", " D01, d02 ,")
        assert isinstance(cond, MembershipCondition)
        assert cond.condition_type == "DIVISION"
        assert cond.operator == "IN"
        assert cond.values == frozenset({"d01", "d02"})

    @pytest.mark.parametrize("ctype, op, value", [
        ("COLOR", "=", "red"),
        ("SAVING_COST", "LIKE", "5"),
        ("SAVING_COST", "IN", "5,6"),
        ("SAVING_COST", ">=", "five thousand"),
        ("SAVING_COST", ">=", ""),
        ("SAVING_COST", ">=", "NaN"),
        ("CATEGORY", ">=", "3"),
        ("DEPARTMENT", "IN", " , "),
        ("EVENT", "=", "1,2"),
    ])
    def test_malformed_condition_raises(self, ctype, op, value):
        with pytest.raises(ConfigurationError):
            parse_condition(ctype, op, value)

    def test_error_carries_offending_triple(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_condition("SAVING_COST", ">=", "abc")
        assert exc_info.value.details["condition_value"] == "abc"


# ═══════════════════════════════════════════════════════════════
# 2. EVALUATION
# ═══════════════════════════════════════════════════════════════
class TestEvaluate:
    @pytest.mark.parametrize("op, cost, expected", [
        (">=", 5000, True),
        (">=", 4999, False),
        ("<=", 5000, True),
        (">", 5000, False),
        ("<", 4999, True),
        ("=", 5000, True),
        ("!=", 5000, False),
    ])
    def test_numeric_operators(self, op, cost, expected):
        cond = parse_condition("SAVING_COST", op, "5000")
        assert cond.evaluate(IdeaContext(saving_cost=cost)) is expected

    def test_membership_is_case_insensitive(self):
        cond = parse_condition("DIVISION", "=", "d01")
        assert cond.evaluate(IdeaContext(division_id="D01"))

    def test_in_and_not_in(self):
        ctx = IdeaContext(category_id=3)
        assert parse_condition("CATEGORY", "IN", "1,3").evaluate(ctx)
        assert not parse_condition("CATEGORY", "NOT_IN", "1,3").evaluate(ctx)
        assert parse_condition("CATEGORY", "NOT_IN", "1,2").evaluate(ctx)
        assert parse_condition("CATEGORY", "!=", "2").evaluate(ctx)

    def test_missing_value_fails_every_operator(self):
        ctx = IdeaContext(division_id="D01")
        assert not parse_condition("EVENT", "IN", "1").evaluate(ctx)
        assert not parse_condition("EVENT", "NOT_IN", "1").evaluate(ctx)
        assert not parse_condition("SAVING_COST", "<", "10").evaluate(ctx)

    def test_from_idea_maps_target_location(self):
        class _Idea:
            category_id = 2
            target_division_id = "D01"
            target_department_id = "P02"
            saving_cost = 1200
            event_id = None

        ctx = IdeaContext.from_idea(_Idea())
        assert ctx.division_id == "D01"
        assert ctx.department_id == "P02"
        assert ctx.saving_cost == 1200
