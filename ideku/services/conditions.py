"""
Workflow condition parsing and evaluation.

A stored ``WorkflowCondition`` row is a loosely typed triple
``(condition_type, operator, condition_value)``. ``parse_condition``
turns it into one of two frozen variants so the triple is validated once,
at configuration-write time, instead of on every idea:

    NumericCondition     SAVING_COST  >= <= > < = !=     "50000"
    MembershipCondition  CATEGORY | DIVISION | DEPARTMENT | EVENT
                         = != (single value), IN NOT_IN  "IT, HR"

Membership matches compare the string form of the idea's value
case-insensitively. A missing idea value (e.g. no event) fails every
operator, ``NOT_IN`` included.

Usage:
    from ideku.services.conditions import IdeaContext, parse_condition

    cond = parse_condition("SAVING_COST", ">=", "50000")
    cond.evaluate(IdeaContext(saving_cost=60000))   # True
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from ideku.core.exceptions import ConfigurationError
from ideku.models.workflow import CONDITION_OPERATORS, CONDITION_TYPES

NUMERIC_OPERATORS = (">=", "<=", ">", "<", "=", "!=")
MEMBERSHIP_OPERATORS = ("=", "!=", "IN", "NOT_IN")

# condition_type → IdeaContext attribute
_CONTEXT_FIELDS = {
    "SAVING_COST": "saving_cost",
    "CATEGORY": "category_id",
    "DIVISION": "division_id",
    "DEPARTMENT": "department_id",
    "EVENT": "event_id",
}

_COMPARATORS = {
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
    "=": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
}


@dataclass(frozen=True)
class IdeaContext:
    """Facts about an idea that workflow conditions can test."""

    category_id: int | None = None
    division_id: str | None = None
    department_id: str | None = None
    saving_cost: int | Decimal | None = None
    event_id: int | None = None

    @classmethod
    def from_idea(cls, idea) -> IdeaContext:
        return cls(
            category_id=idea.category_id,
            division_id=idea.target_division_id,
            department_id=idea.target_department_id,
            saving_cost=idea.saving_cost,
            event_id=idea.event_id,
        )


@dataclass(frozen=True)
class NumericCondition:
    condition_type: str
    operator: str
    threshold: Decimal

    def evaluate(self, ctx: IdeaContext) -> bool:
        actual = getattr(ctx, _CONTEXT_FIELDS[self.condition_type])
        if actual is None:
            return False
        return _COMPARATORS[self.operator](Decimal(actual), self.threshold)


@dataclass(frozen=True)
class MembershipCondition:
    condition_type: str
    operator: str
    values: frozenset[str]

    def evaluate(self, ctx: IdeaContext) -> bool:
        actual = getattr(ctx, _CONTEXT_FIELDS[self.condition_type])
        if actual is None or str(actual).strip() == "":
            return False
        found = str(actual).strip().lower() in self.values
        if self.operator in ("=", "IN"):
            return found
        return not found


Condition = NumericCondition | MembershipCondition


def parse_condition(condition_type: str, operator: str, value) -> Condition:
    """Validate a condition triple and build its evaluator.

    Raises:
        ConfigurationError: unknown type/operator, operator not allowed
            for the type, or a value that cannot be parsed.
    """
    ctype = (condition_type or "").strip().upper()
    op = (operator or "").strip().upper()
    raw = "" if value is None else str(value).strip()
    details = {"condition_type": condition_type, "operator": operator, "condition_value": value}

    if ctype not in CONDITION_TYPES:
        raise ConfigurationError(
            f"Unknown condition type '{condition_type}'. "
            f"Must be one of: {', '.join(sorted(CONDITION_TYPES))}",
            details=details,
        )
    if op not in CONDITION_OPERATORS:
        raise ConfigurationError(f"Unknown operator '{operator}'", details=details)

    if ctype == "SAVING_COST":
        if op not in NUMERIC_OPERATORS:
            raise ConfigurationError(
                f"Operator '{op}' is not supported for SAVING_COST", details=details,
            )
        try:
            threshold = Decimal(raw)
        except InvalidOperation:
            raise ConfigurationError(
                f"SAVING_COST value '{raw}' is not a number", details=details,
            ) from None
        if not threshold.is_finite():
            raise ConfigurationError(f"SAVING_COST value '{raw}' is not finite", details=details)
        return NumericCondition(ctype, op, threshold)

    if op not in MEMBERSHIP_OPERATORS:
        raise ConfigurationError(f"Operator '{op}' is not supported for {ctype}", details=details)
    values = [v.strip().lower() for v in raw.split(",") if v.strip()]
    if not values:
        raise ConfigurationError(f"{ctype} condition needs at least one value", details=details)
    if op in ("=", "!=") and len(values) != 1:
        raise ConfigurationError(
            f"Operator '{op}' takes a single value; use IN / NOT_IN for lists", details=details,
        )
    return MembershipCondition(ctype, op, frozenset(values))


def parse_stored(row) -> Condition:
    """Build the evaluator for a persisted ``WorkflowCondition``."""
    return parse_condition(row.condition_type, row.operator, row.condition_value)
