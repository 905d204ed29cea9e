"""
Condition Evaluator

Evaluates an AND-list of typed automation conditions against an order item
and the phase it just entered. Pure function, no side effects.

Each condition variant only carries the operators valid for its field, so
there is no "unknown field" case to default: malformed conditions are
rejected when they are parsed (see models.parse_conditions).
"""

from typing import Sequence

from .collaborators import OrderItem
from .models import (
    AutomationCondition,
    ItemTagCondition,
    ItemTypeCondition,
    TimetablePhaseCondition,
    TtrPhaseCondition,
)


def evaluate_condition(condition: AutomationCondition, item: OrderItem, phase: str) -> bool:
    """Evaluate one condition against an item and its current phase."""
    if isinstance(condition, ItemTagCondition):
        wanted = condition.value.lower()
        match = any(tag.lower() == wanted for tag in item.tags or [])
        return not match if condition.operator == "excludes" else match

    if isinstance(condition, ItemTypeCondition):
        actual = item.type
    elif isinstance(condition, TtrPhaseCondition):
        actual = phase
    elif isinstance(condition, TimetablePhaseCondition):
        actual = item.timetable_phase or ""
    else:
        raise TypeError(f"Unsupported condition type: {type(condition).__name__}")

    matches = actual == condition.value
    return not matches if condition.operator == "notEquals" else matches


def passes(conditions: Sequence[AutomationCondition], item: OrderItem, phase: str) -> bool:
    """
    Check that ALL conditions hold.

    Args:
        conditions: Typed conditions (empty = always passes)
        item: Order item being processed
        phase: Phase the item just entered

    Returns:
        True iff every condition evaluates to True
    """
    return all(evaluate_condition(condition, item, phase) for condition in conditions)
