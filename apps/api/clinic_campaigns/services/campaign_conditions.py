"""Predicate evaluation for CONDITION and BRANCH steps."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from clinic_campaigns.db.enums import ConditionOperator
from clinic_campaigns.schemas.campaign import StepPredicate

MISSING = object()


def get_nested_value(variables: Mapping[str, Any], path: str) -> Any:
    """Resolve a dot path ("patient.first_name") against nested mappings."""
    current: Any = variables
    for key in path.split("."):
        if isinstance(current, Mapping) and key in current:
            current = current[key]
        else:
            return MISSING
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_predicate(predicate: StepPredicate, variables: Mapping[str, Any]) -> bool:
    """
    Evaluate a predicate against the variable bag.

    Ordering operators only compare numbers; a missing or non-numeric value
    is false. ``contains`` is a substring test on strings.
    """
    value = get_nested_value(variables, predicate.field)
    expected = predicate.value

    match predicate.operator:
        case ConditionOperator.EXISTS:
            return value is not MISSING and value is not None
        case ConditionOperator.EQUALS:
            return value is not MISSING and value == expected
        case ConditionOperator.NOT_EQUALS:
            return value is MISSING or value != expected
        case ConditionOperator.CONTAINS:
            return isinstance(value, str) and isinstance(expected, str) and expected in value

    if not (_is_number(value) and _is_number(expected)):
        return False

    match predicate.operator:
        case ConditionOperator.GREATER_THAN:
            return value > expected
        case ConditionOperator.LESS_THAN:
            return value < expected
        case ConditionOperator.GREATER_OR_EQUAL:
            return value >= expected
        case ConditionOperator.LESS_OR_EQUAL:
            return value <= expected
    return False
