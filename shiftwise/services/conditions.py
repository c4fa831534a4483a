"""
Condition evaluation against event payloads.

Field paths are dotted (``job.client.id``) and never raise on missing keys;
an unresolved path yields ``MISSING``, which is distinct from an explicit
``None``. All conditions of a rule are ANDed.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from numbers import Real
from typing import Any, Callable, Dict, Iterable

from ..core.errors import ConditionEvaluationError
from ..schemas.rule import Condition, ConditionOperator


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def resolve_field(payload: Any, path: str) -> Any:
    """Walk ``path`` through mappings, sequences and attributes."""
    current = payload
    for key in path.split("."):
        if current is MISSING or current is None:
            return MISSING
        if isinstance(current, Mapping):
            current = current.get(key, MISSING)
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            if not key.isdigit():
                return MISSING
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                return MISSING
        else:
            current = getattr(current, key, MISSING)
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _strict_equals(actual: Any, expected: Any) -> bool:
    if actual is MISSING:
        return False
    if isinstance(actual, bool) or isinstance(expected, bool):
        return isinstance(actual, bool) and isinstance(expected, bool) and actual == expected
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if type(actual) is not type(expected) and not (
        isinstance(actual, str) and isinstance(expected, str)
    ):
        return False
    return actual == expected


def _greater_than(actual: Any, expected: Any) -> bool:
    return _is_number(actual) and _is_number(expected) and actual > expected


def _less_than(actual: Any, expected: Any) -> bool:
    return _is_number(actual) and _is_number(expected) and actual < expected


def _contains(actual: Any, expected: Any) -> bool:
    if actual is MISSING or actual is None or expected is None:
        return False
    return str(expected) in str(actual)


def _exists(actual: Any, _expected: Any) -> bool:
    return actual is not MISSING and actual is not None


_OPERATORS: Dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.EQUALS: _strict_equals,
    ConditionOperator.NOT_EQUALS: lambda actual, expected: not _strict_equals(actual, expected),
    ConditionOperator.GREATER_THAN: _greater_than,
    ConditionOperator.LESS_THAN: _less_than,
    ConditionOperator.CONTAINS: _contains,
    ConditionOperator.EXISTS: _exists,
}


def evaluate_condition(condition: Condition, payload: Any) -> bool:
    handler = _OPERATORS.get(condition.operator)
    if handler is None:
        raise ConditionEvaluationError(f"Unsupported operator '{condition.operator}'")
    actual = resolve_field(payload, condition.field)
    return bool(handler(actual, condition.value))


def evaluate(conditions: Iterable[Condition], payload: Any) -> bool:
    """Return True when every condition holds. An empty list always holds."""
    return all(evaluate_condition(condition, payload) for condition in conditions)
