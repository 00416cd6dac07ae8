"""
Condition evaluation for triggers, rules and field conditions.

Evaluation is total and fail-closed: any unsupported operator, malformed
operand or invalid regular expression evaluates to False instead of raising.
Equality is strict and type-sensitive (`1` does not equal `"1"`, `True` is
not a number), and "empty" means None or the empty string only.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from .paths import get_path

if TYPE_CHECKING:
    from .schema import Condition

logger = logging.getLogger(__name__)

ConditionMode = Literal["all", "any"]


class ConditionOperator(str, Enum):
    """Fixed operator vocabulary (normalized spelling)."""

    TRUE = "true"
    FALSE = "false"
    EMPTY = "empty"
    NOT_EMPTY = "not empty"
    NULL = "null"
    NOT_NULL = "not null"
    EQUAL = "equal"
    NOT_EQUAL = "not equal"
    LESS_THAN = "less than"
    GREATER_THAN = "greater than"
    BETWEEN = "between"
    MATCHES = "matches"
    NOT_MATCHES = "not matches"


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])")
_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_operator(operator: str) -> str:
    """
    Normalize operator spelling.

    "not-empty", "not_empty", "notEmpty" and "NOT EMPTY" all become
    "not empty". Unknown operators are returned normalized but otherwise
    untouched; they evaluate to False.
    """
    spaced = _CAMEL_BOUNDARY.sub(" ", operator.strip())
    return _SEPARATORS.sub(" ", spaced).lower()


def is_number(value: Any) -> bool:
    """True for int and float values. bool is not a number here."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equal(value: Any, operand: Any) -> bool:
    if is_number(value) and is_number(operand):
        return value == operand
    if type(value) is not type(operand):
        return False
    return value == operand


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _less_than(value: Any, operand: Any) -> bool:
    return is_number(value) and is_number(operand) and value < operand


def _greater_than(value: Any, operand: Any) -> bool:
    return is_number(value) and is_number(operand) and value > operand


def _between(value: Any, operand: Any) -> bool:
    if not isinstance(operand, (list, tuple)) or len(operand) != 2:
        return False
    low, high = operand
    if not (is_number(value) and is_number(low) and is_number(high)):
        return False
    return low <= value <= high


def _matches(value: Any, operand: Any) -> bool:
    if not isinstance(operand, str):
        return False
    try:
        pattern = re.compile(operand)
    except re.error as e:
        logger.warning(f"Invalid regular expression in condition {operand!r}: {e}")
        return False
    subject = "" if value is None else str(value)
    return pattern.search(subject) is not None


def _not_matches(value: Any, operand: Any) -> bool:
    if not isinstance(operand, str):
        return False
    try:
        re.compile(operand)
    except re.error:
        return False
    return not _matches(value, operand)


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ConditionOperator.TRUE.value: lambda v, _: v is True,
    ConditionOperator.FALSE.value: lambda v, _: v is False,
    ConditionOperator.EMPTY.value: lambda v, _: _is_empty(v),
    ConditionOperator.NOT_EMPTY.value: lambda v, _: not _is_empty(v),
    ConditionOperator.NULL.value: lambda v, _: v is None,
    ConditionOperator.NOT_NULL.value: lambda v, _: v is not None,
    ConditionOperator.EQUAL.value: _strict_equal,
    ConditionOperator.NOT_EQUAL.value: lambda v, o: not _strict_equal(v, o),
    ConditionOperator.LESS_THAN.value: _less_than,
    ConditionOperator.GREATER_THAN.value: _greater_than,
    ConditionOperator.BETWEEN.value: _between,
    ConditionOperator.MATCHES.value: _matches,
    ConditionOperator.NOT_MATCHES.value: _not_matches,
}


def evaluate(condition: Condition, value: Any) -> bool:
    """
    Evaluate one condition against a field value.

    Args:
        condition: Condition with a (normalized) operator and operand
        value: Current value of the field the condition refers to

    Returns:
        True if the condition holds; False otherwise, including for
        unsupported operators and malformed operands.
    """
    handler = OPERATORS.get(normalize_operator(condition.when))
    if handler is None:
        logger.debug(f"Unsupported condition operator '{condition.when}' evaluates to False")
        return False
    try:
        return bool(handler(value, condition.value))
    except Exception as e:
        # Comparisons between exotic operand types must not escape the evaluator
        logger.debug(f"Condition '{condition.when}' failed on {value!r}: {e}")
        return False


def evaluate_conditions(
    conditions: Iterable[Condition],
    mode: ConditionMode,
    state: Mapping[str, Any],
    default_field: str | None = None,
) -> bool:
    """
    Evaluate a compound condition against the form state.

    Conditions without a `field` read the value of `default_field` (the field
    owning the declaration). Mode "all" stops at the first false condition,
    mode "any" at the first true one. An empty list is vacuously true.
    """
    conditions = list(conditions)
    if not conditions:
        return True

    def check(condition: Condition) -> bool:
        path = condition.field or default_field
        value = None if path is None else get_path(state, path, None)
        return evaluate(condition, value)

    if mode == "any":
        return any(check(condition) for condition in conditions)
    return all(check(condition) for condition in conditions)
