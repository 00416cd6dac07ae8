"""
Effect operators: pure functions from (effect, state) to a partial update.

Each effect type has one operator, dispatched by effect class:

    ArithmeticEffect  add / subtract / multiply / divide on the target value
    ReplaceEffect     overwrite the target value or attribute
    ConcatEffect      join source fields, or the current value and the operand

Operators never mutate their input state. Value effects return a partial
state update ({top_level_key: new_value}); attribute effects (prop other
than "value") return an attribute patch ({field_path: {prop: value}}) for
the overlay and leave the state alone.
"""

import copy
import inspect
import logging
import operator
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .conditions import is_number
from .exceptions import RuleExecutionError
from .execution_context import ExecutionContext
from .expressions import ExpressionResolver, to_number
from .paths import MISSING, get_path, set_path
from .schema import (
    ATTRIBUTE_FLAGS,
    ArithmeticEffect,
    ConcatEffect,
    EffectBase,
    FormSchema,
    ReplaceEffect,
)

logger = logging.getLogger(__name__)

ARITHMETIC: dict[str, Callable[[Any, Any], Any]] = {
    "add": operator.add,
    "subtract": operator.sub,
    "multiply": operator.mul,
    "divide": operator.truediv,
}

PathResolver = Callable[[str], str | None]

_FALSE_STRINGS = frozenset({"", "false", "0", "no", "off"})


@dataclass
class EffectOutcome:
    """
    Partial update produced by one effect.

    Attributes:
        values: Partial state update keyed by top-level field name
        attributes: Attribute patches keyed by field path, then attribute name
    """

    values: dict[str, Any] = field(default_factory=dict)
    attributes: dict[str, dict[str, Any]] = field(default_factory=dict)


async def resolve_operand(effect: EffectBase, context: ExecutionContext) -> Any:
    """
    Resolve an effect's operand against the execution context.

    - Callables are invoked with a read-only copy of the state; awaitables are awaited
    - `{{ }}` strings go through the expression resolver
    - Anything else is returned as-is
    """
    value = effect.value
    if callable(value):
        snapshot = MappingProxyType(copy.deepcopy(dict(context.state)))
        result = value(snapshot)
        if inspect.isawaitable(result):
            result = await result
        return result
    resolver = ExpressionResolver(context.state, context.changed_field, context.changed_value)
    return resolver.resolve(value)


def coerce_kind(value: Any, kind: str | None) -> Any:
    """Apply the effect's `kind` coercion ("number", "string" or none)."""
    if kind == "number":
        number = to_number(value, None)
        if number is None:
            raise RuleExecutionError(f"Cannot coerce {value!r} to number")
        return number
    if kind == "string":
        return "" if value is None else str(value)
    return value


def coerce_flag(value: Any) -> bool:
    """Flag attributes are booleans; the string "false" means False."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def _arithmetic(
    effect: ArithmeticEffect,
    state: Mapping[str, Any],
    resolve: PathResolver,
    current: Any,
    operand: Any,
) -> Any:
    operand_number = to_number(operand, None)
    if operand_number is None:
        raise RuleExecutionError(f"Operand {operand!r} of '{effect.type}' is not numeric")
    if effect.type == "divide" and operand_number == 0:
        raise RuleExecutionError("Division by zero")
    return ARITHMETIC[effect.type](to_number(current, 0), operand_number)


def _replace(
    effect: ReplaceEffect,
    state: Mapping[str, Any],
    resolve: PathResolver,
    current: Any,
    operand: Any,
) -> Any:
    return operand


def _concat(
    effect: ConcatEffect,
    state: Mapping[str, Any],
    resolve: PathResolver,
    current: Any,
    operand: Any,
) -> Any:
    parts: list[Any] = []
    if effect.source_fields:
        for source in effect.source_fields:
            path = resolve(source.field)
            if path is None:
                raise RuleExecutionError(f"Unknown source field '{source.field}'")
            value = get_path(state, path, None)
            if source.char_before or source.char_after:
                text = "" if value is None else str(value)
                parts.append(f"{source.char_before}{text}{source.char_after}")
            elif value is not None:
                parts.append(value)
    else:
        parts = [part for part in (current, operand) if part is not None]

    if not effect.strict_string and parts and all(is_number(part) for part in parts):
        return sum(parts)
    return "".join(str(part) for part in parts)


OPERATORS: dict[type[EffectBase], Callable[..., Any]] = {
    ArithmeticEffect: _arithmetic,
    ReplaceEffect: _replace,
    ConcatEffect: _concat,
}


def path_resolver(schema: FormSchema | None, anchor: str | None = None) -> PathResolver:
    """Field reference -> state path, binding array indexes to `anchor`."""

    def resolve(name: str) -> str | None:
        if schema is None:
            return name
        return schema.resolve_target(name, anchor)

    return resolve


def apply_effect(
    effect: EffectBase,
    state: Mapping[str, Any],
    *,
    schema: FormSchema | None = None,
    operand: Any = MISSING,
    attributes: Mapping[str, Any] | None = None,
    anchor: str | None = None,
) -> EffectOutcome:
    """
    Compute the partial update of one effect.

    Args:
        effect: Effect definition
        state: Current (working) form state; never mutated
        schema: Form schema used to resolve target and source fields; without
            one, targets are taken as literal state paths
        operand: Resolved operand (see resolve_operand); defaults to the
            effect's value, with `{{ }}` expressions resolved against `state`
        attributes: Current effective attributes of the target field, read
            by attribute concat effects
        anchor: Changed field path; array rows it indexes scope bare targets

    Returns:
        EffectOutcome with either a value update or an attribute patch

    Raises:
        RuleExecutionError: Unknown target/source field, division by zero,
            non-numeric arithmetic operand or failed coercion
    """
    resolve = path_resolver(schema, anchor)
    path = resolve(effect.target_field)
    if path is None:
        raise RuleExecutionError(
            f"Unknown target field '{effect.target_field}'", target_field=effect.target_field
        )

    if operand is MISSING:
        if callable(effect.value):
            raise RuleExecutionError(
                "Callable operands must be resolved with resolve_operand() first",
                target_field=effect.target_field,
            )
        operand = ExpressionResolver(state).resolve(effect.value)

    handler = OPERATORS.get(type(effect))
    if handler is None:
        raise RuleExecutionError(f"Unsupported effect type: {type(effect).__name__}")

    try:
        if effect.is_attribute:
            current = (attributes or {}).get(effect.prop)
            result = coerce_kind(handler(effect, state, resolve, current, operand), effect.kind)
            if effect.prop in ATTRIBUTE_FLAGS:
                result = coerce_flag(result)
            return EffectOutcome(attributes={path: {effect.prop: result}})

        current = get_path(state, path, None)
        result = coerce_kind(handler(effect, state, resolve, current, operand), effect.kind)
        return EffectOutcome(values=set_path(state, path, result))
    except RuleExecutionError as e:
        raise e.with_context(target_field=effect.target_field)
    except KeyError as e:
        raise RuleExecutionError(
            f"Cannot write target field '{path}': {e}", target_field=effect.target_field
        ) from e
