"""Compile legacy field modifiers into rules and triggers.

A modifier is an effect declared directly on a field, optionally guarded by
conditions. Each one becomes a single-effect RuleDefinition named
"<field path>#modifier-<n>" and a TriggerDefinition appended to the
declaring field, so modifiers run through the normal execution engine.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .schema import EFFECT_ADAPTER, LegacyModifier, RuleDefinition, TriggerDefinition

if TYPE_CHECKING:
    from .schema import FormSchema

logger = logging.getLogger(__name__)


def modifier_rule_name(field_path: str, index: int) -> str:
    return f"{field_path}#modifier-{index}"


def modifier_to_rule(modifier: LegacyModifier, field_path: str, index: int) -> RuleDefinition:
    """Build the rule for one modifier; the target defaults to the declaring field."""
    effect: dict[str, Any] = {
        "type": modifier.type,
        "target_field": modifier.target_field or field_path,
        "prop": modifier.prop,
        "kind": modifier.kind,
        "value": modifier.value,
    }
    if modifier.type == "concat":
        if modifier.source_fields is not None:
            effect["source_fields"] = modifier.source_fields
        if modifier.strict_string is not None:
            effect["strict_string"] = modifier.strict_string
    elif modifier.source_fields is not None or modifier.strict_string is not None:
        raise ValueError(
            f"Modifier {index} on '{field_path}': sourceFields/strictString "
            f"only apply to concat, not '{modifier.type}'"
        )

    return RuleDefinition(
        name=modifier_rule_name(field_path, index),
        description=f"Legacy modifier {index} of field '{field_path}'",
        effects=[EFFECT_ADAPTER.validate_python(effect)],
    )


def compile_modifiers(schema: FormSchema) -> int:
    """
    Move every field modifier into schema.rules with a matching trigger.

    The modifier's conditions become the trigger's conditions, evaluated
    against the declaring field like any other trigger.

    Returns:
        Number of modifiers compiled
    """
    compiled = 0
    for path, field in schema.iter_fields():
        if not field.modifiers:
            continue
        for index, modifier in enumerate(field.modifiers):
            rule = modifier_to_rule(modifier, path, index)
            schema.rules.append(rule)
            field.triggers.append(
                TriggerDefinition(
                    rule_name=rule.name,
                    condition=modifier.condition,
                    conditions=modifier.conditions,
                    mode=modifier.mode,
                )
            )
            compiled += 1
        field.modifiers = []
    if compiled:
        logger.debug(f"Compiled {compiled} legacy modifier(s) into rules")
    return compiled
