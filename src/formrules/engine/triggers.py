"""
Trigger resolution: which rules does a field change activate?

Pure query over the schema and the post-edit state; nothing is mutated.
"""

import logging
from collections.abc import Mapping
from typing import Any

from .conditions import evaluate_conditions
from .execution_context import ExecutionContext
from .schema import FormSchema, TriggerDefinition

logger = logging.getLogger(__name__)


def trigger_fires(
    trigger: TriggerDefinition, context: ExecutionContext, field_path: str
) -> bool:
    """
    Check a trigger's guard against the context state.

    Conditions without a `field` read the changed field. A trigger without
    conditions always fires.
    """
    return evaluate_conditions(
        trigger.condition_list, trigger.mode, context.state, default_field=field_path
    )


class TriggerResolver:
    """
    Resolve the rule names activated by a change, for one schema.

    Example:
        resolver = TriggerResolver(schema)
        rule_names = resolver.resolve("quantity", 5, state)
    """

    def __init__(self, schema: FormSchema):
        self.schema = schema

    def resolve(
        self,
        changed_field: str,
        new_value: Any,
        state: Mapping[str, Any],
        context: ExecutionContext | None = None,
    ) -> list[str]:
        """
        Rule names of the changed field's triggers whose conditions hold.

        Args:
            changed_field: Name or dotted path of the edited field
            new_value: New value of the field (already committed to `state`)
            state: Post-edit form state
            context: Context to evaluate against; built from `state` when omitted

        Returns:
            Rule names in trigger declaration order, duplicates collapsed.
            Empty when the field is unknown or declares no triggers.
        """
        field = self.schema.find_field(changed_field)
        if field is None:
            logger.debug(f"No field definition for '{changed_field}', no triggers")
            return []
        if not field.triggers:
            return []

        if context is None:
            context = ExecutionContext.create(state, changed_field, new_value)

        field_path = self.schema.resolve_path(changed_field) or changed_field
        matched = [
            trigger.rule_name
            for trigger in field.triggers
            if trigger_fires(trigger, context, field_path)
        ]
        rule_names = list(dict.fromkeys(matched))
        logger.debug(f"Field '{changed_field}' triggered rules: {rule_names}")
        return rule_names


def resolve_triggers(
    changed_field: str,
    new_value: Any,
    schema: FormSchema,
    state: Mapping[str, Any],
) -> list[str]:
    """Functional form of TriggerResolver.resolve()."""
    return TriggerResolver(schema).resolve(changed_field, new_value, state)
