"""
Per-field attribute overlay.

Attribute effects (prop other than "value") never mutate field definitions.
They patch this overlay instead, keyed by field path. The effective
attributes of a field merge three layers, later layers winning:

    1. static schema attributes (readOnly, hidden, required, title, extras)
    2. field conditions (hiddenWhen / readOnlyWhen) evaluated on the state
    3. the rule overlay

The overlay is presentation state: it is not part of form state and is not
recorded in undo history.
"""

import copy
import logging
from collections.abc import Mapping
from typing import Any

from .conditions import evaluate_conditions
from .paths import schema_path
from .schema import FieldDefinition, FormSchema

logger = logging.getLogger(__name__)


class AttributeOverlay:
    """Attribute patches produced by rules, keyed by field path."""

    def __init__(self) -> None:
        self._patches: dict[str, dict[str, Any]] = {}

    def patch(self, patches: Mapping[str, Mapping[str, Any]]) -> None:
        """Merge {field_path: {attribute: value}} patches."""
        for path, attributes in patches.items():
            self._patches.setdefault(path, {}).update(copy.deepcopy(dict(attributes)))
            logger.debug(f"Attribute overlay for '{path}': {attributes}")

    def get(self, path: str) -> dict[str, Any]:
        return copy.deepcopy(self._patches.get(path, {}))

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._patches)

    def clear(self, path: str | None = None) -> None:
        if path is None:
            self._patches.clear()
        else:
            self._patches.pop(path, None)

    def __len__(self) -> int:
        return len(self._patches)

    def resolve(
        self,
        field: FieldDefinition,
        path: str,
        state: Mapping[str, Any],
    ) -> dict[str, Any]:
        """
        Effective attributes of one field.

        Args:
            field: Field definition (static attributes and conditions)
            path: Field path; overlay entries are looked up by this path and
                by its index-free schema path
            state: Current form state for condition evaluation
        """
        attributes = field.static_attributes()

        conditions = field.conditions
        if conditions is not None:
            if conditions.hidden_when and evaluate_conditions(
                conditions.hidden_when, conditions.mode, state, default_field=path
            ):
                attributes["hidden"] = True
            if conditions.read_only_when and evaluate_conditions(
                conditions.read_only_when, conditions.mode, state, default_field=path
            ):
                attributes["readOnly"] = True

        generic = schema_path(path)
        if generic != path:
            attributes.update(copy.deepcopy(self._patches.get(generic, {})))
        attributes.update(copy.deepcopy(self._patches.get(path, {})))
        return attributes

    def resolve_all(
        self, schema: FormSchema, state: Mapping[str, Any]
    ) -> dict[str, dict[str, Any]]:
        """
        Effective attributes of every field, keyed by schema path.

        Overlay entries for specific array rows ("items.0.qty") are included
        under their indexed path.
        """
        resolved = {path: self.resolve(field, path, state) for path, field in schema.iter_fields()}
        for path in self._patches:
            if path in resolved:
                continue
            field = schema.find_field(path)
            if field is not None:
                resolved[path] = self.resolve(field, path, state)
        return resolved
