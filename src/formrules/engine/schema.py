"""
Form schema with Pydantic v2 models.

This module defines the declarative form document:
- Field definitions (nested subforms and arrays, static attributes, validation limits)
- Field conditions (hiddenWhen / readOnlyWhen)
- Triggers that bind a field change to a named rule
- Rules made of ordered effects (arithmetic, replace, concat)
- Legacy field modifiers, compiled to rules + triggers at load time

Documents use camelCase keys (targetField, sourceFields, readOnlyWhen, ...);
the models also accept the snake_case attribute names.

The schema validates:
- Structure and types of every element
- Unique field names among siblings and unique rule names
- Regular expressions (field patterns and literal `matches` operands)
"""

import re
from collections.abc import Iterator
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .conditions import ConditionMode, ConditionOperator, normalize_operator
from .load_result import LoadResult
from .paths import schema_path, split_path

ATTRIBUTE_FLAGS = frozenset({"readOnly", "hidden", "required", "disabled"})


def normalize_prop(prop: str) -> str:
    """Attribute names are camelCase: "read_only" -> "readOnly"."""
    head, *rest = prop.strip().split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


class FormModel(BaseModel):
    """Base for structural models: camelCase aliases, unknown keys rejected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# =============================================================================
# Conditions
# =============================================================================


class Condition(FormModel):
    """
    Single predicate over one field value.

    Attributes:
        field: Field path the condition reads (defaults to the declaring field)
        when: Operator, normalized ("notEmpty" -> "not empty"); unknown operators fail closed
        value: Operand (comparison value, [min, max] for between, pattern for matches)
    """

    field: str | None = None
    when: str
    value: Any = None

    @field_validator("when", mode="before")
    @classmethod
    def normalize_when(cls, v: Any) -> Any:
        if isinstance(v, str):
            return normalize_operator(v)
        return v

    @model_validator(mode="after")
    def validate_pattern(self) -> "Condition":
        """Reject literal regular expressions that cannot compile."""
        regex_ops = {ConditionOperator.MATCHES.value, ConditionOperator.NOT_MATCHES.value}
        if self.when in regex_ops and isinstance(self.value, str):
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"Invalid regular expression {self.value!r}: {e}") from e
        return self


def _as_condition_list(v: Any) -> Any:
    if v is None:
        return []
    if isinstance(v, (dict, Condition)):
        return [v]
    return v


class ConditionalModel(FormModel):
    """Mixin for elements guarded by a single condition or a compound list."""

    condition: Condition | None = None
    conditions: list[Condition] = Field(default_factory=list)
    mode: ConditionMode = "all"

    @field_validator("conditions", mode="before")
    @classmethod
    def coerce_conditions(cls, v: Any) -> Any:
        return _as_condition_list(v)

    @property
    def condition_list(self) -> list[Condition]:
        """All guarding conditions, single condition first."""
        if self.condition is None:
            return list(self.conditions)
        return [self.condition, *self.conditions]


class FieldConditions(FormModel):
    """Conditional attributes of a field; an empty list never applies."""

    hidden_when: list[Condition] = Field(default_factory=list)
    read_only_when: list[Condition] = Field(default_factory=list)
    mode: ConditionMode = "all"

    @field_validator("hidden_when", "read_only_when", mode="before")
    @classmethod
    def coerce_lists(cls, v: Any) -> Any:
        return _as_condition_list(v)


# =============================================================================
# Effects
# =============================================================================


class EffectBase(FormModel):
    """
    Common effect keys.

    Attributes:
        target_field: Field name or dotted path the effect writes
        prop: "value" for value effects, otherwise an attribute (readOnly, hidden, title, ...)
        kind: Optional coercion of the result ("number" or "string")
        value: Operand: literal, `{{ expression }}` string, or (async) callable of the state
    """

    target_field: str = Field(min_length=1)
    prop: str = "value"
    kind: Literal["number", "string"] | None = None
    value: Any = None

    @field_validator("prop")
    @classmethod
    def normalize_prop_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prop must not be empty")
        return normalize_prop(v)

    @property
    def is_attribute(self) -> bool:
        return self.prop != "value"


class ArithmeticEffect(EffectBase):
    """Numeric operation between the target's current value and the operand."""

    type: Literal["add", "subtract", "multiply", "divide"]

    @model_validator(mode="after")
    def validate_value_prop(self) -> "ArithmeticEffect":
        if self.is_attribute:
            raise ValueError(f"Arithmetic effect '{self.type}' can only target prop 'value'")
        return self


class ReplaceEffect(EffectBase):
    """Overwrite the target value or attribute with the operand."""

    type: Literal["replace"]


class SourceField(FormModel):
    """One ordered concat source; wrapped as charBefore + value + charAfter."""

    field: str = Field(min_length=1)
    char_before: str = ""
    char_after: str = ""


class ConcatEffect(EffectBase):
    """Join source field values (or current value and operand) into the target."""

    type: Literal["concat"]
    source_fields: list[SourceField] = Field(default_factory=list)
    strict_string: bool = False

    @field_validator("source_fields", mode="before")
    @classmethod
    def normalize_source_fields(cls, v: Any) -> Any:
        """Accept bare field names: ["first", "last"] -> [{"field": "first"}, ...]."""
        if isinstance(v, list):
            return [{"field": item} if isinstance(item, str) else item for item in v]
        return v


EffectDefinition = Annotated[
    ArithmeticEffect | ReplaceEffect | ConcatEffect, Field(discriminator="type")
]
EFFECT_ADAPTER: TypeAdapter[ArithmeticEffect | ReplaceEffect | ConcatEffect] = TypeAdapter(
    EffectDefinition
)


# =============================================================================
# Rules and triggers
# =============================================================================


class RuleDefinition(ConditionalModel):
    """
    Named, ordered list of effects.

    Attributes:
        name: Unique rule identifier
        effects: Effects applied strictly in declared order (at least one)
        priority: Execution order inside one batch (lower runs first, ties keep trigger order)
        condition/conditions/mode: Optional guard evaluated against the state at execution time
    """

    name: str = Field(min_length=1)
    description: str | None = None
    priority: int = 0
    effects: list[EffectDefinition] = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Rule name must not be blank")
        return v.strip()


class TriggerDefinition(ConditionalModel):
    """Binds a field change to a rule, optionally guarded by conditions."""

    rule_name: str = Field(
        min_length=1,
        validation_alias=AliasChoices("ruleName", "rule", "rule_name"),
        serialization_alias="ruleName",
    )

    @model_validator(mode="before")
    @classmethod
    def normalize_shorthand(cls, data: Any) -> Any:
        """A bare string is a trigger without conditions."""
        if isinstance(data, str):
            return {"ruleName": data}
        return data


class LegacyModifier(ConditionalModel):
    """
    Field-level effect declared with the older modifier syntax.

    Compiled at load time into a RuleDefinition plus a TriggerDefinition on
    the declaring field (see modifiers.compile_modifiers).
    """

    type: Literal["add", "subtract", "multiply", "divide", "replace", "concat"]
    target_field: str | None = None
    prop: str = "value"
    kind: Literal["number", "string"] | None = None
    value: Any = None
    source_fields: list[SourceField] | None = None
    strict_string: bool | None = None


# =============================================================================
# Fields
# =============================================================================


def _validate_unique_names(fields: list["FieldDefinition"]) -> list["FieldDefinition"]:
    names = [f.name for f in fields]
    if len(names) != len(set(names)):
        duplicates = sorted({n for n in names if names.count(n) > 1})
        raise ValueError(f"Duplicate field names found: {duplicates}")
    return fields


class FieldDefinition(FormModel):
    """
    Declarative description of one form field.

    Unknown keys are kept (display metadata for the rendering layer) and
    exposed through `extras()`. A field with nested `fields` is a container:
    type "array" holds a list of items, anything else a mapping.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = Field(min_length=1)
    type: str = "text"
    title: str | None = None
    description: str | None = None
    default: Any = None
    required: bool = False
    read_only: bool = False
    hidden: bool = False
    minimum: float | None = Field(default=None, alias="min")
    maximum: float | None = Field(default=None, alias="max")
    min_length: int | None = Field(default=None, ge=0)
    max_length: int | None = Field(default=None, ge=0)
    pattern: str | None = None
    error_message: str | None = None
    conditions: FieldConditions | None = None
    triggers: list[TriggerDefinition] = Field(default_factory=list)
    modifiers: list[LegacyModifier] = Field(default_factory=list)
    fields: list["FieldDefinition"] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names are path segments: no dots, not purely numeric."""
        if "." in v:
            raise ValueError(f"Field name '{v}' must not contain '.'")
        if v.isdigit():
            raise ValueError(f"Field name '{v}' must not be numeric (reserved for array indexes)")
        return v

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid pattern {v!r}: {e}") from e
        return v

    @field_validator("fields")
    @classmethod
    def validate_unique_fields(cls, v: list["FieldDefinition"]) -> list["FieldDefinition"]:
        return _validate_unique_names(v)

    @property
    def is_container(self) -> bool:
        return bool(self.fields)

    @property
    def is_array(self) -> bool:
        return self.type == "array"

    def extras(self) -> dict[str, Any]:
        """Keys not modelled by the engine, as given in the document."""
        return dict(self.model_extra or {})

    def static_attributes(self) -> dict[str, Any]:
        """Attributes declared in the schema, before conditions and rule overlays."""
        attributes: dict[str, Any] = {
            "readOnly": self.read_only,
            "hidden": self.hidden,
            "required": self.required,
        }
        if self.title is not None:
            attributes["title"] = self.title
        if self.description is not None:
            attributes["description"] = self.description
        attributes.update(self.extras())
        return attributes

    def initial_value(self) -> Any:
        """Default value, building nested defaults for containers."""
        if self.default is not None or not self.is_container:
            return self.default
        if self.is_array:
            return []
        return {child.name: child.initial_value() for child in self.fields}


# =============================================================================
# Form
# =============================================================================


class FormSchema(FormModel):
    """
    Complete form document: fields plus named rules.

    Example:
        schema = FormSchema.model_validate(
            {
                "fields": [
                    {"name": "quantity", "triggers": [{"ruleName": "calcTotal"}]},
                    {"name": "price"},
                    {"name": "total"},
                ],
                "rules": [
                    {
                        "name": "calcTotal",
                        "effects": [
                            {"type": "replace", "targetField": "total",
                             "value": "{{ quantity * price }}"}
                        ],
                    }
                ],
            }
        )
    """

    name: str | None = None
    description: str | None = None
    fields: list[FieldDefinition] = Field(min_length=1)
    rules: list[RuleDefinition] = Field(default_factory=list)

    @field_validator("fields")
    @classmethod
    def validate_unique_fields(cls, v: list[FieldDefinition]) -> list[FieldDefinition]:
        return _validate_unique_names(v)

    @model_validator(mode="after")
    def compile_legacy_modifiers(self) -> "FormSchema":
        """Turn field modifiers into rules + triggers so one execution path remains."""
        from .modifiers import compile_modifiers

        compile_modifiers(self)
        return self

    @model_validator(mode="after")
    def validate_unique_rules(self) -> "FormSchema":
        names = [rule.name for rule in self.rules]
        if len(names) != len(set(names)):
            duplicates = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Duplicate rule names found: {duplicates}")
        return self

    def iter_fields(self) -> Iterator[tuple[str, FieldDefinition]]:
        """Depth-first (schema path, field) pairs in declaration order."""

        def walk(
            fields: list[FieldDefinition], prefix: str
        ) -> Iterator[tuple[str, FieldDefinition]]:
            for field in fields:
                path = f"{prefix}{field.name}"
                yield path, field
                yield from walk(field.fields, f"{path}.")

        yield from walk(self.fields, "")

    def find_field(self, name_or_path: str) -> FieldDefinition | None:
        """
        Locate a field by dotted path or by name.

        A dotted path ("address.city", "items.0.qty") is walked from the top;
        numeric segments are ignored. A bare name is matched against top-level
        fields first, then by recursive descent through subforms and arrays.
        """
        path = self.resolve_path(name_or_path)
        if path is None:
            return None
        fields = self.fields
        found: FieldDefinition | None = None
        for segment in schema_path(path).split("."):
            found = next((f for f in fields if f.name == segment), None)
            if found is None:
                return None
            fields = found.fields
        return found

    def resolve_path(self, name_or_path: str) -> str | None:
        """
        Resolve a target reference to the path used to address state.

        Dotted paths are returned unchanged when every named segment exists;
        bare names resolve to the schema path of the first matching field.
        """
        try:
            segments = split_path(name_or_path)
        except ValueError:
            return None
        if len(segments) > 1:
            fields = self.fields
            for segment in segments:
                if isinstance(segment, int):
                    continue
                field = next((f for f in fields if f.name == segment), None)
                if field is None:
                    return None
                fields = field.fields
            return name_or_path
        for path, field in self.iter_fields():
            if field.name == name_or_path:
                return path
        return None

    def resolve_target(self, name_or_path: str, anchor: str | None = None) -> str | None:
        """
        Resolve an effect target or source field to a writable state path.

        Array containers crossed without an index take the index they have
        in `anchor` (the changed field), so a rule triggered by
        "items.0.qty" that targets "lineTotal" writes "items.0.lineTotal".
        Paths that already carry indexes are returned as resolved.
        """
        path = self.resolve_path(name_or_path)
        if path is None or anchor is None:
            return path
        segments = split_path(path)
        if any(isinstance(segment, int) for segment in segments):
            return path
        try:
            anchor_segments = split_path(anchor)
        except ValueError:
            return path

        indexes: dict[tuple[str | int, ...], int] = {}
        names: list[str | int] = []
        for segment in anchor_segments:
            if isinstance(segment, int):
                indexes[tuple(names)] = segment
            else:
                names.append(segment)

        bound: list[str | int] = []
        fields = self.fields
        for position, segment in enumerate(segments):
            bound.append(segment)
            field = next((f for f in fields if f.name == segment), None)
            prefix = tuple(segments[: position + 1])
            if field is not None and field.is_array and position < len(segments) - 1:
                if prefix in indexes:
                    bound.append(indexes[prefix])
            fields = field.fields if field is not None else []
        return ".".join(str(segment) for segment in bound)

    def initial_values(self) -> dict[str, Any]:
        """Initial form state built from field defaults."""
        return {field.name: field.initial_value() for field in self.fields}

    def get_rule(self, name: str) -> RuleDefinition | None:
        return next((rule for rule in self.rules if rule.name == name), None)

    @staticmethod
    def validate_yaml_dict(data: dict[str, Any]) -> LoadResult["FormSchema"]:
        """
        Validate a loaded document against the schema.

        Returns:
            LoadResult.success(FormSchema) if valid
            LoadResult.failure(error_message) with the pydantic error report
        """
        try:
            return LoadResult.success(FormSchema.model_validate(data))
        except ValueError as e:
            error_msg = str(e)
            if "validation error" in error_msg.lower():
                return LoadResult.failure(f"Form validation failed:\n{error_msg}")
            return LoadResult.failure(f"Form validation failed: {error_msg}")


__all__ = [
    "ATTRIBUTE_FLAGS",
    "ArithmeticEffect",
    "ConcatEffect",
    "Condition",
    "ConditionalModel",
    "EFFECT_ADAPTER",
    "EffectDefinition",
    "FieldConditions",
    "FieldDefinition",
    "FormSchema",
    "LegacyModifier",
    "ReplaceEffect",
    "RuleDefinition",
    "SourceField",
    "TriggerDefinition",
    "normalize_prop",
]
