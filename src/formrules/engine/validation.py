"""
User-facing field validation.

Produces per-field error strings for the rendering layer. These are
distinct from engine errors: a failing validation never stops rule
execution and is not reported through the error channel.
"""

import re
from collections.abc import Callable, Mapping
from typing import Any

from .conditions import is_number
from .paths import get_path
from .schema import FieldDefinition, FormSchema

AttributesFor = Callable[[FieldDefinition, str], Mapping[str, Any]]


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == []


def validate_field(
    field: FieldDefinition,
    value: Any,
    attributes: Mapping[str, Any] | None = None,
) -> str | None:
    """
    Validate one value against its field definition.

    Args:
        field: Field definition with the declared limits
        value: Current value
        attributes: Effective attributes (hidden/required may be changed by rules)

    Returns:
        Error message, or None when the value is valid
    """
    attributes = attributes if attributes is not None else field.static_attributes()
    if attributes.get("hidden"):
        return None

    label = attributes.get("title") or field.title or field.name
    error = _check(field, value, bool(attributes.get("required")), label)
    if error is not None and field.error_message:
        return field.error_message
    return error


def _check(field: FieldDefinition, value: Any, required: bool, label: str) -> str | None:
    if _is_blank(value):
        return f"{label} is required" if required else None

    if is_number(value):
        if field.minimum is not None and value < field.minimum:
            return f"{label} must be at least {_format_limit(field.minimum)}"
        if field.maximum is not None and value > field.maximum:
            return f"{label} must be at most {_format_limit(field.maximum)}"

    if isinstance(value, (str, list)):
        unit = "characters" if isinstance(value, str) else "items"
        if field.min_length is not None and len(value) < field.min_length:
            return f"{label} must have at least {field.min_length} {unit}"
        if field.max_length is not None and len(value) > field.max_length:
            return f"{label} must have at most {field.max_length} {unit}"

    if field.pattern is not None and isinstance(value, str):
        if re.fullmatch(field.pattern, value) is None:
            return f"{label} has an invalid format"

    return None


def _format_limit(limit: float) -> str:
    return str(int(limit)) if float(limit).is_integer() else str(limit)


def validate_form(
    schema: FormSchema,
    state: Mapping[str, Any],
    attributes_for: AttributesFor | None = None,
) -> dict[str, str]:
    """
    Validate every field of the form.

    Mapping containers validate their children by dotted path; array
    containers validate each item's children ("items.0.qty").

    Returns:
        {field_path: error_message} for invalid fields only
    """
    errors: dict[str, str] = {}

    def walk(fields: list[FieldDefinition], prefix: str) -> None:
        for field in fields:
            path = f"{prefix}{field.name}"
            attributes = attributes_for(field, path) if attributes_for else None
            if attributes is not None and attributes.get("hidden"):
                continue
            value = get_path(state, path, None)
            if field.is_container:
                if field.is_array:
                    for index in range(len(value) if isinstance(value, list) else 0):
                        walk(field.fields, f"{path}.{index}.")
                else:
                    walk(field.fields, f"{path}.")
            error = validate_field(field, value, attributes)
            if error is not None:
                errors[path] = error

    walk(schema.fields, "")
    return errors
