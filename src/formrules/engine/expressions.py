"""
Jinja2 expression resolution for effect operands.

Operands may reference the form state with `{{ }}` markers:

    "{{ quantity * price }}"          single expression, type preserved (50)
    "{{ first }} {{ last }}"          template, always a string ("Jane Doe")
    "Total: {{ total | round(2) }}"   template with filters

Single expressions are compiled with `compile_expression` so numbers stay
numbers; anything else is rendered as a template. Evaluation runs in a
sandboxed environment with StrictUndefined, so a reference to an unknown
field fails loudly instead of rendering as an empty string.
"""

import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from .exceptions import ExpressionError

_SINGLE_EXPRESSION = re.compile(r"^\s*\{\{(?P<inner>(?:(?!\{\{|\}\}).)*)\}\}\s*$", re.DOTALL)
_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*$")


def to_number(value: Any, default: Any = 0) -> Any:
    """
    Coerce a value to int/float.

    Numbers pass through (bool does not count), numeric strings are parsed,
    everything else returns `default`.
    """
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return default
    return default


def has_expression(value: Any) -> bool:
    return isinstance(value, str) and "{{" in value and "}}" in value


class ExpressionResolver:
    """
    Resolve `{{ }}` operands against a form state snapshot.

    The Jinja2 context exposes every top-level state key that is a valid
    identifier as a variable, the whole state as `state`, and the change
    that started the cycle as `trigger` ({"field": ..., "value": ...}).

    Example:
        resolver = ExpressionResolver({"quantity": 5, "price": 10})
        resolver.resolve("{{ quantity * price }}")   # 50
    """

    def __init__(
        self,
        state: Mapping[str, Any],
        changed_field: str | None = None,
        changed_value: Any = None,
    ):
        self.env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
        )
        self._register_extensions()
        self.context = self._build_context(state, changed_field, changed_value)

    def _register_extensions(self) -> None:
        """Register custom filters and functions in Jinja2 environment."""
        self.env.filters.update(
            {
                "number": to_number,
            }
        )
        self.env.globals.update(
            {
                "now": lambda: datetime.now(UTC).isoformat(),
                "len": len,
                "int": int,
                "float": float,
                "str": str,
                "bool": bool,
                "min": min,
                "max": max,
                "abs": abs,
                "round": round,
                "sum": sum,
                "number": to_number,
                "get": self._get,
            }
        )

    @staticmethod
    def _get(obj: Any, key: int | str, default: Any = None) -> Any:
        """Safe accessor for dicts and lists; returns default when absent."""
        try:
            if isinstance(obj, (list, tuple)):
                return obj[int(key)]
            if isinstance(obj, Mapping):
                return obj.get(key, default)
        except (IndexError, ValueError, TypeError):
            return default
        return default

    @staticmethod
    def _build_context(
        state: Mapping[str, Any], changed_field: str | None, changed_value: Any
    ) -> dict[str, Any]:
        context: dict[str, Any] = {
            key: value
            for key, value in state.items()
            if isinstance(key, str) and _IDENTIFIER.match(key)
        }
        context["state"] = dict(state)
        context["trigger"] = {"field": changed_field, "value": changed_value}
        return context

    def resolve(self, value: Any) -> Any:
        """
        Resolve an operand.

        Non-string values and strings without markers are returned unchanged.

        Raises:
            ExpressionError: If the expression cannot be compiled or evaluated
        """
        if not has_expression(value):
            return value
        match = _SINGLE_EXPRESSION.match(value)
        if match:
            return self._evaluate_expression(match.group("inner").strip())
        return self._evaluate_template(value)

    def _evaluate_expression(self, inner: str) -> Any:
        try:
            compiled = self.env.compile_expression(inner, undefined_to_none=False)
            result = compiled(**self.context)
        except Exception as e:
            raise ExpressionError(inner, str(e), sorted(self.context)) from e
        if isinstance(result, StrictUndefined):
            raise ExpressionError(inner, "expression is undefined", sorted(self.context))
        return result

    def _evaluate_template(self, template_str: str) -> str:
        try:
            template = self.env.from_string(template_str)
            return template.render(**self.context)
        except Exception as e:
            raise ExpressionError(template_str, str(e)) from e
