"""Shared test configuration for formrules tests.

Provides:
- Form documents used across tests (order totals, full name, nested subform)
- Started form handlers with a short execution timeout
- An error collector standing in for the on_error callback
"""

from collections.abc import AsyncIterator
from typing import Any

import pytest

from formrules import FormConfig, FormHandler, create_form
from formrules.engine.execution_context import ExecutionContext
from formrules.engine.schema import FormSchema

ORDER_FORM: dict[str, Any] = {
    "name": "order",
    "fields": [
        {"name": "quantity", "type": "number", "default": 0, "triggers": ["calcTotal"]},
        {"name": "price", "type": "number", "default": 10, "triggers": ["calcTotal"]},
        {"name": "subtotal", "type": "number", "readOnly": True},
        {"name": "tax", "type": "number", "readOnly": True},
        {"name": "total", "type": "number", "readOnly": True},
    ],
    "rules": [
        {
            "name": "calcTotal",
            "effects": [
                {"type": "replace", "targetField": "subtotal", "value": "{{ quantity * price }}"},
                {"type": "replace", "targetField": "tax", "value": "{{ subtotal * 0.08 }}"},
                {"type": "replace", "targetField": "total", "value": "{{ subtotal + tax }}"},
            ],
        }
    ],
}

NAME_FORM: dict[str, Any] = {
    "name": "person",
    "fields": [
        {"name": "first", "triggers": [{"ruleName": "buildName"}]},
        {"name": "last", "triggers": [{"ruleName": "buildName"}]},
        {"name": "fullName"},
    ],
    "rules": [
        {
            "name": "buildName",
            "effects": [
                {
                    "type": "concat",
                    "targetField": "fullName",
                    "strictString": True,
                    "sourceFields": [
                        {"field": "first"},
                        {"field": "last", "charBefore": " "},
                    ],
                }
            ],
        }
    ],
}

ADDRESS_FORM: dict[str, Any] = {
    "fields": [
        {
            "name": "address",
            "fields": [
                {"name": "street"},
                {"name": "city", "default": "Paris", "triggers": ["upperCity"]},
                {"name": "cityLabel"},
            ],
        },
        {
            "name": "items",
            "type": "array",
            "fields": [{"name": "qty", "type": "number", "min": 1}],
        },
    ],
    "rules": [
        {
            "name": "upperCity",
            "effects": [
                {
                    "type": "replace",
                    "targetField": "cityLabel",
                    "value": "{{ address.city | upper }}",
                }
            ],
        }
    ],
}


class ErrorCollector:
    """Callable on_error sink recording (error, context) pairs."""

    def __init__(self) -> None:
        self.calls: list[tuple[Exception, ExecutionContext]] = []

    def __call__(self, error: Exception, context: ExecutionContext) -> None:
        self.calls.append((error, context))

    @property
    def errors(self) -> list[Exception]:
        return [error for error, _ in self.calls]


@pytest.fixture
def config() -> FormConfig:
    """Deterministic configuration (ignores FORMRULES_* variables)."""
    return FormConfig(execution_timeout=5.0)


@pytest.fixture
def order_schema() -> FormSchema:
    return FormSchema.model_validate(ORDER_FORM)


@pytest.fixture
def error_collector() -> ErrorCollector:
    return ErrorCollector()


@pytest.fixture
async def order_form(
    order_schema: FormSchema, config: FormConfig, error_collector: ErrorCollector
) -> AsyncIterator[FormHandler]:
    """Started order form handler."""
    form = create_form(order_schema, config=config, on_error=error_collector)
    await form.start()
    yield form
    await form.close()


@pytest.fixture
async def name_form(config: FormConfig) -> AsyncIterator[FormHandler]:
    form = create_form(NAME_FORM, config=config)
    await form.start()
    yield form
    await form.close()
