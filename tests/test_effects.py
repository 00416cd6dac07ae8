"""Tests for effect operators and operand resolution."""

import asyncio

import pytest

from formrules.engine.effects import apply_effect, coerce_flag, resolve_operand
from formrules.engine.exceptions import ExpressionError, RuleExecutionError
from formrules.engine.execution_context import ExecutionContext
from formrules.engine.schema import EFFECT_ADAPTER, FormSchema


def effect(**data):
    return EFFECT_ADAPTER.validate_python(data)


# ============================================================================
# Arithmetic
# ============================================================================


class TestArithmetic:
    @pytest.mark.parametrize(
        "op,operand,expected",
        [("add", 5, 15), ("subtract", 4, 6), ("multiply", 3, 30), ("divide", 4, 2.5)],
    )
    def test_operations(self, op, operand, expected):
        outcome = apply_effect(effect(type=op, targetField="amount", value=operand), {"amount": 10})
        assert outcome.values == {"amount": expected}

    def test_input_state_is_not_mutated(self):
        state = {"amount": 10}
        apply_effect(effect(type="add", targetField="amount", value=1), state)
        assert state == {"amount": 10}

    def test_absent_or_non_numeric_target_counts_as_zero(self):
        add = effect(type="add", targetField="amount", value=3)
        assert apply_effect(add, {}).values == {"amount": 3}
        assert apply_effect(add, {"amount": "abc"}).values == {"amount": 3}
        assert apply_effect(add, {"amount": None}).values == {"amount": 3}

    def test_numeric_strings_are_parsed(self):
        add = effect(type="add", targetField="amount", value="2.5")
        assert apply_effect(add, {"amount": "10"}).values == {"amount": 12.5}

    def test_divide_by_zero_raises(self):
        with pytest.raises(RuleExecutionError, match="Division by zero") as exc_info:
            apply_effect(effect(type="divide", targetField="amount", value=0), {"amount": 10})
        assert exc_info.value.target_field == "amount"

    def test_non_numeric_operand_raises(self):
        with pytest.raises(RuleExecutionError, match="not numeric"):
            apply_effect(effect(type="multiply", targetField="amount", value="x"), {"amount": 1})

    def test_arithmetic_cannot_target_attributes(self):
        with pytest.raises(ValueError, match="can only target prop 'value'"):
            effect(type="add", targetField="amount", prop="title", value=1)


# ============================================================================
# Replace
# ============================================================================


class TestReplace:
    def test_replace_value(self):
        outcome = apply_effect(effect(type="replace", targetField="status", value="ok"), {})
        assert outcome.values == {"status": "ok"}
        assert outcome.attributes == {}

    def test_replace_with_expression(self):
        replace = effect(type="replace", targetField="total", value="{{ quantity * price }}")
        outcome = apply_effect(replace, {"quantity": 5, "price": 10})
        assert outcome.values == {"total": 50}

    def test_kind_coercion(self):
        as_number = effect(type="replace", targetField="n", kind="number", value="42")
        as_string = effect(type="replace", targetField="s", kind="string", value=42)
        assert apply_effect(as_number, {}).values == {"n": 42}
        assert apply_effect(as_string, {}).values == {"s": "42"}

    def test_failed_number_coercion_raises(self):
        with pytest.raises(RuleExecutionError, match="Cannot coerce"):
            apply_effect(effect(type="replace", targetField="n", kind="number", value="x"), {})

    def test_attribute_effect_patches_overlay_only(self):
        read_only = effect(type="replace", targetField="total", prop="readOnly", value="false")
        outcome = apply_effect(read_only, {"total": 1})
        assert outcome.values == {}
        assert outcome.attributes == {"total": {"readOnly": False}}

    def test_prop_names_are_camel_cased(self):
        assert effect(type="replace", targetField="x", prop="read_only").prop == "readOnly"

    def test_nested_target_returns_whole_top_level_value(self):
        state = {"address": {"city": "Paris", "zip": "75001"}}
        outcome = apply_effect(
            effect(type="replace", targetField="address.city", value="Lyon"), state
        )
        assert outcome.values == {"address": {"city": "Lyon", "zip": "75001"}}
        assert state["address"]["city"] == "Paris"


# ============================================================================
# Concat
# ============================================================================


class TestConcat:
    def test_source_fields_with_separators(self):
        concat = effect(
            type="concat",
            targetField="fullName",
            sourceFields=[{"field": "first"}, {"field": "last", "charBefore": " "}],
        )
        outcome = apply_effect(concat, {"first": "Jane", "last": "Doe"})
        assert outcome.values == {"fullName": "Jane Doe"}

    def test_separator_after_source(self):
        concat = effect(
            type="concat",
            targetField="fullName",
            sourceFields=[{"field": "firstName", "charAfter": " "}, {"field": "lastName"}],
        )
        outcome = apply_effect(concat, {"firstName": "Jane", "lastName": "Doe"})
        assert outcome.values == {"fullName": "Jane Doe"}

    def test_source_field_shorthand(self):
        concat = effect(type="concat", targetField="code", sourceFields=["a", "b"])
        assert apply_effect(concat, {"a": "X", "b": "Y"}).values == {"code": "XY"}

    def test_numbers_are_summed_without_strict_string(self):
        concat = effect(type="concat", targetField="sum", sourceFields=["a", "b"])
        assert apply_effect(concat, {"a": 1, "b": 2}).values == {"sum": 3}

    def test_strict_string_joins_numbers(self):
        concat = effect(
            type="concat", targetField="sum", sourceFields=["a", "b"], strictString=True
        )
        assert apply_effect(concat, {"a": 1, "b": 2}).values == {"sum": "12"}

    def test_without_sources_appends_operand(self):
        concat = effect(type="concat", targetField="note", value="!")
        assert apply_effect(concat, {"note": "hi"}).values == {"note": "hi!"}
        assert apply_effect(concat, {}).values == {"note": "!"}

    def test_attribute_concat_reads_current_attribute(self):
        concat = effect(type="concat", targetField="price", prop="title", value=" (EUR)")
        outcome = apply_effect(concat, {}, attributes={"title": "Price"})
        assert outcome.attributes == {"price": {"title": "Price (EUR)"}}


# ============================================================================
# Targets and operands
# ============================================================================


class TestTargetsAndOperands:
    schema = FormSchema.model_validate(
        {
            "fields": [
                {"name": "a"},
                {"name": "address", "fields": [{"name": "city"}]},
                {
                    "name": "items",
                    "type": "array",
                    "fields": [{"name": "qty"}, {"name": "lineTotal"}],
                },
            ]
        }
    )

    def test_unknown_target_raises(self):
        with pytest.raises(RuleExecutionError, match="Unknown target field 'ghost'"):
            ghost = effect(type="replace", targetField="ghost", value=1)
            apply_effect(ghost, {}, schema=self.schema)

    def test_unknown_source_raises(self):
        concat = effect(type="concat", targetField="a", sourceFields=["ghost"])
        with pytest.raises(RuleExecutionError, match="Unknown source field"):
            apply_effect(concat, {}, schema=self.schema)

    def test_bare_name_resolves_to_nested_path(self):
        outcome = apply_effect(
            effect(type="replace", targetField="city", value="Lyon"),
            {"address": {"city": None}},
            schema=self.schema,
        )
        assert outcome.values == {"address": {"city": "Lyon"}}

    def test_bare_target_in_array_binds_to_changed_row(self):
        state = {"items": [{"qty": 1}, {"qty": 2}]}
        outcome = apply_effect(
            effect(type="replace", targetField="lineTotal", value=4),
            state,
            schema=self.schema,
            anchor="items.1.qty",
        )
        assert outcome.values == {"items": [{"qty": 1}, {"qty": 2, "lineTotal": 4}]}
        assert state == {"items": [{"qty": 1}, {"qty": 2}]}

    def test_sources_in_array_read_changed_row(self):
        concat = effect(
            type="concat", targetField="lineTotal", sourceFields=["qty"], strictString=True
        )
        outcome = apply_effect(
            concat, {"items": [{"qty": 1}, {"qty": 2}]}, schema=self.schema, anchor="items.1.qty"
        )
        assert outcome.values["items"][1]["lineTotal"] == "2"

    def test_array_target_without_row_cannot_be_written(self):
        replace = effect(type="replace", targetField="lineTotal", value=4)
        with pytest.raises(RuleExecutionError, match="Cannot write target field"):
            apply_effect(replace, {"items": [{"qty": 1}]}, schema=self.schema)

    @pytest.mark.asyncio
    async def test_callable_operand_receives_read_only_state(self):
        seen = {}

        def compute(state):
            seen["state"] = state
            return state["a"] + 1

        replace = effect(type="replace", targetField="a", value=compute)
        context = ExecutionContext.create({"a": 1})
        assert await resolve_operand(replace, context) == 2
        with pytest.raises(TypeError):
            seen["state"]["a"] = 5

    @pytest.mark.asyncio
    async def test_async_operand_is_awaited(self):
        async def fetch_rate(state):
            await asyncio.sleep(0)
            return 0.2

        replace = effect(type="replace", targetField="rate", value=fetch_rate)
        assert await resolve_operand(replace, ExecutionContext.create({})) == 0.2

    @pytest.mark.asyncio
    async def test_expression_operand_sees_trigger(self):
        template = "{{ trigger.field }}={{ trigger.value }}"
        replace = effect(type="replace", targetField="log", value=template)
        context = ExecutionContext.create({}, changed_field="qty", changed_value=3)
        assert await resolve_operand(replace, context) == "qty=3"

    @pytest.mark.asyncio
    async def test_expression_on_unknown_variable_raises(self):
        replace = effect(type="replace", targetField="a", value="{{ nope + 1 }}")
        with pytest.raises(ExpressionError):
            await resolve_operand(replace, ExecutionContext.create({}))

    def test_callable_operand_requires_resolution(self):
        replace = effect(type="replace", targetField="a", value=lambda state: 1)
        with pytest.raises(RuleExecutionError, match="resolve_operand"):
            apply_effect(replace, {})


def test_coerce_flag():
    assert coerce_flag("false") is False
    assert coerce_flag("0") is False
    assert coerce_flag("true") is True
    assert coerce_flag(1) is True
    assert coerce_flag(None) is False
