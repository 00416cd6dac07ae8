"""Tests for condition evaluation."""

import pytest
from pydantic import ValidationError

from formrules.engine.conditions import evaluate, evaluate_conditions, normalize_operator
from formrules.engine.schema import Condition


def cond(when: str, value=None, field: str | None = None) -> Condition:
    return Condition(when=when, value=value, field=field)


# ============================================================================
# Operator normalization
# ============================================================================


class TestNormalizeOperator:
    @pytest.mark.parametrize(
        "spelling", ["not empty", "not-empty", "not_empty", "notEmpty", "NOT EMPTY", " not  empty "]
    )
    def test_spellings_normalize(self, spelling):
        assert normalize_operator(spelling) == "not empty"

    def test_condition_model_normalizes(self):
        assert cond("lessThan", 3).when == "less than"
        assert cond("greater-than", 3).when == "greater than"

    def test_unknown_operator_is_kept(self):
        assert cond("roughly", 3).when == "roughly"


# ============================================================================
# Single conditions
# ============================================================================


class TestEvaluate:
    def test_equal_is_type_sensitive(self):
        assert evaluate(cond("equal", 1), 1) is True
        assert evaluate(cond("equal", "1"), 1) is False
        assert evaluate(cond("equal", 1), True) is False
        assert evaluate(cond("equal", 1), 1.0) is True
        assert evaluate(cond("not equal", "1"), 1) is True

    def test_empty_only_matches_null_and_empty_string(self):
        assert evaluate(cond("empty"), None) is True
        assert evaluate(cond("empty"), "") is True
        for falsy in (0, False, []):
            assert evaluate(cond("empty"), falsy) is False
            assert evaluate(cond("not empty"), falsy) is True

    def test_null(self):
        assert evaluate(cond("null"), None) is True
        assert evaluate(cond("null"), "") is False
        assert evaluate(cond("not null"), 0) is True

    def test_true_false_are_identity_checks(self):
        assert evaluate(cond("true"), True) is True
        assert evaluate(cond("true"), 1) is False
        assert evaluate(cond("false"), False) is True
        assert evaluate(cond("false"), 0) is False

    def test_numeric_comparisons(self):
        assert evaluate(cond("less than", 10), 5) is True
        assert evaluate(cond("greater than", 10), 5) is False
        assert evaluate(cond("greater than", 1.5), 2) is True

    def test_comparisons_reject_non_numbers(self):
        assert evaluate(cond("less than", 10), "5") is False
        assert evaluate(cond("less than", "10"), 5) is False
        assert evaluate(cond("greater than", 0), True) is False
        assert evaluate(cond("less than", 10), None) is False

    def test_between_is_inclusive(self):
        assert evaluate(cond("between", [1, 10]), 1) is True
        assert evaluate(cond("between", [1, 10]), 10) is True
        assert evaluate(cond("between", [1, 10]), 11) is False

    @pytest.mark.parametrize("operand", [5, [1], [1, 2, 3], ["a", "z"], None])
    def test_between_malformed_operand_is_false(self, operand):
        assert evaluate(cond("between", operand), 3) is False

    def test_matches(self):
        assert evaluate(cond("matches", r"^\d{5}$"), "75001") is True
        assert evaluate(cond("matches", r"^\d{5}$"), 75001) is True
        assert evaluate(cond("matches", r"^\d{5}$"), "750") is False
        assert evaluate(cond("not matches", r"^\d{5}$"), "750") is True
        assert evaluate(cond("matches", "^$"), None) is True

    def test_invalid_pattern_is_rejected_at_load(self):
        with pytest.raises(ValidationError, match="Invalid regular expression"):
            cond("matches", "[unclosed")

    def test_invalid_pattern_fails_closed_at_evaluation(self):
        condition = Condition.model_construct(field=None, when="matches", value="[unclosed")
        assert evaluate(condition, "anything") is False
        condition = Condition.model_construct(field=None, when="not matches", value="(")
        assert evaluate(condition, "anything") is False

    def test_unknown_operator_fails_closed(self):
        assert evaluate(cond("roughly", 3), 3) is False


# ============================================================================
# Compound conditions
# ============================================================================


class TestEvaluateConditions:
    state = {"age": 20, "country": "FR", "email": ""}

    def test_empty_list_is_true(self):
        assert evaluate_conditions([], "all", self.state) is True
        assert evaluate_conditions([], "any", self.state) is True

    def test_all_mode(self):
        conditions = [
            cond("greater than", 18, field="age"),
            cond("equal", "FR", field="country"),
        ]
        assert evaluate_conditions(conditions, "all", self.state) is True
        conditions.append(cond("not empty", field="email"))
        assert evaluate_conditions(conditions, "all", self.state) is False

    def test_any_mode(self):
        conditions = [cond("not empty", field="email"), cond("equal", "FR", field="country")]
        assert evaluate_conditions(conditions, "any", self.state) is True
        conditions = [cond("not empty", field="email"), cond("less than", 18, field="age")]
        assert evaluate_conditions(conditions, "any", self.state) is False

    def test_default_field_is_used_without_field(self):
        assert evaluate_conditions([cond("equal", 20)], "all", self.state, "age") is True

    def test_missing_field_reads_as_none(self):
        assert evaluate_conditions([cond("null", field="nope")], "all", self.state) is True

    def test_nested_paths(self):
        state = {"address": {"city": "Lyon"}, "items": [{"qty": 3}]}
        assert evaluate_conditions([cond("equal", "Lyon", field="address.city")], "all", state)
        assert evaluate_conditions([cond("equal", 3, field="items.0.qty")], "all", state)
