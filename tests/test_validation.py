"""Tests for user-facing field validation."""

import pytest

from formrules.engine.schema import FieldDefinition, FormSchema
from formrules.engine.validation import validate_field, validate_form


def field(**data) -> FieldDefinition:
    return FieldDefinition.model_validate({"name": "age", **data})


class TestValidateField:
    def test_required(self):
        required = field(required=True)
        assert validate_field(required, None) == "age is required"
        assert validate_field(required, "") == "age is required"
        assert validate_field(required, 0) is None
        assert validate_field(field(), None) is None

    def test_numeric_limits(self):
        limited = field(type="number", min=18, max=99.5)
        assert validate_field(limited, 17) == "age must be at least 18"
        assert validate_field(limited, 100) == "age must be at most 99.5"
        assert validate_field(limited, 18) is None

    def test_lengths(self):
        limited = field(minLength=2, maxLength=3)
        assert validate_field(limited, "a") == "age must have at least 2 characters"
        assert validate_field(limited, [1, 2, 3, 4]) == "age must have at most 3 items"

    def test_pattern_must_match_whole_value(self):
        zip_code = field(name="zip", pattern=r"\d{5}")
        assert validate_field(zip_code, "75001") is None
        assert validate_field(zip_code, "75001x") == "zip has an invalid format"

    def test_invalid_pattern_is_rejected(self):
        with pytest.raises(ValueError):
            field(pattern="[unclosed")

    def test_custom_message_and_title(self):
        assert validate_field(field(title="Age", required=True), None) == "Age is required"
        custom = field(required=True, errorMessage="Tell us your age")
        assert validate_field(custom, None) == "Tell us your age"

    def test_hidden_fields_are_not_validated(self):
        required = field(required=True)
        assert validate_field(required, None, {"hidden": True, "required": True}) is None

    def test_rule_can_make_field_optional(self):
        required = field(required=True)
        assert validate_field(required, None, {"required": False}) is None


def test_validate_form_walks_containers():
    schema = FormSchema.model_validate(
        {
            "fields": [
                {"name": "email", "required": True},
                {"name": "address", "fields": [{"name": "zip", "pattern": r"\d{5}"}]},
                {"name": "items", "type": "array", "fields": [{"name": "qty", "min": 1}]},
            ]
        }
    )
    state = {
        "email": "",
        "address": {"zip": "abc"},
        "items": [{"qty": 1}, {"qty": 0}],
    }
    assert validate_form(schema, state) == {
        "email": "email is required",
        "address.zip": "zip has an invalid format",
        "items.1.qty": "qty must be at least 1",
    }
