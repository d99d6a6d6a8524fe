import pytest

from assessment_configurator.schema import FieldType, ValidationRule, load_schema
from assessment_configurator.validation import (
    FormValidationEngine,
    FormValidationError,
    ValidationOutcome,
    ensure_valid_form_data,
    validate_form_data,
    validate_schema,
)


def registration_schema():
    return load_schema(
        {
            "id": "registration",
            "name": "Registration",
            "sections": [
                {
                    "id": "account",
                    "title": "Account",
                    "fields": [
                        {
                            "id": "email",
                            "label": "Email",
                            "field_type": "email",
                            "required": True,
                        },
                        {
                            "id": "age",
                            "label": "Age",
                            "field_type": {"type": "integer", "config": {"min": 13}},
                        },
                        {
                            "id": "country",
                            "label": "Country",
                            "field_type": "select",
                        },
                        {
                            "id": "state",
                            "label": "State",
                            "field_type": "text",
                            "required": True,
                            "visibility_conditions": {
                                "type": "equals",
                                "config": {"field": "country", "value": "US"},
                            },
                        },
                        {"id": "token", "label": "Token", "field_type": "hidden", "required": True},
                    ],
                },
                {
                    "id": "school",
                    "title": "School",
                    "visibility_conditions": {"type": "equals", "config": {"field": "role", "value": "student"}},
                    "fields": [{"id": "school_name", "label": "School", "field_type": "text", "required": True}],
                },
            ],
            "conditional_logic": [
                {
                    "id": "block-minors",
                    "target": "age",
                    "condition": {"type": "less_than", "config": {"field": "age", "value": 16}},
                    "action": {"ShowError": "Guardian consent required"},
                }
            ],
        }
    )


def test_valid_form_passes() -> None:
    results = validate_form_data(registration_schema(), {"email": "a@example.com", "age": 30, "country": "CA"})

    assert results.is_valid is True
    assert results.to_dict() == {"is_valid": True, "field_errors": {}, "global_errors": [], "warnings": []}


def test_hidden_fields_and_sections_are_skipped() -> None:
    results = validate_form_data(registration_schema(), {"email": "a@example.com", "country": "CA"})

    assert "state" not in results.field_errors
    assert "school_name" not in results.field_errors
    assert "token" not in results.field_errors


def test_visible_required_field_is_enforced() -> None:
    results = validate_form_data(registration_schema(), {"email": "a@example.com", "country": "US", "state": "  "})

    assert results.is_valid is False
    assert results.field_errors["state"] == ["This field is required"]


def test_show_error_action_becomes_field_error() -> None:
    results = validate_form_data(registration_schema(), {"email": "a@example.com", "age": 14})

    assert "Guardian consent required" in results.field_errors["age"]


def test_field_type_checks() -> None:
    results = validate_form_data(registration_schema(), {"email": "not-an-email", "age": 10.5})

    assert results.field_errors["email"] == ["Invalid value for field type: Invalid email format"]
    assert "Invalid value for field type: Expected integer value" in results.field_errors["age"]


@pytest.mark.parametrize(
    "rule, value, valid",
    [
        (ValidationRule("required"), "", False),
        (ValidationRule("min_length", {"length": 3}), "ab", False),
        (ValidationRule("max_length", {"length": 3}), "abc", True),
        (ValidationRule("pattern", {"pattern": r"^\d+$"}), "123", True),
        (ValidationRule("pattern", {"pattern": "("}), "123", False),
        (ValidationRule("min", {"value": 5}), 4, False),
        (ValidationRule("max", {"value": 5}), 5, True),
        (ValidationRule("min_length", {"length": "3"}), "abc", True),
        (ValidationRule("min_length", {"length": "three"}), "abc", False),
        (ValidationRule("min", {"value": [5]}), 4, False),
        (ValidationRule("email"), "a@b.co", True),
        (ValidationRule("url"), "https://example.com", True),
        (ValidationRule("url"), "example", False),
        (ValidationRule("custom", {"function_name": "password_strength"}), "Secr3t!pass", True),
        (ValidationRule("custom", {"function_name": "password_strength"}), "weak", False),
        (ValidationRule("custom", {"function_name": "credit_card"}), "4111 1111 1111 1111", True),
        (ValidationRule("custom", {"function_name": "missing"}), "x", False),
        (ValidationRule("cross_field", {"fields": ["a", "b"]}), "x", True),
    ],
)
def test_apply_validation_rule(rule, value, valid) -> None:
    outcome = FormValidationEngine().apply_validation_rule(rule, value, {})
    assert outcome.is_valid is valid


def test_custom_rule_message_overrides_validator_message() -> None:
    rule = ValidationRule("custom", {"function_name": "password_strength", "message": "Too weak"})
    outcome = FormValidationEngine().apply_validation_rule(rule, "weak", {})
    assert outcome.message == "Too weak"


def test_registered_validator_receives_parameters() -> None:
    seen = {}

    def divisible(value, context) -> ValidationOutcome:
        seen.update(context)
        return ValidationOutcome(is_valid=value % context["param_by"] == 0, message="Not divisible")

    engine = FormValidationEngine()
    engine.register_validator("divisible", divisible)
    rule = ValidationRule("custom", {"function_name": "divisible", "parameters": {"by": 3}})

    assert engine.apply_validation_rule(rule, 9, {"other": 1}).is_valid is True
    assert engine.apply_validation_rule(rule, 10, {"other": 1}).message == "Not divisible"
    assert seen["other"] == 1


@pytest.mark.parametrize(
    "field_type, value, error",
    [
        (FieldType("text", {"min_length": 2}), "a", "Text must be at least 2 characters"),
        (FieldType("text"), 12, "Expected text value"),
        (FieldType("number", {"max": 10}), 11, "Number must be at most 10"),
        (FieldType("number"), "12", "Expected numeric value"),
        (FieldType("integer"), True, "Expected integer value"),
        (FieldType("url"), "https://example.com/a", None),
        (FieldType("date"), "2024-02-30", "Invalid date format"),
        (FieldType("date", {"format": "%d/%m/%Y"}), "29/02/2024", None),
        (FieldType("number", {"min": "1", "max": 5}), 3, None),
        (FieldType("number", {"min": "one"}), 3, "Invalid min setting: expected a number"),
        (FieldType("text", {"max_length": [4]}), "abc", "Invalid max_length setting: expected a number"),
        (FieldType("rating"), "anything", None),
    ],
)
def test_validate_field_type(field_type, value, error) -> None:
    assert FormValidationEngine().validate_field_type(field_type, value) == error


def test_cross_field_validation_requires_all_fields() -> None:
    schema = load_schema(
        {
            "sections": [
                {"id": "s", "fields": [{"id": "start", "label": "Start"}, {"id": "end", "label": "End"}]}
            ],
            "global_validations": [
                {"id": "range", "name": "Range", "fields": ["start", "end"], "message": "Start and end are both needed"}
            ],
        }
    )

    assert validate_form_data(schema, {"start": "a"}).global_errors == ["Start and end are both needed"]
    assert validate_form_data(schema, {"start": "a", "end": "b"}).is_valid is True


def test_ensure_valid_form_data_raises_with_results() -> None:
    with pytest.raises(FormValidationError) as excinfo:
        ensure_valid_form_data(registration_schema(), {})

    assert excinfo.value.results.field_errors["email"] == ["This field is required"]


def test_validate_schema_reports_inert_references() -> None:
    schema = load_schema(
        {
            "sections": [
                {
                    "id": "s",
                    "visibility_conditions": {"type": "is_empty", "config": {"field": "ghost_section"}},
                    "fields": [
                        {"id": "a", "label": ""},
                        {
                            "id": "b",
                            "label": "B",
                            "field_type": {"type": "number", "config": {"min": 10, "max": 1}},
                            "visibility_conditions": {"type": "equals", "config": {"field": "ghost", "value": 1}},
                        },
                    ],
                }
            ],
            "conditional_logic": [
                {"id": "r1", "target": "missing", "condition": {"type": "and"}, "action": "Hide"},
            ],
            "global_validations": [{"id": "g", "name": "G", "fields": ["a", "nowhere"]}],
        }
    )

    report = validate_schema(schema)

    assert report.is_valid is False
    assert report.field_errors["a"] == ["Field label cannot be empty"]
    assert "Number field min cannot be greater than max" in report.field_errors["b"]
    assert "Visibility condition references unknown field: ghost" in report.field_errors["b"]
    assert "Section 's' visibility references unknown field: ghost_section" in report.global_errors
    assert "Conditional rule 'r1' target 'missing' does not exist" in report.global_errors
    assert "Cross-field validation 'g' references unknown field: nowhere" in report.global_errors
    assert report.warnings == ["Conditional rule 'r1' has an empty and/or group that never matches"]


def test_validate_schema_coerces_mixed_type_bounds() -> None:
    schema = load_schema(
        {
            "sections": [
                {
                    "id": "s",
                    "fields": [
                        {"id": "score", "label": "Score", "field_type": {"type": "number", "config": {"min": "1", "max": 5}}},
                        {"id": "grade", "label": "Grade", "field_type": {"type": "integer", "config": {"min": "9", "max": 5}}},
                        {"id": "count", "label": "Count", "field_type": {"type": "slider", "config": {"min": "abc", "max": 5}}},
                        {"id": "bio", "label": "Bio", "field_type": {"type": "text", "config": {"min_length": 2, "max_length": "x"}}},
                    ],
                }
            ]
        }
    )

    report = validate_schema(schema)

    assert "score" not in report.field_errors
    assert report.field_errors["grade"] == ["Number field min cannot be greater than max"]
    assert report.field_errors["count"] == ["Number field min must be a number"]
    assert report.field_errors["bio"] == ["Text field max_length must be a number"]
