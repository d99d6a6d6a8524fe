from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

from .conditions import And, ConditionalExpression, Not, Or
from .rules_engine import ConditionalEngine, get_dependencies, is_empty_value, to_number
from .schema import ConfigurationSchema, FieldDefinition, FieldType, ValidationRule

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PASSWORD_SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
SKIPPED_FIELD_TYPES = {"hidden", "display", "divider"}


class FormValidationError(ValueError):
    """Raised when submitted form data fails validation."""

    def __init__(self, results: ValidationResults) -> None:
        super().__init__("form validation failed")
        self.results = results


@dataclass(slots=True)
class ValidationOutcome:
    is_valid: bool
    message: str | None = None


@dataclass(slots=True)
class ValidationResults:
    is_valid: bool = True
    field_errors: dict[str, list[str]] = field(default_factory=dict)
    global_errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_field_error(self, field_id: str, error: str) -> None:
        self.is_valid = False
        self.field_errors.setdefault(field_id, []).append(error)

    def add_global_error(self, error: str) -> None:
        self.is_valid = False
        self.global_errors.append(error)

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "field_errors": {key: list(value) for key, value in self.field_errors.items()},
            "global_errors": list(self.global_errors),
            "warnings": list(self.warnings),
        }


CustomValidator = Callable[[Any, Mapping[str, Any]], ValidationOutcome]


def _password_strength(value: Any, _context: Mapping[str, Any]) -> ValidationOutcome:
    password = value if isinstance(value, str) else ""
    is_strong = (
        len(password) >= 8
        and any(char.isupper() for char in password)
        and any(char.islower() for char in password)
        and any(char.isdigit() for char in password)
        and any(char in PASSWORD_SPECIAL_CHARACTERS for char in password)
    )
    if is_strong:
        return ValidationOutcome(is_valid=True)
    return ValidationOutcome(
        is_valid=False,
        message="Password must be at least 8 characters with uppercase, lowercase, digit, and special character",
    )


def _credit_card(value: Any, _context: Mapping[str, Any]) -> ValidationOutcome:
    digits = (value if isinstance(value, str) else "").replace(" ", "").replace("-", "")
    if not 13 <= len(digits) <= 19:
        return ValidationOutcome(is_valid=False, message="Credit card number must be 13-19 digits")
    if not digits.isdigit():
        return ValidationOutcome(is_valid=False, message="Invalid credit card number")
    return ValidationOutcome(is_valid=True)


def _is_valid_url(text: str) -> bool:
    parsed = urlparse(text)
    return bool(parsed.scheme) and bool(parsed.netloc or parsed.path)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _number(value: Any) -> float | None:
    if isinstance(value, str):
        return None
    return to_number(value)


@dataclass(slots=True)
class FormValidationEngine:
    engine: ConditionalEngine = field(default_factory=ConditionalEngine)
    custom_validators: dict[str, CustomValidator] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.custom_validators.setdefault("password_strength", _password_strength)
        self.custom_validators.setdefault("credit_card", _credit_card)

    def register_validator(self, name: str, validator: CustomValidator) -> None:
        self.custom_validators[name] = validator

    def validate_form_data(self, schema: ConfigurationSchema, form_data: Mapping[str, Any]) -> ValidationResults:
        results = ValidationResults()
        field_states = self.engine.evaluate_form_conditions(schema, form_data)
        section_states = self.engine.evaluate_section_visibility(schema, form_data)

        for section in schema.sections:
            if not section_states.get(section.id, True):
                continue
            for definition in section.fields:
                if definition.field_type.kind in SKIPPED_FIELD_TYPES:
                    continue
                state = field_states[definition.id]
                if not state.is_visible:
                    continue
                if state.error_override:
                    results.add_field_error(definition.id, state.error_override)
                for error in self._validate_field(definition, form_data):
                    results.add_field_error(definition.id, error)

        for validation in schema.global_validations:
            missing = [field_id for field_id in validation.fields if field_id not in form_data]
            if missing:
                results.add_global_error(
                    validation.message or f"Required field '{missing[0]}' is missing for cross-field validation"
                )

        if not results.is_valid:
            logger.info(
                "form_validation_failed",
                extra={
                    "schema_id": schema.id,
                    "field_errors": sorted(results.field_errors),
                    "global_error_count": len(results.global_errors),
                },
            )
        return results

    def _validate_field(self, definition: FieldDefinition, form_data: Mapping[str, Any]) -> list[str]:
        value = form_data.get(definition.id)
        if is_empty_value(value):
            return ["This field is required"] if definition.required else []

        errors: list[str] = []
        for rule in definition.validations:
            outcome = self.apply_validation_rule(rule, value, form_data)
            if not outcome.is_valid:
                errors.append(outcome.message or "Validation failed")

        type_error = self.validate_field_type(definition.field_type, value)
        if type_error is not None:
            errors.append(f"Invalid value for field type: {type_error}")
        return errors

    def apply_validation_rule(self, rule: ValidationRule, value: Any, form_data: Mapping[str, Any]) -> ValidationOutcome:
        config = rule.config
        message = config.get("message")

        if rule.kind == "required":
            return ValidationOutcome(is_valid=not is_empty_value(value), message=message or "This field is required")

        if rule.kind in {"min_length", "max_length"}:
            length = to_number(config.get("length", 0))
            if length is None:
                return ValidationOutcome(is_valid=False, message=f"Invalid {rule.kind} setting: expected a number")
            if rule.kind == "max_length":
                return ValidationOutcome(
                    is_valid=len(_text(value)) <= length,
                    message=message or f"Maximum length is {length:g} characters",
                )
            return ValidationOutcome(
                is_valid=len(_text(value)) >= length,
                message=message or f"Minimum length is {length:g} characters",
            )

        if rule.kind == "pattern":
            try:
                compiled = re.compile(str(config.get("pattern", "")))
            except re.error as exc:
                return ValidationOutcome(is_valid=False, message=f"Invalid regex pattern: {exc}")
            return ValidationOutcome(
                is_valid=compiled.search(_text(value)) is not None,
                message=message or "Value does not match required pattern",
            )

        if rule.kind in {"min", "max"}:
            bound = to_number(config.get("value", 0))
            if bound is None:
                return ValidationOutcome(is_valid=False, message=f"Invalid {rule.kind} setting: expected a number")
            number = _number(value)
            actual = number if number is not None else 0.0
            if rule.kind == "min":
                return ValidationOutcome(is_valid=actual >= bound, message=message or f"Minimum value is {bound:g}")
            return ValidationOutcome(is_valid=actual <= bound, message=message or f"Maximum value is {bound:g}")

        if rule.kind == "email":
            return ValidationOutcome(
                is_valid=EMAIL_PATTERN.match(_text(value)) is not None,
                message=message or "Please enter a valid email address",
            )

        if rule.kind == "url":
            return ValidationOutcome(
                is_valid=_is_valid_url(_text(value)),
                message=message or "Please enter a valid URL",
            )

        if rule.kind == "custom":
            function_name = str(config.get("function_name", ""))
            validator = self.custom_validators.get(function_name)
            if validator is None:
                return ValidationOutcome(is_valid=False, message=f"Unknown validation function: {function_name}")
            context = {**form_data}
            for key, parameter in (config.get("parameters") or {}).items():
                context[f"param_{key}"] = parameter
            outcome = validator(value, context)
            return ValidationOutcome(is_valid=outcome.is_valid, message=message or outcome.message)

        # cross_field rules are checked at the schema level
        return ValidationOutcome(is_valid=True, message=message)

    def validate_field_type(self, field_type: FieldType, value: Any) -> str | None:
        config = field_type.config
        kind = field_type.kind
        for key in ("min_length", "max_length", "min", "max"):
            if config.get(key) is not None and to_number(config[key]) is None:
                return f"Invalid {key} setting: expected a number"

        if kind in {"text", "text_area"}:
            if not isinstance(value, str):
                return "Expected text value"
            min_length = config.get("min_length")
            max_length = config.get("max_length")
            if min_length is not None and len(value) < to_number(min_length):
                return f"Text must be at least {min_length} characters"
            if max_length is not None and len(value) > to_number(max_length):
                return f"Text must be at most {max_length} characters"
            pattern = config.get("pattern")
            if pattern:
                try:
                    if re.search(pattern, value) is None:
                        return "Text does not match required pattern"
                except re.error as exc:
                    return f"Invalid regex: {exc}"
            return None

        if kind == "number":
            number = _number(value)
            if number is None:
                return "Expected numeric value"
            if config.get("min") is not None and number < to_number(config["min"]):
                return f"Number must be at least {config['min']}"
            if config.get("max") is not None and number > to_number(config["max"]):
                return f"Number must be at most {config['max']}"
            return None

        if kind == "integer":
            if isinstance(value, bool) or not isinstance(value, int):
                return "Expected integer value"
            if config.get("min") is not None and value < to_number(config["min"]):
                return f"Integer must be at least {config['min']}"
            if config.get("max") is not None and value > to_number(config["max"]):
                return f"Integer must be at most {config['max']}"
            return None

        if kind == "email":
            if not isinstance(value, str):
                return "Expected email string"
            return None if EMAIL_PATTERN.match(value) else "Invalid email format"

        if kind == "url":
            if not isinstance(value, str):
                return "Expected URL string"
            return None if _is_valid_url(value) else "Invalid URL format"

        if kind == "date":
            if not isinstance(value, str):
                return "Expected date string"
            try:
                datetime.strptime(value, str(config.get("format") or "%Y-%m-%d"))
            except ValueError:
                return "Invalid date format"
            return None

        return None

    def validate_schema(self, schema: ConfigurationSchema) -> ValidationResults:
        """Report authoring problems that evaluation would otherwise treat as inert rules."""
        results = ValidationResults()
        known_fields = set(schema.field_ids())

        for definition in schema.iter_fields():
            if not definition.label.strip():
                results.add_field_error(definition.id, "Field label cannot be empty")
            config = definition.field_type.config
            if definition.field_type.kind in {"text", "text_area"}:
                bounds_error = _inverted_bounds(config, "min_length", "max_length")
                if bounds_error:
                    results.add_field_error(definition.id, f"Text field {bounds_error}")
            if definition.field_type.kind in {"number", "integer", "slider"}:
                bounds_error = _inverted_bounds(config, "min", "max")
                if bounds_error:
                    results.add_field_error(definition.id, f"Number field {bounds_error}")
            for unknown in _unknown_references(definition.visibility_conditions, known_fields):
                results.add_field_error(definition.id, f"Visibility condition references unknown field: {unknown}")

        for section in schema.sections:
            for unknown in _unknown_references(section.visibility_conditions, known_fields):
                results.add_global_error(f"Section '{section.id}' visibility references unknown field: {unknown}")

        for rule in schema.conditional_logic:
            if rule.target not in known_fields:
                results.add_global_error(f"Conditional rule '{rule.id}' target '{rule.target}' does not exist")
            for unknown in _unknown_references(rule.condition, known_fields):
                results.add_global_error(f"Conditional rule '{rule.id}' references unknown field: {unknown}")
            if _has_empty_group(rule.condition):
                results.add_warning(f"Conditional rule '{rule.id}' has an empty and/or group that never matches")

        for validation in schema.global_validations:
            for field_id in validation.fields:
                if field_id not in known_fields:
                    results.add_global_error(
                        f"Cross-field validation '{validation.id}' references unknown field: {field_id}"
                    )

        return results


def _inverted_bounds(config: Mapping[str, Any], low_key: str, high_key: str) -> str | None:
    raw_low, raw_high = config.get(low_key), config.get(high_key)
    for key, raw in ((low_key, raw_low), (high_key, raw_high)):
        if raw is not None and to_number(raw) is None:
            return f"{key} must be a number"
    if raw_low is None or raw_high is None:
        return None
    if to_number(raw_low) > to_number(raw_high):
        return f"{low_key} cannot be greater than {high_key}"
    return None


def _unknown_references(expression: ConditionalExpression | None, known_fields: set[str]) -> list[str]:
    if expression is None:
        return []
    return [field_id for field_id in get_dependencies(expression) if field_id not in known_fields]


def _has_empty_group(expression: ConditionalExpression | None) -> bool:
    if isinstance(expression, (And, Or)):
        return not expression.conditions or any(_has_empty_group(item) for item in expression.conditions)
    if isinstance(expression, Not):
        return _has_empty_group(expression.condition)
    return False


def validate_form_data(schema: ConfigurationSchema, form_data: Mapping[str, Any]) -> ValidationResults:
    return FormValidationEngine().validate_form_data(schema, form_data)


def validate_schema(schema: ConfigurationSchema) -> ValidationResults:
    return FormValidationEngine().validate_schema(schema)


def ensure_valid_form_data(
    schema: ConfigurationSchema,
    form_data: Mapping[str, Any],
    validator: FormValidationEngine | None = None,
) -> ValidationResults:
    results = (validator or FormValidationEngine()).validate_form_data(schema, form_data)
    if not results.is_valid:
        raise FormValidationError(results)
    return results
