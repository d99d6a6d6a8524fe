from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .conditions import (
    And,
    ClearValue,
    ConditionalAction,
    ConditionalExpression,
    Contains,
    Custom,
    Disable,
    Enable,
    Equals,
    FieldCount,
    GreaterEqual,
    GreaterThan,
    Hide,
    InList,
    IsEmpty,
    IsNotEmpty,
    LessEqual,
    LessThan,
    Not,
    NotEquals,
    NotInList,
    Or,
    Regex,
    SetOptions,
    SetValue,
    Show,
    ShowError,
    action_to_dict,
    expression_kind,
)
from .schema import ConfigurationSchema, FieldDefinition

logger = logging.getLogger(__name__)

CustomConditionHandler = Callable[[Custom, "EvaluationContext"], bool]

CUSTOM_CONDITIONS: dict[str, CustomConditionHandler] = {}

COMPARISON_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "equals": operator.eq,
    "greater_than": operator.gt,
    "less_than": operator.lt,
    "greater_equal": operator.ge,
    "less_equal": operator.le,
}


@dataclass(slots=True)
class ConditionalResult:
    field_id: str
    is_visible: bool = True
    is_enabled: bool = True
    value_override: Any = None
    value_overridden: bool = False
    options_override: list[Any] | None = None
    error_override: str | None = None
    applied_rules: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_id": self.field_id,
            "is_visible": self.is_visible,
            "is_enabled": self.is_enabled,
            "value_override": self.value_override,
            "value_overridden": self.value_overridden,
            "options_override": (
                [_option_payload(option) for option in self.options_override]
                if self.options_override is not None
                else None
            ),
            "error_override": self.error_override,
            "applied_rules": list(self.applied_rules),
        }


@dataclass(slots=True, frozen=True)
class EvaluationContext:
    """Read-only view handed to every condition: the form snapshot plus field metadata."""

    form_data: Mapping[str, Any]
    field_definitions: Mapping[str, FieldDefinition]
    current_field_id: str


@dataclass(slots=True)
class ConditionTraceResult:
    results: dict[str, ConditionalResult]
    steps: list[dict[str, Any]]


def register_custom_condition(name: str, handler: CustomConditionHandler) -> None:
    CUSTOM_CONDITIONS[name] = handler


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _parse_float(text: str) -> float | None:
    # float() tolerates surrounding whitespace and digit separators; form input must not
    if text != text.strip() or "_" in text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _structurally_equal(left: Any, right: Any) -> bool:
    if _is_bool(left) or _is_bool(right):
        return _is_bool(left) and _is_bool(right) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if _is_array(left) and _is_array(right):
        return len(left) == len(right) and all(
            _structurally_equal(a, b) for a, b in zip(left, right)
        )
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(_structurally_equal(left[key], right[key]) for key in left)
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return False


def _as_float(value: int | float) -> float | None:
    # JSON integers are unbounded; beyond the float range they cannot be compared
    try:
        return float(value)
    except OverflowError:
        return None


def values_equal(left: Any, right: Any) -> bool:
    if _is_bool(left) or _is_bool(right):
        return _is_bool(left) and _is_bool(right) and left == right
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and _is_number(right):
        parsed = _parse_float(left)
        return parsed is not None and parsed == _as_float(right)
    if _is_number(left) and isinstance(right, str):
        parsed = _parse_float(right)
        return parsed is not None and parsed == _as_float(left)
    if _is_array(left) and _is_array(right):
        return _structurally_equal(left, right)
    return False


def to_number(value: Any) -> float | None:
    if _is_number(value):
        return _as_float(value)
    if isinstance(value, str):
        return _parse_float(value)
    return None


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def value_contains(haystack: Any, needle: Any) -> bool:
    if isinstance(haystack, str) and isinstance(needle, str):
        return needle.lower() in haystack.lower()
    return False


def _option_payload(option: Any) -> Any:
    to_dict = getattr(option, "to_dict", None)
    return to_dict() if callable(to_dict) else option


@dataclass(slots=True)
class ConditionalEngine:
    """Evaluates declarative field rules against a form-data snapshot.

    The engine holds no per-call state, so one instance can serve concurrent
    evaluations. ``custom_handlers`` take precedence over the module registry.
    """

    custom_handlers: dict[str, CustomConditionHandler] = field(default_factory=dict)

    def evaluate_form_conditions(
        self,
        schema: ConfigurationSchema,
        form_data: Mapping[str, Any],
    ) -> dict[str, ConditionalResult]:
        return self._evaluate(schema, form_data, steps=None)

    def trace_form_conditions(
        self,
        schema: ConfigurationSchema,
        form_data: Mapping[str, Any],
    ) -> ConditionTraceResult:
        steps: list[dict[str, Any]] = []
        results = self._evaluate(schema, form_data, steps=steps)
        return ConditionTraceResult(results=results, steps=steps)

    def _evaluate(
        self,
        schema: ConfigurationSchema,
        form_data: Mapping[str, Any],
        steps: list[dict[str, Any]] | None,
    ) -> dict[str, ConditionalResult]:
        field_definitions = {item.id: item for item in schema.iter_fields()}
        results = {
            item.id: ConditionalResult(field_id=item.id, is_enabled=not item.display.disabled)
            for item in schema.iter_fields()
        }

        for rule in schema.conditional_logic:
            result = results.get(rule.target)
            if result is None:
                logger.debug("conditional_rule_target_missing", extra={"rule_id": rule.id, "target": rule.target})
                if steps is not None:
                    steps.append(
                        {
                            "phase": "rule",
                            "rule_id": rule.id,
                            "target": rule.target,
                            "status": "skipped",
                            "reason": "unknown_target",
                        }
                    )
                continue

            context = EvaluationContext(
                form_data=form_data,
                field_definitions=field_definitions,
                current_field_id=rule.target,
            )
            matched = self.evaluate_condition(rule.condition, context)
            if matched:
                apply_action(rule.action, result)
                result.applied_rules.append(rule.id)
                logger.debug(
                    "conditional_rule_applied",
                    extra={"rule_id": rule.id, "target": rule.target, "action": action_to_dict(rule.action)},
                )
            if steps is not None:
                steps.append(
                    {
                        "phase": "rule",
                        "rule_id": rule.id,
                        "target": rule.target,
                        "condition": expression_kind(rule.condition),
                        "matched": matched,
                        "action": action_to_dict(rule.action),
                        "status": "applied" if matched else "not_matched",
                    }
                )

        # runs after the rule list and can only hide
        for item in schema.iter_fields():
            if item.visibility_conditions is None:
                continue
            context = EvaluationContext(
                form_data=form_data,
                field_definitions=field_definitions,
                current_field_id=item.id,
            )
            visible = self.evaluate_condition(item.visibility_conditions, context)
            if not visible:
                results[item.id].is_visible = False
            if steps is not None:
                steps.append(
                    {
                        "phase": "visibility",
                        "field_id": item.id,
                        "condition": expression_kind(item.visibility_conditions),
                        "matched": visible,
                        "status": "not_matched" if not visible else "applied",
                    }
                )

        return results

    def evaluate_section_visibility(
        self,
        schema: ConfigurationSchema,
        form_data: Mapping[str, Any],
    ) -> dict[str, bool]:
        field_definitions = {item.id: item for item in schema.iter_fields()}
        visibility: dict[str, bool] = {}
        for section in schema.sections:
            if section.visibility_conditions is None:
                visibility[section.id] = True
                continue
            context = EvaluationContext(
                form_data=form_data,
                field_definitions=field_definitions,
                current_field_id=section.id,
            )
            visibility[section.id] = self.evaluate_condition(section.visibility_conditions, context)
        return visibility

    def evaluate_condition(self, expression: ConditionalExpression, context: EvaluationContext) -> bool:
        if isinstance(expression, Equals):
            return self._evaluate_equals(expression.field, expression.value, context)
        if isinstance(expression, NotEquals):
            return not self._evaluate_equals(expression.field, expression.value, context)
        if isinstance(expression, GreaterThan):
            return self._evaluate_comparison(expression.field, expression.value, context, operator.gt)
        if isinstance(expression, LessThan):
            return self._evaluate_comparison(expression.field, expression.value, context, operator.lt)
        if isinstance(expression, GreaterEqual):
            return self._evaluate_comparison(expression.field, expression.value, context, operator.ge)
        if isinstance(expression, LessEqual):
            return self._evaluate_comparison(expression.field, expression.value, context, operator.le)
        if isinstance(expression, Contains):
            if expression.field not in context.form_data:
                return False
            return value_contains(context.form_data[expression.field], expression.value)
        if isinstance(expression, Regex):
            return self._evaluate_regex(expression, context)
        if isinstance(expression, IsEmpty):
            return self._evaluate_empty(expression.field, context)
        if isinstance(expression, IsNotEmpty):
            return not self._evaluate_empty(expression.field, context)
        if isinstance(expression, InList):
            return self._evaluate_in_list(expression.field, expression.values, context)
        if isinstance(expression, NotInList):
            return not self._evaluate_in_list(expression.field, expression.values, context)
        if isinstance(expression, And):
            if not expression.conditions:
                return False
            return all(self.evaluate_condition(item, context) for item in expression.conditions)
        if isinstance(expression, Or):
            return any(self.evaluate_condition(item, context) for item in expression.conditions)
        if isinstance(expression, Not):
            if expression.condition is None:
                return True
            return not self.evaluate_condition(expression.condition, context)
        if isinstance(expression, FieldCount):
            return self._evaluate_field_count(expression, context)
        if isinstance(expression, Custom):
            return self._evaluate_custom(expression, context)

        logger.warning(
            "unknown_condition_type",
            extra={"condition_type": type(expression).__name__, "field_id": context.current_field_id},
        )
        return False

    def _evaluate_equals(self, field_id: str, expected: Any, context: EvaluationContext) -> bool:
        if field_id not in context.form_data:
            return False
        return values_equal(context.form_data[field_id], expected)

    def _evaluate_comparison(
        self,
        field_id: str,
        expected: Any,
        context: EvaluationContext,
        comparator: Callable[[float, float], bool],
    ) -> bool:
        if field_id not in context.form_data:
            return False
        actual = to_number(context.form_data[field_id])
        bound = to_number(expected)
        if actual is None or bound is None:
            return False
        return comparator(actual, bound)

    def _evaluate_regex(self, expression: Regex, context: EvaluationContext) -> bool:
        text = context.form_data.get(expression.field)
        if not isinstance(text, str):
            return False
        try:
            compiled = re.compile(expression.pattern)
        except re.error as exc:
            logger.warning(
                "invalid_condition_pattern",
                extra={"pattern": expression.pattern, "field": expression.field, "error": str(exc)},
            )
            return False
        return compiled.search(text) is not None

    def _evaluate_empty(self, field_id: str, context: EvaluationContext) -> bool:
        if field_id not in context.form_data:
            return True
        return is_empty_value(context.form_data[field_id])

    def _evaluate_in_list(self, field_id: str, values: tuple[Any, ...], context: EvaluationContext) -> bool:
        if field_id not in context.form_data:
            return False
        actual = context.form_data[field_id]
        return any(values_equal(actual, candidate) for candidate in values)

    def _evaluate_field_count(self, expression: FieldCount, context: EvaluationContext) -> bool:
        comparator = COMPARISON_OPERATORS.get(expression.operator)
        if comparator is None:
            logger.warning("unknown_field_count_operator", extra={"operator": expression.operator})
            return False
        count = sum(
            1
            for key, value in context.form_data.items()
            if key.startswith(expression.field_pattern) and not is_empty_value(value)
        )
        return comparator(count, expression.count)

    def _evaluate_custom(self, expression: Custom, context: EvaluationContext) -> bool:
        handler = self.custom_handlers.get(expression.name) or CUSTOM_CONDITIONS.get(expression.name)
        if handler is None:
            logger.debug("custom_condition_unhandled", extra={"name": expression.name})
            return False
        try:
            return bool(handler(expression, context))
        except Exception:
            logger.exception(
                "custom_condition_failed",
                extra={"name": expression.name, "field_id": context.current_field_id},
            )
            return False

    def get_dependencies(self, expression: ConditionalExpression) -> list[str]:
        dependencies: set[str] = set()
        _collect_dependencies(expression, dependencies)
        return sorted(dependencies)

    def schema_dependencies(self, schema: ConfigurationSchema) -> dict[str, list[str]]:
        """Map each referenced field to the fields whose state it can change."""
        affected: dict[str, set[str]] = {}
        for rule in schema.conditional_logic:
            for dependency in self.get_dependencies(rule.condition):
                affected.setdefault(dependency, set()).add(rule.target)
        for item in schema.iter_fields():
            if item.visibility_conditions is None:
                continue
            for dependency in self.get_dependencies(item.visibility_conditions):
                affected.setdefault(dependency, set()).add(item.id)
        return {key: sorted(targets) for key, targets in sorted(affected.items())}


def _collect_dependencies(expression: ConditionalExpression | None, dependencies: set[str]) -> None:
    if expression is None:
        return
    if isinstance(expression, (And, Or)):
        for item in expression.conditions:
            _collect_dependencies(item, dependencies)
        return
    if isinstance(expression, Not):
        _collect_dependencies(expression.condition, dependencies)
        return
    # field_count matches by prefix and custom conditions are opaque
    referenced = getattr(expression, "field", None)
    if isinstance(referenced, str):
        dependencies.add(referenced)


def apply_action(action: ConditionalAction, result: ConditionalResult) -> None:
    if isinstance(action, Show):
        result.is_visible = True
    elif isinstance(action, Hide):
        result.is_visible = False
    elif isinstance(action, Enable):
        result.is_enabled = True
    elif isinstance(action, Disable):
        result.is_enabled = False
    elif isinstance(action, SetValue):
        result.value_override = action.value
        result.value_overridden = True
    elif isinstance(action, ClearValue):
        result.value_override = None
        result.value_overridden = True
    elif isinstance(action, ShowError):
        result.error_override = action.message
    elif isinstance(action, SetOptions):
        result.options_override = list(action.options)


def evaluate_form_conditions(
    schema: ConfigurationSchema,
    form_data: Mapping[str, Any],
) -> dict[str, ConditionalResult]:
    engine = ConditionalEngine()
    return engine.evaluate_form_conditions(schema, form_data)


def trace_form_conditions(
    schema: ConfigurationSchema,
    form_data: Mapping[str, Any],
) -> ConditionTraceResult:
    engine = ConditionalEngine()
    return engine.trace_form_conditions(schema, form_data)


def get_dependencies(expression: ConditionalExpression) -> list[str]:
    return ConditionalEngine().get_dependencies(expression)
