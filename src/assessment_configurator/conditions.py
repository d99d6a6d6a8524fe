from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Union

FIELD_COUNT_OPERATORS = {"equals", "greater_than", "less_than", "greater_equal", "less_equal"}

KIND_ALIASES = {
    "matches": "regex",
    "in": "in_list",
    "not_in": "not_in_list",
}

ACTION_ALIASES = {
    "show": "Show",
    "hide": "Hide",
    "enable": "Enable",
    "disable": "Disable",
    "set_value": "SetValue",
    "clear_value": "ClearValue",
    "show_error": "ShowError",
    "set_options": "SetOptions",
}


class ConditionParseError(ValueError):
    """Raised when a serialized condition or action has an invalid shape."""


@dataclass(slots=True, frozen=True)
class Equals:
    field: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class NotEquals:
    field: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class GreaterThan:
    field: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class LessThan:
    field: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class GreaterEqual:
    field: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class LessEqual:
    field: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class Contains:
    field: str
    value: Any = None


@dataclass(slots=True, frozen=True)
class Regex:
    field: str
    pattern: str


@dataclass(slots=True, frozen=True)
class IsEmpty:
    field: str


@dataclass(slots=True, frozen=True)
class IsNotEmpty:
    field: str


@dataclass(slots=True, frozen=True)
class InList:
    field: str
    values: tuple[Any, ...] = ()


@dataclass(slots=True, frozen=True)
class NotInList:
    field: str
    values: tuple[Any, ...] = ()


@dataclass(slots=True, frozen=True)
class And:
    conditions: tuple[ConditionalExpression, ...] = ()


@dataclass(slots=True, frozen=True)
class Or:
    conditions: tuple[ConditionalExpression, ...] = ()


@dataclass(slots=True, frozen=True)
class Not:
    condition: ConditionalExpression | None = None


@dataclass(slots=True, frozen=True)
class FieldCount:
    field_pattern: str
    count: int
    operator: str = "equals"


@dataclass(slots=True, frozen=True)
class Custom:
    """Extension point evaluated by a registered handler looked up by ``name``."""

    name: str
    params: dict[str, Any] = dataclass_field(default_factory=dict, hash=False, compare=False)


ConditionalExpression = Union[
    Equals,
    NotEquals,
    GreaterThan,
    LessThan,
    GreaterEqual,
    LessEqual,
    Contains,
    Regex,
    IsEmpty,
    IsNotEmpty,
    InList,
    NotInList,
    And,
    Or,
    Not,
    FieldCount,
    Custom,
]

# kinds whose payload is exactly {"field": ..., "value": ...}
_FIELD_VALUE_KINDS: dict[str, type] = {
    "equals": Equals,
    "not_equals": NotEquals,
    "greater_than": GreaterThan,
    "less_than": LessThan,
    "greater_equal": GreaterEqual,
    "less_equal": LessEqual,
    "contains": Contains,
}

_FIELD_ONLY_KINDS: dict[str, type] = {
    "is_empty": IsEmpty,
    "is_not_empty": IsNotEmpty,
}

_FIELD_LIST_KINDS: dict[str, type] = {
    "in_list": InList,
    "not_in_list": NotInList,
}

_KIND_BY_CLASS: dict[type, str] = {
    **{cls: kind for kind, cls in _FIELD_VALUE_KINDS.items()},
    **{cls: kind for kind, cls in _FIELD_ONLY_KINDS.items()},
    **{cls: kind for kind, cls in _FIELD_LIST_KINDS.items()},
    Regex: "regex",
    And: "and",
    Or: "or",
    Not: "not",
    FieldCount: "field_count",
    Custom: "custom",
}

EXPRESSION_KINDS = frozenset(_KIND_BY_CLASS.values())


@dataclass(slots=True, frozen=True)
class Show:
    pass


@dataclass(slots=True, frozen=True)
class Hide:
    pass


@dataclass(slots=True, frozen=True)
class Enable:
    pass


@dataclass(slots=True, frozen=True)
class Disable:
    pass


@dataclass(slots=True, frozen=True)
class SetValue:
    value: Any = None


@dataclass(slots=True, frozen=True)
class ClearValue:
    pass


@dataclass(slots=True, frozen=True)
class ShowError:
    message: str


@dataclass(slots=True, frozen=True)
class SetOptions:
    options: tuple[Any, ...] = ()


ConditionalAction = Union[Show, Hide, Enable, Disable, SetValue, ClearValue, ShowError, SetOptions]

_BARE_ACTIONS: dict[str, type] = {
    "Show": Show,
    "Hide": Hide,
    "Enable": Enable,
    "Disable": Disable,
    "ClearValue": ClearValue,
}

_ACTION_NAME_BY_CLASS: dict[type, str] = {
    **{cls: name for name, cls in _BARE_ACTIONS.items()},
    SetValue: "SetValue",
    ShowError: "ShowError",
    SetOptions: "SetOptions",
}


def expression_kind(expression: ConditionalExpression) -> str:
    return _KIND_BY_CLASS.get(type(expression), type(expression).__name__)


def _require_field(kind: str, config: dict[str, Any]) -> str:
    value = config.get("field")
    if not isinstance(value, str) or not value.strip():
        raise ConditionParseError(f"'{kind}' condition requires a non-empty 'field'")
    return value


def _nested_list(kind: str, config: dict[str, Any]) -> tuple[ConditionalExpression, ...]:
    raw = config.get("conditions", config.get("expressions"))
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConditionParseError(f"'{kind}' condition expects 'conditions' to be a list")
    return tuple(parse_condition(item) for item in raw)


def parse_condition(payload: Any) -> ConditionalExpression:
    if not isinstance(payload, dict):
        raise ConditionParseError("condition must be an object with 'type' and 'config'")

    raw_kind = str(payload.get("type") or "").strip()
    kind = KIND_ALIASES.get(raw_kind, raw_kind)
    if kind not in EXPRESSION_KINDS:
        raise ConditionParseError(f"unknown condition type '{raw_kind}'")

    config = payload.get("config", {})
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConditionParseError(f"'{kind}' condition config must be an object")

    if kind in _FIELD_VALUE_KINDS:
        return _FIELD_VALUE_KINDS[kind](field=_require_field(kind, config), value=config.get("value"))

    if kind in _FIELD_ONLY_KINDS:
        return _FIELD_ONLY_KINDS[kind](field=_require_field(kind, config))

    if kind in _FIELD_LIST_KINDS:
        values = config.get("values", [])
        if not isinstance(values, list):
            raise ConditionParseError(f"'{kind}' condition expects 'values' to be a list")
        return _FIELD_LIST_KINDS[kind](field=_require_field(kind, config), values=tuple(values))

    if kind == "regex":
        pattern = config.get("pattern")
        if not isinstance(pattern, str):
            raise ConditionParseError("'regex' condition requires a string 'pattern'")
        return Regex(field=_require_field(kind, config), pattern=pattern)

    if kind == "and":
        return And(conditions=_nested_list(kind, config))

    if kind == "or":
        return Or(conditions=_nested_list(kind, config))

    if kind == "not":
        nested = config.get("condition", config.get("expression"))
        return Not(condition=parse_condition(nested) if nested is not None else None)

    if kind == "field_count":
        field_pattern = config.get("field_pattern")
        if not isinstance(field_pattern, str):
            raise ConditionParseError("'field_count' condition requires a string 'field_pattern'")
        count = config.get("count")
        if isinstance(count, bool) or not isinstance(count, int):
            raise ConditionParseError("'field_count' condition requires an integer 'count'")
        operator = str(config.get("operator", "equals"))
        if operator not in FIELD_COUNT_OPERATORS:
            raise ConditionParseError(f"'field_count' condition has unsupported operator '{operator}'")
        return FieldCount(field_pattern=field_pattern, count=count, operator=operator)

    name = config.get("name", config.get("expression", ""))
    params = config.get("params", {})
    if not isinstance(params, dict):
        raise ConditionParseError("'custom' condition expects 'params' to be an object")
    return Custom(name=str(name), params=dict(params))


def condition_to_dict(expression: ConditionalExpression) -> dict[str, Any]:
    kind = expression_kind(expression)
    if isinstance(expression, (And, Or)):
        config: dict[str, Any] = {"conditions": [condition_to_dict(item) for item in expression.conditions]}
    elif isinstance(expression, Not):
        config = {} if expression.condition is None else {"condition": condition_to_dict(expression.condition)}
    elif isinstance(expression, (InList, NotInList)):
        config = {"field": expression.field, "values": list(expression.values)}
    elif isinstance(expression, Regex):
        config = {"field": expression.field, "pattern": expression.pattern}
    elif isinstance(expression, (IsEmpty, IsNotEmpty)):
        config = {"field": expression.field}
    elif isinstance(expression, FieldCount):
        config = {
            "field_pattern": expression.field_pattern,
            "count": expression.count,
            "operator": expression.operator,
        }
    elif isinstance(expression, Custom):
        config = {"name": expression.name, "params": dict(expression.params)}
    else:
        config = {"field": expression.field, "value": expression.value}
    return {"type": kind, "config": config}


def parse_action(payload: Any) -> ConditionalAction:
    if isinstance(payload, str):
        name = ACTION_ALIASES.get(payload, payload)
        if name in _BARE_ACTIONS:
            return _BARE_ACTIONS[name]()
        raise ConditionParseError(f"unknown or incomplete action '{payload}'")

    if not isinstance(payload, dict) or len(payload) != 1:
        raise ConditionParseError("action must be a name or a single-key object")

    raw_name, argument = next(iter(payload.items()))
    name = ACTION_ALIASES.get(raw_name, raw_name)
    if name in _BARE_ACTIONS:
        return _BARE_ACTIONS[name]()
    if name == "SetValue":
        return SetValue(value=argument)
    if name == "ShowError":
        if not isinstance(argument, str):
            raise ConditionParseError("ShowError action requires a message string")
        return ShowError(message=argument)
    if name == "SetOptions":
        if not isinstance(argument, list):
            raise ConditionParseError("SetOptions action requires a list of options")
        return SetOptions(options=tuple(argument))
    raise ConditionParseError(f"unknown action '{raw_name}'")


def action_to_dict(action: ConditionalAction) -> Any:
    name = _ACTION_NAME_BY_CLASS[type(action)]
    if isinstance(action, SetValue):
        return {name: action.value}
    if isinstance(action, ShowError):
        return {name: action.message}
    if isinstance(action, SetOptions):
        return {name: [_option_payload(option) for option in action.options]}
    return name


def _option_payload(option: Any) -> Any:
    to_dict = getattr(option, "to_dict", None)
    return to_dict() if callable(to_dict) else option
