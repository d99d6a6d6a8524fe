from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterator

from .conditions import (
    ConditionalAction,
    ConditionalExpression,
    ConditionParseError,
    SetOptions,
    action_to_dict,
    condition_to_dict,
    parse_action,
    parse_condition,
)

FIELD_TYPES = {
    "text",
    "text_area",
    "rich_text",
    "number",
    "integer",
    "email",
    "url",
    "phone",
    "date",
    "date_time",
    "time",
    "select",
    "multi_select",
    "radio",
    "checkbox_group",
    "checkbox",
    "toggle",
    "slider",
    "rating",
    "file_upload",
    "image_upload",
    "color",
    "json",
    "field_array",
    "dynamic_field_group",
    "hidden",
    "display",
    "divider",
}

VALIDATION_RULE_TYPES = {
    "required",
    "min_length",
    "max_length",
    "pattern",
    "min",
    "max",
    "email",
    "url",
    "custom",
    "cross_field",
}

VALIDATION_TRIGGERS = {"OnChange", "OnSubmit", "OnBlur"}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


class SchemaValidationError(ValueError):
    """Raised when a configuration schema payload cannot be loaded."""


@dataclass(slots=True)
class OptionItem:
    value: Any
    label: str
    description: str | None = None
    disabled: bool = False
    icon: str | None = None
    group: str | None = None
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "label": self.label,
            "description": self.description,
            "disabled": self.disabled,
            "icon": self.icon,
            "group": self.group,
            "metadata": self.metadata,
        }


@dataclass(slots=True)
class FieldOptions:
    static_options: list[OptionItem] | None = None
    dynamic_options: dict[str, Any] | None = None
    allow_custom: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "static_options": (
                [option.to_dict() for option in self.static_options] if self.static_options is not None else None
            ),
            "dynamic_options": self.dynamic_options,
            "allow_custom": self.allow_custom,
        }


@dataclass(slots=True)
class FieldDisplay:
    disabled: bool = False
    readonly: bool = False
    auto_focus: bool = False
    tab_index: int | None = None
    tooltip: str | None = None
    width: str = "md"
    css_classes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "disabled": self.disabled,
            "readonly": self.readonly,
            "auto_focus": self.auto_focus,
            "tab_index": self.tab_index,
            "tooltip": self.tooltip,
            "width": self.width,
            "css_classes": list(self.css_classes),
        }


@dataclass(slots=True, frozen=True)
class FieldType:
    kind: str
    config: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(slots=True, frozen=True)
class ValidationRule:
    kind: str
    config: dict[str, Any] = field(default_factory=dict, hash=False)


@dataclass(slots=True)
class FieldDefinition:
    id: str
    label: str = ""
    field_type: FieldType = field(default_factory=lambda: FieldType("text"))
    required: bool = False
    placeholder: str | None = None
    help_text: str | None = None
    default_value: Any = None
    validations: list[ValidationRule] = field(default_factory=list)
    options: FieldOptions | None = None
    display: FieldDisplay = field(default_factory=FieldDisplay)
    visibility_conditions: ConditionalExpression | None = None
    dependent_fields: list[str] = field(default_factory=list)
    framework_mapping: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "field_type": {"type": self.field_type.kind, "config": dict(self.field_type.config)},
            "required": self.required,
            "placeholder": self.placeholder,
            "help_text": self.help_text,
            "default_value": self.default_value,
            "validations": [{"type": rule.kind, "config": dict(rule.config)} for rule in self.validations],
            "options": self.options.to_dict() if self.options is not None else None,
            "display": self.display.to_dict(),
            "visibility_conditions": (
                condition_to_dict(self.visibility_conditions) if self.visibility_conditions is not None else None
            ),
            "dependent_fields": list(self.dependent_fields),
            "framework_mapping": self.framework_mapping,
        }


@dataclass(slots=True)
class FieldSection:
    id: str
    title: str = ""
    description: str | None = None
    order: int = 0
    collapsible: bool = False
    collapsed_by_default: bool = False
    icon: str | None = None
    fields: list[FieldDefinition] = field(default_factory=list)
    visibility_conditions: ConditionalExpression | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "order": self.order,
            "collapsible": self.collapsible,
            "collapsed_by_default": self.collapsed_by_default,
            "icon": self.icon,
            "fields": [item.to_dict() for item in self.fields],
            "visibility_conditions": (
                condition_to_dict(self.visibility_conditions) if self.visibility_conditions is not None else None
            ),
        }


@dataclass(slots=True)
class ConditionalRule:
    id: str
    target: str
    condition: ConditionalExpression
    action: ConditionalAction

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "target": self.target,
            "condition": condition_to_dict(self.condition),
            "action": action_to_dict(self.action),
        }


@dataclass(slots=True)
class CrossFieldValidation:
    id: str
    name: str
    fields: list[str]
    expression: str = ""
    message: str = ""
    trigger: str = "OnSubmit"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "fields": list(self.fields),
            "expression": self.expression,
            "message": self.message,
            "trigger": self.trigger,
        }


@dataclass(slots=True)
class SchemaMetadata:
    tags: list[str] = field(default_factory=list)
    target_audience: list[str] = field(default_factory=list)
    difficulty_level: str | None = None
    estimated_minutes: int | None = None
    is_template: bool = False
    is_active: bool = True
    locale: str = "en"
    custom: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": list(self.tags),
            "target_audience": list(self.target_audience),
            "difficulty_level": self.difficulty_level,
            "estimated_minutes": self.estimated_minutes,
            "is_template": self.is_template,
            "is_active": self.is_active,
            "locale": self.locale,
            "custom": dict(self.custom),
        }


@dataclass(slots=True)
class ConfigurationSchema:
    id: str = ""
    name: str = ""
    description: str | None = None
    version: str = "1.0"
    framework: str | None = None
    category: str = "general"
    sections: list[FieldSection] = field(default_factory=list)
    global_validations: list[CrossFieldValidation] = field(default_factory=list)
    conditional_logic: list[ConditionalRule] = field(default_factory=list)
    defaults: dict[str, Any] = field(default_factory=dict)
    metadata: SchemaMetadata = field(default_factory=SchemaMetadata)
    created_by: str | None = None

    def iter_fields(self) -> Iterator[FieldDefinition]:
        for section in self.sections:
            yield from section.fields

    def field_ids(self) -> list[str]:
        return [item.id for item in self.iter_fields()]

    def get_field(self, field_id: str) -> FieldDefinition | None:
        return next((item for item in self.iter_fields() if item.id == field_id), None)

    def get_section(self, section_id: str) -> FieldSection | None:
        return next((section for section in self.sections if section.id == section_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "framework": self.framework,
            "category": self.category,
            "sections": [section.to_dict() for section in self.sections],
            "global_validations": [item.to_dict() for item in self.global_validations],
            "conditional_logic": [rule.to_dict() for rule in self.conditional_logic],
            "defaults": dict(self.defaults),
            "metadata": self.metadata.to_dict(),
            "created_by": self.created_by,
        }


def schema_to_dict(schema: ConfigurationSchema) -> dict[str, Any]:
    return schema.to_dict()


def _snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name.strip()).lower()


def _tagged_payload(raw: Any, where: str) -> tuple[str, dict[str, Any]]:
    if isinstance(raw, str):
        return _snake_case(raw), {}
    if not isinstance(raw, dict):
        raise SchemaValidationError(f"{where}: expected a type name or an object with 'type'")
    kind = _snake_case(str(raw.get("type") or ""))
    config = raw.get("config") or {}
    if not isinstance(config, dict):
        raise SchemaValidationError(f"{where}: 'config' must be an object")
    return kind, dict(config)


def _as_list(raw: Any, where: str) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise SchemaValidationError(f"{where}: expected a list")
    return raw


def _required_id(raw: dict[str, Any], where: str) -> str:
    identifier = raw.get("id")
    if not isinstance(identifier, str) or not identifier.strip():
        raise SchemaValidationError(f"{where}: 'id' must be a non-empty string")
    return identifier


def _load_condition(raw: Any, where: str) -> ConditionalExpression | None:
    if raw is None:
        return None
    try:
        return parse_condition(raw)
    except ConditionParseError as exc:
        raise SchemaValidationError(f"{where}: {exc}") from exc


def load_option(raw: Any) -> OptionItem:
    if not isinstance(raw, dict):
        return OptionItem(value=raw, label=str(raw))
    value = raw.get("value")
    return OptionItem(
        value=value,
        label=str(raw.get("label", value)),
        description=raw.get("description"),
        disabled=bool(raw.get("disabled", False)),
        icon=raw.get("icon"),
        group=raw.get("group"),
        metadata=raw.get("metadata"),
    )


def _load_options(raw: Any, where: str) -> FieldOptions | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise SchemaValidationError(f"{where}: 'options' must be an object")
    static = raw.get("static_options")
    return FieldOptions(
        static_options=[load_option(item) for item in _as_list(static, where)] if static is not None else None,
        dynamic_options=raw.get("dynamic_options"),
        allow_custom=bool(raw.get("allow_custom", False)),
    )


def _load_display(raw: Any, where: str) -> FieldDisplay:
    if raw is None:
        return FieldDisplay()
    if not isinstance(raw, dict):
        raise SchemaValidationError(f"{where}: 'display' must be an object")
    return FieldDisplay(
        disabled=bool(raw.get("disabled", False)),
        readonly=bool(raw.get("readonly", False)),
        auto_focus=bool(raw.get("auto_focus", False)),
        tab_index=raw.get("tab_index"),
        tooltip=raw.get("tooltip"),
        width=str(raw.get("width", "md")),
        css_classes=[str(item) for item in _as_list(raw.get("css_classes"), where)],
    )


def _load_field(raw: Any, section_id: str) -> FieldDefinition:
    if not isinstance(raw, dict):
        raise SchemaValidationError(f"section '{section_id}': fields must be objects")
    field_id = _required_id(raw, f"section '{section_id}' field")
    where = f"field '{field_id}'"

    kind, type_config = _tagged_payload(raw.get("field_type", "text"), where)
    if kind not in FIELD_TYPES:
        raise SchemaValidationError(f"{where}: unknown field type '{kind}'")

    validations: list[ValidationRule] = []
    for item in _as_list(raw.get("validations"), where):
        rule_kind, rule_config = _tagged_payload(item, where)
        if rule_kind not in VALIDATION_RULE_TYPES:
            raise SchemaValidationError(f"{where}: unknown validation rule '{rule_kind}'")
        validations.append(ValidationRule(kind=rule_kind, config=rule_config))

    return FieldDefinition(
        id=field_id,
        label=str(raw.get("label", "")),
        field_type=FieldType(kind=kind, config=type_config),
        required=bool(raw.get("required", False)),
        placeholder=raw.get("placeholder"),
        help_text=raw.get("help_text"),
        default_value=raw.get("default_value"),
        validations=validations,
        options=_load_options(raw.get("options"), where),
        display=_load_display(raw.get("display"), where),
        visibility_conditions=_load_condition(raw.get("visibility_conditions"), where),
        dependent_fields=[str(item) for item in _as_list(raw.get("dependent_fields"), where)],
        framework_mapping=raw.get("framework_mapping"),
    )


def _load_section(raw: Any, position: int) -> FieldSection:
    if not isinstance(raw, dict):
        raise SchemaValidationError("sections must be objects")
    section_id = _required_id(raw, f"section #{position}")
    where = f"section '{section_id}'"
    return FieldSection(
        id=section_id,
        title=str(raw.get("title", "")),
        description=raw.get("description"),
        order=int(raw.get("order", position)),
        collapsible=bool(raw.get("collapsible", False)),
        collapsed_by_default=bool(raw.get("collapsed_by_default", False)),
        icon=raw.get("icon"),
        fields=[_load_field(item, section_id) for item in _as_list(raw.get("fields"), where)],
        visibility_conditions=_load_condition(raw.get("visibility_conditions"), where),
    )


def _load_rule(raw: Any, position: int) -> ConditionalRule:
    if not isinstance(raw, dict):
        raise SchemaValidationError("conditional rules must be objects")
    rule_id = _required_id(raw, f"conditional rule #{position}")
    where = f"conditional rule '{rule_id}'"
    target = raw.get("target")
    if not isinstance(target, str) or not target:
        raise SchemaValidationError(f"{where}: 'target' must be a non-empty string")
    if "condition" not in raw:
        raise SchemaValidationError(f"{where}: 'condition' is required")
    try:
        condition = parse_condition(raw["condition"])
        action = parse_action(raw.get("action"))
    except ConditionParseError as exc:
        raise SchemaValidationError(f"{where}: {exc}") from exc
    if isinstance(action, SetOptions):
        action = SetOptions(options=tuple(load_option(item) for item in action.options))
    return ConditionalRule(id=rule_id, target=target, condition=condition, action=action)


def _load_cross_field(raw: Any, position: int) -> CrossFieldValidation:
    if not isinstance(raw, dict):
        raise SchemaValidationError("global validations must be objects")
    validation_id = _required_id(raw, f"global validation #{position}")
    where = f"global validation '{validation_id}'"
    trigger = raw.get("trigger", "OnSubmit")
    if isinstance(trigger, dict) and "Custom" in trigger:
        trigger = f"Custom:{trigger['Custom']}"
    elif trigger not in VALIDATION_TRIGGERS and not str(trigger).startswith("Custom:"):
        raise SchemaValidationError(f"{where}: unknown trigger '{trigger}'")
    return CrossFieldValidation(
        id=validation_id,
        name=str(raw.get("name", validation_id)),
        fields=[str(item) for item in _as_list(raw.get("fields"), where)],
        expression=str(raw.get("expression", "")),
        message=str(raw.get("message", "")),
        trigger=str(trigger),
    )


def _load_metadata(raw: Any) -> SchemaMetadata:
    if raw is None:
        return SchemaMetadata()
    if not isinstance(raw, dict):
        raise SchemaValidationError("'metadata' must be an object")
    estimated = raw.get("estimated_minutes")
    return SchemaMetadata(
        tags=[str(item) for item in _as_list(raw.get("tags"), "metadata")],
        target_audience=[str(item) for item in _as_list(raw.get("target_audience"), "metadata")],
        difficulty_level=raw.get("difficulty_level"),
        estimated_minutes=int(estimated) if estimated is not None else None,
        is_template=bool(raw.get("is_template", False)),
        is_active=bool(raw.get("is_active", True)),
        locale=str(raw.get("locale", "en")),
        custom=dict(raw.get("custom") or {}),
    )


def load_schema(payload: Any) -> ConfigurationSchema:
    if not isinstance(payload, dict):
        raise SchemaValidationError("schema must be a JSON object")

    sections = [_load_section(raw, position) for position, raw in enumerate(_as_list(payload.get("sections"), "schema"), start=1)]

    seen: set[str] = set()
    for section in sections:
        for item in section.fields:
            if item.id in seen:
                raise SchemaValidationError(f"Duplicate field ID: {item.id}")
            seen.add(item.id)

    defaults = payload.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise SchemaValidationError("'defaults' must be an object")

    return ConfigurationSchema(
        id=str(payload.get("id", "")),
        name=str(payload.get("name", "")),
        description=payload.get("description"),
        version=str(payload.get("version", "1.0")),
        framework=payload.get("framework"),
        category=str(payload.get("category", "general")),
        sections=sections,
        global_validations=[
            _load_cross_field(raw, position)
            for position, raw in enumerate(_as_list(payload.get("global_validations"), "schema"), start=1)
        ],
        conditional_logic=[
            _load_rule(raw, position)
            for position, raw in enumerate(_as_list(payload.get("conditional_logic"), "schema"), start=1)
        ],
        defaults=dict(defaults),
        metadata=_load_metadata(payload.get("metadata")),
        created_by=payload.get("created_by"),
    )
