import pytest

from assessment_configurator.conditions import (
    And,
    ClearValue,
    ConditionParseError,
    Custom,
    Equals,
    FieldCount,
    Hide,
    InList,
    Not,
    Regex,
    SetOptions,
    SetValue,
    Show,
    ShowError,
    action_to_dict,
    condition_to_dict,
    parse_action,
    parse_condition,
)


def test_parse_nested_condition_tree() -> None:
    expression = parse_condition(
        {
            "type": "and",
            "config": {
                "conditions": [
                    {"type": "equals", "config": {"field": "country", "value": "US"}},
                    {"type": "not", "config": {"condition": {"type": "is_empty", "config": {"field": "state"}}}},
                ]
            },
        }
    )

    assert isinstance(expression, And)
    assert expression.conditions[0] == Equals(field="country", value="US")
    assert isinstance(expression.conditions[1], Not)


def test_parse_accepts_stored_aliases() -> None:
    assert parse_condition({"type": "matches", "config": {"field": "zip", "pattern": r"\d+"}}) == Regex(
        field="zip", pattern=r"\d+"
    )
    assert parse_condition({"type": "in", "config": {"field": "c", "values": ["US"]}}) == InList(
        field="c", values=("US",)
    )
    grouped = parse_condition(
        {"type": "or", "config": {"expressions": [{"type": "is_empty", "config": {"field": "a"}}]}}
    )
    assert len(grouped.conditions) == 1


def test_parse_field_count_defaults_operator() -> None:
    expression = parse_condition({"type": "field_count", "config": {"field_pattern": "item_", "count": 2}})
    assert expression == FieldCount(field_pattern="item_", count=2, operator="equals")


def test_parse_custom_condition_keeps_params() -> None:
    expression = parse_condition({"type": "custom", "config": {"name": "score_check", "params": {"minimum": 3}}})
    assert isinstance(expression, Custom)
    assert expression.name == "score_check"
    assert expression.params == {"minimum": 3}


@pytest.mark.parametrize(
    "payload, message",
    [
        ("equals", "must be an object"),
        ({"type": "between", "config": {}}, "unknown condition type"),
        ({"type": "equals", "config": {"value": 1}}, "non-empty 'field'"),
        ({"type": "equals", "config": []}, "config must be an object"),
        ({"type": "in_list", "config": {"field": "a", "values": "US"}}, "'values' to be a list"),
        ({"type": "regex", "config": {"field": "a"}}, "string 'pattern'"),
        ({"type": "and", "config": {"conditions": {"type": "equals"}}}, "'conditions' to be a list"),
        ({"type": "field_count", "config": {"field_pattern": "x_", "count": "2"}}, "integer 'count'"),
        ({"type": "field_count", "config": {"field_pattern": "x_", "count": True}}, "integer 'count'"),
        ({"type": "field_count", "config": {"field_pattern": "x_", "count": 1, "operator": "near"}}, "unsupported operator"),
    ],
)
def test_parse_rejects_malformed_conditions(payload, message) -> None:
    with pytest.raises(ConditionParseError, match=message):
        parse_condition(payload)


def test_condition_serialization_keeps_wire_shape() -> None:
    payload = {
        "type": "or",
        "config": {
            "conditions": [
                {"type": "greater_than", "config": {"field": "age", "value": 18}},
                {"type": "not_in_list", "config": {"field": "country", "values": ["US", "CA"]}},
                {"type": "not", "config": {}},
            ]
        },
    }
    assert condition_to_dict(parse_condition(payload)) == payload


@pytest.mark.parametrize(
    "payload, expected",
    [
        ("Show", Show()),
        ("hide", Hide()),
        ("ClearValue", ClearValue()),
        ({"SetValue": 5}, SetValue(value=5)),
        ({"set_value": None}, SetValue(value=None)),
        ({"ShowError": "Required for US"}, ShowError(message="Required for US")),
        ({"SetOptions": ["a", "b"]}, SetOptions(options=("a", "b"))),
    ],
)
def test_parse_action_forms(payload, expected) -> None:
    assert parse_action(payload) == expected


@pytest.mark.parametrize(
    "payload",
    ["SetValue", "Explode", {"Show": None, "Hide": None}, {"ShowError": 3}, {"SetOptions": "a"}, None],
)
def test_parse_action_rejects_malformed(payload) -> None:
    with pytest.raises(ConditionParseError):
        parse_action(payload)


def test_action_serialization() -> None:
    assert action_to_dict(Hide()) == "Hide"
    assert action_to_dict(SetValue(value=[1, 2])) == {"SetValue": [1, 2]}
    assert action_to_dict(ShowError(message="nope")) == {"ShowError": "nope"}
