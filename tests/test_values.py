"""Tests for typed value coercion and the value helpers built on it."""

import math

import pytest

from storyweaver.models import Session, StateChange, Template, ValueDefinition
from storyweaver.values import (
    apply_value_changes,
    build_effective_template,
    build_initial_values,
    coerce_value,
    fallback_value,
    fill_missing_values,
    snapshot_values,
    zero_value,
)


def _d(type_, **fields) -> ValueDefinition:
    return ValueDefinition(id=fields.pop("id", "v"), label="V", type=type_, **fields)


# ── Numbers ──────────────────────────────────────────────


def test_integer_clamped_and_truncated():
    d = _d("integer", min=0, max=10)
    assert coerce_value(d, 12) == 10
    assert coerce_value(d, -4) == 0
    assert coerce_value(d, 3.9) == 3
    assert isinstance(coerce_value(d, 3.9), int)


def test_integer_from_numeric_string():
    assert coerce_value(_d("integer"), " 42 ") == 42
    assert coerce_value(_d("integer"), "-7.8") == -7


def test_unparseable_number_uses_default():
    d = _d("integer", min=0, max=10, default_value=4)
    assert coerce_value(d, "lots") == 4
    assert coerce_value(d, {"hp": 3}) == 4


def test_unparseable_number_without_default_is_clamped_zero():
    assert coerce_value(_d("float"), "abc") == 0.0
    assert coerce_value(_d("integer", min=2, max=5), "abc") == 2


def test_non_finite_input_falls_back():
    assert coerce_value(_d("float", default_value=1.5), math.nan) == 1.5
    assert coerce_value(_d("float", default_value=1.5), math.inf) == 1.5
    assert coerce_value(_d("integer"), "1e400") == 0


def test_float_keeps_fraction():
    value = coerce_value(_d("float", min=0, max=5), "2.25")
    assert value == 2.25
    assert isinstance(value, float)


def test_number_collapses_whole_values_to_int():
    assert coerce_value(_d("number"), 3.0) == 3
    assert isinstance(coerce_value(_d("number"), 3.0), int)
    assert coerce_value(_d("number"), 3.5) == 3.5


def test_bool_and_single_item_list_become_numbers():
    d = _d("integer")
    assert coerce_value(d, True) == 1
    assert coerce_value(d, False) == 0
    assert coerce_value(d, ["6"]) == 6
    assert coerce_value(d, []) == 0


def test_empty_string_is_zero():
    assert coerce_value(_d("integer", default_value=9), "") == 0


# ── Booleans ─────────────────────────────────────────────


@pytest.mark.parametrize("raw", ["false", "FALSE", " No ", "off", "0", ""])
def test_false_words(raw):
    assert coerce_value(_d("boolean"), raw) is False


@pytest.mark.parametrize("raw", ["true", "Yes", "ON", "1"])
def test_true_words(raw):
    assert coerce_value(_d("boolean"), raw) is True


def test_boolean_truthiness_for_other_values():
    d = _d("boolean")
    assert coerce_value(d, "maybe") is True
    assert coerce_value(d, 0) is False
    assert coerce_value(d, 2) is True
    assert coerce_value(d, []) is False
    assert coerce_value(d, {"a": 1}) is True


# ── Strings ──────────────────────────────────────────────


def test_string_passthrough_and_serialization():
    assert coerce_value(_d("string"), "Dawn") == "Dawn"
    assert coerce_value(_d("text"), 12) == "12"
    assert coerce_value(_d("string"), {"a": [1, 2]}) == '{"a":[1,2]}'
    assert coerce_value(_d("string"), True) == "true"


# ── Arrays ───────────────────────────────────────────────


def test_array_wraps_scalar():
    assert coerce_value(_d("array"), "torch") == ["torch"]


def test_array_truncated_to_max_length():
    d = _d("array", max_length=2)
    assert coerce_value(d, ["a", "b", "c"]) == ["a", "b"]


def test_array_items_become_scalars():
    result = coerce_value(_d("array"), [1, "two", {"n": 3}, [4], math.nan])
    assert result == [1, "two", '{"n":3}', "[4]", "NaN"]


# ── Objects ──────────────────────────────────────────────


def test_object_wraps_non_mapping():
    d = _d("object")
    assert coerce_value(d, "ally") == {"value": "ally"}
    assert coerce_value(d, ["a", 1]) == {"value": ["a", 1]}


def test_object_flattens_nested_values():
    result = coerce_value(_d("object"), {"mara": {"trust": 3}, "tags": ["a", {"b": 1}], "n": 2})
    assert result == {"mara": '{"trust":3}', "tags": ["a", '{"b":1}'], "n": 2}


def test_object_keys_become_strings():
    assert coerce_value(_d("object"), {1: "one"}) == {"1": "one"}


# ── Fallback chain ───────────────────────────────────────


def test_absent_value_uses_default():
    assert coerce_value(_d("integer", default_value=7), None) == 7


def test_default_is_itself_coerced():
    d = _d("integer", min=0, max=10, default_value=15)
    assert fallback_value(d) == 10
    assert coerce_value(d, None) == 10


def test_absent_value_without_default_is_zero():
    assert coerce_value(_d("array"), None) == []
    assert coerce_value(_d("object"), None) == {}
    assert coerce_value(_d("boolean"), None) is False
    assert coerce_value(_d("string"), None) == ""


def test_zero_value_clamped_into_bounds():
    assert zero_value(_d("integer", min=3, max=8)) == 3
    assert zero_value(_d("float", min=-5, max=-1)) == -1.0


def test_zero_value_is_a_fresh_copy():
    first = zero_value(_d("array"))
    first.append("x")
    assert zero_value(_d("array")) == []


# ── Idempotence ──────────────────────────────────────────


_DEFINITIONS = [
    _d("integer", min=0, max=10, default_value=5),
    _d("float", min=-1.5, max=1.5),
    _d("number"),
    _d("boolean"),
    _d("string"),
    _d("text", default_value=["x"]),
    _d("array", max_length=3),
    _d("object"),
]

_INPUTS = [None, "", "12", "nope", -3, 2.7, True, [], ["a", 1, {"b": 2}, [3]], {"k": {"z": 1}}, math.nan]


@pytest.mark.parametrize("definition", _DEFINITIONS, ids=lambda d: d.type)
def test_coercion_is_idempotent(definition):
    for raw in _INPUTS:
        once = coerce_value(definition, raw)
        assert coerce_value(definition, once) == once, raw


def test_coercion_never_mutates_input():
    raw = {"k": [1, 2]}
    coerce_value(_d("object"), raw)
    assert raw == {"k": [1, 2]}


# ── Batch helpers ────────────────────────────────────────


def _template(*definitions) -> Template:
    return Template(id="t", title="T", slug="t", value_definitions=list(definitions))


def test_build_initial_values():
    defs = [_d("integer", id="hp", default_value=10), _d("array", id="bag")]
    assert build_initial_values(defs) == {"hp": 10, "bag": []}


def test_snapshot_fills_and_coerces():
    defs = [_d("integer", id="hp", max=5), _d("boolean", id="lit")]
    assert snapshot_values(defs, {"hp": "9"}) == {"hp": 5, "lit": False}


def test_fill_missing_keeps_existing_values():
    defs = [_d("integer", id="hp", default_value=10), _d("integer", id="gold")]
    assert fill_missing_values(defs, {"hp": 3, "old": "x"}) == {"hp": 3, "gold": 0, "old": "x"}


def test_apply_value_changes_skips_unknown_ids():
    defs = [_d("integer", id="hp", min=0, max=10)]
    changes = [
        StateChange(value_id="hp", next="15"),
        StateChange(value_id="mana", next=4),
    ]
    assert apply_value_changes(defs, {"hp": 3}, changes) == {"hp": 10}


def test_effective_template_appends_session_definitions():
    template = _template(_d("integer", id="hp"))
    session = Session(
        template_id="t",
        title="Run",
        session_value_definitions=[_d("string", id="hp"), _d("boolean", id="cursed")],
    )
    effective = build_effective_template(template, session)
    assert [(d.id, d.type) for d in effective.value_definitions] == [
        ("hp", "integer"),
        ("cursed", "boolean"),
    ]
    assert [d.id for d in template.value_definitions] == ["hp"]


def test_effective_template_without_session_definitions():
    template = _template(_d("integer", id="hp"))
    assert build_effective_template(template) is template
