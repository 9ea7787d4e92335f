"""Typed value coercion for tracked template values.

Provider replies are untrusted: a "next" value may be a string where a number
is expected, a mapping where a list is expected, or simply missing. Every
function here is total. Malformed input degrades to a typed fallback instead
of raising, so a bad write can never fail a turn.

Fallback chain for absent input: the definition's default value (itself
coerced) -> the type's zero value (clamped into [min, max] for numbers).
"""

from __future__ import annotations

import copy
import json
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from storyweaver.models import (
    NUMERIC_TYPES,
    Scalar,
    Session,
    StateChange,
    Template,
    ValueDefinition,
    ValuePayload,
)

_ZERO_VALUES: dict[str, Any] = {
    "boolean": False,
    "integer": 0,
    "float": 0.0,
    "number": 0,
    "string": "",
    "text": "",
    "array": [],
    "object": {},
}

_FALSE_WORDS = frozenset({"false", "0", "no", "off", ""})
_TRUE_WORDS = frozenset({"true", "1", "yes", "on"})

_NUMERIC_TEXT = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def serialize(value: Any) -> str:
    """Compact JSON text for a non-scalar; never raises."""
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(value)


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, bool, int, float))


def _to_scalar(value: Any) -> Scalar:
    if isinstance(value, float) and not math.isfinite(value):
        return serialize(value)
    return value if _is_scalar(value) else serialize(value)


def _to_number(value: Any) -> float:
    """Loose numeric conversion. Unconvertible input yields NaN."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return math.inf if value > 0 else -math.inf
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _NUMERIC_TEXT.match(text):
            return float(text)
        return math.nan
    if isinstance(value, (list, tuple)):
        if not value:
            return 0.0
        if len(value) == 1:
            return _to_number(value[0])
    return math.nan


def _clamp(definition: ValueDefinition, number: float) -> float:
    if definition.min is not None:
        number = max(number, definition.min)
    if definition.max is not None:
        number = min(number, definition.max)
    return number


def _finish_number(definition: ValueDefinition, number: float) -> int | float:
    number = _clamp(definition, number)
    if definition.type == "integer":
        return math.trunc(number)
    if definition.type == "number" and float(number).is_integer():
        return int(number)
    return float(number)


def zero_value(definition: ValueDefinition) -> ValuePayload:
    """The type's zero value, kept inside the definition's numeric bounds."""
    if definition.type in NUMERIC_TYPES:
        return _finish_number(definition, 0.0)
    return copy.deepcopy(_ZERO_VALUES[definition.type])


def fallback_value(definition: ValueDefinition) -> ValuePayload:
    """Value used when the raw input is absent: default, else zero value."""
    if definition.default_value is None:
        return zero_value(definition)
    return _coerce_present(definition, definition.default_value, zero_value(definition))


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

def coerce_value(definition: ValueDefinition, raw: Any) -> ValuePayload:
    """Normalise an arbitrary value into the definition's typed payload.

    Total and idempotent: coerce_value(d, coerce_value(d, x)) equals
    coerce_value(d, x) for every definition and input.
    """
    if raw is None:
        return fallback_value(definition)
    return _coerce_present(definition, raw, None)


def _coerce_present(
    definition: ValueDefinition, raw: Any, fallback: ValuePayload | None
) -> ValuePayload:
    kind = definition.type

    if kind in NUMERIC_TYPES:
        number = _to_number(raw)
        if kind == "integer" and math.isfinite(number):
            number = math.trunc(number)
        if not math.isfinite(number):
            return fallback if fallback is not None else fallback_value(definition)
        return _finish_number(definition, number)

    if kind == "boolean":
        if isinstance(raw, str):
            word = raw.strip().lower()
            if word in _FALSE_WORDS:
                return False
            if word in _TRUE_WORDS:
                return True
        return bool(raw)

    if kind == "array":
        items = list(raw) if isinstance(raw, (list, tuple)) else [raw]
        result = [_to_scalar(item) for item in items]
        if definition.max_length is not None and definition.max_length > 0:
            result = result[: definition.max_length]
        return result

    if kind == "object":
        if not isinstance(raw, Mapping):
            if isinstance(raw, (list, tuple)):
                return {"value": [_to_scalar(item) for item in raw]}
            return {"value": _to_scalar(raw)}
        result: dict[str, Any] = {}
        for key, entry in raw.items():
            if isinstance(entry, (list, tuple)):
                result[str(key)] = [_to_scalar(item) for item in entry]
            elif isinstance(entry, Mapping):
                result[str(key)] = serialize(entry)
            else:
                result[str(key)] = _to_scalar(entry)
        return result

    # string / text
    return raw if isinstance(raw, str) else serialize(raw)


# ---------------------------------------------------------------------------
# Batch operations over a set of definitions
# ---------------------------------------------------------------------------

def build_initial_values(definitions: Iterable[ValueDefinition]) -> dict[str, ValuePayload]:
    """Starting values for a new session: every definition at its fallback."""
    return {d.id: fallback_value(d) for d in definitions}


def snapshot_values(
    definitions: Iterable[ValueDefinition], values: Mapping[str, Any]
) -> dict[str, ValuePayload]:
    """Coerced view of every defined value, filling gaps from the fallback chain."""
    return {d.id: coerce_value(d, values.get(d.id)) for d in definitions}


def fill_missing_values(
    definitions: Iterable[ValueDefinition], values: Mapping[str, ValuePayload]
) -> dict[str, ValuePayload]:
    """Copy of `values` with every defined id present; gaps take the fallback."""
    filled = dict(values)
    for definition in definitions:
        if definition.id not in filled:
            filled[definition.id] = fallback_value(definition)
    return filled


def apply_value_changes(
    definitions: Iterable[ValueDefinition],
    current: Mapping[str, ValuePayload],
    changes: Iterable[StateChange],
) -> dict[str, ValuePayload]:
    """Apply {valueId, next} pairs, coercing each. Unknown ids are skipped."""
    by_id = {d.id: d for d in definitions}
    updated = dict(current)
    for change in changes:
        definition = by_id.get(change.value_id)
        if definition is None:
            continue
        updated[change.value_id] = coerce_value(definition, change.next)
    return updated


def build_effective_template(template: Template, session: Session | None = None) -> Template:
    """Merge session-only value definitions into the template's own.

    Template definitions win on id collisions; session definitions are
    appended in their stored order.
    """
    extra = session.session_value_definitions if session else []
    if not extra:
        return template
    seen = {d.id for d in template.value_definitions}
    merged = list(template.value_definitions)
    for definition in extra:
        if definition.id in seen:
            continue
        merged.append(definition)
        seen.add(definition.id)
    return template.model_copy(update={"value_definitions": merged})
