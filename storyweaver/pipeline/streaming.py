"""Field extraction from a partially received JSON reply.

While the provider streams its structured reply, the document is incomplete
and cannot be parsed as a whole. These scanners pull individual fields out
of the text received so far so the caller can show live previews.

Each call receives the entire accumulated text and re-scans it from the
start; no state is kept between calls. Partial values are returned where
that makes sense:

  string field        : decoded characters up to the closing quote or the
                        end of input, whichever comes first
  string-array field  : every element whose closing quote has arrived
  object-array field  : every object whose closing brace has arrived and
                        that parses as strict JSON

A field whose key (or opening quote/bracket) has not arrived yet is None.
"""

from __future__ import annotations

import copy
import json
import string
from typing import Any

_WHITESPACE = " \t\r\n"
_HEX_DIGITS = frozenset(string.hexdigits)
_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

# Wire field name -> kind of value it holds
STREAMED_FIELDS: dict[str, str] = {
    "narrative": "string",
    "playerOptions": "string_array",
    "stateChanges": "object_array",
}


# ---------------------------------------------------------------------------
# Low-level scanning
# ---------------------------------------------------------------------------

def _skip(text: str, pos: int, chars: str = _WHITESPACE) -> int:
    while pos < len(text) and text[pos] in chars:
        pos += 1
    return pos


def _find_value_start(text: str, key: str) -> int | None:
    """Index of the first character after `"key":` and any whitespace."""
    needle = f'"{key}"'
    start = 0
    while True:
        found = text.find(needle, start)
        if found < 0:
            return None
        pos = _skip(text, found + len(needle))
        if pos < len(text) and text[pos] == ":":
            return _skip(text, pos + 1)
        start = found + 1


def _read_hex4(text: str, pos: int) -> int | None:
    digits = text[pos:pos + 4]
    if len(digits) < 4 or not all(c in _HEX_DIGITS for c in digits):
        return None
    return int(digits, 16)


def _decode_string(text: str, pos: int) -> tuple[str, int, bool]:
    """Decode a JSON string body starting just after its opening quote.

    Returns (value, position after the string, closed). An unfinished string
    yields the characters decoded so far; a trailing escape sequence that is
    still incomplete is left out.
    """
    chars: list[str] = []
    n = len(text)
    while pos < n:
        ch = text[pos]
        if ch == '"':
            return "".join(chars), pos + 1, True
        if ch != "\\":
            chars.append(ch)
            pos += 1
            continue
        if pos + 1 >= n:
            break
        code = text[pos + 1]
        if code != "u":
            chars.append(_ESCAPES.get(code, code))
            pos += 2
            continue

        point = _read_hex4(text, pos + 2)
        if point is None:
            break
        after = pos + 6
        if 0xD800 <= point <= 0xDBFF:
            tail = text[after:after + 6]
            if len(tail) < 6 and "\\u".startswith(tail[:2]):
                break  # low surrogate not here yet
            if tail.startswith("\\u"):
                low = _read_hex4(text, after + 2)
                if low is not None and 0xDC00 <= low <= 0xDFFF:
                    point = 0x10000 + ((point - 0xD800) << 10) + (low - 0xDC00)
                    after += 6
        chars.append(chr(point))
        pos = after
    return "".join(chars), pos, False


def _match_object(text: str, start: int) -> int | None:
    """End index (exclusive) of the object opening at `start`, or None if unclosed."""
    depth = 0
    in_string = False
    pos = start
    while pos < len(text):
        ch = text[pos]
        if in_string:
            if ch == "\\":
                pos += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return pos + 1
        pos += 1
    return None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


# ---------------------------------------------------------------------------
# Field extractors
# ---------------------------------------------------------------------------

def extract_string_field(text: str, key: str) -> str | None:
    pos = _find_value_start(text, key)
    if pos is None or pos >= len(text) or text[pos] != '"':
        return None
    value, _, _ = _decode_string(text, pos + 1)
    return value


def extract_string_array_field(text: str, key: str) -> list[str] | None:
    pos = _find_value_start(text, key)
    if pos is None or pos >= len(text) or text[pos] != "[":
        return None
    items: list[str] = []
    pos += 1
    while True:
        pos = _skip(text, pos, _WHITESPACE + ",")
        if pos >= len(text) or text[pos] != '"':
            return items
        value, pos, closed = _decode_string(text, pos + 1)
        if not closed:
            return items
        items.append(value)


def extract_object_array_field(text: str, key: str) -> list[dict[str, Any]] | None:
    pos = _find_value_start(text, key)
    if pos is None or pos >= len(text) or text[pos] != "[":
        return None
    items: list[dict[str, Any]] = []
    pos += 1
    while True:
        pos = _skip(text, pos, _WHITESPACE + ",")
        if pos >= len(text) or text[pos] != "{":
            return items
        end = _match_object(text, pos)
        if end is None:
            return items
        try:
            obj = json.loads(text[pos:end], parse_constant=_reject_constant)
        except ValueError:
            return items
        items.append(obj)
        pos = end


_EXTRACTORS = {
    "string": extract_string_field,
    "string_array": extract_string_array_field,
    "object_array": extract_object_array_field,
}


def extract_previews(text: str) -> dict[str, Any]:
    """Current value of every streamed field (None where not yet present)."""
    return {key: _EXTRACTORS[kind](text, key) for key, kind in STREAMED_FIELDS.items()}


# ---------------------------------------------------------------------------
# De-duplication
# ---------------------------------------------------------------------------

class PreviewTracker:
    """Remembers the last preview emitted per field during one turn.

    A field is re-emitted only when its extracted value differs by value
    from the previous emission, so growing text that leaves a field
    unchanged produces no duplicate update.
    """

    def __init__(self) -> None:
        self._last: dict[str, Any] = {}

    def changed(self, field: str, value: Any) -> bool:
        if value is None:
            return False
        if field in self._last and self._last[field] == value:
            return False
        self._last[field] = copy.deepcopy(value)
        return True
