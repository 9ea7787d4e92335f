"""Prompt packets and structured-output schemas for provider calls.

Prompts are Handlebars templates rendered with pybars. Three packets exist:

  turn               : system + user prompt for one player action
  memory_overview    : consolidation-only prompt that prunes and merges the
                       long-term memory list using a broader window of turns
  template_blueprint : drafts a new template, or rewrites an existing one,
                       from a free-text request

Every tracked value is snapshotted through coerce_value() before it is
shown to the model, so the prompt never displays a value the engine would
not itself accept.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, get_args

import pybars

from storyweaver.models import PromptPacket, Session, Template, ValueDefinition, ValueType
from storyweaver.values import snapshot_values

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

DEFAULT_MEMORY_TURN_COUNT = 4
MIN_MEMORY_TURN_COUNT = 1
MAX_MEMORY_TURN_COUNT = 10


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


class ConfigurationError(Exception):
    """Raised when a template cannot drive a turn (e.g. no tracked values)."""


# ── Handlebars rendering ─────────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context, helpers=_HELPERS)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

TURN_SYSTEM_PROMPT = """\
You are an AI game master running the narrative "{{{title}}}".
Setting: {{{setting}}}
Premise: {{{premise}}}
Safety Guardrails: {{{safety}}}
Never break character. Update tracked values only when required. Maintain a \
hidden long-term memory list of important facts, promises, NPC details, \
unresolved threats, and key discoveries. Only surface those memories \
indirectly through the narrative when relevant. Always obey the template \
instructions below.
{{{instructions}}}"""

TURN_USER_PROMPT = """\
Player Action: {{{action}}}
Current Values:
{{{value_lines}}}
Long-Term Memory (hidden, GM-only):
{{#if memories}}{{#last memories 20}}- ({{{id}}}) {{{text}}}{{{tag_suffix}}}
{{/last}}{{else}}None yet.
{{/if}}Recent Turns:
{{#if steps}}{{#each steps}}{{{this}}}
{{/each}}{{else}}First turn: provide an exciting opener.
{{/if}}
Respond with a cinematic paragraph that advances the story, then describe \
every tracked value you changed.

Also include memoryChanges to add/update/remove any long-term memory entries \
that should persist across future turns.
Each memoryChanges item MUST include keys: op, id, text, tags. Use null for \
unused fields."""

MEMORY_OVERVIEW_SYSTEM_PROMPT = """\
You are the archivist for the narrative "{{{title}}}". You maintain the game \
master's hidden long-term memory list. You never write story text.
Setting: {{{setting}}}
Premise: {{{premise}}}
Keep the list short, factual, and useful for future turns."""

MEMORY_OVERVIEW_USER_PROMPT = """\
Review the long-term memory list against the recent turns below.
Current Values:
{{{value_lines}}}
Long-Term Memory (up to 50 entries):
{{#if memories}}{{#last memories 50}}- ({{{id}}}) {{{text}}}{{{tag_suffix}}}
{{/last}}{{else}}None yet.
{{/if}}Recent Turns:
{{#if steps}}{{#each steps}}{{{this}}}
{{/each}}{{else}}No turns yet.
{{/if}}
Rules:
- Merge entries that describe the same fact into one (update the survivor, \
remove the rest).
- Remove entries that are resolved, contradicted, or no longer relevant.
- Add entries only for durable facts from the recent turns that are missing.
- Never exceed 50 entries; prefer fewer, denser entries.
- Refer to existing entries by their id.
Return memoryChanges only. Each item MUST include keys: op, id, text, tags. \
Use null for unused fields. Return an empty list when nothing needs to change."""


TEMPLATE_BLUEPRINT_SYSTEM_PROMPT = """\
You are an award-winning tabletop RPG designer. Craft story templates with \
concrete stakes, clear safety guidance, and 3-8 precise tracked values. \
Generate compact JSON that follows the provided schema exactly.

For numeric tracked values (integer/float/number), you may optionally include \
min/max to establish bounds. For array tracked values, you may optionally \
include maxLength to cap list size."""

TEMPLATE_BLUEPRINT_NEW_PROMPT = '''\
Design a cinematic GM template for the following request:
"""{{{request}}}"""

Ensure each tracked value has a concise snake_case id, a descriptive label, \
and defaults that reflect the genre.'''

TEMPLATE_BLUEPRINT_EDIT_PROMPT = '''\
You are editing an existing GM template.

Current template JSON:
{{{base_json}}}

Edit request:
"""{{{request}}}"""

Return a fully updated template (not a diff) that follows the schema exactly.

Editing rules:
- Preserve existing tracked value ids whenever possible (do not rename ids \
unless the request explicitly requires it).
- Keep the tracked values list within 3-8 items.
- Keep safety guidance and instruction blocks concise and actionable.'''


# ── Packet building ──────────────────────────────────────


def clamp_turn_window(count: int | None) -> int:
    """Clamp a configured memory/turn window into [1, 10] (default 4)."""
    if count is None:
        return DEFAULT_MEMORY_TURN_COUNT
    return max(MIN_MEMORY_TURN_COUNT, min(MAX_MEMORY_TURN_COUNT, int(count)))


def format_constraints(definition: ValueDefinition) -> str:
    if definition.type in ("integer", "float", "number"):
        parts = []
        if definition.min is not None:
            parts.append(f"min={definition.min}")
        if definition.max is not None:
            parts.append(f"max={definition.max}")
        return f" [{', '.join(parts)}]" if parts else ""
    if definition.type == "array" and definition.max_length:
        return f" [maxLength={definition.max_length}]"
    return ""


def format_value(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)


def _value_lines(template: Template, session: Session) -> str:
    snapshot = snapshot_values(template.value_definitions, session.values)
    lines = [
        f"- {d.label} ({d.type} :: {d.id}){format_constraints(d)} = {format_value(snapshot[d.id])}"
        for d in template.value_definitions
    ]
    return "\n".join(lines) or "No tracked values yet."


def _recent_steps(session: Session, window: int) -> list[str]:
    steps = []
    for step in session.history[-window:]:
        block = f"• Player: {step.player_action}\n  GM: {step.narrative}"
        reasons = [
            f"    - {c.value_id}: {c.reason}"
            for c in step.state_changes
            if (c.reason or "").strip()
        ]
        if reasons:
            block += "\n  Value Changes:\n" + "\n".join(reasons)
        steps.append(block)
    return steps


def _memory_context(session: Session) -> list[dict[str, str]]:
    return [
        {
            "id": m.id,
            "text": m.text,
            "tag_suffix": f" [{', '.join(m.tags)}]" if m.tags else "",
        }
        for m in session.memories
    ]


def _require_values(template: Template) -> None:
    if not template.value_definitions:
        raise ConfigurationError(
            "Templates require at least one value definition to build prompts."
        )


def build_prompt_packet(
    template: Template,
    session: Session,
    player_action: str,
    memory_turn_count: int | None = None,
) -> PromptPacket:
    """Build the system/user prompts for one turn.

    `template` must already carry any session-only value definitions
    (see build_effective_template).
    """
    _require_values(template)
    window = clamp_turn_window(memory_turn_count)
    instructions = "\n\n".join(
        f"[Block {i}] {block}" for i, block in enumerate(template.instruction_blocks, 1)
    )
    system = render_prompt(TURN_SYSTEM_PROMPT, {
        "title": template.title,
        "setting": template.setting or "Flexible",
        "premise": template.premise or "Player-driven",
        "safety": template.safety or "Keep it safe, heroic, and PG-13.",
        "instructions": instructions,
    })
    user = render_prompt(TURN_USER_PROMPT, {
        "action": player_action or "Continue the adventure.",
        "value_lines": _value_lines(template, session),
        "memories": _memory_context(session),
        "steps": _recent_steps(session, window),
    })
    return PromptPacket(system=system, user=user)


def build_memory_overview_packet(
    template: Template,
    session: Session,
    memory_turn_count: int | None = None,
) -> PromptPacket:
    """Build the consolidation prompt used by the periodic memory overview."""
    _require_values(template)
    window = clamp_turn_window(memory_turn_count)
    system = render_prompt(MEMORY_OVERVIEW_SYSTEM_PROMPT, {
        "title": template.title,
        "setting": template.setting or "Flexible",
        "premise": template.premise or "Player-driven",
    })
    user = render_prompt(MEMORY_OVERVIEW_USER_PROMPT, {
        "value_lines": _value_lines(template, session),
        "memories": _memory_context(session),
        "steps": _recent_steps(session, window),
    })
    return PromptPacket(system=system, user=user)


def template_blueprint_json(template: Template) -> str:
    """The editable part of a template, shaped like a blueprint reply."""
    blueprint = {
        "title": template.title,
        "premise": template.premise,
        "genre": template.genre,
        "setting": template.setting,
        "safety": template.safety,
        "instructionBlocks": template.instruction_blocks,
        "values": [
            {
                "id": d.id,
                "label": d.label,
                "type": d.type,
                "description": d.description,
                "defaultValue": d.default_value,
                "min": d.min,
                "max": d.max,
                "maxLength": d.max_length,
            }
            for d in template.value_definitions
        ],
    }
    return json.dumps(blueprint, indent=2, ensure_ascii=False)


def build_template_blueprint_packet(request: str, base: Template | None = None) -> PromptPacket:
    """Build the drafting prompt. With `base`, the reply rewrites that template."""
    if base is None:
        user = render_prompt(TEMPLATE_BLUEPRINT_NEW_PROMPT, {"request": request})
    else:
        user = render_prompt(TEMPLATE_BLUEPRINT_EDIT_PROMPT, {
            "request": request,
            "base_json": template_blueprint_json(base),
        })
    return PromptPacket(system=TEMPLATE_BLUEPRINT_SYSTEM_PROMPT, user=user)


# ── Structured-output schemas ────────────────────────────

_SCALAR_SCHEMA: dict[str, Any] = {
    "anyOf": [{"type": "string"}, {"type": "number"}, {"type": "boolean"}],
}

_VALUE_SCHEMA: dict[str, Any] = {
    "anyOf": [
        _SCALAR_SCHEMA,
        {"type": "array", "items": _SCALAR_SCHEMA},
        {
            "type": "object",
            "additionalProperties": {
                "anyOf": [_SCALAR_SCHEMA, {"type": "array", "items": _SCALAR_SCHEMA}],
            },
        },
    ],
}

_MEMORY_CHANGES_SCHEMA: dict[str, Any] = {
    "type": "array",
    "description": (
        "Hidden long-term memory operations. Use add/update/remove to keep "
        "important story facts persistent across turns."
    ),
    "items": {
        "type": "object",
        "required": ["op", "id", "text", "tags"],
        "additionalProperties": False,
        "properties": {
            "op": {"type": "string", "enum": ["add", "update", "remove"]},
            "id": {"anyOf": [{"type": "string"}, {"type": "null"}]},
            "text": {"anyOf": [{"type": "string"}, {"type": "null"}]},
            "tags": {
                "anyOf": [
                    {"type": "array", "items": {"type": "string"}},
                    {"type": "null"},
                ],
            },
        },
    },
}


def build_response_format(template: Template) -> dict[str, Any]:
    """JSON Schema that constrains a turn reply to exactly the StepResult fields."""
    return {
        "name": f"game_step_{template.slug}".replace("-", "_"),
        "schema": {
            "type": "object",
            "required": ["narrative", "summary", "playerOptions", "stateChanges", "memoryChanges"],
            "additionalProperties": False,
            "properties": {
                "narrative": {
                    "type": "string",
                    "description": "Main cinematic narration returned to the player.",
                },
                "summary": {
                    "type": "string",
                    "description": "One sentence recap of the turn.",
                },
                "playerOptions": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Suggested next moves or prompts for the player.",
                },
                "stateChanges": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["valueId", "next", "reason"],
                        "additionalProperties": False,
                        "properties": {
                            "valueId": {
                                "type": "string",
                                "enum": [d.id for d in template.value_definitions],
                            },
                            "next": _VALUE_SCHEMA,
                            "reason": {"type": "string"},
                        },
                    },
                },
                "memoryChanges": _MEMORY_CHANGES_SCHEMA,
            },
        },
    }


def build_memory_overview_format(template: Template) -> dict[str, Any]:
    """JSON Schema for a consolidation reply: memoryChanges only."""
    return {
        "name": f"memory_overview_{template.slug}".replace("-", "_"),
        "schema": {
            "type": "object",
            "required": ["memoryChanges"],
            "additionalProperties": False,
            "properties": {"memoryChanges": _MEMORY_CHANGES_SCHEMA},
        },
    }


def _nullable(kind: str, description: str) -> dict[str, Any]:
    return {"anyOf": [{"type": kind}, {"type": "null"}], "description": description}


def build_template_blueprint_format() -> dict[str, Any]:
    """JSON Schema for a drafted template: story fields plus 3-8 tracked values."""
    return {
        "name": "template_blueprint_v1",
        "schema": {
            "type": "object",
            "required": [
                "title", "premise", "genre", "setting", "safety", "instructionBlocks", "values",
            ],
            "additionalProperties": False,
            "properties": {
                "title": {"type": "string"},
                "premise": {"type": "string"},
                "genre": {"type": "string"},
                "setting": {"type": "string"},
                "safety": {"type": "string"},
                "instructionBlocks": {
                    "type": "array",
                    "items": {"type": "string"},
                    "maxItems": 4,
                },
                "values": {
                    "type": "array",
                    "minItems": 3,
                    "maxItems": 8,
                    "items": {
                        "type": "object",
                        "required": [
                            "id", "label", "type", "description",
                            "defaultValue", "min", "max", "maxLength",
                        ],
                        "additionalProperties": False,
                        "properties": {
                            "id": {"type": "string", "pattern": "^[a-z0-9_-]+$"},
                            "label": {"type": "string"},
                            "type": {"type": "string", "enum": list(get_args(ValueType))},
                            "description": {"type": "string"},
                            "defaultValue": _VALUE_SCHEMA,
                            "min": _nullable(
                                "number", "Optional numeric minimum (only for integer/float/number).",
                            ),
                            "max": _nullable(
                                "number", "Optional numeric maximum (only for integer/float/number).",
                            ),
                            "maxLength": _nullable(
                                "number", "Optional max array length (only for array).",
                            ),
                        },
                    },
                },
            },
        },
    }
