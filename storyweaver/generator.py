"""Template drafting: turn a free-text request into an unsaved TemplateDraft.

A single non-streamed provider call returns a TemplateBlueprint. In edit
mode the current template is sent along and the reply replaces it whole;
visibility and examples of tracked values whose ids survive are carried
over, as is the template's roll mode.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from storyweaver.llm import LLM
from storyweaver.models import (
    NUMERIC_TYPES,
    BlueprintValue,
    Template,
    TemplateBlueprint,
    ValueDefinition,
)
from storyweaver.pipeline import TurnValidationError, parse_reply
from storyweaver.prompts import build_template_blueprint_format, build_template_blueprint_packet
from storyweaver.storage import TemplateDraft

logger = logging.getLogger(__name__)


class TemplateGenerationError(ValueError):
    """The drafted template was malformed or could not become a valid template."""


async def generate_template(llm: LLM, request: str, base: Template | None = None) -> TemplateDraft:
    """Ask the provider for a template draft; `base` switches to edit mode."""
    packet = build_template_blueprint_packet(request, base)
    raw = await llm("template_blueprint", packet, build_template_blueprint_format())
    try:
        blueprint = parse_reply(raw, TemplateBlueprint)
    except TurnValidationError as e:
        raise TemplateGenerationError(str(e)) from e
    return blueprint_to_draft(blueprint, base)


def blueprint_to_draft(blueprint: TemplateBlueprint, base: Template | None = None) -> TemplateDraft:
    previous = {d.id: d for d in base.value_definitions} if base else {}
    definitions: list[ValueDefinition] = []
    seen: set[str] = set()
    try:
        for value in blueprint.values:
            if value.id in seen:
                logger.warning(f"Dropping duplicate tracked value {value.id!r} from draft")
                continue
            seen.add(value.id)
            definitions.append(_to_definition(value, previous.get(value.id)))
        return TemplateDraft(
            title=blueprint.title,
            premise=blueprint.premise or None,
            genre=blueprint.genre or None,
            setting=blueprint.setting or None,
            safety=blueprint.safety or None,
            instruction_blocks=[b for b in blueprint.instruction_blocks if b.strip()],
            value_definitions=definitions,
            roll_mode=base.roll_mode if base else False,
        )
    except ValidationError as e:
        raise TemplateGenerationError(f"Drafted template is invalid: {e}") from e


def _to_definition(value: BlueprintValue, previous: ValueDefinition | None) -> ValueDefinition:
    # models fill every schema slot; bounds only count where the type allows them
    low, high = (value.min, value.max) if value.type in NUMERIC_TYPES else (None, None)
    if low is not None and high is not None and low > high:
        low, high = high, low
    max_length = value.max_length if value.type == "array" and (value.max_length or 0) > 0 else None
    return ValueDefinition(
        id=value.id,
        label=value.label,
        type=value.type,
        description=value.description or None,
        visibility=previous.visibility if previous else "public",
        default_value=value.default_value,
        min=low,
        max=high,
        max_length=max_length,
        example=previous.example if previous else None,
    )
