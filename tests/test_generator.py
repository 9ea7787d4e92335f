"""Tests for template drafting with a stubbed provider."""

import json
from unittest.mock import AsyncMock

import pytest

from storyweaver.generator import TemplateGenerationError, blueprint_to_draft, generate_template
from storyweaver.llm import ProviderError
from storyweaver.models import Template, TemplateBlueprint, ValueDefinition


def blueprint_reply(**fields) -> str:
    body = {
        "title": "Storm Harbor",
        "premise": "The harbor master has vanished.",
        "genre": "Nautical mystery",
        "setting": "A drowned port town",
        "safety": "No graphic violence.",
        "instructionBlocks": ["Let the tide set the pace.", ""],
        "values": [
            {"id": "hull", "label": "Hull", "type": "integer", "description": "Ship integrity",
             "defaultValue": 10, "min": 0, "max": 10, "maxLength": None},
            {"id": "cargo", "label": "Cargo", "type": "array", "description": "",
             "defaultValue": [], "min": None, "max": None, "maxLength": 5},
            {"id": "calm", "label": "Calm Seas", "type": "boolean", "description": "Weather",
             "defaultValue": True, "min": 0, "max": 1, "maxLength": 3},
        ],
    }
    body.update(fields)
    return json.dumps(body)


@pytest.fixture
def base() -> Template:
    return Template(
        id="t1",
        title="The Lantern Keep",
        slug="the-lantern-keep",
        roll_mode=True,
        value_definitions=[
            ValueDefinition(id="hull", label="Hull", type="integer", visibility="hidden", example="7"),
        ],
    )


class TestGenerateTemplate:
    async def test_new_template(self) -> None:
        llm = AsyncMock(return_value=blueprint_reply())
        draft = await generate_template(llm, "A drowned port")

        stage, packet, fmt = llm.call_args.args
        assert stage == "template_blueprint"
        assert fmt["name"] == "template_blueprint_v1"
        assert '"""A drowned port"""' in packet.user
        assert "on_text" not in llm.call_args.kwargs

        assert draft.title == "Storm Harbor"
        assert draft.instruction_blocks == ["Let the tide set the pace."]
        assert draft.roll_mode is False
        hull, cargo, calm = draft.value_definitions
        assert (hull.min, hull.max, hull.default_value) == (0, 10, 10)
        assert cargo.max_length == 5
        assert cargo.description is None
        assert (calm.min, calm.max, calm.max_length) == (None, None, None)

    async def test_edit_keeps_visibility_and_roll_mode(self, base) -> None:
        llm = AsyncMock(return_value=blueprint_reply())
        draft = await generate_template(llm, "Add cargo", base=base)

        packet = llm.call_args.args[1]
        assert packet.user.startswith("You are editing an existing GM template.")
        assert draft.roll_mode is True
        hull = draft.value_definitions[0]
        assert (hull.visibility, hull.example) == ("hidden", "7")
        assert draft.value_definitions[1].visibility == "public"

    async def test_code_fenced_reply_accepted(self) -> None:
        llm = AsyncMock(return_value=f"```json\n{blueprint_reply()}\n```")
        draft = await generate_template(llm, "A drowned port")
        assert draft.title == "Storm Harbor"

    async def test_invalid_json_raises(self) -> None:
        llm = AsyncMock(return_value="Here is your template!")
        with pytest.raises(TemplateGenerationError, match="not valid JSON"):
            await generate_template(llm, "A drowned port")

    async def test_missing_values_raises(self) -> None:
        llm = AsyncMock(return_value=blueprint_reply(values=[]))
        with pytest.raises(TemplateGenerationError):
            await generate_template(llm, "A drowned port")

    async def test_bad_value_id_raises(self) -> None:
        llm = AsyncMock(return_value=blueprint_reply(values=[
            {"id": "Hull Points", "label": "Hull", "type": "integer"},
        ]))
        with pytest.raises(TemplateGenerationError):
            await generate_template(llm, "A drowned port")

    async def test_provider_error_propagates(self) -> None:
        llm = AsyncMock(side_effect=ProviderError("LLM backend returned HTTP 500"))
        with pytest.raises(ProviderError):
            await generate_template(llm, "A drowned port")


class TestBlueprintToDraft:
    def test_swapped_bounds_are_reordered(self) -> None:
        blueprint = TemplateBlueprint.model_validate({
            "title": "Storm Harbor",
            "values": [{"id": "fuel", "label": "Fuel", "type": "float", "min": 5, "max": 1}],
        })
        fuel = blueprint_to_draft(blueprint).value_definitions[0]
        assert (fuel.min, fuel.max) == (1, 5)

    def test_duplicate_ids_keep_first(self) -> None:
        blueprint = TemplateBlueprint.model_validate({
            "title": "Storm Harbor",
            "values": [
                {"id": "hull", "label": "Hull", "type": "integer"},
                {"id": "hull", "label": "Hull Again", "type": "string"},
            ],
        })
        assert [d.label for d in blueprint_to_draft(blueprint).value_definitions] == ["Hull"]

    def test_fractional_integer_bounds_raise(self) -> None:
        blueprint = TemplateBlueprint.model_validate({
            "title": "Storm Harbor",
            "values": [{"id": "hull", "label": "Hull", "type": "integer", "min": 0.5}],
        })
        with pytest.raises(TemplateGenerationError, match="invalid"):
            blueprint_to_draft(blueprint)

    def test_zero_max_length_dropped(self) -> None:
        blueprint = TemplateBlueprint.model_validate({
            "title": "Storm Harbor",
            "values": [{"id": "cargo", "label": "Cargo", "type": "array", "maxLength": 0}],
        })
        assert blueprint_to_draft(blueprint).value_definitions[0].max_length is None
