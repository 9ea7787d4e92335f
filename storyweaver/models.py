"""Core domain models.

Every stage of a turn and every storage function operates on these types.
Pydantic is used for validation and serialisation at every data boundary.

Persisted records (templates, sessions) use snake_case field names. The
provider reply models (StepResult and friends) speak the camelCase wire
format that the JSON Schema sent to the provider describes.
"""

from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

ValueType = Literal[
    "boolean",
    "integer",
    "float",
    "number",
    "string",
    "text",
    "array",
    "object",
]

NUMERIC_TYPES = frozenset({"integer", "float", "number"})

# bool before int: a strict int match would otherwise swallow True/False
Scalar = bool | int | float | str
ValuePayload = Scalar | list[Scalar] | dict[str, Scalar | list[Scalar]]


# ---------------------------------------------------------------------------
# Templates and tracked values
# ---------------------------------------------------------------------------

class ValueDefinition(BaseModel):
    """One tracked value a template asks the game master to maintain."""

    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    type: ValueType
    description: str | None = None
    visibility: Literal["public", "hidden"] = "public"
    default_value: ValuePayload | None = None
    min: int | float | None = None
    max: int | float | None = None
    max_length: int | None = None
    example: str | None = None

    @model_validator(mode="after")
    def _check_constraints(self) -> ValueDefinition:
        numeric = self.type in NUMERIC_TYPES
        if not numeric and (self.min is not None or self.max is not None):
            raise ValueError("min/max are only valid for integer/float/number values")
        if self.type != "array" and self.max_length is not None:
            raise ValueError("max_length is only valid for array values")
        if self.max_length is not None and self.max_length <= 0:
            raise ValueError("max_length must be a positive integer")
        for bound in (self.min, self.max):
            if bound is None:
                continue
            if not math.isfinite(bound):
                raise ValueError("min/max must be finite numbers")
            if self.type == "integer" and not float(bound).is_integer():
                raise ValueError("integer min/max must be whole numbers")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("min cannot be greater than max")
        return self


class Template(BaseModel):
    """Reusable story definition: narrative instructions plus tracked values."""

    id: str
    title: str
    slug: str
    genre: str | None = None
    setting: str | None = None
    premise: str | None = None
    safety: str | None = None
    instruction_blocks: list[str] = Field(default_factory=list)
    value_definitions: list[ValueDefinition]
    roll_mode: bool = False
    created_at: str = ""
    updated_at: str = ""


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

class MemoryEntry(BaseModel):
    """A durable fact kept across turns, hidden from the player."""

    id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    tags: list[str] = Field(default_factory=list)
    created_at: str
    updated_at: str


class StepChange(BaseModel):
    value_id: str
    previous: ValuePayload | None = None  # absent when the value was never set
    next: ValuePayload
    reason: str | None = None


class Step(BaseModel):
    """One recorded turn in a session's append-only history."""

    id: str
    player_action: str
    narrative: str
    state_changes: list[StepChange] = Field(default_factory=list)
    player_options: list[str] = Field(default_factory=list)
    created_at: str
    roll: int | None = Field(default=None, ge=1, le=20)


class Session(BaseModel):
    """One play-through against a template. The unit of persistence."""

    id: str = ""
    template_id: str
    title: str
    summary: str | None = None
    memory_overview_cursor: int = Field(default=0, ge=0)
    session_value_definitions: list[ValueDefinition] = Field(default_factory=list)
    values: dict[str, ValuePayload] = Field(default_factory=dict)
    memories: list[MemoryEntry] = Field(default_factory=list)
    history: list[Step] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @model_validator(mode="after")
    def _clamp_cursor(self) -> Session:
        # history may have been trimmed by hand; the cursor never points past it
        if self.memory_overview_cursor > len(self.history):
            self.memory_overview_cursor = len(self.history)
        return self


# ---------------------------------------------------------------------------
# Provider replies (camelCase wire format)
# ---------------------------------------------------------------------------

class _WireModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class StateChange(_WireModel):
    value_id: str
    next: ValuePayload
    reason: str | None = None


class MemoryChange(_WireModel):
    op: Literal["add", "update", "remove"]
    id: str | None = None
    text: str | None = None
    tags: list[str] | None = None


def _check_memory_changes(changes: list[MemoryChange]) -> None:
    for index, change in enumerate(changes):
        if change.op == "add" and not (change.text or "").strip():
            raise ValueError(f"memoryChanges[{index}]: add requires text")
        if change.op in ("update", "remove") and not (change.id or "").strip():
            raise ValueError(f"memoryChanges[{index}]: {change.op} requires id")


class StepResult(_WireModel):
    """The structured reply to a turn request."""

    narrative: str
    summary: str | None = None
    player_options: list[str] = Field(default_factory=list)
    state_changes: list[StateChange] = Field(default_factory=list)
    memory_changes: list[MemoryChange] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_memory_contract(self) -> StepResult:
        _check_memory_changes(self.memory_changes)
        return self


class ConsolidationResult(_WireModel):
    """The structured reply to a memory overview request."""

    memory_changes: list[MemoryChange]

    @model_validator(mode="after")
    def _check_memory_contract(self) -> ConsolidationResult:
        _check_memory_changes(self.memory_changes)
        return self


class PromptPacket(BaseModel):
    system: str
    user: str


# ---------------------------------------------------------------------------
# Template blueprints (AI drafting, camelCase wire format)
# ---------------------------------------------------------------------------

class BlueprintValue(_WireModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(pattern=r"^[a-z0-9_-]+$")
    label: str = Field(min_length=1)
    type: ValueType
    description: str | None = None
    default_value: ValuePayload | None = None
    min: int | float | None = None
    max: int | float | None = None
    max_length: int | None = None


class TemplateBlueprint(_WireModel):
    """The structured reply to a template drafting request."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=3)
    premise: str | None = None
    genre: str | None = None
    setting: str | None = None
    safety: str | None = None
    instruction_blocks: list[str] = Field(default_factory=list)
    values: list[BlueprintValue] = Field(min_length=1, max_length=10)
