"""Pydantic request models for API endpoints."""

from typing import Literal

from pydantic import BaseModel, Field

from storyweaver.models import ValueDefinition


class CreateSession(BaseModel):
    template: str  # template slug or id
    title: str = Field(min_length=1)
    session_value_definitions: list[ValueDefinition] = Field(default_factory=list)


class TurnBody(BaseModel):
    action: str = ""


class UpdateSettings(BaseModel):
    provider_url: str | None = None
    provider_format: Literal["responses", "chat"] | None = None
    api_key: str | None = None
    model: str | None = None
    memory_turn_count: int | None = None
    turn_timeout_seconds: float | None = Field(default=None, gt=0)


class GenerateTemplate(BaseModel):
    prompt: str = Field(min_length=1, pattern=r"\S")
    base: str | None = None  # slug or id of the template to rewrite
