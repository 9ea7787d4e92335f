"""Template CRUD operations (merged presets + user data, copy-on-write)."""

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from storyweaver.models import Template, ValueDefinition

from .core import preset_templates_dir, slugify, templates_dir, write_json

logger = logging.getLogger(__name__)


class TemplateDraft(BaseModel):
    """Editable template fields; id, slug and timestamps are assigned on save."""

    title: str = Field(min_length=3)
    premise: str | None = None
    genre: str | None = None
    setting: str | None = None
    safety: str | None = None
    instruction_blocks: list[str] = Field(default_factory=list)
    value_definitions: list[ValueDefinition] = Field(min_length=1)
    roll_mode: bool = False


def _read_template(path: Path, slug: str) -> Template | None:
    try:
        data = json.loads(path.read_text())
        data["slug"] = slug
        return Template.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Skipping unreadable template {path.name}: {e}")
        return None


def list_templates() -> list[Template]:
    by_slug: dict[str, Template] = {}
    # Presets first (lower priority)
    if preset_templates_dir().is_dir():
        for path in sorted(preset_templates_dir().glob("*.json")):
            template = _read_template(path, path.stem)
            if template:
                by_slug[path.stem] = template
    # User templates override
    for path in sorted(templates_dir().glob("*.json")):
        template = _read_template(path, path.stem)
        if template:
            by_slug[path.stem] = template
    return sorted(by_slug.values(), key=lambda t: t.updated_at, reverse=True)


def get_template(id_or_slug: str) -> Template | None:
    # Data dir first
    user_path = templates_dir() / f"{id_or_slug}.json"
    if user_path.is_file():
        return _read_template(user_path, id_or_slug)
    # Preset fallback
    preset_path = preset_templates_dir() / f"{id_or_slug}.json"
    if preset_path.is_file():
        return _read_template(preset_path, id_or_slug)
    # Sessions reference templates by id
    for template in list_templates():
        if template.id == id_or_slug:
            return template
    return None


def next_slug(title: str) -> str:
    """Slug for a new template, suffixed -2, -3, ... on collision."""
    base = slugify(title)
    taken = {p.stem for p in templates_dir().glob("*.json")}
    if preset_templates_dir().is_dir():
        taken |= {p.stem for p in preset_templates_dir().glob("*.json")}
    slug = base
    counter = 2
    while slug in taken:
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def save_template(draft: TemplateDraft, existing: Template | None = None) -> Template:
    """Create a template, or update `existing` in place (presets are copied on write)."""
    now = datetime.now(timezone.utc).isoformat()
    if existing is None:
        base = {"id": str(uuid.uuid4()), "slug": next_slug(draft.title), "created_at": now}
    else:
        base = {"id": existing.id, "slug": existing.slug, "created_at": existing.created_at}
    template = Template(**base, **draft.model_dump(), updated_at=now)
    write_json(templates_dir() / f"{template.slug}.json", template.model_dump(mode="json"))
    return template


def delete_template(slug: str) -> bool:
    """Delete a user template (or the user override hiding a preset)."""
    json_path = templates_dir() / f"{slug}.json"
    if not json_path.is_file():
        return False
    json_path.unlink()
    return True
