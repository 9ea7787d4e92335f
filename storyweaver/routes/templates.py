"""Template CRUD endpoints plus AI drafting."""

import logging

from fastapi import APIRouter, HTTPException

from storyweaver import storage
from storyweaver.generator import TemplateGenerationError, generate_template
from storyweaver.llm import HttpLLM, ProviderError
from storyweaver.storage import TemplateDraft

from .models import GenerateTemplate

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/templates")
async def list_templates():
    """List all templates (presets merged with user-created), newest first."""
    return storage.list_templates()


@router.post("/templates", status_code=201)
async def create_template(body: TemplateDraft):
    """Create a new template."""
    return storage.save_template(body)


@router.post("/templates/generate")
async def draft_template(body: GenerateTemplate) -> TemplateDraft:
    """Draft a template from a free-text request. Nothing is saved.

    With `base`, the named template is rewritten according to the request.
    """
    base = None
    if body.base:
        base = storage.get_template(body.base)
        if not base:
            raise HTTPException(404, "Template not found")

    config = storage.get_config()
    llm = HttpLLM(
        provider_url=config["provider_url"],
        api_key=config["api_key"],
        provider_format=config["provider_format"],
        model=config["model"],
        timeout=float(config["turn_timeout_seconds"]),
    )
    try:
        return await generate_template(llm, body.prompt, base)
    except (TemplateGenerationError, ProviderError) as e:
        logger.warning(f"Template drafting failed: {e}")
        raise HTTPException(502, str(e))


@router.get("/templates/{slug}")
async def get_template(slug: str):
    """Get a single template by slug (or id)."""
    template = storage.get_template(slug)
    if not template:
        raise HTTPException(404, "Template not found")
    return template


@router.put("/templates/{slug}")
async def update_template(slug: str, body: TemplateDraft):
    """Replace a template's editable fields. Presets are copied on write."""
    existing = storage.get_template(slug)
    if not existing:
        raise HTTPException(404, "Template not found")
    return storage.save_template(body, existing)


@router.delete("/templates/{slug}")
async def delete_template(slug: str):
    """Delete a template (or remove user override to reveal preset)."""
    if not storage.delete_template(slug):
        raise HTTPException(404, "Template not found")
    return {"ok": True}
