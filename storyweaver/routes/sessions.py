"""Session CRUD + turn endpoints."""

import logging

from fastapi import APIRouter, HTTPException

from storyweaver import storage
from storyweaver.llm import HttpLLM, ProviderError
from storyweaver.pipeline import TurnTimeoutError, TurnValidationError, run_turn
from storyweaver.prompts import ConfigurationError

from .models import CreateSession, TurnBody

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/sessions")
async def list_sessions(template: str | None = None):
    """List sessions, newest first, optionally for one template id."""
    return storage.list_sessions(template)


@router.post("/sessions", status_code=201)
async def create_session(body: CreateSession):
    """Start a new session from a template."""
    template = storage.get_template(body.template)
    if not template:
        raise HTTPException(404, "Template not found")
    return storage.create_session(template, body.title, body.session_value_definitions)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Get a single session with values, memories and history."""
    session = storage.load_session(session_id)
    if not session:
        raise HTTPException(404, "Session not found")
    return session


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    """Delete a session."""
    if not storage.delete_session(session_id):
        raise HTTPException(404, "Session not found")
    return {"ok": True}


@router.post("/sessions/{session_id}/turn")
async def take_turn(session_id: str, body: TurnBody):
    """Run one turn for the session and return the persisted outcome."""
    session = storage.load_session(session_id)
    if not session:
        raise HTTPException(404, "Session not found")
    template = storage.get_template(session.template_id)
    if not template:
        raise HTTPException(404, "Template not found")

    config = storage.get_config()
    timeout = float(config["turn_timeout_seconds"])
    llm = HttpLLM(
        provider_url=config["provider_url"],
        api_key=config["api_key"],
        provider_format=config["provider_format"],
        model=config["model"],
        timeout=timeout,
    )

    try:
        outcome = await run_turn(
            template=template,
            session=session,
            player_action=body.action,
            llm=llm,
            store=storage,
            memory_turn_count=config["memory_turn_count"],
            timeout=timeout,
        )
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    except (TurnValidationError, ProviderError) as e:
        logger.warning(f"Turn failed for session {session_id}: {e}")
        raise HTTPException(502, str(e))
    except TurnTimeoutError as e:
        raise HTTPException(504, str(e))

    return outcome
