"""Session records: one JSON file per play-through.

save_session() is the single persistence point of a turn. It writes the
whole session through a temp file and an atomic rename, so a crash mid-write
leaves the previously saved session intact.
"""

import logging
import uuid
from datetime import datetime, timezone

from pydantic import ValidationError

from storyweaver.models import Session, Template, ValueDefinition
from storyweaver.values import build_effective_template, build_initial_values

from .core import sessions_dir, write_json

logger = logging.getLogger(__name__)


def list_sessions(template_id: str | None = None) -> list[Session]:
    """All readable sessions, newest first, optionally for one template."""
    results: list[Session] = []
    for path in sessions_dir().glob("*.json"):
        try:
            session = Session.model_validate_json(path.read_text())
        except ValidationError as e:
            logger.warning(f"Skipping unreadable session {path.name}: {e}")
            continue
        if template_id and session.template_id != template_id:
            continue
        results.append(session)
    return sorted(results, key=lambda s: s.updated_at, reverse=True)


def load_session(session_id: str) -> Session | None:
    path = sessions_dir() / f"{session_id}.json"
    if not path.is_file():
        return None
    return Session.model_validate_json(path.read_text())


def save_session(session: Session) -> Session:
    """Persist a session. Assigns id/created_at on first save, stamps updated_at."""
    now = datetime.now(timezone.utc).isoformat()
    saved = session.model_copy(update={
        "id": session.id or str(uuid.uuid4()),
        "created_at": session.created_at or now,
        "updated_at": now,
    })
    write_json(sessions_dir() / f"{saved.id}.json", saved.model_dump(mode="json"))
    return saved


def create_session(
    template: Template,
    title: str,
    session_value_definitions: list[ValueDefinition] | None = None,
) -> Session:
    """Start a session from a template with every value at its default."""
    draft = Session(
        template_id=template.id,
        title=title,
        session_value_definitions=session_value_definitions or [],
    )
    effective = build_effective_template(template, draft)
    draft.values = build_initial_values(effective.value_definitions)
    return save_session(draft)


def delete_session(session_id: str) -> bool:
    path = sessions_dir() / f"{session_id}.json"
    if not path.is_file():
        return False
    path.unlink()
    return True
