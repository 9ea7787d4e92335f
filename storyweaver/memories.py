"""Long-term memory reconciliation.

The provider proposes add/update/remove operations against the session's
hidden memory list. They are applied in order; malformed operations are
no-ops. After all operations the list is capped at MAX_MEMORIES by list
position: the earliest entries are dropped first, regardless of when they
were last updated.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from storyweaver.models import MemoryChange, MemoryEntry

MAX_MEMORIES = 50


def _unique_tags(tags: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(tags))


def apply_memory_changes(
    current: Iterable[MemoryEntry],
    changes: Iterable[MemoryChange],
    *,
    now: str | None = None,
    new_id: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> list[MemoryEntry]:
    """Return the memory list with `changes` folded in. Inputs are not mutated."""
    stamp = now or datetime.now(timezone.utc).isoformat()
    updated = list(current)
    ids = {entry.id for entry in updated}

    for change in changes:
        if change.op == "remove":
            target = (change.id or "").strip()
            if not target:
                continue
            updated = [entry for entry in updated if entry.id != target]
            ids.discard(target)

        elif change.op == "update":
            target = (change.id or "").strip()
            if not target:
                continue
            for i, entry in enumerate(updated):
                if entry.id != target:
                    continue
                fields: dict = {"updated_at": stamp}
                if (change.text or "").strip():
                    fields["text"] = change.text
                if change.tags is not None:
                    fields["tags"] = _unique_tags(change.tags)
                updated[i] = entry.model_copy(update=fields)

        elif change.op == "add":
            text = (change.text or "").strip()
            if not text:
                continue
            entry_id = (change.id or "").strip()
            while not entry_id or entry_id in ids:
                entry_id = new_id()
            ids.add(entry_id)
            updated.append(MemoryEntry(
                id=entry_id,
                text=text,
                tags=_unique_tags(change.tags or []),
                created_at=stamp,
                updated_at=stamp,
            ))

    if len(updated) > MAX_MEMORIES:
        updated = updated[-MAX_MEMORIES:]
    return updated
