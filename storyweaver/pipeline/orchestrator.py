"""Pipeline orchestrator: runs one player turn end-to-end.

Turn flow:
  1. Build the turn prompt packet and stream the provider reply, forwarding
     de-duplicated previews of narrative / playerOptions / stateChanges.
  2. Parse and strictly validate the final reply (StepResult).
  3. Coerce every {valueId, next} pair into the session values; unknown
     ids are skipped.
  4. Fold memoryChanges into the memory list.
  5. Roll a d20 when the template enables roll mode, record the Step.
  6. If enough turns have accumulated since the last memory overview, run
     a consolidation call (two attempts, fixed delay, then give up quietly).
  7. Persist the new session with a single save.

The whole turn runs under a timeout. One cancellation event is shared by
the turn request and any consolidation request it spawns.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Literal, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from storyweaver.llm import LLM, ProviderError
from storyweaver.memories import apply_memory_changes
from storyweaver.models import (
    ConsolidationResult,
    MemoryEntry,
    Session,
    Step,
    StepChange,
    StepResult,
    Template,
)
from storyweaver.prompts import (
    build_memory_overview_format,
    build_memory_overview_packet,
    build_prompt_packet,
    build_response_format,
    clamp_turn_window,
)
from storyweaver.values import (
    apply_value_changes,
    build_effective_template,
    coerce_value,
    fill_missing_values,
)

from .streaming import PreviewTracker, extract_previews

logger = logging.getLogger(__name__)

TURN_TIMEOUT_SECONDS = 120.0
CONSOLIDATION_ATTEMPTS = 2
CONSOLIDATION_RETRY_DELAY = 0.75

TurnPhase = Literal[
    "requesting",
    "validating",
    "reconciling",
    "consolidating",
    "persisting",
    "done",
    "failed",
]

T = TypeVar("T")
ReplyModel = TypeVar("ReplyModel", bound=BaseModel)


class TurnValidationError(ValueError):
    """The provider reply was not valid JSON or did not match the schema."""


class TurnTimeoutError(TimeoutError):
    """The turn did not settle within its time limit."""


class TurnCancelledError(Exception):
    """The caller cancelled the turn before it settled."""


class ConsolidationError(RuntimeError):
    """A memory overview attempt failed. Never fatal for the enclosing turn."""


class SessionStore(Protocol):
    def save_session(self, session: Session) -> Session: ...


class TurnOutcome(BaseModel):
    session: Session
    step: Step
    result: StepResult
    consolidated: bool = False


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

async def run_turn(
    *,
    template: Template,
    session: Session,
    player_action: str,
    llm: LLM,
    store: SessionStore,
    memory_turn_count: int | None = None,
    on_narrative: Callable[[str], None] | None = None,
    on_player_options: Callable[[list[str]], None] | None = None,
    on_state_changes: Callable[[list[dict[str, Any]]], None] | None = None,
    on_phase: Callable[[TurnPhase], None] | None = None,
    cancel: asyncio.Event | None = None,
    timeout: float = TURN_TIMEOUT_SECONDS,
    rng: random.Random | None = None,
) -> TurnOutcome:
    """Execute one player turn and return the persisted outcome.

    Raises ConfigurationError, TurnValidationError, ProviderError,
    TurnTimeoutError or TurnCancelledError; nothing is persisted when any of
    them is raised.
    """
    cancel = cancel or asyncio.Event()

    def phase(name: TurnPhase) -> None:
        if on_phase is not None:
            on_phase(name)

    turn = _run_turn(
        template=template,
        session=session,
        player_action=player_action,
        llm=llm,
        store=store,
        memory_turn_count=memory_turn_count,
        previews={
            "narrative": on_narrative,
            "playerOptions": on_player_options,
            "stateChanges": on_state_changes,
        },
        phase=phase,
        cancel=cancel,
        rng=rng or random.Random(),
    )
    deadline = asyncio.timeout(timeout)
    try:
        async with deadline:
            outcome = await turn
    except TimeoutError as e:
        phase("failed")
        if not deadline.expired():
            # raised by the provider itself, not by the turn deadline
            raise ProviderError(f"LLM backend timed out: {e}") from e
        cancel.set()
        raise TurnTimeoutError(f"Turn did not complete within {timeout:g}s") from e
    except Exception:
        phase("failed")
        raise
    phase("done")
    return outcome


# ---------------------------------------------------------------------------
# Turn body
# ---------------------------------------------------------------------------

async def _run_turn(
    *,
    template: Template,
    session: Session,
    player_action: str,
    llm: LLM,
    store: SessionStore,
    memory_turn_count: int | None,
    previews: dict[str, Callable[[Any], None] | None],
    phase: Callable[[TurnPhase], None],
    cancel: asyncio.Event,
    rng: random.Random,
) -> TurnOutcome:
    effective = build_effective_template(template, session)
    definitions = effective.value_definitions
    packet = build_prompt_packet(effective, session, player_action, memory_turn_count)

    # 1. Request (streamed)
    phase("requesting")
    tracker = PreviewTracker()

    def on_text(snapshot: str) -> None:
        try:
            for field, value in extract_previews(snapshot).items():
                callback = previews.get(field)
                if callback is not None and tracker.changed(field, value):
                    callback(value)
        except Exception:
            logger.warning("Preview extraction failed; continuing turn", exc_info=True)

    raw = await _cancellable(
        llm("turn", packet, build_response_format(effective), on_text=on_text),
        cancel,
    )

    # 2. Validate
    phase("validating")
    result = parse_reply(raw, StepResult)

    # 3-5. Reconcile
    phase("reconciling")
    current = fill_missing_values(definitions, session.values)
    values = apply_value_changes(definitions, current, result.state_changes)
    memories = apply_memory_changes(session.memories, result.memory_changes)

    by_id = {d.id: d for d in definitions}
    now = datetime.now(timezone.utc).isoformat()
    step = Step(
        id=str(uuid.uuid4()),
        player_action=player_action or "Continue",
        narrative=result.narrative,
        state_changes=[
            StepChange(
                value_id=change.value_id,
                previous=session.values.get(change.value_id),
                next=coerce_value(by_id[change.value_id], change.next),
                reason=change.reason,
            )
            for change in result.state_changes
            if change.value_id in by_id
        ],
        player_options=result.player_options,
        created_at=now,
        roll=rng.randint(1, 20) if effective.roll_mode else None,
    )
    updated = session.model_copy(update={
        "summary": result.summary or session.summary,
        "values": values,
        "memories": memories,
        "history": [*session.history, step],
    })

    # 6. Memory overview
    consolidated = False
    window = clamp_turn_window(memory_turn_count)
    if len(updated.history) - updated.memory_overview_cursor >= window:
        phase("consolidating")
        overview = await _run_memory_overview(
            llm, effective, updated, memory_turn_count, cancel
        )
        if overview is not None:
            updated = updated.model_copy(update={
                "memories": overview,
                "memory_overview_cursor": len(updated.history),
            })
            consolidated = True

    # 7. Persist
    phase("persisting")
    saved = store.save_session(updated)
    logger.info(
        "Turn complete session=%s steps=%d memories=%d consolidated=%s",
        saved.id, len(saved.history), len(saved.memories), consolidated,
    )
    return TurnOutcome(session=saved, step=step, result=result, consolidated=consolidated)


# ---------------------------------------------------------------------------
# Memory overview (consolidation)
# ---------------------------------------------------------------------------

async def _request_memory_overview(
    llm: LLM,
    template: Template,
    session: Session,
    memory_turn_count: int | None,
    cancel: asyncio.Event,
) -> ConsolidationResult:
    try:
        packet = build_memory_overview_packet(template, session, memory_turn_count)
        raw = await _cancellable(
            llm("memory_overview", packet, build_memory_overview_format(template)),
            cancel,
        )
        return parse_reply(raw, ConsolidationResult)
    except TurnCancelledError:
        raise
    except Exception as e:
        raise ConsolidationError(f"Memory overview failed: {e}") from e


async def _run_memory_overview(
    llm: LLM,
    template: Template,
    session: Session,
    memory_turn_count: int | None,
    cancel: asyncio.Event,
) -> list[MemoryEntry] | None:
    """Consolidated memory list, or None when both attempts failed."""
    for attempt in range(1, CONSOLIDATION_ATTEMPTS + 1):
        try:
            result = await _request_memory_overview(
                llm, template, session, memory_turn_count, cancel
            )
        except ConsolidationError as e:
            logger.warning(
                "Memory overview attempt %d/%d failed: %s",
                attempt, CONSOLIDATION_ATTEMPTS, e,
            )
            if attempt < CONSOLIDATION_ATTEMPTS:
                await _cancellable(asyncio.sleep(CONSOLIDATION_RETRY_DELAY), cancel)
            continue
        logger.info(
            "Memory overview applied %d change(s) session=%s",
            len(result.memory_changes), session.id,
        )
        return apply_memory_changes(session.memories, result.memory_changes)

    logger.warning("Memory overview skipped for session=%s", session.id)
    return None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned


def parse_reply(text: str, model: type[ReplyModel]) -> ReplyModel:
    """Parse a provider reply and validate it strictly against `model`."""
    try:
        data = json.loads(_strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise TurnValidationError(f"Provider reply is not valid JSON: {e}") from e
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise TurnValidationError(f"Provider reply failed validation: {e}") from e


async def _cancellable(awaitable: Awaitable[T], cancel: asyncio.Event) -> T:
    """Await `awaitable` unless `cancel` is set first; then abort it."""
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise TurnCancelledError("Turn was cancelled")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise TurnCancelledError("Turn was cancelled")
