"""Tests for session lifecycle: create, save, load, list, delete."""

import json

from storyweaver import storage
from storyweaver.models import Session, ValueDefinition


def _preset():
    return storage.get_template("the-lantern-keep")


# ── Create ───────────────────────────────────────────────


def test_create_session_seeds_values():
    session = storage.create_session(_preset(), "First Night")
    assert session.id
    assert session.title == "First Night"
    assert session.template_id == "preset-the-lantern-keep"
    assert session.values == {
        "health": 10,
        "oil": 2.5,
        "lantern_lit": False,
        "inventory": ["rusty key", "tinderbox"],
        "allies": {},
    }
    assert session.memories == []
    assert session.history == []
    assert session.memory_overview_cursor == 0


def test_create_session_with_session_values():
    extra = [
        ValueDefinition(id="courage", label="Courage", type="integer", min=1, max=3),
        ValueDefinition(id="health", label="Shadow Health", type="string"),
    ]
    session = storage.create_session(_preset(), "Brave Run", extra)
    # session-only definitions never override template ids
    assert session.values["courage"] == 1
    assert session.values["health"] == 10
    assert [d.id for d in session.session_value_definitions] == ["courage", "health"]


# ── Save & Load ──────────────────────────────────────────


def test_save_and_load_round_trip():
    session = storage.create_session(_preset(), "Run")
    changed = session.model_copy(update={"summary": "The keeper arrived."})
    saved = storage.save_session(changed)

    loaded = storage.load_session(session.id)
    assert loaded.model_dump() == saved.model_dump()
    assert loaded.summary == "The keeper arrived."
    assert loaded.created_at == session.created_at


def test_save_assigns_id_and_timestamps():
    saved = storage.save_session(Session(template_id="t", title="Fresh"))
    assert saved.id
    assert saved.created_at
    assert saved.updated_at
    assert (storage.sessions_dir() / f"{saved.id}.json").is_file()


def test_saved_file_is_plain_json():
    session = storage.create_session(_preset(), "Run")
    raw = json.loads((storage.sessions_dir() / f"{session.id}.json").read_text())
    assert raw["values"]["health"] == 10
    assert raw["template_id"] == "preset-the-lantern-keep"


def test_load_missing():
    assert storage.load_session("nope") is None


# ── List & Delete ────────────────────────────────────────


def test_list_sessions_filters_by_template():
    storage.create_session(_preset(), "A")
    storage.save_session(Session(template_id="other", title="B"))

    all_titles = {s.title for s in storage.list_sessions()}
    keep_titles = {s.title for s in storage.list_sessions("preset-the-lantern-keep")}
    assert all_titles == {"A", "B"}
    assert keep_titles == {"A"}


def test_list_sessions_skips_unreadable():
    storage.create_session(_preset(), "Good")
    (storage.sessions_dir() / "bad.json").write_text(json.dumps({"title": 3}))
    assert [s.title for s in storage.list_sessions()] == ["Good"]


def test_delete_session():
    session = storage.create_session(_preset(), "Run")
    assert storage.delete_session(session.id)
    assert storage.load_session(session.id) is None
    assert not storage.delete_session(session.id)
