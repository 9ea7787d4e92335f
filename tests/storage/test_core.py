"""Tests for storage core: slugify, init, atomic JSON writes."""

import json

import pytest

import storyweaver.app as app_module
from storyweaver import ROOT_DIR, storage


# ── Slugify ──────────────────────────────────────────────


def test_slugify_basic():
    assert storage.slugify("The Lantern Keep") == "the-lantern-keep"


def test_slugify_unicode():
    assert storage.slugify("Café Noir") == "cafe-noir"


def test_slugify_apostrophes():
    assert storage.slugify("The Keeper's Oath") == "the-keepers-oath"


def test_slugify_special_chars_collapse():
    assert storage.slugify("  Storm!!  &  Sea  ") == "storm-sea"


def test_slugify_empty_falls_back():
    assert storage.slugify("!!!") == "untitled"


# ── Init ─────────────────────────────────────────────────


def test_init_creates_directories():
    assert storage.templates_dir().is_dir()
    assert storage.sessions_dir().is_dir()


def test_init_uses_given_presets_dir(tmp_path):
    storage.init_storage(tmp_path / "data", presets_dir=tmp_path / "presets")
    assert storage.preset_templates_dir() == tmp_path / "presets" / "templates"
    assert (tmp_path / "data" / "sessions").is_dir()


def test_init_defaults_presets_to_repo_root(tmp_path):
    storage.init_storage(tmp_path / "data")
    assert storage.preset_templates_dir() == ROOT_DIR / "presets" / "templates"
    assert (storage.preset_templates_dir() / "the-lantern-keep.json").is_file()


def test_app_and_storage_share_root():
    assert app_module.DEFAULT_DATA_DIR == ROOT_DIR / "data"
    assert storage.core.DEFAULT_PRESETS_DIR.parent == app_module.DEFAULT_DATA_DIR.parent


# ── write_json ───────────────────────────────────────────


def test_write_json_round_trip():
    path = storage.data_dir() / "thing.json"
    storage.write_json(path, {"name": "Keep", "tags": ["sea"]})
    assert json.loads(path.read_text()) == {"name": "Keep", "tags": ["sea"]}


def test_write_json_replaces_existing_and_leaves_no_temp_files():
    path = storage.data_dir() / "thing.json"
    storage.write_json(path, {"v": 1})
    storage.write_json(path, {"v": 2})
    assert json.loads(path.read_text()) == {"v": 2}
    leftovers = [p.name for p in storage.data_dir().iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


def test_write_json_failure_keeps_previous_file():
    path = storage.data_dir() / "thing.json"
    storage.write_json(path, {"v": 1})
    with pytest.raises(TypeError):
        storage.write_json(path, {"v": object()})
    assert json.loads(path.read_text()) == {"v": 1}
    leftovers = [p.name for p in storage.data_dir().iterdir() if p.name.endswith(".tmp")]
    assert leftovers == []


# ── read_json ────────────────────────────────────────────


def test_read_json_missing_returns_default():
    assert storage.read_json(storage.data_dir() / "absent.json", default={}) == {}


def test_read_json_reads_written_file():
    path = storage.data_dir() / "thing.json"
    storage.write_json(path, {"title": "Café"})
    assert storage.read_json(path) == {"title": "Café"}
