"""Storage roots, slug utilities and the JSON file primitives every store uses."""

import json
import os
import re
import tempfile
import unicodedata
from pathlib import Path
from typing import Any

from storyweaver import ROOT_DIR

DEFAULT_PRESETS_DIR = ROOT_DIR / "presets"

_data_dir: Path | None = None
_presets_dir: Path | None = None


def slugify(title: str) -> str:
    """Reduce a title to lowercase ASCII words joined by hyphens.

    "The Keeper's Oath" → "the-keepers-oath"; a title with no usable
    characters becomes "untitled".
    """
    ascii_title = (
        unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii").lower()
    )
    ascii_title = re.sub(r"['\"]", "", ascii_title)
    return re.sub(r"[^a-z0-9]+", "-", ascii_title).strip("-") or "untitled"


def init_storage(data_dir: Path, presets_dir: Path | None = None) -> None:
    """Point storage at `data_dir` (created if needed) and a read-only presets dir."""
    global _data_dir, _presets_dir
    _data_dir = data_dir
    _presets_dir = presets_dir if presets_dir is not None else DEFAULT_PRESETS_DIR
    for directory in (templates_dir(), sessions_dir()):
        directory.mkdir(parents=True, exist_ok=True)


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_storage() before using storage"
    return _data_dir


def presets_dir() -> Path:
    assert _presets_dir is not None, "Call init_storage() before using storage"
    return _presets_dir


def templates_dir() -> Path:
    return data_dir() / "templates"


def sessions_dir() -> Path:
    return data_dir() / "sessions"


def preset_templates_dir() -> Path:
    return presets_dir() / "templates"


def read_json(path: Path, default: Any = None) -> Any:
    """Parsed contents of `path`, or `default` when the file does not exist."""
    if not path.is_file():
        return default
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, data: Any) -> None:
    """Write JSON via a temp file + rename so readers never see a partial file."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
