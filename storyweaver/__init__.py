"""Storyweaver: stateful, structured game-master turns against an LLM provider."""

from pathlib import Path

__version__ = "0.1.0"

# Repository root: holds .env, the default data/ directory and presets/
ROOT_DIR = Path(__file__).resolve().parent.parent
