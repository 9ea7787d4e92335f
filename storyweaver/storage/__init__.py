"""File-based JSON storage.

Data layout:
  data/
    templates/           User-created and preset-overridden templates
      <slug>.json
    sessions/            One record per play-through
      <id>.json          Values, memories, history, memory overview cursor
    config.json          App settings (provider connection, model, memory window)
  presets/
    templates/           Built-in read-only templates (merged at read time)

Slug rules: title → Unicode normalize → strip non-ASCII → lowercase →
replace non-alnum runs with hyphen → strip leading/trailing hyphens.

Preset merging: list_templates() and get_template() merge preset + user data;
user data wins on slug collision. Updating a preset writes a user copy.
Deleting a user override reveals the preset.

Config: get_config() returns defaults merged with stored values and the
OPENAI_API_KEY / OPENAI_MODEL environment fallbacks.
"""

# Re-export all public symbols so `from storyweaver import storage` keeps working.

from .core import (  # noqa: F401
    data_dir,
    init_storage,
    preset_templates_dir,
    presets_dir,
    read_json,
    sessions_dir,
    slugify,
    templates_dir,
    write_json,
)

from .templates import (  # noqa: F401
    TemplateDraft,
    delete_template,
    get_template,
    list_templates,
    next_slug,
    save_template,
)

from .sessions import (  # noqa: F401
    create_session,
    delete_session,
    list_sessions,
    load_session,
    save_session,
)

from .config import (  # noqa: F401
    get_config,
    update_config,
)
