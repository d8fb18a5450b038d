"""Configuration management for wikigraph.

This module contains all configurable constants for the wiki graph.
Magic numbers are documented here rather than scattered throughout the codebase.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError

CONFIG_FILENAME = ".wikiconfig"


class ConfigurationError(Exception):
    """Raised when required configuration is missing."""

    pass


DEFAULT_ENTRY_TEMPLATE = """{{title}}

# Related notes
```dataviewjs
dv.list(dv.pages('#'+dv.current().file.frontmatter['wiki-tag']).map(n => n.file.link))
```

"""


class WikiSettings(BaseModel):
    """User settings read from ``.wikiconfig``."""

    wiki_folder: str = "Wiki"
    entry_template: str = DEFAULT_ENTRY_TEMPLATE
    tag_alias_enabled: bool = False
    debug: bool = False


def _discover_project_config(
    start_dir: Path | None = None, max_depth: int = 10
) -> tuple[Path, dict] | None:
    """Walk up from start_dir looking for a .wikiconfig file.

    Args:
        start_dir: Directory to start from (defaults to cwd)
        max_depth: Maximum directories to traverse up

    Returns:
        Tuple of (config_path, data) if found, None otherwise.

    Raises:
        ConfigurationError: If the nearest config file is unreadable.
    """
    current = Path(start_dir or os.getcwd()).resolve()

    for _ in range(max_depth):
        config_file = current / CONFIG_FILENAME
        if config_file.exists():
            try:
                data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Cannot read {config_file}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"{config_file} must be a YAML mapping")
            return config_file, data

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


def _settings_from(config_file: Path, data: dict) -> WikiSettings:
    try:
        return WikiSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings in {config_file}: {e}") from e


def load_settings(start_dir: Path | None = None) -> WikiSettings:
    """Load settings from the nearest .wikiconfig, falling back to defaults."""
    found = _discover_project_config(start_dir)
    if found is None:
        return WikiSettings()
    return _settings_from(*found)


def get_wiki_root(start_dir: Path | None = None) -> Path:
    """Get the wiki root directory.

    Discovery order:
    1. WIKIGRAPH_ROOT environment variable (explicit override)
    2. Walk up from cwd looking for .wikiconfig; its wiki_folder is taken
       relative to the directory holding the config file
    3. Error with helpful message

    Raises:
        ConfigurationError: If no wiki folder can be found.
    """
    root = os.environ.get("WIKIGRAPH_ROOT")
    if root:
        return Path(root)

    found = _discover_project_config(start_dir)
    if found is not None:
        config_file, data = found
        settings = _settings_from(config_file, data)
        wiki_path = (config_file.parent / settings.wiki_folder).resolve()
        if wiki_path.is_dir():
            return wiki_path
        raise ConfigurationError(
            f"Wiki folder '{settings.wiki_folder}' from {config_file} does not exist"
        )

    raise ConfigurationError(
        "No wiki folder found. Options:\n"
        f"  1. Create a {CONFIG_FILENAME} with 'wiki_folder: <path>' in your vault\n"
        "  2. Set WIKIGRAPH_ROOT to an existing wiki directory"
    )


# =============================================================================
# Header fields
# =============================================================================

# Leading sigil some notes write in front of tags ("#parent"). Tags are
# compared without it.
TAG_SIGIL = "#"

# Recognized note types. Anything else is classified as "other".
NOTE_TYPES = ("wiki", "category", "disambiguation")


# =============================================================================
# Generated content
# =============================================================================

# Body line holding the auto-generated inherited tags (dataview inline field).
INHERITED_TAGS_PREFIX = "inherited-tags::"

# Reserved diagnostics document, overwritten on every refresh. The leading
# underscore keeps it out of note enumeration.
DIAGNOSTICS_FILENAME = "_wiki-diagnostics.md"


# =============================================================================
# Duplicate Detection (similarity scoring of new entries)
# =============================================================================

# Matches scoring above this are shown for confirmation.
SIMILARITY_THRESHOLD = 0.5

# A match is also shown when more than this many title entities overlap.
MIN_INTERSECTION_SIZE = 1

# Floor applied when either side already names the other's identifier.
CROSS_REFERENCE_SIMILARITY = 0.7

# Score for an exact identifier match (a definite duplicate).
EXACT_MATCH_SIMILARITY = 1.0
