"""Frontmatter building utilities for wiki notes.

This module serializes header field mappings to YAML frontmatter and
maintains the auto-generated ``inherited-tags::`` line in a note body.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import yaml

from .config import INHERITED_TAGS_PREFIX, TAG_SIGIL
from .models import EntryCandidate
from .parser import HeaderLoader

# Known fields are written first, in this order. Everything else follows in
# the order it was read.
FIELD_ORDER = ("note-type", "date", "time", "aliases", "tags", "wiki-tag", "description")


def normalize_tag(tag: str) -> str:
    """Strip surrounding whitespace and any leading tag sigils."""
    return tag.strip().lstrip(TAG_SIGIL).strip()


def normalize_tags(tags: list[str]) -> tuple[list[str], bool]:
    """Normalize a tag list, dropping empties and repeats.

    Returns:
        Tuple of (normalized tags, whether anything changed).
    """
    normalized: list[str] = []
    for tag in tags:
        clean = normalize_tag(tag)
        if clean and clean not in normalized:
            normalized.append(clean)
    return normalized, normalized != list(tags)


def _yaml_quote_if_needed(value: str) -> str:
    """Quote a string value if it contains YAML special characters.

    Uses PyYAML to determine if quoting is needed by testing if the value
    roundtrips correctly through YAML parsing. A tag written as ``#name``
    would otherwise be read back as a comment.
    """
    test_yaml = f"key: {value}"
    try:
        parsed = yaml.load(test_yaml, Loader=HeaderLoader)
        if isinstance(parsed, dict) and parsed.get("key") == value:
            return value  # Roundtrips safely, no quoting needed
    except yaml.YAMLError:
        pass
    dumped = yaml.safe_dump(
        {"key": value}, default_flow_style=False, allow_unicode=True, width=10_000
    ).strip()
    # Returns 'key: VALUE' or "key: 'VALUE'" - extract the value part
    return dumped[5:]


def _format_yaml_list(items: list[Any]) -> str:
    """Format a list as YAML list items with indentation."""
    return "\n".join(f"  - {_yaml_quote_if_needed(str(item))}" for item in items)


def _format_field(key: str, value: Any) -> str:
    if isinstance(value, (list, tuple)):
        if not value:
            return f"{key}: []"
        if all(isinstance(item, (str, int, float)) for item in value):
            return f"{key}:\n{_format_yaml_list(list(value))}"
    elif isinstance(value, str):
        return f"{key}: {_yaml_quote_if_needed(value)}"
    return yaml.safe_dump(
        {key: value}, default_flow_style=False, allow_unicode=True, sort_keys=False
    ).rstrip()


def build_header(fields: dict[str, Any]) -> str:
    """Build YAML frontmatter string from a header mapping.

    Args:
        fields: Header fields keyed by their on-disk names.

    Returns:
        Complete frontmatter string including --- delimiters and a trailing newline.
    """
    parts = ["---"]
    ordered = [key for key in FIELD_ORDER if key in fields]
    ordered += [key for key in fields if key not in FIELD_ORDER]
    for key in ordered:
        parts.append(_format_field(key, fields[key]))
    parts.append("---\n")
    return "\n".join(parts)


def build_note(fields: dict[str, Any], body: str) -> str:
    """Full note text: frontmatter, a blank line, then the body."""
    text = body.strip("\n")
    if not text:
        return build_header(fields)
    return f"{build_header(fields)}\n{text}\n"


def render_inherited_line(inherited: set[str] | list[str]) -> str:
    """Render the inherited-tags line, or "" when there is nothing inherited.

    Tags are sorted so regenerating the line is byte-stable.
    """
    if not inherited:
        return ""
    rendered = " ".join(f"{TAG_SIGIL}{tag}" for tag in sorted(inherited))
    return f"{INHERITED_TAGS_PREFIX} {rendered}"


def read_inherited_line(body: str) -> list[str]:
    """Return the tags currently written on the inherited-tags line."""
    for line in body.splitlines():
        if line.startswith(INHERITED_TAGS_PREFIX):
            payload = line[len(INHERITED_TAGS_PREFIX):]
            return [normalize_tag(tok) for tok in payload.split() if normalize_tag(tok)]
    return []


def apply_inherited_line(body: str, inherited: set[str] | list[str]) -> str:
    """Replace, append or remove the inherited-tags line in a body.

    Only the first such line is managed; any later copies are dropped.
    """
    line = render_inherited_line(inherited)
    kept: list[str] = []
    placed = False
    for existing in body.splitlines():
        if existing.startswith(INHERITED_TAGS_PREFIX):
            if line and not placed:
                kept.append(line)
            placed = True
            continue
        kept.append(existing)

    if line and not placed:
        while kept and not kept[-1].strip():
            kept.pop()
        if kept:
            kept.append("")
        kept.append(line)

    return "\n".join(kept).strip("\n")


def create_entry_header(candidate: EntryCandidate, now: datetime | None = None) -> dict[str, Any]:
    """Header fields for a newly authored entry.

    Args:
        candidate: Parsed entry input.
        now: Creation time (defaults to the current local time).

    Returns:
        Mapping ready for build_header().
    """
    now = now or datetime.now()
    tags, _ = normalize_tags(candidate.tags)
    return {
        "note-type": candidate.note_type,
        "date": now.date().isoformat(),
        "time": now.strftime("%H:%M:%S"),
        "aliases": list(candidate.aliases),
        "tags": tags,
        "wiki-tag": candidate.wiki_tag,
        "description": candidate.description,
    }
