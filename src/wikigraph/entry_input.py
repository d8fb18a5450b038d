"""Parse free-form entry input into an EntryCandidate.

Input grammar::

    Name, alias1, alias2, #tag1, #tag2 //description

Commas may be ASCII or full-width. Names are classified as chinese (any
non-ASCII character), abbreviation (at least 30% upper-case letters) or
english. The display title takes the first name of each kind, in order of
appearance: ``AGI (Artificial General Intelligence, 通用人工智能)``.
"""

from __future__ import annotations

import re
from typing import Literal

from .models import EntryCandidate, NoteType

NameKind = Literal["chinese", "abbreviation", "english"]

# A "#tag" token together with the separators around it
_TAG_TOKEN = re.compile(r"\s*(?:[,，]\s*)*[,，]?(#[^\s~`!@#$%^&*()]+)\s*(?:[,，]\s*)*[,，]?")
_SEPARATOR = re.compile(r"[,，]")
_ILLEGAL_TAG_CHARS = re.compile(r"[!@#$%^&*\\~`,.<>?{}\[\]'\"+=\s]")
_ABBREVIATION_RATIO = 0.3


def convert_to_legal_tag(name: str) -> str:
    """Turn a display name into something usable as a tag."""
    return _ILLEGAL_TAG_CHARS.sub("_", name).replace(":", "__")


def classify_name(name: str) -> NameKind:
    if any(ord(ch) > 0x7F for ch in name):
        return "chinese"
    uppercase = sum(1 for ch in name if "A" <= ch <= "Z")
    if uppercase and uppercase / len(name) >= _ABBREVIATION_RATIO:
        return "abbreviation"
    return "english"


def split_entry_input(text: str) -> tuple[list[str], list[str], str]:
    """Split raw input into (names, tags, description)."""
    head, _, description = text.partition("//")
    head = _TAG_TOKEN.sub(lambda m: f",{m.group(1)},", head)
    entities = [part.strip() for part in _SEPARATOR.split(head) if part.strip()]
    tags = [entity[1:] for entity in entities if entity.startswith("#")]
    names = [entity for entity in entities if not entity.startswith("#")]
    return names, tags, description.strip()


def title_entities(names: list[str]) -> list[str]:
    """First name of each kind, in order of appearance (at most three)."""
    picked: list[str] = []
    seen: set[NameKind] = set()
    for name in names:
        kind = classify_name(name)
        if kind not in seen:
            seen.add(kind)
            picked.append(name)
    return picked


def parse_entry_input(text: str, note_type: NoteType = "wiki") -> EntryCandidate:
    """Parse one line of entry input.

    Raises:
        ValueError: If the input holds no name.
    """
    names, tags, description = split_entry_input(text)
    if not names:
        raise ValueError("Entry input needs at least one name (tags start with '#')")

    entities = title_entities(names)
    title = entities[0]
    if len(entities) > 1:
        title += f" ({', '.join(entities[1:])})"

    return EntryCandidate(
        wiki_tag=convert_to_legal_tag(entities[0]),
        title=title,
        aliases=names,
        tags=tags,
        description=description,
        title_entities=entities,
        note_type=note_type,
    )
