"""Markdown parsing with YAML frontmatter support."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import frontmatter
import yaml
from frontmatter.default_handlers import YAMLHandler


class HeaderLoader(yaml.SafeLoader):
    """SafeLoader that leaves dates and clock times as the strings written.

    Plain YAML 1.1 reads ``date: 2024-01-15`` as a date and ``time: 12:30:00``
    as the base-60 integer 45000; rewriting either would change the note.
    """


def _construct_int(loader: yaml.SafeLoader, node: yaml.ScalarNode) -> int | str:
    value = loader.construct_scalar(node)
    if ":" in value:
        return value
    return yaml.SafeLoader.construct_yaml_int(loader, node)


HeaderLoader.add_constructor("tag:yaml.org,2002:timestamp", yaml.SafeLoader.construct_scalar)
HeaderLoader.add_constructor("tag:yaml.org,2002:int", _construct_int)


class _HeaderHandler(YAMLHandler):
    def load(self, fm: str, **kwargs: Any) -> Any:
        return yaml.load(fm, Loader=HeaderLoader)


_handler = _HeaderHandler()


class ParseError(Exception):
    """Raised when markdown parsing fails."""

    def __init__(self, path: Path | str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


@dataclass
class NoteDocument:
    """A note as read from the store.

    ``fields`` is None when the note has no frontmatter at all.
    """

    path: str
    fields: dict[str, Any] | None
    body: str


def parse_note_text(text: str, path: Path | str = "<string>") -> tuple[dict[str, Any] | None, str]:
    """Split note text into (header fields, body).

    Raises:
        ParseError: If the frontmatter is not valid YAML.
    """
    try:
        post = frontmatter.loads(text, handler=_handler)
    except (yaml.YAMLError, ValueError) as e:
        raise ParseError(path, f"Failed to parse frontmatter: {e}") from e

    if not post.metadata:
        # No block, or an empty one
        return None, post.content

    return dict(post.metadata), post.content


def parse_note(path: Path, rel_path: str | None = None) -> NoteDocument:
    """Parse a markdown file with YAML frontmatter.

    Args:
        path: Path to the markdown file.
        rel_path: Path reported in the document (defaults to ``path``).

    Returns:
        The parsed note.

    Raises:
        ParseError: If the file cannot be read or has invalid frontmatter.
    """
    if not path.exists():
        raise ParseError(path, "File does not exist")

    if not path.is_file():
        raise ParseError(path, "Path is not a file")

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(path, f"Failed to read file: {e}") from e

    fields, body = parse_note_text(text, path)
    return NoteDocument(path=rel_path or str(path), fields=fields, body=body)
