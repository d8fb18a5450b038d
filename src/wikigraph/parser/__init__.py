"""Markdown parsing with YAML frontmatter."""

from .markdown import HeaderLoader, NoteDocument, ParseError, parse_note, parse_note_text

__all__ = [
    "HeaderLoader",
    "NoteDocument",
    "ParseError",
    "parse_note",
    "parse_note_text",
]
