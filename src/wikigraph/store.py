"""File-system document store for a wiki folder.

Notes are the ``*.md`` files under the wiki root. Files whose name starts
with ``_`` are reserved for generated content and are never enumerated.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from .frontmatter import build_note
from .parser import NoteDocument, ParseError, parse_note

log = logging.getLogger(__name__)


class DocumentStore:
    """Reads and writes notes below one root directory.

    Paths handed in and out are relative to the root, using forward slashes.
    Nothing is cached: every read goes back to disk.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _abs(self, rel_path: str) -> Path:
        target = (self.root / rel_path).resolve()
        root = self.root.resolve()
        if target != root and root not in target.parents:
            raise ValueError(f"Invalid path (escapes wiki root): {rel_path}")
        return target

    def relative(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def paths(self) -> list[str]:
        """Relative paths of every note, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            self.relative(md_file)
            for md_file in self.root.rglob("*.md")
            if not md_file.name.startswith("_") and md_file.is_file()
        )

    def enumerate(self) -> Iterator[NoteDocument | ParseError]:
        """Yield every note, or the ParseError raised while reading it."""
        for rel_path in self.paths():
            try:
                yield parse_note(self._abs(rel_path), rel_path)
            except ParseError as e:
                log.warning("Skipping unreadable note %s: %s", rel_path, e.message)
                yield ParseError(rel_path, e.message)

    def exists(self, rel_path: str) -> bool:
        return self._abs(rel_path).exists()

    def read(self, rel_path: str) -> NoteDocument:
        return parse_note(self._abs(rel_path), rel_path)

    def read_header(self, rel_path: str) -> tuple[dict[str, Any] | None, str]:
        """Return (header fields or None, body) of a note."""
        note = self.read(rel_path)
        return note.fields, note.body

    def write_header(self, rel_path: str, fields: dict[str, Any], body: str) -> bool:
        """Rewrite a note from its header and body.

        Returns:
            True if the file changed on disk.
        """
        target = self._abs(rel_path)
        text = build_note(fields, body)
        if target.exists() and target.read_text(encoding="utf-8") == text:
            return False
        target.write_text(text, encoding="utf-8")
        return True

    def create(self, rel_path: str, content: str) -> str:
        """Create a new note; refuses to overwrite an existing file."""
        target = self._abs(rel_path)
        if target.exists():
            raise FileExistsError(f"Note already exists: {rel_path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        log.debug("Created note %s", rel_path)
        return rel_path

    def write_text(self, rel_path: str, content: str) -> None:
        """Overwrite a generated file (diagnostics)."""
        target = self._abs(rel_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
