"""Tests for wikigraph parsing and the document store.

Coverage:
- src/wikigraph/parser/markdown.py - frontmatter splitting, ParseError
- src/wikigraph/models.py - NoteHeader validation
- src/wikigraph/store.py - enumeration, header rewrite, creation
"""

from __future__ import annotations

from pathlib import Path

import pytest

from wikigraph.models import NoteHeader
from wikigraph.parser import ParseError, parse_note, parse_note_text
from wikigraph.store import DocumentStore

# ─────────────────────────────────────────────────────────────────────────────
# Parser
# ─────────────────────────────────────────────────────────────────────────────


class TestParseNoteText:
    """Tests for parse_note_text."""

    def test_header_and_body(self):
        """Splits header fields from the body."""
        fields, body = parse_note_text("---\nwiki-tag: AI\ntags: [Science]\n---\n\n# AI\n")
        assert fields == {"wiki-tag": "AI", "tags": ["Science"]}
        assert body == "# AI"

    def test_no_header(self):
        """A note without frontmatter has no fields."""
        fields, body = parse_note_text("# Just text\n")
        assert fields is None
        assert body == "# Just text"

    def test_empty_header(self):
        """An empty frontmatter block counts as no header."""
        fields, _ = parse_note_text("---\n---\nbody")
        assert fields is None

    def test_invalid_yaml(self):
        """Broken YAML raises ParseError with the path."""
        with pytest.raises(ParseError) as exc_info:
            parse_note_text("---\ntags: [unclosed\n---\nbody", "bad.md")
        assert exc_info.value.path == "bad.md"

    def test_unquoted_time_stays_string(self):
        """Base-60 looking values are not turned into integers."""
        fields, _ = parse_note_text("---\ntime: 12:30:00\ncount: 3\n---\n")
        assert fields == {"time": "12:30:00", "count": 3}


class TestParseNote:
    """Tests for parse_note."""

    def test_missing_file(self, tmp_path: Path):
        """A missing file raises ParseError."""
        with pytest.raises(ParseError):
            parse_note(tmp_path / "nope.md")

    def test_relative_path_reported(self, tmp_path: Path):
        """The document carries the relative path it was asked for."""
        target = tmp_path / "a.md"
        target.write_text("---\nwiki-tag: A\n---\nbody")
        doc = parse_note(target, "a.md")
        assert doc.path == "a.md"
        assert doc.fields == {"wiki-tag": "A"}


class TestNoteHeader:
    """Tests for NoteHeader validation."""

    def test_hyphenated_aliases(self):
        """Hyphenated keys map to attributes."""
        header = NoteHeader.model_validate({"note-type": "category", "wiki-tag": "Science"})
        assert header.note_type == "category"
        assert header.wiki_tag == "Science"
        assert header.kind == "category"

    def test_string_tags_coerced(self):
        """A comma-separated string becomes a list."""
        header = NoteHeader.model_validate({"tags": "A, B", "aliases": "x"})
        assert header.tags == ["A", "B"]
        assert header.aliases == ["x"]

    def test_unknown_type_is_other(self):
        """Unrecognized note types classify as other."""
        assert NoteHeader.model_validate({"note-type": "journal"}).kind == "other"
        assert NoteHeader.model_validate({}).kind == "other"

    def test_blank_wiki_tag(self):
        """A blank wiki-tag counts as missing."""
        assert NoteHeader.model_validate({"wiki-tag": "  "}).wiki_tag is None

    def test_extra_fields_kept(self):
        """Unknown fields survive validation."""
        header = NoteHeader.model_validate({"wiki-tag": "A", "source": "book"})
        assert header.model_extra == {"source": "book"}


# ─────────────────────────────────────────────────────────────────────────────
# Document store
# ─────────────────────────────────────────────────────────────────────────────


class TestDocumentStore:
    """Tests for DocumentStore."""

    def test_paths_skip_reserved(self, tmp_path: Path):
        """Files starting with '_' and non-markdown files are skipped."""
        (tmp_path / "sub").mkdir()
        (tmp_path / "b.md").write_text("b")
        (tmp_path / "sub" / "a.md").write_text("a")
        (tmp_path / "_wiki-diagnostics.md").write_text("generated")
        (tmp_path / "notes.txt").write_text("x")

        assert DocumentStore(tmp_path).paths() == ["b.md", "sub/a.md"]

    def test_enumerate_yields_parse_errors(self, tmp_path: Path):
        """Unreadable notes are yielded as ParseError, not raised."""
        (tmp_path / "good.md").write_text("---\nwiki-tag: A\n---\n")
        (tmp_path / "bad.md").write_text("---\ntags: [unclosed\n---\n")

        docs = list(DocumentStore(tmp_path).enumerate())
        assert isinstance(docs[0], ParseError)
        assert docs[0].path == "bad.md"
        assert docs[1].fields == {"wiki-tag": "A"}

    def test_write_header_only_on_change(self, tmp_path: Path):
        """Rewriting identical content reports no change."""
        store = DocumentStore(tmp_path)
        (tmp_path / "a.md").write_text("---\nwiki-tag: A\n---\n")

        assert store.write_header("a.md", {"wiki-tag": "A"}, "body") is True
        assert store.write_header("a.md", {"wiki-tag": "A"}, "body") is False
        assert store.read_header("a.md") == ({"wiki-tag": "A"}, "body")

    def test_create_refuses_overwrite(self, tmp_path: Path):
        """create() never overwrites an existing note."""
        store = DocumentStore(tmp_path)
        store.create("dir/new.md", "text")
        assert (tmp_path / "dir" / "new.md").read_text() == "text"
        with pytest.raises(FileExistsError):
            store.create("dir/new.md", "other")

    def test_path_escape_rejected(self, tmp_path: Path):
        """Paths leaving the root are rejected."""
        with pytest.raises(ValueError, match="escapes wiki root"):
            DocumentStore(tmp_path / "wiki").exists("../outside.md")
