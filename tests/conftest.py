"""Shared test fixtures for the wikigraph test suite.

Design:
- tmp_wiki: Creates an isolated wiki folder and points WIKIGRAPH_ROOT at it
- write_note: Writes a note with a header into tmp_wiki
- runner: CliRunner with proper isolation
- build_from: Builds a graph from in-memory notes, no files involved
"""

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import pytest
from click.testing import CliRunner

from wikigraph.frontmatter import build_note
from wikigraph.graph import WikiGraph, build_graph
from wikigraph.inheritance import propagate
from wikigraph.parser import NoteDocument


# ─────────────────────────────────────────────────────────────────────────────
# Core Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def runner() -> CliRunner:
    """CLI runner with isolated environment."""
    return CliRunner()


@pytest.fixture
def tmp_wiki(tmp_path: Path) -> Generator[Path, None, None]:
    """Create isolated wiki directory.

    Sets WIKIGRAPH_ROOT to the temp directory, yields the path, then
    restores the environment.

    Usage:
        def test_something(tmp_wiki):
            (tmp_wiki / "note.md").write_text("# Note")
    """
    wiki_root = tmp_path / "Wiki"
    wiki_root.mkdir()

    original_root = os.environ.get("WIKIGRAPH_ROOT")
    os.environ["WIKIGRAPH_ROOT"] = str(wiki_root)

    yield wiki_root

    if original_root is not None:
        os.environ["WIKIGRAPH_ROOT"] = original_root
    else:
        os.environ.pop("WIKIGRAPH_ROOT", None)


@pytest.fixture
def write_note(tmp_wiki: Path) -> Callable[..., Path]:
    """Write a wiki note into tmp_wiki.

    Usage:
        write_note("AI.md", "AI", tags=["Science"])
    """

    def _write(
        rel_path: str,
        wiki_tag: str | None,
        tags: list[str] | None = None,
        note_type: str = "wiki",
        body: str = "",
        **extra: Any,
    ) -> Path:
        fields: dict[str, Any] = {"note-type": note_type, "tags": tags or []}
        if wiki_tag is not None:
            fields["wiki-tag"] = wiki_tag
        fields.update(extra)
        target = tmp_wiki / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(build_note(fields, body or f"# {wiki_tag or rel_path}"), encoding="utf-8")
        return target

    return _write


# ─────────────────────────────────────────────────────────────────────────────
# In-memory graphs
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_note() -> Callable[..., NoteDocument]:
    """In-memory note with the given identifier and tags.

    Usage:
        make_note("B", "A")  # B tagged with A
    """

    def _note(wiki_tag: str, *tags: str, note_type: str = "wiki", path: str | None = None) -> NoteDocument:
        fields = {"note-type": note_type, "wiki-tag": wiki_tag, "tags": list(tags)}
        return NoteDocument(path=path or f"{wiki_tag}.md", fields=fields, body="")

    return _note


@pytest.fixture
def build_from() -> Callable[..., WikiGraph]:
    """Build and propagate a graph from NoteDocuments."""

    def _build(*docs: NoteDocument, propagated: bool = True) -> WikiGraph:
        graph = build_graph(docs)
        if propagated:
            propagate(graph)
        return graph

    return _build
