"""Tests for the WikiLibrary session: persistence, entries, diagnostics."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from wikigraph.config import DIAGNOSTICS_FILENAME, WikiSettings
from wikigraph.entry_input import parse_entry_input
from wikigraph.library import WikiLibrary, entry_filename
from wikigraph.parser import parse_note


@pytest.fixture
def chain_wiki(write_note) -> Path:
    """Root <- AI <- ML, all plain wiki notes."""
    write_note("Root.md", "Root")
    write_note("AI.md", "AI", tags=["Root"])
    path = write_note("topics/ML.md", "ML", tags=["AI"])
    return path.parent.parent


class TestLifecycle:
    """construct -> build -> ready."""

    def test_graph_requires_build(self, tmp_wiki):
        library = WikiLibrary(tmp_wiki)
        assert library.ready is False
        with pytest.raises(RuntimeError, match="build"):
            library.graph

    def test_open_uses_environment(self, chain_wiki):
        library = WikiLibrary.open()
        assert library.ready
        assert library.root == chain_wiki
        assert set(library.graph.nodes) == {"Root", "AI", "ML"}

    def test_build_creates_missing_root(self, tmp_path):
        library = WikiLibrary(tmp_path / "NewWiki")
        library.build()
        assert (tmp_path / "NewWiki").is_dir()

    def test_debug_checks_invariants(self, chain_wiki):
        library = WikiLibrary(chain_wiki, WikiSettings(debug=True))
        library.build()
        assert library.graph.nodes["ML"].inherited_tags == {"Root"}

    def test_rebuild_replaces_graph(self, chain_wiki, write_note):
        library = WikiLibrary(chain_wiki)
        first = library.build()
        write_note("DL.md", "DL", tags=["ML"])
        second = library.build()
        assert second is not first
        assert "DL" in second.nodes and "DL" not in first.nodes


class TestRefresh:
    """Full rebuild with persistence."""

    def test_writes_inherited_line(self, chain_wiki):
        result = WikiLibrary(chain_wiki).refresh()

        assert result.updated_paths == ["topics/ML.md"]
        text = (chain_wiki / "topics" / "ML.md").read_text()
        assert text.endswith("# ML\n\ninherited-tags:: #Root\n")
        assert result.summary.nodes == 3

    def test_second_refresh_is_byte_identical(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.refresh()
        before = {p: p.read_bytes() for p in chain_wiki.rglob("*.md")}

        result = library.refresh()

        assert result.updated_paths == []
        assert {p: p.read_bytes() for p in chain_wiki.rglob("*.md")} == before

    def test_tags_normalized_on_disk(self, write_note, tmp_wiki):
        write_note("P.md", "P")
        write_note("C.md", "C", tags=["#P", "P"])

        result = WikiLibrary(tmp_wiki).refresh()

        assert result.updated_paths == ["C.md"]
        assert parse_note(tmp_wiki / "C.md").fields["tags"] == ["P"]

    def test_wiki_tag_sigil_stripped_on_disk(self, write_note, tmp_wiki):
        write_note("AI.md", "#AI")
        write_note("ML.md", "ML", tags=["#AI"])

        result = WikiLibrary(tmp_wiki).refresh()

        assert result.updated_paths == ["AI.md", "ML.md"]
        assert parse_note(tmp_wiki / "AI.md").fields["wiki-tag"] == "AI"
        assert parse_note(tmp_wiki / "ML.md").fields["tags"] == ["AI"]
        assert result.summary.outer_references == 0

    def test_matching_line_not_rewritten(self, write_note, tmp_wiki):
        """A note whose inherited-tags line already names the right tags is left alone."""
        write_note("R.md", "R")
        write_note("A.md", "A", tags=["R"])
        path = write_note("B.md", "B", tags=["A"], body="# B\n\ninherited-tags:: #R   \n\nNotes")
        before = path.read_bytes()

        result = WikiLibrary(tmp_wiki).refresh()

        assert result.updated_paths == []
        assert path.read_bytes() == before

    def test_unknown_fields_survive(self, write_note, tmp_wiki):
        write_note("P.md", "P")
        write_note("A.md", "A", tags=["P"])
        write_note("B.md", "B", tags=["A"], source="book", time="12:30:00")

        WikiLibrary(tmp_wiki).refresh()

        fields = parse_note(tmp_wiki / "B.md").fields
        assert fields["source"] == "book"
        assert fields["time"] == "12:30:00"

    def test_stale_line_removed(self, write_note, tmp_wiki):
        write_note("A.md", "A", body="# A\n\ninherited-tags:: #Gone")

        result = WikiLibrary(tmp_wiki).refresh()

        assert result.updated_paths == ["A.md"]
        assert "inherited-tags::" not in (tmp_wiki / "A.md").read_text()


class TestDiagnostics:
    """The generated diagnostics note."""

    def test_reports_findings(self, write_note, tmp_wiki):
        (tmp_wiki / "plain.md").write_text("just text\n")
        write_note("untagged.md", None)
        write_note("a/X.md", "X")
        write_note("b/X.md", "X")
        write_note("P.md", "P", tags=["Q"])
        write_note("Q.md", "Q", tags=["P"])

        result = WikiLibrary(tmp_wiki).refresh()

        text = (tmp_wiki / result.diagnostics_path).read_text()
        assert result.diagnostics_path == DIAGNOSTICS_FILENAME
        assert "## Notes without header (1)\n\n- [[plain.md]]" in text
        assert "## Notes without wiki-tag (1)\n\n- [[untagged.md]]" in text
        assert "- `X`: [[a/X.md]], [[b/X.md]]" in text
        assert "- `P`: P, Q" in text
        assert "## Invalid headers (0)\n\n- none" in text

    def test_regenerated_identically(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.refresh()
        first = (chain_wiki / DIAGNOSTICS_FILENAME).read_bytes()
        library.refresh()
        assert (chain_wiki / DIAGNOSTICS_FILENAME).read_bytes() == first

    def test_not_enumerated_as_note(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.refresh()
        assert library.refresh().summary.no_header == 0


class TestAddEntry:
    """Creating entries through the library."""

    @pytest.mark.asyncio
    async def test_creates_note(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.refresh()

        result = await library.add_entry(parse_entry_input("Deep learning, DL, #ML //neural nets"))

        assert result.status == "inserted"
        assert result.path == "Deep learning (DL).md"
        doc = parse_note(chain_wiki / "Deep learning (DL).md")
        assert doc.fields["wiki-tag"] == "Deep_learning"
        assert doc.fields["tags"] == ["ML", "AI"]
        assert doc.fields["aliases"] == ["Deep learning", "DL"]
        assert doc.fields["description"] == "neural nets"
        assert doc.body.startswith("Deep learning (DL)\n")
        assert doc.body.endswith("inherited-tags:: #Root")
        assert library.refresh().updated_paths == []

    @pytest.mark.asyncio
    async def test_tag_alias_setting(self, chain_wiki):
        library = WikiLibrary(chain_wiki, WikiSettings(tag_alias_enabled=True))
        library.build()

        await library.add_entry(parse_entry_input("Vision, #AI"))

        assert parse_note(chain_wiki / "Vision.md").fields["aliases"] == ["#Vision", "Vision"]
        assert library.graph.nodes["Vision"].aliases == ["#Vision", "Vision"]

    @pytest.mark.asyncio
    async def test_folder(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.build()
        result = await library.add_entry(parse_entry_input("Vision, #AI"), folder="topics/")
        assert result.path == "topics/Vision.md"
        assert (chain_wiki / "topics" / "Vision.md").exists()

    @pytest.mark.asyncio
    async def test_existing_file_refused(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.build()
        before = library.graph.snapshot()

        result = await library.add_entry(parse_entry_input("AI"))

        assert result.status == "exists"
        assert library.graph.snapshot() == before

    @pytest.mark.asyncio
    async def test_cancel_creates_nothing(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.build()
        before = library.graph.snapshot()

        async def cancel(matches):
            assert matches[0].wiki_tag == "ML"
            return "cancel"

        result = await library.add_entry(parse_entry_input("ML, Machine learning"), confirm=cancel)

        assert result.status == "cancelled"
        assert not (chain_wiki / "ML (Machine learning).md").exists()
        assert library.graph.snapshot() == before

    @pytest.mark.asyncio
    async def test_duplicate_identifier(self, chain_wiki):
        library = WikiLibrary(chain_wiki)
        library.build()

        result = await library.add_entry(parse_entry_input("ML, Machine learning"))

        assert result.status == "duplicate"
        assert (chain_wiki / "ML (Machine learning).md").exists()
        assert "ML" not in library.graph.nodes
        assert library.summary().duplicate_groups == 1

    @pytest.mark.asyncio
    async def test_cycle_updates_descendants(self, write_note, tmp_wiki):
        write_note("R.md", "R")
        write_note("A.md", "A", tags=["N", "R"])
        write_note("C.md", "C", tags=["A"])
        library = WikiLibrary(tmp_wiki)
        library.refresh()

        result = await library.add_entry(parse_entry_input("N, #A"))

        assert result.status == "inserted"
        assert result.merged_components == ["A"]
        assert result.updated_paths == ["C.md"]
        assert "inherited-tags:: #N #R" in (tmp_wiki / "C.md").read_text()
        assert library.refresh().updated_paths == []

    @pytest.mark.asyncio
    async def test_concurrent_entries_serialized(self, chain_wiki):
        library = WikiLibrary(chain_wiki, WikiSettings(debug=True))
        library.build()

        async def slow_yes(matches):
            await asyncio.sleep(0)
            return "proceed"

        results = await asyncio.gather(
            library.add_entry(parse_entry_input("Vision, #AI"), confirm=slow_yes),
            library.add_entry(parse_entry_input("Speech, #AI"), confirm=slow_yes),
        )

        assert [r.status for r in results] == ["inserted", "inserted"]
        library.graph.check_invariants()


class TestEntryFilename:
    def test_path_characters_replaced(self):
        assert entry_filename("TCP/IP: basics") == "TCP_IP_ basics.md"

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            entry_filename("..")
