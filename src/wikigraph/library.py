"""Wiki library session.

A WikiLibrary owns one built graph over one wiki folder. The lifecycle is
explicit: construct, ``build()`` (or ``refresh()``), then use. Rebuilding
replaces the graph wholesale; configuration changes mean constructing a new
library.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable
from pathlib import Path

from .config import (
    DIAGNOSTICS_FILENAME,
    TAG_SIGIL,
    WikiSettings,
    get_wiki_root,
    load_settings,
)
from .diagnostics import render_diagnostics
from .frontmatter import apply_inherited_line, build_note, create_entry_header, read_inherited_line
from .graph import Node, WikiGraph, build_graph
from .inheritance import propagate
from .insertion import Confirm, Integration, insert_node
from .models import (
    EntryCandidate,
    GraphSummary,
    InsertionResult,
    NodeInfo,
    NoteHeader,
    RefreshResult,
    SimilarityMatch,
)
from .similarity import rank_similar
from .store import DocumentStore

log = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')


def entry_filename(title: str) -> str:
    """File name for a new entry: the title with path-hostile characters replaced."""
    name = _UNSAFE_FILENAME_CHARS.sub("_", title).strip().strip(".")
    if not name:
        raise ValueError(f"Cannot derive a file name from title {title!r}")
    return f"{name}.md"


class WikiLibrary:
    """The tag graph of one wiki folder, plus the operations that change it."""

    def __init__(
        self,
        root: Path,
        settings: WikiSettings | None = None,
        store: DocumentStore | None = None,
    ) -> None:
        self.root = Path(root)
        self.settings = settings or WikiSettings()
        self.store = store or DocumentStore(self.root)
        self._graph: WikiGraph | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def open(cls, root: Path | None = None, settings: WikiSettings | None = None) -> WikiLibrary:
        """Discover the wiki root and settings, then build."""
        library = cls(root or get_wiki_root(), settings or load_settings())
        library.build()
        return library

    @property
    def ready(self) -> bool:
        return self._graph is not None

    @property
    def graph(self) -> WikiGraph:
        if self._graph is None:
            raise RuntimeError("Wiki library not built; call build() first")
        return self._graph

    # ─────────────────────────────────────────────────────────────────────
    # Build
    # ─────────────────────────────────────────────────────────────────────

    def build(self) -> WikiGraph:
        """Scan every note, build the graph and propagate inheritance."""
        if not self.root.exists():
            log.info("Wiki folder %s not found, creating it", self.root)
            self.root.mkdir(parents=True)
        graph = build_graph(self.store.enumerate())
        propagate(graph)
        if self.settings.debug:
            graph.check_invariants()
        self._graph = graph
        return graph

    def refresh(self) -> RefreshResult:
        """Rebuild from disk, rewrite notes whose tags changed, regenerate diagnostics."""
        graph = self.build()
        updated = self.persist(graph.nodes)
        diagnostics_path = self.write_diagnostics()
        return RefreshResult(
            summary=self.summary(),
            updated_paths=updated,
            diagnostics_path=diagnostics_path,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────

    def _write_node(self, node: Node) -> bool:
        fields, body = self.store.read_header(node.path)
        fields = fields or {}
        new_fields = dict(fields)
        if (fields.get("tags") or []) != node.tags:
            new_fields["tags"] = list(node.tags)
        if fields.get("wiki-tag") != node.wiki_tag:
            new_fields["wiki-tag"] = node.wiki_tag

        node.dirty = False
        if new_fields == fields and read_inherited_line(body) == sorted(node.inherited_tags):
            return False
        new_body = apply_inherited_line(body, node.inherited_tags)
        if new_fields == fields and new_body == body:
            return False
        return self.store.write_header(node.path, new_fields, new_body)

    def persist(self, keys: Iterable[str]) -> list[str]:
        """Write tags and inherited tags of the given nodes back to their notes.

        Notes are rewritten only when their text has to change.

        Returns:
            Paths of the notes rewritten.
        """
        graph = self.graph
        updated: list[str] = []
        for key in sorted(keys):
            node = graph.nodes.get(key)
            if node is None:
                continue
            if self._write_node(node):
                updated.append(node.path)
        if updated:
            log.info("Updated %d note(s)", len(updated))
        return updated

    def write_diagnostics(self) -> str:
        """Regenerate the diagnostics note; returns its path relative to the root."""
        self.store.write_text(DIAGNOSTICS_FILENAME, render_diagnostics(self.graph))
        return DIAGNOSTICS_FILENAME

    # ─────────────────────────────────────────────────────────────────────
    # Entries
    # ─────────────────────────────────────────────────────────────────────

    def similar(self, candidate: EntryCandidate) -> list[SimilarityMatch]:
        return rank_similar(
            candidate.wiki_tag,
            candidate.aliases,
            candidate.title_entities,
            self.graph.all_notes(),
        )

    async def add_entry(
        self,
        candidate: EntryCandidate,
        *,
        folder: str = "",
        confirm: Confirm | None = None,
    ) -> InsertionResult:
        """Create a new entry note and integrate it into the graph.

        Args:
            candidate: Parsed entry input.
            folder: Folder below the wiki root for the new note.
            confirm: Asked when similar notes exist. None means go ahead.

        Returns:
            The insertion result. Cancelling is a result, not an error.
        """
        async with self._lock:
            graph = self.graph
            rel_path = f"{folder.strip('/')}/{entry_filename(candidate.title)}".lstrip("/")
            if self.store.exists(rel_path):
                log.info("Note %s already exists, not creating it", rel_path)
                return InsertionResult(status="exists", wiki_tag=candidate.wiki_tag, path=rel_path)

            fields = create_entry_header(candidate)
            if self.settings.tag_alias_enabled:
                # Lets the tag itself resolve to this note in the editor
                fields["aliases"] = [f"{TAG_SIGIL}{candidate.wiki_tag}", *fields["aliases"]]
            node = Node.from_header(rel_path, fields, NoteHeader.model_validate(fields))
            template = self.settings.entry_template.replace("{{title}}", candidate.title)

            def create_note(result: Integration) -> None:
                fields["tags"] = list(node.tags)
                body = apply_inherited_line(template, node.inherited_tags)
                self.store.create(rel_path, build_note(fields, body))
                node.dirty = False

            result = await insert_node(
                graph,
                node,
                aliases=candidate.aliases,
                title_entities=candidate.title_entities,
                confirm=confirm,
                on_commit=create_note,
            )

            if result.status == "cancelled":
                return InsertionResult(
                    status="cancelled", wiki_tag=result.wiki_tag, matches=result.matches
                )

            if self.settings.debug:
                graph.check_invariants()

            updated = self.persist(key for key in result.changed if key != node.wiki_tag)
            log.info("Created %s (%s)", rel_path, result.status)
            return InsertionResult(
                status=result.status,
                wiki_tag=result.wiki_tag,
                path=rel_path,
                matches=result.matches,
                component=result.component,
                merged_components=result.merged,
                updated_paths=updated,
            )

    # ─────────────────────────────────────────────────────────────────────
    # Reporting
    # ─────────────────────────────────────────────────────────────────────

    def describe(self, wiki_tag: str) -> NodeInfo:
        """Node details; raises KeyError for unknown identifiers."""
        if wiki_tag not in self.graph.nodes:
            raise KeyError(f"Wiki tag not found: {wiki_tag}")
        return self.graph.node_info(wiki_tag)

    def summary(self) -> GraphSummary:
        graph = self.graph
        return GraphSummary(
            root=str(self.root),
            nodes=len(graph.nodes),
            components=len(graph.components),
            multi_member_components=len(graph.multi_member_components()),
            outer_references=len(graph.outer_refs),
            duplicate_groups=len(graph.duplicates),
            no_header=len(graph.no_header),
            invalid_headers=len(graph.invalid_headers),
            by_type={kind: len(paths) for kind, paths in graph.classification.items()},
        )
