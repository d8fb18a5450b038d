"""Tag graph built from wiki note headers.

Every note with a ``wiki-tag`` becomes a node. A note's ``tags`` name its
parents. Nodes and strongly connected components live in tables keyed by
identifier; all adjacency is held as keys into those tables, so tag cycles
never turn into reference cycles between objects.

Mutations of a live graph go through the methods of WikiGraph. Inside
``WikiGraph.transaction()`` each method journals the first version of every
record it touches, and the journal is replayed backwards if the block
raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

from pydantic import ValidationError

from .frontmatter import normalize_tag, normalize_tags
from .models import ComponentInfo, NodeInfo, NoteHeader, NoteType
from .parser import NoteDocument, ParseError

log = logging.getLogger(__name__)

V = TypeVar("V", bound=Hashable)


class GraphInvariantError(RuntimeError):
    """An internal consistency check failed. Indicates a bug, not bad input."""


@dataclass(eq=False)
class Node:
    """One wiki note."""

    wiki_tag: str
    path: str
    note_type: NoteType = "wiki"
    tags: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)
    inherited_tags: set[str] = field(default_factory=set)
    parents: set[str] = field(default_factory=set)
    children: set[str] = field(default_factory=set)
    component: str | None = None
    dirty: bool = False

    @classmethod
    def from_header(cls, path: str, fields: dict[str, Any], header: NoteHeader) -> Node:
        tags, changed = normalize_tags(header.tags)
        wiki_tag = normalize_tag(header.wiki_tag or "")
        return cls(
            wiki_tag=wiki_tag,
            path=path,
            note_type=header.kind,
            tags=tags,
            aliases=list(header.aliases),
            fields=dict(fields),
            dirty=changed or wiki_tag != header.wiki_tag,
        )

    @property
    def is_category(self) -> bool:
        return self.note_type == "category"

    def copy(self) -> Node:
        return replace(
            self,
            tags=list(self.tags),
            aliases=list(self.aliases),
            fields=dict(self.fields),
            inherited_tags=set(self.inherited_tags),
            parents=set(self.parents),
            children=set(self.children),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "wiki_tag": self.wiki_tag,
            "path": self.path,
            "note_type": self.note_type,
            "tags": list(self.tags),
            "inherited_tags": sorted(self.inherited_tags),
            "parents": sorted(self.parents),
            "children": sorted(self.children),
            "component": self.component,
        }


@dataclass(eq=False)
class Component:
    """A strongly connected component of the tag graph.

    ``key`` is the identifier of the member that was the Tarjan root when the
    component was found. It is a label only, but it is always a member.
    """

    key: str
    members: set[str] = field(default_factory=set)
    parents: set[str] = field(default_factory=set)
    children: set[str] = field(default_factory=set)

    def copy(self) -> Component:
        return replace(
            self,
            members=set(self.members),
            parents=set(self.parents),
            children=set(self.children),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "members": sorted(self.members),
            "parents": sorted(self.parents),
            "children": sorted(self.children),
        }


def strongly_connected_components(
    vertices: Iterable[V],
    successors: Callable[[V], Iterable[V]],
) -> list[tuple[V, list[V]]]:
    """Tarjan's algorithm with an explicit work stack.

    Args:
        vertices: Vertices to visit, in the order roots are tried.
        successors: Edges out of a vertex. Must only yield known vertices.

    Returns:
        (root, members) per component, in the order Tarjan closes them
        (every component comes after the components it reaches).

    Raises:
        GraphInvariantError: If the component stack underflows.
    """
    index: dict[V, int] = {}
    lowlink: dict[V, int] = {}
    on_stack: set[V] = set()
    stack: list[V] = []
    result: list[tuple[V, list[V]]] = []
    counter = 0

    for root in vertices:
        if root in index:
            continue
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work: list[tuple[V, Iterator[V]]] = [(root, iter(successors(root)))]

        while work:
            v, edges = work[-1]
            descended = False
            for w in edges:
                if w not in index:
                    index[w] = lowlink[w] = counter
                    counter += 1
                    stack.append(w)
                    on_stack.add(w)
                    work.append((w, iter(successors(w))))
                    descended = True
                    break
                if w in on_stack:
                    lowlink[v] = min(lowlink[v], index[w])
            if descended:
                continue

            work.pop()
            if work:
                caller = work[-1][0]
                lowlink[caller] = min(lowlink[caller], lowlink[v])

            if lowlink[v] == index[v]:
                members: list[V] = []
                while True:
                    if not stack:
                        raise GraphInvariantError(
                            f"SCC stack underflow while closing component rooted at {v!r}"
                        )
                    w = stack.pop()
                    on_stack.discard(w)
                    members.append(w)
                    if w == v:
                        break
                result.append((v, members))

    return result


@dataclass
class Journal:
    """First-seen copies of every record touched inside a transaction.

    A saved value of None means the record did not exist yet.
    """

    nodes: dict[str, Node | None] = field(default_factory=dict)
    components: dict[str, Component | None] = field(default_factory=dict)
    outer_refs: dict[str, list[str] | None] = field(default_factory=dict)
    duplicates: dict[str, list[Node] | None] = field(default_factory=dict)


class WikiGraph:
    """Node, component, outer-reference and duplicate tables."""

    def __init__(self) -> None:
        self.nodes: dict[str, Node] = {}
        self.components: dict[str, Component] = {}
        # Missing identifier -> keys of the nodes that list it as a tag
        self.outer_refs: dict[str, list[str]] = {}
        self.duplicates: dict[str, list[Node]] = {}
        # Data-quality findings kept for reporting
        self.no_header: list[str] = []
        self.missing_wiki_tag: list[str] = []
        self.invalid_headers: dict[str, str] = {}
        self.classification: dict[NoteType, list[str]] = {
            "wiki": [],
            "category": [],
            "disambiguation": [],
            "other": [],
        }
        self._journal: Journal | None = None

    # ─────────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────────

    def component_of(self, key: str) -> Component:
        comp_key = self.nodes[key].component
        if comp_key is None or comp_key not in self.components:
            raise GraphInvariantError(f"Node {key!r} has no component")
        return self.components[comp_key]

    def is_category(self, key: str) -> bool:
        node = self.nodes.get(key)
        return node is not None and node.is_category

    def all_notes(self) -> Iterator[Node]:
        """Graph nodes followed by every duplicate claimant."""
        yield from self.nodes.values()
        for group in self.duplicates.values():
            yield from group

    def node_info(self, key: str) -> NodeInfo:
        node = self.nodes[key]
        return NodeInfo(
            wiki_tag=node.wiki_tag,
            path=node.path,
            note_type=node.note_type,
            tags=list(node.tags),
            inherited_tags=sorted(node.inherited_tags),
            aliases=list(node.aliases),
            parents=sorted(node.parents),
            children=sorted(node.children),
            component=node.component,
        )

    def component_info(self, key: str) -> ComponentInfo:
        comp = self.components[key]
        return ComponentInfo(
            key=comp.key,
            members=sorted(comp.members),
            parents=sorted(comp.parents),
            children=sorted(comp.children),
        )

    def multi_member_components(self) -> list[Component]:
        return sorted(
            (c for c in self.components.values() if len(c.members) > 1),
            key=lambda c: c.key,
        )

    def snapshot(self) -> dict[str, Any]:
        """Plain-data copy of every table, for structural comparison."""
        return {
            "nodes": {key: node.as_dict() for key, node in sorted(self.nodes.items())},
            "components": {
                key: comp.as_dict() for key, comp in sorted(self.components.items())
            },
            "outer_refs": {key: list(refs) for key, refs in sorted(self.outer_refs.items())},
            "duplicates": {
                key: [node.path for node in group]
                for key, group in sorted(self.duplicates.items())
            },
        }

    def check_invariants(self) -> None:
        """Verify the structural invariants of the graph.

        Raises:
            GraphInvariantError: On the first violation found.
        """
        seen: dict[str, str] = {}
        for comp in self.components.values():
            if not comp.members:
                raise GraphInvariantError(f"Component {comp.key!r} is empty")
            if comp.key not in comp.members:
                raise GraphInvariantError(f"Component key {comp.key!r} is not a member")
            for member in comp.members:
                if member in seen:
                    raise GraphInvariantError(
                        f"Node {member!r} is in components {seen[member]!r} and {comp.key!r}"
                    )
                seen[member] = comp.key
                if self.nodes[member].component != comp.key:
                    raise GraphInvariantError(f"Node {member!r} points at the wrong component")
            for parent in comp.parents:
                if comp.key not in self.components[parent].children:
                    raise GraphInvariantError(f"Edge {parent!r}->{comp.key!r} is one-sided")

        for key, node in self.nodes.items():
            if key not in seen:
                raise GraphInvariantError(f"Node {key!r} belongs to no component")
            overlap = node.inherited_tags & set(node.tags)
            if overlap:
                raise GraphInvariantError(
                    f"Node {key!r} has {sorted(overlap)} both explicit and inherited"
                )
            for parent in node.parents:
                if key not in self.nodes[parent].children:
                    raise GraphInvariantError(f"Edge {parent!r}->{key!r} is one-sided")
                parent_comp = self.nodes[parent].component
                if parent_comp != node.component and parent_comp not in self.components[
                    node.component or ""
                ].parents:
                    raise GraphInvariantError(
                        f"Edge {parent!r}->{key!r} has no component edge"
                    )

        resolved = [tag for tag in self.outer_refs if tag in self.nodes]
        if resolved:
            raise GraphInvariantError(f"Outer references {resolved} resolve to nodes")

        cycles = [
            members
            for _, members in strongly_connected_components(
                sorted(self.components), lambda k: sorted(self.components[k].parents)
            )
            if len(members) > 1
        ]
        if cycles:
            raise GraphInvariantError(f"Condensed graph has cycles: {cycles}")

    # ─────────────────────────────────────────────────────────────────────
    # Journaled mutation
    # ─────────────────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[Journal]:
        """Stage mutations; roll every touched record back if the block raises."""
        if self._journal is not None:
            raise GraphInvariantError("Nested graph transactions are not supported")
        journal = Journal()
        self._journal = journal
        try:
            yield journal
        except BaseException:
            self._rollback(journal)
            raise
        finally:
            self._journal = None

    def _rollback(self, journal: Journal) -> None:
        for key, node in journal.nodes.items():
            if node is None:
                self.nodes.pop(key, None)
            else:
                self.nodes[key] = node
        for key, comp in journal.components.items():
            if comp is None:
                self.components.pop(key, None)
            else:
                self.components[key] = comp
        for key, refs in journal.outer_refs.items():
            if refs is None:
                self.outer_refs.pop(key, None)
            else:
                self.outer_refs[key] = refs
        for key, group in journal.duplicates.items():
            if group is None:
                self.duplicates.pop(key, None)
            else:
                self.duplicates[key] = group
        log.debug("Rolled back %d node(s), %d component(s)", len(journal.nodes), len(journal.components))

    def _save_node(self, key: str) -> None:
        journal = self._journal
        if journal is not None and key not in journal.nodes:
            node = self.nodes.get(key)
            journal.nodes[key] = node.copy() if node is not None else None

    def _save_component(self, key: str) -> None:
        journal = self._journal
        if journal is not None and key not in journal.components:
            comp = self.components.get(key)
            journal.components[key] = comp.copy() if comp is not None else None

    def _save_outer(self, tag: str) -> None:
        journal = self._journal
        if journal is not None and tag not in journal.outer_refs:
            refs = self.outer_refs.get(tag)
            journal.outer_refs[tag] = list(refs) if refs is not None else None

    def _save_duplicate(self, tag: str) -> None:
        journal = self._journal
        if journal is not None and tag not in journal.duplicates:
            group = self.duplicates.get(tag)
            journal.duplicates[tag] = list(group) if group is not None else None

    def add_node(self, node: Node) -> None:
        self._save_node(node.wiki_tag)
        self.nodes[node.wiki_tag] = node

    def remove_node(self, key: str) -> Node:
        self._save_node(key)
        return self.nodes.pop(key)

    def link(self, parent: str, child: str) -> None:
        self._save_node(parent)
        self._save_node(child)
        self.nodes[parent].children.add(child)
        self.nodes[child].parents.add(parent)

    def unlink(self, parent: str, child: str) -> None:
        self._save_node(parent)
        self._save_node(child)
        self.nodes[parent].children.discard(child)
        self.nodes[child].parents.discard(parent)

    def add_tags(self, key: str, tags: Iterable[str]) -> None:
        self._save_node(key)
        node = self.nodes[key]
        for tag in tags:
            if tag not in node.tags:
                node.tags.append(tag)
                node.dirty = True

    def update_inherited(self, key: str, inherited: set[str]) -> None:
        node = self.nodes[key]
        if inherited != node.inherited_tags:
            self._save_node(key)
            node.inherited_tags = set(inherited)

    def set_component(self, key: str, comp_key: str | None) -> None:
        self._save_node(key)
        self.nodes[key].component = comp_key

    def add_component(self, comp: Component) -> None:
        if comp.key in self.components:
            raise GraphInvariantError(f"Component {comp.key!r} already exists")
        self._save_component(comp.key)
        self.components[comp.key] = comp

    def remove_component(self, key: str) -> Component:
        """Drop a component together with its condensed edges."""
        comp = self.components[key]
        for parent in list(comp.parents):
            self.unlink_components(parent, key)
        for child in list(comp.children):
            self.unlink_components(key, child)
        self._save_component(key)
        return self.components.pop(key)

    def link_components(self, parent: str, child: str) -> None:
        if parent == child:
            return
        self._save_component(parent)
        self._save_component(child)
        self.components[parent].children.add(child)
        self.components[child].parents.add(parent)

    def unlink_components(self, parent: str, child: str) -> None:
        self._save_component(parent)
        self._save_component(child)
        self.components[parent].children.discard(child)
        self.components[child].parents.discard(parent)

    def add_outer_ref(self, tag: str, key: str) -> None:
        self._save_outer(tag)
        refs = self.outer_refs.setdefault(tag, [])
        if key not in refs:
            refs.append(key)

    def discard_outer_ref(self, tag: str, key: str) -> None:
        if key not in self.outer_refs.get(tag, []):
            return
        self._save_outer(tag)
        self.outer_refs[tag].remove(key)
        if not self.outer_refs[tag]:
            del self.outer_refs[tag]

    def pop_outer_refs(self, tag: str) -> list[str]:
        self._save_outer(tag)
        return self.outer_refs.pop(tag, [])

    def add_duplicate(self, tag: str, node: Node) -> None:
        self._save_duplicate(tag)
        self.duplicates.setdefault(tag, []).append(node)

    # ─────────────────────────────────────────────────────────────────────
    # Structure
    # ─────────────────────────────────────────────────────────────────────

    def resolve_tags(self, key: str) -> None:
        """Link a node to the parents its tags name; record the rest as outer references."""
        node = self.nodes[key]
        for tag in node.tags:
            if tag == key:
                continue
            if tag in self.nodes:
                self.link(tag, key)
            else:
                self.add_outer_ref(tag, key)

    def derive_component_edges(self, comp_key: str) -> None:
        """Add the condensed edges induced by the node edges of one component."""
        for member in self.components[comp_key].members:
            node = self.nodes[member]
            for parent in node.parents:
                self.link_components(self._comp_key(parent), comp_key)
            for child in node.children:
                self.link_components(comp_key, self._comp_key(child))

    def _comp_key(self, key: str) -> str:
        comp_key = self.nodes[key].component
        if comp_key is None:
            raise GraphInvariantError(f"Node {key!r} has no component")
        return comp_key

    def decompose(self) -> None:
        """Compute every component from scratch over the node table."""
        sccs = strongly_connected_components(
            list(self.nodes), lambda k: sorted(self.nodes[k].parents)
        )
        for root, members in sccs:
            self.add_component(Component(key=root, members=set(members)))
            for member in members:
                self.set_component(member, root)
        for comp_key in list(self.components):
            self.derive_component_edges(comp_key)

    def split_component(self, comp_key: str) -> list[str]:
        """Re-run Tarjan inside one component after it lost a member.

        Returns:
            Keys of the components replacing it (possibly just one).
        """
        members = set(self.components[comp_key].members)
        self.remove_component(comp_key)
        sccs = strongly_connected_components(
            sorted(members),
            lambda k: sorted(p for p in self.nodes[k].parents if p in members),
        )
        new_keys = []
        for root, scc in sccs:
            self.add_component(Component(key=root, members=set(scc)))
            for member in scc:
                self.set_component(member, root)
            new_keys.append(root)
        for key in new_keys:
            self.derive_component_edges(key)
        if len(new_keys) > 1:
            log.info("Component %s split into %s", comp_key, ", ".join(new_keys))
        return new_keys

    def merge_components(self, keys: Iterable[str], into: str) -> Component:
        """Collapse several components into one keyed ``into``.

        External edges are redirected to the merged component; the absorbed
        records are discarded.
        """
        absorbed = set(keys)
        if into not in absorbed:
            raise GraphInvariantError(f"Merge target {into!r} is not among {sorted(absorbed)}")

        members: set[str] = set()
        parents: set[str] = set()
        children: set[str] = set()
        for key in sorted(absorbed):
            comp = self.components[key]
            members |= comp.members
            parents |= comp.parents - absorbed
            children |= comp.children - absorbed
            self.remove_component(key)

        merged = Component(key=into, members=members)
        self.add_component(merged)
        for member in members:
            self.set_component(member, into)
        for parent in parents:
            self.link_components(parent, into)
        for child in children:
            self.link_components(into, child)
        return merged

    def detach_node(self, key: str) -> Node:
        """Take a node out of the graph (it is about to become a duplicate).

        Its children keep the tag, which now waits as an outer reference;
        its component is removed or re-split.
        """
        node = self.nodes[key]
        for parent in list(node.parents):
            self.unlink(parent, key)
        for child in list(node.children):
            self.unlink(key, child)
            self.add_outer_ref(key, child)
        for tag in node.tags:
            self.discard_outer_ref(tag, key)

        comp_key = self._comp_key(key)
        comp = self.components[comp_key]
        if comp.members == {key}:
            self.remove_component(comp_key)
        else:
            self._save_component(comp_key)
            comp.members.discard(key)
            self.split_component(comp_key)

        self.set_component(key, None)
        return self.remove_node(key)


def build_graph(documents: Iterable[NoteDocument | ParseError]) -> WikiGraph:
    """Build the tag graph from every note of a wiki.

    Notes without a header, with an invalid header or without a ``wiki-tag``
    are recorded for reporting and take no part in the graph. Notes sharing
    a ``wiki-tag`` are all moved to the duplicate table.
    """
    graph = WikiGraph()

    for doc in documents:
        if isinstance(doc, ParseError):
            path = str(doc.path)
            graph.invalid_headers[path] = doc.message
            graph.classification["other"].append(path)
            continue
        if doc.fields is None:
            graph.no_header.append(doc.path)
            graph.classification["other"].append(doc.path)
            continue

        try:
            header = NoteHeader.model_validate(doc.fields)
        except ValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            graph.invalid_headers[doc.path] = errors
            graph.classification["other"].append(doc.path)
            continue

        graph.classification[header.kind].append(doc.path)
        if not normalize_tag(header.wiki_tag or ""):
            graph.missing_wiki_tag.append(doc.path)
            continue

        node = Node.from_header(doc.path, doc.fields, header)
        tag = node.wiki_tag
        if tag in graph.duplicates:
            graph.duplicates[tag].append(node)
        elif tag in graph.nodes:
            graph.duplicates[tag] = [graph.nodes.pop(tag), node]
        else:
            graph.nodes[tag] = node

    for key in list(graph.nodes):
        graph.resolve_tags(key)
    graph.decompose()

    if graph.no_header or graph.invalid_headers or graph.missing_wiki_tag:
        log.warning(
            "%d note(s) without header, %d with invalid header, %d without wiki-tag",
            len(graph.no_header),
            len(graph.invalid_headers),
            len(graph.missing_wiki_tag),
        )
    for tag, group in graph.duplicates.items():
        log.warning("Duplicate wiki-tag %r claimed by %s", tag, ", ".join(n.path for n in group))
    log.info(
        "Built graph: %d node(s), %d component(s), %d outer reference(s)",
        len(graph.nodes),
        len(graph.components),
        len(graph.outer_refs),
    )
    return graph
