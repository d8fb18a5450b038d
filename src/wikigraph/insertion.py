"""Incremental insertion of one new node into a live graph.

The steps for one insertion are:

    scoring -> confirmation (only when similar notes exist)
            -> duplicate check -> duplicate recorded
                               -> edge linking -> cycle detection
                                  -> component merge (if a cycle closed)
                                  -> re-propagation -> committed

Nothing touches the graph before confirmation resolves. Everything after it
runs synchronously inside one graph transaction, so either the whole
insertion is applied or none of it is.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Literal

from .frontmatter import normalize_tag, normalize_tags
from .graph import (
    Component,
    GraphInvariantError,
    Journal,
    Node,
    WikiGraph,
    strongly_connected_components,
)
from .inheritance import propagate
from .models import Decision, SimilarityMatch
from .similarity import rank_similar

log = logging.getLogger(__name__)

# Shown the ranked matches, answers whether to go ahead
Confirm = Callable[[list[SimilarityMatch]], Awaitable[Decision | None]]


@dataclass
class Integration:
    """What one insertion did to the graph."""

    status: Literal["inserted", "duplicate", "cancelled"]
    wiki_tag: str
    matches: list[SimilarityMatch] = field(default_factory=list)
    component: str | None = None
    merged: list[str] = field(default_factory=list)  # Components absorbed by a merge
    changed: list[str] = field(default_factory=list)  # Nodes whose tags or inherited tags changed


async def confirm_matches(matches: list[SimilarityMatch], confirm: Confirm | None) -> bool:
    """Ask the confirmation collaborator whether to go ahead.

    No matches, or no collaborator at all, means go ahead. Anything but an
    explicit "proceed" (cancel, dismissed, no answer) means stop.
    """
    if not matches or confirm is None:
        return True
    decision = await confirm(matches)
    if decision == "proceed":
        return True
    log.info("Insertion cancelled (%s) after %d similar note(s)", decision or "no answer", len(matches))
    return False


def _promote_grandparent_tags(graph: WikiGraph, node: Node) -> list[str]:
    """Tags of the node's existing parents, minus category identifiers.

    One hop only: promoted tags are not promoted again.
    """
    promoted: list[str] = []
    for tag in node.tags:
        parent = graph.nodes.get(tag)
        if parent is None or tag == node.wiki_tag:
            continue
        for grand in parent.tags:
            if grand in (node.wiki_tag, tag) or grand in node.tags or grand in promoted:
                continue
            if graph.is_category(grand):
                continue
            promoted.append(grand)
    return promoted


def _link_new_node(graph: WikiGraph, node: Node) -> None:
    key = node.wiki_tag
    graph.add_node(node)
    graph.add_component(Component(key=key, members={key}))
    graph.set_component(key, key)

    promoted = _promote_grandparent_tags(graph, node)
    if promoted:
        log.debug("Promoting %s onto %s", promoted, key)
        graph.add_tags(key, promoted)

    graph.resolve_tags(key)
    for parent in node.parents:
        graph.link_components(graph.component_of(parent).key, key)

    for child in graph.pop_outer_refs(key):
        if child not in graph.nodes:
            raise GraphInvariantError(f"Outer reference to {key!r} held by unknown node {child!r}")
        graph.link(key, child)
        graph.link_components(key, graph.component_of(child).key)


def _close_cycles(graph: WikiGraph, start: str) -> list[str]:
    """Merge the components that now form a cycle through ``start``.

    Returns:
        Keys of the components absorbed into ``start``.

    Raises:
        GraphInvariantError: If the component graph had a cycle before this
            insertion, or Tarjan reports more than one component rooted at
            ``start``.
    """
    sccs = strongly_connected_components(
        [start], lambda k: sorted(graph.components[k].parents)
    )
    rooted = [members for root, members in sccs if root == start]
    if len(rooted) != 1:
        raise GraphInvariantError(
            f"Expected one component rooted at {start!r}, found {len(rooted)}"
        )
    stale = [members for root, members in sccs if root != start and len(members) > 1]
    if stale:
        raise GraphInvariantError(f"Pre-existing component cycle(s) found: {stale}")

    cycle = rooted[0]
    if len(cycle) == 1:
        return []
    graph.merge_components(cycle, into=start)
    absorbed = sorted(k for k in cycle if k != start)
    log.info("Cycle closed by %s, merged components %s", start, ", ".join(absorbed))
    return absorbed


def _changed_nodes(graph: WikiGraph, journal: Journal) -> list[str]:
    changed = []
    for key, before in journal.nodes.items():
        after = graph.nodes.get(key)
        if after is None:
            continue
        if (
            before is None
            or before.tags != after.tags
            or before.inherited_tags != after.inherited_tags
        ):
            changed.append(key)
    return sorted(changed)


def integrate_node(
    graph: WikiGraph,
    node: Node,
    on_commit: Callable[[Integration], None] | None = None,
) -> Integration:
    """Add one node to a live, already propagated graph.

    Args:
        graph: The live graph.
        node: New node; its tags are normalized here.
        on_commit: Called with the result before the transaction closes. If
            it raises, the graph is rolled back as well.

    Returns:
        The integration result.

    Raises:
        GraphInvariantError: If the graph turns out to be inconsistent. The
            graph is left exactly as it was.
    """
    key = node.wiki_tag = normalize_tag(node.wiki_tag)
    if not key:
        raise ValueError("A new node needs a wiki-tag")
    node.tags, _ = normalize_tags(node.tags)
    node.parents, node.children, node.inherited_tags = set(), set(), set()
    node.component = None

    with graph.transaction() as journal:
        if key in graph.duplicates:
            graph.add_duplicate(key, node)
            result = Integration(status="duplicate", wiki_tag=key)
        elif key in graph.nodes:
            existing = graph.detach_node(key)
            graph.add_duplicate(key, existing)
            graph.add_duplicate(key, node)
            log.warning("wiki-tag %r is now claimed by %s and %s", key, existing.path, node.path)
            result = Integration(status="duplicate", wiki_tag=key)
        else:
            _link_new_node(graph, node)
            merged = _close_cycles(graph, key)
            comp = graph.components[key]
            seed: set[str] = set()
            for member in comp.members:
                seed |= graph.nodes[member].inherited_tags
            propagate(graph, start=key, seed=seed)
            result = Integration(status="inserted", wiki_tag=key, component=key, merged=merged)

        result.changed = _changed_nodes(graph, journal)
        if on_commit is not None:
            on_commit(result)

    return result


async def insert_node(
    graph: WikiGraph,
    node: Node,
    *,
    aliases: list[str] | None = None,
    title_entities: list[str] | None = None,
    confirm: Confirm | None = None,
    on_commit: Callable[[Integration], None] | None = None,
) -> Integration:
    """Score, confirm, then integrate one node.

    The only suspension point is the confirmation. A cancelled or dismissed
    confirmation returns a "cancelled" result and leaves the graph untouched.
    """
    matches = rank_similar(
        normalize_tag(node.wiki_tag),
        aliases if aliases is not None else node.aliases,
        title_entities or [],
        graph.all_notes(),
    )
    if not await confirm_matches(matches, confirm):
        return Integration(status="cancelled", wiki_tag=node.wiki_tag, matches=matches)

    result = integrate_node(graph, node, on_commit=on_commit)
    result.matches = matches
    return result
