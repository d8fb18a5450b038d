"""Tag inheritance over the condensed component DAG.

Every node inherits the identifiers of all of its ancestors, except that a
category node's identifier stops at its direct children (they already carry
it explicitly). Members of one component inherit each other's identifiers.
A node never inherits its own identifier or one of its explicit tags.

Inheritance only ever adds: re-running propagation with no structural
change leaves every ``inherited_tags`` set as it was.
"""

from __future__ import annotations

import logging

from .graph import GraphInvariantError, WikiGraph

log = logging.getLogger(__name__)


def _passable(graph: WikiGraph, tags: set[str]) -> set[str]:
    return {tag for tag in tags if not graph.is_category(tag)}


def _reachable(graph: WikiGraph, start: str) -> set[str]:
    seen = {start}
    stack = [start]
    while stack:
        key = stack.pop()
        for child in graph.components[key].children:
            if child not in seen:
                seen.add(child)
                stack.append(child)
    return seen


def _topological_order(graph: WikiGraph, scope: set[str]) -> list[str]:
    indegree = {
        key: sum(1 for parent in graph.components[key].parents if parent in scope)
        for key in scope
    }
    ready = sorted((key for key, degree in indegree.items() if degree == 0), reverse=True)
    order: list[str] = []
    while ready:
        key = ready.pop()
        order.append(key)
        for child in sorted(graph.components[key].children, reverse=True):
            if child not in scope:
                continue
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)
    if len(order) != len(scope):
        stuck = sorted(key for key, degree in indegree.items() if degree > 0)
        raise GraphInvariantError(f"Condensed graph has a cycle through {stuck}")
    return order


def component_outflow(graph: WikiGraph, comp_key: str) -> set[str]:
    """Identifiers a component hands to its children, read from current state."""
    comp = graph.components[comp_key]
    outflow = set(comp.members)
    for member in comp.members:
        node = graph.nodes[member]
        outflow |= node.inherited_tags
        outflow |= node.parents
    return _passable(graph, outflow)


def propagate(
    graph: WikiGraph,
    start: str | None = None,
    seed: set[str] | None = None,
) -> set[str]:
    """Push inherited tags down the component DAG.

    Args:
        graph: The graph to update in place.
        start: Component to start from. Without it every component is
            visited, roots first. With it only the components reachable
            from ``start`` are visited, and components outside that region
            contribute what they already carry.
        seed: Extra identifiers handed to ``start`` (its members' own
            inherited tags when a merge happened).

    Returns:
        Keys of the nodes whose inherited tags changed.
    """
    if start is None:
        scope = set(graph.components)
    else:
        scope = _reachable(graph, start)

    outflow: dict[str, set[str]] = {}
    changed: set[str] = set()

    for comp_key in _topological_order(graph, scope):
        comp = graph.components[comp_key]
        accumulator: set[str] = set()
        if comp_key == start and seed:
            accumulator |= _passable(graph, seed)
        for parent in comp.parents:
            if parent in outflow:
                accumulator |= outflow[parent]
            else:
                accumulator |= component_outflow(graph, parent)

        shared = accumulator | comp.members
        for member in comp.members:
            node = graph.nodes[member]
            inherited = (node.inherited_tags | shared) - {member} - set(node.tags)
            if inherited != node.inherited_tags:
                graph.update_inherited(member, inherited)
                changed.add(member)

        outflow[comp_key] = accumulator | _passable(graph, comp.members)

    log.debug(
        "Propagated over %d component(s), %d node(s) changed", len(scope), len(changed)
    )
    return changed
