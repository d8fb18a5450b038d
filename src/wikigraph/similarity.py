"""Similarity scoring of a new entry against existing notes.

A heuristic guard against creating the same wiki entry twice. The score is
the overlap between the candidate's title entities and an existing note's
tags and aliases, with overrides for identifier matches.
"""

from __future__ import annotations

from collections.abc import Iterable

from .config import (
    CROSS_REFERENCE_SIMILARITY,
    EXACT_MATCH_SIMILARITY,
    MIN_INTERSECTION_SIZE,
    SIMILARITY_THRESHOLD,
)
from .frontmatter import normalize_tag
from .graph import Node
from .models import SimilarityMatch


def score_node(
    wiki_tag: str,
    aliases: list[str],
    title_entities: list[str],
    node: Node,
) -> tuple[float, int]:
    """Score one existing node against the candidate.

    Returns:
        Tuple of (similarity, intersection size).
    """
    entities = {normalize_tag(e) for e in title_entities if normalize_tag(e)}
    existing = set(node.tags) | {normalize_tag(a) for a in node.aliases if normalize_tag(a)}

    intersection = entities & existing
    denominator = min(len(entities), len(existing))
    similarity = len(intersection) / denominator if denominator else 0.0

    candidate_aliases = {normalize_tag(a) for a in aliases}
    if wiki_tag == node.wiki_tag:
        similarity = max(similarity, EXACT_MATCH_SIMILARITY)
    elif wiki_tag in existing or node.wiki_tag in candidate_aliases:
        similarity = max(similarity, CROSS_REFERENCE_SIMILARITY)

    return similarity, len(intersection)


def rank_similar(
    wiki_tag: str,
    aliases: list[str],
    title_entities: list[str],
    nodes: Iterable[Node],
) -> list[SimilarityMatch]:
    """Rank existing nodes by similarity to the candidate.

    Args:
        wiki_tag: Proposed identifier of the new entry.
        aliases: Proposed aliases.
        title_entities: Tokens forming the display title.
        nodes: Existing nodes, duplicates included.

    Returns:
        Matches above the threshold, most similar first. Ties keep input order.
    """
    matches: list[SimilarityMatch] = []
    for node in nodes:
        similarity, intersection_size = score_node(wiki_tag, aliases, title_entities, node)
        if similarity > SIMILARITY_THRESHOLD or intersection_size > MIN_INTERSECTION_SIZE:
            matches.append(
                SimilarityMatch(
                    wiki_tag=node.wiki_tag,
                    path=node.path,
                    similarity=round(similarity, 3),
                    intersection_size=intersection_size,
                )
            )
    matches.sort(key=lambda m: m.similarity, reverse=True)
    return matches
