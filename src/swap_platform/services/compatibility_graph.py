"""Compatibility graph over the pool of ACTIVE listings.

Pure-function module. The graph is rebuilt from listing snapshots on every
match run; nothing here is incrementally maintained.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from swap_platform.domain.contracts import Edge, ListingNode
from swap_platform.services.match_scorer import (
    RECIPROCITY_BONUS,
    compute_score,
    is_edge_compatible,
)
from swap_platform.services.reliability import ReliabilityHook


class CompatibilityGraph:
    """Adjacency map: listing id -> outgoing edges sorted by total score desc."""

    def __init__(self, adjacency: dict[str, list[Edge]]):
        self._adjacency = adjacency
        self._lookup: dict[tuple[str, str], Edge] = {
            (from_id, edge.to): edge
            for from_id, edges in adjacency.items()
            for edge in edges
        }

    def edges(self, listing_id: str) -> list[Edge]:
        return self._adjacency.get(listing_id, [])

    def get_edge(self, from_id: str, to_id: str) -> Optional[Edge]:
        return self._lookup.get((from_id, to_id))

    def items(self) -> Iterator[tuple[str, list[Edge]]]:
        return iter(self._adjacency.items())

    def edge_count(self) -> int:
        return len(self._lookup)

    def __contains__(self, listing_id: str) -> bool:
        return listing_id in self._adjacency


def build_graph(
    listings: Iterable[ListingNode],
    reliability: Optional[ReliabilityHook] = None,
) -> CompatibilityGraph:
    """Score every ordered pair and annotate reciprocal edges.

    O(n²) in the number of listings. A pair failing ``is_edge_compatible``
    produces no edge at all.
    """
    nodes = list(listings)
    adjacency: dict[str, list[Edge]] = {}

    for a in nodes:
        edges: list[Edge] = []
        for b in nodes:
            # Listings of the same owner never link
            if a.id == b.id or a.user_id == b.user_id:
                continue
            if not is_edge_compatible(a, b):
                continue
            edges.append(compute_score(a, b))

        edges.sort(key=lambda edge: edge.total_score, reverse=True)
        adjacency[a.id] = edges

    graph = CompatibilityGraph(adjacency)

    # Second pass: reciprocity
    for from_id, edges in graph.items():
        for edge in edges:
            if graph.get_edge(edge.to, from_id) is None:
                continue
            edge.is_mutual = True
            edge.reciprocity_bonus = RECIPROCITY_BONUS
            edge.rank_score = edge.total_score + RECIPROCITY_BONUS

    if reliability is not None and reliability.enabled:
        score_by_id = {node.id: node.reliability_score for node in nodes}
        for _, edges in graph.items():
            for edge in edges:
                penalty = reliability.rank_penalty(score_by_id.get(edge.to))
                if penalty:
                    edge.rank_score = max(0, edge.rank_score - penalty)

    return graph
