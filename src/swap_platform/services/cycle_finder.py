"""Direct-pair and short-cycle discovery over a ``CompatibilityGraph``.

Pure-function module. Ties in every ranking resolve by discovery order
(first found wins): ``max`` returns the first maximal element.
"""

from __future__ import annotations

from typing import Optional

from swap_platform.domain.contracts import (
    DirectPair,
    ListingNode,
    Recommendation,
    ScoredCycle,
)
from swap_platform.domain.enums import Relationship
from swap_platform.services.compatibility_graph import CompatibilityGraph
from swap_platform.services.match_scorer import round_half_up, score_breakdown

MAX_CYCLE_LENGTH = 4
DEFAULT_RECOMMENDATION_LIMIT = 8


def pick_best_direct_pair(listing_id: str, graph: CompatibilityGraph) -> Optional[DirectPair]:
    """Mutual partner maximizing the mean of forward and reverse rank scores."""
    candidates: list[DirectPair] = []

    for edge in graph.edges(listing_id):
        if not edge.is_mutual:
            continue
        reverse = graph.get_edge(edge.to, listing_id)
        if reverse is None:
            continue
        candidates.append(
            DirectPair(peer_id=edge.to, avg=round_half_up((edge.rank_score + reverse.rank_score) / 2))
        )

    if not candidates:
        return None
    return max(candidates, key=lambda pair: pair.avg)


def find_cycles_from(
    start_id: str,
    graph: CompatibilityGraph,
    max_len: int = MAX_CYCLE_LENGTH,
) -> list[list[str]]:
    """Every simple cycle through ``start_id`` of length 2..max_len.

    Depth-first; interior nodes are never revisited and the only repeated
    node is the closing return to ``start_id`` (which is not included in
    the returned path).
    """
    cycles: list[list[str]] = []
    path: list[str] = [start_id]
    visited: set[str] = {start_id}

    def dfs(current: str) -> None:
        for edge in graph.edges(current):
            nxt = edge.to

            if nxt == start_id:
                if 2 <= len(path) <= max_len:
                    cycles.append(list(path))
                continue

            if nxt in visited or len(path) >= max_len:
                continue

            visited.add(nxt)
            path.append(nxt)
            dfs(nxt)
            path.pop()
            visited.discard(nxt)

    dfs(start_id)
    return cycles


def cycle_average(cycle: list[str], graph: CompatibilityGraph) -> int:
    """Mean per-edge rank score around the ring (last wraps to first)."""
    total = 0
    for index, from_id in enumerate(cycle):
        to_id = cycle[(index + 1) % len(cycle)]
        edge = graph.get_edge(from_id, to_id)
        total += edge.rank_score if edge is not None else 0
    return round_half_up(total / len(cycle))


def pick_best_cycle(cycles: list[list[str]], graph: CompatibilityGraph) -> Optional[ScoredCycle]:
    """Best-scoring cycle within the shortest length group."""
    if not cycles:
        return None

    shortest = min(len(cycle) for cycle in cycles)
    group = [cycle for cycle in cycles if len(cycle) == shortest]

    scored = [ScoredCycle(cycle=cycle, avg=cycle_average(cycle, graph)) for cycle in group]
    return max(scored, key=lambda item: item.avg)


def build_recommendations(
    listing_id: str,
    graph: CompatibilityGraph,
    listing_by_id: dict[str, ListingNode],
    limit: int = DEFAULT_RECOMMENDATION_LIMIT,
) -> list[Recommendation]:
    """Top outgoing edges by rank score, described for display."""
    ranked = sorted(graph.edges(listing_id), key=lambda edge: edge.rank_score, reverse=True)[:limit]

    recommendations: list[Recommendation] = []
    for edge in ranked:
        target = listing_by_id.get(edge.to)
        recommendations.append(
            Recommendation(
                listing_id=edge.to,
                user_id=target.user_id if target else None,
                current_city=target.current_city if target else None,
                current_type=target.current_type if target else None,
                current_rent=target.current_rent if target else None,
                available_on=target.available_on if target else None,
                features=list(target.features) if target else [],
                relationship=Relationship.ONE_TO_ONE if edge.is_mutual else Relationship.ONE_WAY,
                score=edge.total_score,
                rank_score=edge.rank_score,
                breakdown=score_breakdown(edge),
            )
        )
    return recommendations


def recommendation_stats(recommendations: list[Recommendation]) -> dict:
    one_to_one = sum(1 for item in recommendations if item.relationship == Relationship.ONE_TO_ONE)
    return {
        "total_candidates": len(recommendations),
        "one_to_one_candidates": one_to_one,
        "one_way_candidates": len(recommendations) - one_to_one,
    }
