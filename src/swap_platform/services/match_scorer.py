"""Deterministic swap compatibility scorer.

Pure-function module — NO database access, NO side effects.

Scores how well listing B's *current* apartment satisfies listing A's
*desired* apartment across five dimensions (points, not weights):
    - Location   (0-30)  — normalized city match, token overlap as partial
    - Type       (0-30)  — normalized apartment type, containment as partial
    - Budget     (0-25)  — cheaper relative to A's ceiling scores higher
    - Timeline   (0-10)  — day gap between the two availability dates
    - Features   (0-5)   — overlap of normalized feature sets

The total is the sum capped at 100. Edge *existence* is a separate, stricter
check (``is_edge_compatible``): a failing pair never becomes a zero-score edge.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Optional

from swap_platform.domain.contracts import Edge, ListingNode

# ── Dimension caps ───────────────────────────────────────────────────────────

MAX_LOCATION = 30
MAX_TYPE = 30
MAX_BUDGET = 25
MAX_TIMELINE = 10
MAX_FEATURES = 5
MAX_TOTAL = 100

# Flat rank bonus when both directions of an edge exist
RECIPROCITY_BONUS = 15

# Timeline buckets: (max day gap, score)
TIMELINE_BUCKETS = ((14, 10), (30, 8), (60, 5), (90, 2))

_TOKEN_SPLIT = re.compile(r"[,\-/\s]+")


# ── Helpers ──────────────────────────────────────────────────────────────────

def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (``round()`` would bank to even)."""
    return int(math.floor(value + 0.5))


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _tokens(value: str) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split(value) if token]


def _day_gap(a, b) -> Optional[float]:
    """Absolute distance in days between two date-like values.

    Two datetimes keep their sub-day precision; anything else is compared
    at date granularity. Returns ``None`` when either side is missing.
    """
    if a is None or b is None:
        return None
    if isinstance(a, datetime) and isinstance(b, datetime):
        return abs((a - b).total_seconds()) / 86400
    a_date = a.date() if isinstance(a, datetime) else a
    b_date = b.date() if isinstance(b, datetime) else b
    if not isinstance(a_date, date) or not isinstance(b_date, date):
        return None
    return float(abs((a_date - b_date).days))


# ── Dimension scores ─────────────────────────────────────────────────────────

def compute_location_score(desired_city: str, current_city: str) -> int:
    desired = _normalize(desired_city)
    current = _normalize(current_city)

    if desired == current:
        return MAX_LOCATION

    current_tokens = set(_tokens(current))
    if any(token in current_tokens for token in _tokens(desired)):
        return 15
    return 0


def compute_type_score(desired_type: str, current_type: str) -> int:
    desired = _normalize(desired_type)
    current = _normalize(current_type)

    if desired == current:
        return MAX_TYPE
    if current in desired or desired in current:
        return 15
    return 0


def compute_budget_score(max_budget: int, current_rent: int) -> int:
    """Budget headroom score (0-25).

    Zero when either figure is non-positive or the rent exceeds the ceiling.
    """
    if max_budget <= 0 or current_rent <= 0:
        return 0
    if max_budget < current_rent:
        return 0

    ratio = current_rent / max_budget
    score = round_half_up(MAX_BUDGET * (1 - ratio))
    return max(0, min(MAX_BUDGET, score))


def compute_timeline_score(available_a, available_b) -> int:
    gap = _day_gap(available_a, available_b)
    if gap is None:
        return 0
    for max_days, score in TIMELINE_BUCKETS:
        if gap <= max_days:
            return score
    return 0


def compute_feature_score(features_a: list[str], features_b: list[str]) -> int:
    if not features_a or not features_b:
        return 0

    a = {_normalize(f) for f in features_a}
    b = {_normalize(f) for f in features_b}
    denominator = max(len(a), len(b))
    if denominator == 0:
        return 0

    return round_half_up(MAX_FEATURES * len(a & b) / denominator)


# ── Edge construction ────────────────────────────────────────────────────────

def is_edge_compatible(a: ListingNode, b: ListingNode) -> bool:
    """True when B's current apartment clears A's minimum type and budget bar."""
    if compute_type_score(a.desired_type, b.current_type) == 0:
        return False
    return a.max_budget >= b.current_rent


def compute_score(a: ListingNode, b: ListingNode) -> Edge:
    """Score B's offer against A's wants. Returns an un-annotated edge A→B."""
    city_score = compute_location_score(a.desired_city, b.current_city)
    type_score = compute_type_score(a.desired_type, b.current_type)
    budget_score = compute_budget_score(a.max_budget, b.current_rent)
    timeline_score = compute_timeline_score(a.available_on, b.available_on)
    feature_score = compute_feature_score(a.features, b.features)

    total = min(
        MAX_TOTAL,
        city_score + type_score + budget_score + timeline_score + feature_score,
    )

    return Edge(
        to=b.id,
        city_score=city_score,
        type_score=type_score,
        budget_score=budget_score,
        timeline_score=timeline_score,
        feature_score=feature_score,
        total_score=total,
        rank_score=total,
    )


def score_breakdown(edge: Edge) -> dict:
    """Display breakdown of an edge, keyed the way the API reports it."""
    return {
        "location": edge.city_score,
        "apartment_type": edge.type_score,
        "budget": edge.budget_score,
        "timeline": edge.timeline_score,
        "features": edge.feature_score,
        "reciprocity_bonus": edge.reciprocity_bonus,
    }
