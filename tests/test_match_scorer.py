"""Unit tests for the deterministic swap compatibility scorer."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest

from swap_platform.services.match_scorer import (
    MAX_TOTAL,
    compute_budget_score,
    compute_feature_score,
    compute_location_score,
    compute_score,
    compute_timeline_score,
    compute_type_score,
    is_edge_compatible,
    round_half_up,
    score_breakdown,
)


# ═══════════════════════════════════════════════════════════════════════════
# 1. Location
# ═══════════════════════════════════════════════════════════════════════════

class TestLocationScore:

    def test_exact_match_ignores_case_and_spacing(self):
        assert compute_location_score("  lagos ", "LAGOS") == 30

    def test_token_overlap_is_partial(self):
        assert compute_location_score("Lekki, Lagos", "Lagos Island") == 15

    def test_hyphen_and_slash_split_tokens(self):
        assert compute_location_score("Ikoyi/Lagos", "Victoria-Island-Lagos") == 15

    def test_no_overlap_is_zero(self):
        assert compute_location_score("Lagos", "Abuja") == 0


# ═══════════════════════════════════════════════════════════════════════════
# 2. Apartment type
# ═══════════════════════════════════════════════════════════════════════════

class TestTypeScore:

    def test_exact_match(self):
        assert compute_type_score("2-Bedroom", "2-bedroom") == 30

    def test_containment_either_direction(self):
        assert compute_type_score("Bedroom", "2-Bedroom Flat") == 15
        assert compute_type_score("2-Bedroom Flat", "Bedroom") == 15

    def test_unrelated_is_zero(self):
        assert compute_type_score("Studio", "Duplex") == 0


# ═══════════════════════════════════════════════════════════════════════════
# 3. Budget
# ═══════════════════════════════════════════════════════════════════════════

class TestBudgetScore:

    def test_cheaper_relative_to_ceiling_scores_higher(self):
        assert compute_budget_score(1200, 700) > compute_budget_score(1200, 1100)

    def test_formula(self):
        assert compute_budget_score(1000, 600) == 10
        # 25 * (1 - 700/1200) = 10.41
        assert compute_budget_score(1200, 700) == 10

    def test_rent_above_ceiling_is_zero(self):
        assert compute_budget_score(500, 501) == 0

    def test_rent_equal_to_ceiling_is_zero(self):
        assert compute_budget_score(800, 800) == 0

    @pytest.mark.parametrize("max_budget,rent", [(0, 100), (100, 0), (-5, 10)])
    def test_non_positive_inputs_are_zero(self, max_budget, rent):
        assert compute_budget_score(max_budget, rent) == 0


# ═══════════════════════════════════════════════════════════════════════════
# 4. Timeline
# ═══════════════════════════════════════════════════════════════════════════

class TestTimelineScore:

    @pytest.mark.parametrize("days,expected", [
        (0, 10), (14, 10), (15, 8), (30, 8), (31, 5), (60, 5), (61, 2), (90, 2), (91, 0),
    ])
    def test_buckets(self, days, expected):
        start = date(2026, 1, 1)
        assert compute_timeline_score(start, start + timedelta(days=days)) == expected

    def test_order_does_not_matter(self):
        a, b = date(2026, 3, 1), date(2026, 1, 1)
        assert compute_timeline_score(a, b) == compute_timeline_score(b, a)

    def test_mixed_date_and_datetime(self):
        assert compute_timeline_score(date(2026, 1, 1), datetime(2026, 1, 20, 12)) == 8

    def test_missing_date_is_zero(self):
        assert compute_timeline_score(None, date(2026, 1, 1)) == 0


# ═══════════════════════════════════════════════════════════════════════════
# 5. Features
# ═══════════════════════════════════════════════════════════════════════════

class TestFeatureScore:

    def test_full_overlap(self):
        assert compute_feature_score(["Parking", "wifi"], ["WiFi", "parking"]) == 5

    def test_partial_overlap_uses_larger_set(self):
        # 1 shared of max(2, 4) -> 5 * 1/4 = 1.25
        assert compute_feature_score(["parking", "pool"], ["parking", "gym", "wifi", "ac"]) == 1

    def test_empty_side_is_zero(self):
        assert compute_feature_score([], ["parking"]) == 0
        assert compute_feature_score(["parking"], []) == 0


# ═══════════════════════════════════════════════════════════════════════════
# 6. Edge existence and composite
# ═══════════════════════════════════════════════════════════════════════════

class TestEdge:

    def test_edge_requires_type_compatibility(self, node):
        a = node("a", desired_type="Studio")
        b = node("b", current_type="Duplex")
        assert not is_edge_compatible(a, b)

    def test_edge_requires_budget_ceiling(self, node):
        a = node("a", max_budget=600)
        b = node("b", current_type="2-Bedroom", current_rent=700)
        assert not is_edge_compatible(a, b)

    def test_edge_exists_at_exact_budget(self, node):
        a = node("a", max_budget=700)
        b = node("b", current_type="2-Bedroom", current_rent=700)
        assert is_edge_compatible(a, b)

    def test_zero_location_still_forms_an_edge(self, node):
        a = node("a", desired_city="Lagos")
        b = node("b", current_city="Kano", current_type="2-Bedroom")
        assert is_edge_compatible(a, b)
        assert compute_score(a, b).city_score == 0

    def test_total_is_sum_of_dimensions(self, node):
        a = node("a", features=["parking"], available_on=date(2026, 1, 1))
        b = node(
            "b", current_city="Lagos", current_type="2-Bedroom", current_rent=900,
            features=["parking", "wifi"], available_on=date(2026, 1, 8),
        )
        edge = compute_score(a, b)

        assert edge.to == "b"
        assert (edge.city_score, edge.type_score, edge.budget_score) == (30, 30, 6)
        assert (edge.timeline_score, edge.feature_score) == (10, 3)
        assert edge.total_score == 79
        assert edge.rank_score == edge.total_score
        assert not edge.is_mutual

    def test_total_never_exceeds_cap(self, node):
        a = node("a", max_budget=10_000_000, features=["x"])
        b = node(
            "b", current_city="Lagos", current_type="2-Bedroom", current_rent=1,
            features=["x"], available_on=a.available_on,
        )
        assert compute_score(a, b).total_score <= MAX_TOTAL

    def test_breakdown_keys(self, node):
        edge = compute_score(node("a"), node("b", current_type="2-Bedroom"))
        assert set(score_breakdown(edge)) == {
            "location", "apartment_type", "budget", "timeline", "features", "reciprocity_bonus",
        }


class TestRounding:

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (0.5, 1), (1.49, 1), (10.5, 11), (0, 0)])
    def test_half_rounds_up(self, value, expected):
        assert round_half_up(value) == expected
