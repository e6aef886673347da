"""Advisory tips for listings that found no match.

Rule-based. Consulted only on the INDEPENDENT outcome of a match run and
never influences matching itself.
"""

LOW_BUDGET_THRESHOLD = 500_000


class AdvisoryService:
    """Produces short, human-readable tips for an unmatched listing."""

    def suggest_no_match(self, listing) -> list[str]:
        tips: list[str] = []

        if (listing.max_budget or 0) < LOW_BUDGET_THRESHOLD:
            tips.append("Increase your budget range by 10-20% to unlock more matches.")

        tips.append(
            f'Try adding nearby areas or cities related to "{listing.desired_city}" to widen your search.'
        )
        tips.append(
            f'If possible, make your timeline more flexible than "{listing.timeline}" '
            "to match more availability windows."
        )
        return tips
