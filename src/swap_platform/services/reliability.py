"""Reliability down-rank hook.

Reliability scores (0-100) are maintained by the penalty collaborator
(no-show / cancellation reporting). This module only reads them and, when
a deployment enables it, converts a low score into rank points removed from
edges pointing at that owner's listings. Total scores are never touched.
"""

from typing import Optional

from swap_platform.app.config import Settings, get_settings
from swap_platform.services.match_scorer import round_half_up


class ReliabilityHook:
    """Maps an owner's reliability score to a rank penalty."""

    def __init__(self, enabled: bool = False, weight: int = 25):
        self.enabled = enabled
        self.weight = max(0, weight)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ReliabilityHook":
        settings = settings or get_settings()
        return cls(
            enabled=settings.reliability_rank_penalty_enabled,
            weight=settings.reliability_rank_penalty_weight,
        )

    def rank_penalty(self, reliability_score: Optional[int]) -> int:
        if not self.enabled or reliability_score is None:
            return 0
        score = max(0, min(100, reliability_score))
        return round_half_up(self.weight * (100 - score) / 100)
