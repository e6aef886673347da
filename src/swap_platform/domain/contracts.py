"""Typed dataclasses for matching-engine I/O contracts."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Union

from swap_platform.domain.enums import (
    ChainStatus,
    ChainType,
    InterestStatus,
    MatchOutcome,
    MatchScenario,
    Relationship,
)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


@dataclass
class ListingNode:
    """Snapshot of an ACTIVE listing as seen by the scorer and graph builder."""
    id: str
    user_id: str
    desired_city: str
    desired_type: str
    max_budget: int
    timeline: str
    current_city: str
    current_type: str
    current_rent: int
    available_on: date | datetime | None
    features: list[str] = field(default_factory=list)
    reliability_score: int = 100

    @classmethod
    def from_listing(cls, listing, reliability_score: int = 100) -> "ListingNode":
        return cls(
            id=listing.id,
            user_id=listing.user_id,
            desired_city=listing.desired_city or "",
            desired_type=listing.desired_type or "",
            max_budget=listing.max_budget or 0,
            timeline=listing.timeline or "",
            current_city=listing.current_city or "",
            current_type=listing.current_type or "",
            current_rent=listing.current_rent or 0,
            available_on=listing.available_on,
            features=list(listing.features or []),
            reliability_score=reliability_score,
        )


@dataclass
class Edge:
    """Directed compatibility edge: the source listing wants what ``to`` offers."""
    to: str
    city_score: int
    type_score: int
    budget_score: int
    timeline_score: int
    feature_score: int
    total_score: int
    rank_score: int
    reciprocity_bonus: int = 0
    is_mutual: bool = False


@dataclass
class DirectPair:
    peer_id: str
    avg: int


@dataclass
class ScoredCycle:
    cycle: list[str]
    avg: int


@dataclass
class Recommendation:
    """A candidate listing shown when no chain could be formed."""
    listing_id: str
    user_id: Optional[str]
    current_city: Optional[str]
    current_type: Optional[str]
    current_rent: Optional[int]
    available_on: date | datetime | None
    features: list[str]
    relationship: Relationship
    score: int
    rank_score: int
    breakdown: dict


# ---------------------------------------------------------------------------
# Chain creation outcomes
# ---------------------------------------------------------------------------


@dataclass
class ChainCreated:
    chain_type: ChainType
    chain: dict
    created: bool = True


@dataclass
class ChainExists:
    chain_id: str
    status: ChainStatus
    created: bool = False
    reason: str = "exists"


@dataclass
class ChainConflict:
    """At least one listing is already held by another chain."""
    blocking_status: ChainStatus
    created: bool = False

    @property
    def reason(self) -> str:
        if self.blocking_status == ChainStatus.LOCKED:
            return "locked_conflict"
        return "pending_conflict"


ChainCreateOutcome = Union[ChainCreated, ChainExists, ChainConflict]


@dataclass
class MatchRunResult:
    """Structured outcome of one match run for a listing."""
    found: bool
    outcome: MatchOutcome
    message: str
    match_scenario: Optional[MatchScenario]
    recommendations: list[Recommendation] = field(default_factory=list)
    stats: dict = field(default_factory=dict)
    chain: Optional[dict] = None
    badge: Optional[ChainType] = None
    chain_id: Optional[str] = None
    status: Optional[ChainStatus] = None
    ai_suggestions: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Cascades
# ---------------------------------------------------------------------------


@dataclass
class RerunSummary:
    triggered: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class BreakOutcome:
    changed: bool
    reason: str
    listing_ids: list[str] = field(default_factory=list)
    rerun: RerunSummary = field(default_factory=RerunSummary)


# ---------------------------------------------------------------------------
# Interest views, one shape per state family
# ---------------------------------------------------------------------------


@dataclass
class OpenInterestView:
    """REQUESTED or CONTACT_APPROVED: still waiting on the owner."""
    id: str
    status: InterestStatus
    listing_id: str
    requester_listing_id: str
    expires_at: Optional[datetime]
    responded_at: Optional[datetime] = None


@dataclass
class ConfirmedInterestView:
    id: str
    listing_id: str
    requester_listing_id: str
    confirmed_at: Optional[datetime]
    status: InterestStatus = InterestStatus.CONFIRMED_RENTER


@dataclass
class ClosedInterestView:
    """DECLINED, EXPIRED or RELEASED."""
    id: str
    status: InterestStatus
    listing_id: str
    requester_listing_id: str
    closed_at: Optional[datetime]


InterestView = Union[OpenInterestView, ConfirmedInterestView, ClosedInterestView]


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass
class NotificationInput:
    user_id: str
    type: str
    title: str
    message: str
    chain_id: Optional[str] = None
    payload: Optional[dict] = None
