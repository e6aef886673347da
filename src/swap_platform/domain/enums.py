"""Domain enumerations for the apartment swap exchange.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class UserRole(str, Enum):
    """Platform role of an account."""

    USER = "user"
    ADMIN = "admin"


class ListingStatus(str, Enum):
    """Lifecycle of a swap listing."""

    ACTIVE = "active"
    MATCHED = "matched"
    EXPIRED = "expired"


class ChainStatus(str, Enum):
    """Lifecycle of a proposed swap chain."""

    PENDING = "pending"
    LOCKED = "locked"
    BROKEN = "broken"


class ChainType(str, Enum):
    """Shape of a swap chain: a two-party swap or a longer ring."""

    DIRECT = "direct"
    CIRCULAR = "circular"


class ChainBreakReason(str, Enum):
    """Why a chain was marked BROKEN."""

    DECLINED = "declined"
    ADMIN_FORCE = "admin_force"
    EXPIRED = "expired"
    CONFLICT = "conflict"
    NO_SHOW = "no_show"
    UNKNOWN = "unknown"


class ActorType(str, Enum):
    """Who drove a state transition."""

    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


class InterestStatus(str, Enum):
    """Lifecycle of a one-to-many listing interest request."""

    REQUESTED = "requested"
    CONTACT_APPROVED = "contact_approved"
    CONFIRMED_RENTER = "confirmed_renter"
    DECLINED = "declined"
    EXPIRED = "expired"
    RELEASED = "released"


class SweepTrigger(str, Enum):
    """What started an expiry sweep."""

    REQUEST = "request"
    SYSTEM_SWEEP = "system_sweep"
    ADMIN_SWEEP = "admin_sweep"


class MatchScenario(str, Enum):
    """How a listing sits in the pool after a match run."""

    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    INDEPENDENT = "independent"


class MatchOutcome(str, Enum):
    """Result variant of a match run."""

    CHAIN_CREATED = "chain_created"
    CHAIN_EXISTS = "chain_exists"
    LOCKED_CONFLICT = "locked_conflict"
    PENDING_CONFLICT = "pending_conflict"
    RECOMMENDATIONS = "recommendations"
    INDEPENDENT = "independent"


class Relationship(str, Enum):
    """Whether a recommended listing points back at the source listing."""

    ONE_TO_ONE = "one_to_one"
    ONE_WAY = "one_way"


class NotificationType(str, Enum):
    """User notification kinds emitted by the matching engine."""

    CHAIN_PENDING = "chain_pending"
    CHAIN_LOCKED = "chain_locked"
    CHAIN_BROKEN = "chain_broken"
    MATCH_RERUN = "match_rerun"
    CONTACT_UNLOCKED = "contact_unlocked"
    INTEREST_REQUESTED = "interest_requested"
    INTEREST_APPROVED = "interest_approved"
    INTEREST_DECLINED = "interest_declined"
    INTEREST_EXPIRED = "interest_expired"
    RENTER_CONFIRMED = "renter_confirmed"
    REQUEST_RELEASED = "request_released"
