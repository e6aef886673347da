"""SQLAlchemy ORM models for the apartment swap exchange.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps (no TIMESTAMPTZ)
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from swap_platform.infra.database import Base


# ---------------------------------------------------------------------------
# Auth / User
# ---------------------------------------------------------------------------


class User(Base):
    """Platform user. Authentication itself lives outside this service."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="user")  # UserRole
    # Fed by the reliability collaborator (no-shows, cancellations). 0-100.
    reliability_score = Column(Integer, nullable=False, default=100)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class SwapListing(Base):
    """A user's swap offer: the place they give up and the place they want."""

    __tablename__ = "swap_listings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # Wanted
    desired_city = Column(String(150), nullable=False)
    desired_type = Column(String(100), nullable=False)
    max_budget = Column(Integer, nullable=False)
    timeline = Column(String(100), nullable=False, default="")

    # Offered
    current_city = Column(String(150), nullable=False)
    current_type = Column(String(100), nullable=False)
    current_rent = Column(Integer, nullable=False)
    available_on = Column(Date, nullable=False)
    features = Column(JSON, default=list)

    # Lifecycle
    status = Column(String(20), nullable=False, default="active", index=True)  # ListingStatus
    expires_at = Column(DateTime, nullable=True, index=True)
    matched_at = Column(DateTime, nullable=True)
    matched_interest_id = Column(String(36), nullable=True)
    closed_at = Column(DateTime, nullable=True)
    close_reason = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class MatchCandidate(Base):
    """Persisted copy of a compatibility-graph edge. Rebuilt on every run."""

    __tablename__ = "match_candidates"
    __table_args__ = (
        UniqueConstraint("from_listing_id", "to_listing_id", name="uq_match_candidate_pair"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    from_listing_id = Column(String(36), ForeignKey("swap_listings.id"), nullable=False, index=True)
    to_listing_id = Column(String(36), ForeignKey("swap_listings.id"), nullable=False)
    city_score = Column(Integer, nullable=False, default=0)
    type_score = Column(Integer, nullable=False, default=0)
    budget_score = Column(Integer, nullable=False, default=0)
    timeline_score = Column(Integer, nullable=False, default=0)
    feature_score = Column(Integer, nullable=False, default=0)
    reciprocity_bonus = Column(Integer, nullable=False, default=0)
    total_score = Column(Integer, nullable=False, default=0)
    rank_score = Column(Integer, nullable=False, default=0)
    is_mutual = Column(Boolean, default=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------


class SwapChain(Base):
    """A proposed closed swap loop of 2-4 listings."""

    __tablename__ = "swap_chains"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    cycle_size = Column(Integer, nullable=False)
    avg_score = Column(Float, nullable=False, default=0)
    # Sorted listing ids; the authoritative dedup guard for concurrent runs.
    cycle_hash = Column(String(200), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # ChainStatus
    type = Column(String(20), nullable=False)  # ChainType
    accept_by = Column(DateTime, nullable=True, index=True)
    locked_at = Column(DateTime, nullable=True)

    # Break metadata
    broken_reason = Column(String(30), nullable=True)  # ChainBreakReason
    broken_actor_type = Column(String(20), nullable=True)  # ActorType
    broken_by_user_id = Column(String(36), nullable=True)
    broken_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class SwapChainMember(Base):
    """One participant's slot in a chain."""

    __tablename__ = "swap_chain_members"
    __table_args__ = (
        UniqueConstraint("chain_id", "listing_id", name="uq_chain_member_listing"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chain_id = Column(String(36), ForeignKey("swap_chains.id"), nullable=False, index=True)
    listing_id = Column(String(36), ForeignKey("swap_listings.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    position = Column(Integer, nullable=False)
    has_accepted = Column(Boolean, nullable=False, default=False)
    accepted_at = Column(DateTime, nullable=True)


class ContactUnlock(Base):
    """Request to disclose member contact details on a LOCKED chain."""

    __tablename__ = "contact_unlocks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chain_id = Column(String(36), ForeignKey("swap_chains.id"), nullable=False, index=True)
    requester_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=func.now())


class ContactUnlockApproval(Base):
    """A single member's approval of a contact unlock."""

    __tablename__ = "contact_unlock_approvals"
    __table_args__ = (
        UniqueConstraint("contact_unlock_id", "approver_user_id", name="uq_unlock_approver"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    contact_unlock_id = Column(String(36), ForeignKey("contact_unlocks.id"), nullable=False, index=True)
    approver_user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    approved = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Interests
# ---------------------------------------------------------------------------


class ListingInterest(Base):
    """A requester listing's direct request to swap with a target listing."""

    __tablename__ = "listing_interests"
    __table_args__ = (
        UniqueConstraint("listing_id", "requester_listing_id", name="uq_interest_pair"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    listing_id = Column(String(36), ForeignKey("swap_listings.id"), nullable=False, index=True)
    requester_listing_id = Column(String(36), ForeignKey("swap_listings.id"), nullable=False, index=True)
    requester_user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False, default="requested", index=True)  # InterestStatus
    expires_at = Column(DateTime, nullable=True)
    responded_at = Column(DateTime, nullable=True)
    released_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class UserNotification(Base):
    """In-app notification written by the notification sink."""

    __tablename__ = "user_notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    chain_id = Column(String(36), nullable=True)
    type = Column(String(50), nullable=False)  # NotificationType
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
