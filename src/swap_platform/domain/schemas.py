"""Pydantic v2 schemas for API request/response validation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from swap_platform.domain.enums import ChainBreakReason


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Schema for user API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: str
    role: str
    phone: str | None = None
    reliability_score: int
    is_active: bool


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Schema for health check endpoint."""

    status: str
    service: str


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class ListingBase(BaseModel):
    """What the owner wants and what they offer."""

    desired_city: str = Field(..., min_length=1, max_length=150)
    desired_type: str = Field(..., min_length=1, max_length=100)
    max_budget: int = Field(..., gt=0)
    timeline: str = Field("", max_length=100)
    current_city: str = Field(..., min_length=1, max_length=150)
    current_type: str = Field(..., min_length=1, max_length=100)
    current_rent: int = Field(..., gt=0)
    available_on: date
    features: list[str] = Field(default_factory=list)


class ListingCreate(ListingBase):
    """Schema for creating a listing."""

    pass


class ListingResponse(ListingBase):
    """Schema for listing API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    status: str
    expires_at: datetime | None = None
    matched_at: datetime | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


class RequestInterestBody(BaseModel):
    """Optional explicit requester listing; defaults to the caller's latest ACTIVE one."""

    requester_listing_id: str | None = None


class BreakChainBody(BaseModel):
    reason: ChainBreakReason = ChainBreakReason.ADMIN_FORCE


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationResponse(BaseModel):
    """Schema for in-app notification responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    title: str
    message: str
    chain_id: str | None = None
    payload: dict | None = None
    read_at: datetime | None = None
    created_at: datetime | None = None
