"""Listing CRUD around the matching engine: create, renew, list own."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.app.config import Settings, get_settings
from swap_platform.domain.enums import ListingStatus
from swap_platform.domain.models import SwapListing
from swap_platform.services.errors import NotFoundError, PermissionDeniedError, PreconditionError

logger = logging.getLogger(__name__)


class ListingService:

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _expiry(self, now):
        return now + timedelta(hours=self.settings.listing_active_ttl_hours)

    async def create_listing(self, user_id: str, data: dict, now) -> SwapListing:
        listing = SwapListing(
            user_id=user_id,
            desired_city=data["desired_city"].strip(),
            desired_type=data["desired_type"].strip(),
            max_budget=data["max_budget"],
            timeline=(data.get("timeline") or "").strip(),
            current_city=data["current_city"].strip(),
            current_type=data["current_type"].strip(),
            current_rent=data["current_rent"],
            available_on=data["available_on"],
            features=[f.strip() for f in data.get("features") or [] if f and f.strip()],
            status=ListingStatus.ACTIVE.value,
            expires_at=self._expiry(now),
            created_at=now,
            updated_at=now,
        )
        self.db.add(listing)
        await self.db.commit()
        logger.info("Listing created: id=%s user=%s", listing.id, user_id)
        return listing

    async def renew_listing(self, user_id: str, listing_id: str, now) -> SwapListing:
        listing = await self.db.get(SwapListing, listing_id, populate_existing=True)
        if listing is None:
            raise NotFoundError("Listing not found")
        if listing.user_id != user_id:
            raise PermissionDeniedError("You can only renew your own listing")
        if listing.status == ListingStatus.MATCHED.value:
            raise PreconditionError("Matched listings cannot be renewed")

        listing.status = ListingStatus.ACTIVE.value
        listing.expires_at = self._expiry(now)
        listing.closed_at = None
        listing.close_reason = None
        listing.updated_at = now
        await self.db.commit()
        return listing

    async def get_my_listings(self, user_id: str) -> list[SwapListing]:
        result = await self.db.execute(
            select(SwapListing)
            .where(SwapListing.user_id == user_id)
            .order_by(SwapListing.created_at.desc())
        )
        return list(result.scalars().all())
