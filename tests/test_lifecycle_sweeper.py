"""Tests for time-driven expiry of listings, chains and interests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

from sqlalchemy import func, select, update

from swap_platform.domain.enums import (
    ActorType,
    ChainBreakReason,
    ChainStatus,
    InterestStatus,
    ListingStatus,
    NotificationType,
    SweepTrigger,
)
from swap_platform.domain.models import ListingInterest, SwapChain, SwapListing, UserNotification
from swap_platform.services import lifecycle_sweeper
from swap_platform.services.lifecycle_sweeper import LifecycleSweeper


def _past(**delta):
    return datetime.now(timezone.utc) - timedelta(**delta)


class TestExpireListings:

    async def test_only_overdue_active_listings_expire(self, matching, db_session, make_listing):
        stale = await make_listing(expires_at=_past(days=1))
        fresh = await make_listing()
        matched = await make_listing(expires_at=_past(days=1), status=ListingStatus.MATCHED.value)

        result = await matching.sweeper.expire_listings(SweepTrigger.ADMIN_SWEEP)

        assert result == {"trigger": "admin_sweep", "checked": 1, "expired_listings": 1}
        statuses = dict((await db_session.execute(select(SwapListing.id, SwapListing.status))).all())
        assert statuses[stale.id] == ListingStatus.EXPIRED.value
        assert statuses[fresh.id] == ListingStatus.ACTIVE.value
        assert statuses[matched.id] == ListingStatus.MATCHED.value

    async def test_respects_sweep_limit(self, matching, make_listing):
        matching.settings.listing_expire_sweep_limit = 2
        for _ in range(3):
            await make_listing(expires_at=_past(hours=2))

        result = await matching.sweeper.expire_listings(SweepTrigger.SYSTEM_SWEEP)

        assert result["expired_listings"] == 2


class TestExpirePendingChains:

    async def test_overdue_pending_chain_breaks_and_reruns(self, matching, db_session, make_listing):
        a, b = await make_listing(), await make_listing()
        chain_id = (await matching.chains.create_chain_from_cycle([a.id, b.id], 50)).chain["id"]
        await db_session.execute(update(SwapChain).where(SwapChain.id == chain_id).values(accept_by=_past(hours=1)))
        await db_session.commit()

        result = await matching.sweeper.expire_pending_chains(SweepTrigger.SYSTEM_SWEEP)

        assert result["expired_chains"] == 1
        assert result["rerun_triggered"] == 2
        chain = await db_session.get(SwapChain, chain_id, populate_existing=True)
        assert chain.status == ChainStatus.BROKEN.value
        assert chain.broken_reason == ChainBreakReason.EXPIRED.value
        assert chain.broken_actor_type == ActorType.SYSTEM.value

    async def test_chain_within_deadline_untouched(self, matching, db_session, make_listing):
        a, b = await make_listing(), await make_listing()
        chain_id = (await matching.chains.create_chain_from_cycle([a.id, b.id], 50)).chain["id"]

        result = await matching.sweeper.expire_pending_chains(SweepTrigger.SYSTEM_SWEEP)

        assert result["expired_chains"] == 0
        assert await db_session.scalar(select(SwapChain.status).where(SwapChain.id == chain_id)) == "pending"


class TestExpireInterests:

    async def test_overdue_request_expires_and_requester_reruns(self, matching, db_session, make_listing, make_user):
        owner = await make_user()
        target = await make_listing(owner, current_city="Lagos", current_type="2-Bedroom", current_rent=900,
                                    desired_type="Penthouse")
        requester = await make_user()
        requester_listing = await make_listing(requester)
        interest_id = (await matching.interests.request_interest(target.id, requester.id))["interest"].id
        await db_session.execute(
            update(ListingInterest).where(ListingInterest.id == interest_id).values(expires_at=_past(minutes=1))
        )
        await db_session.commit()

        result = await matching.sweeper.expire_listing_interests(SweepTrigger.SYSTEM_SWEEP)

        assert result["expired_interests"] == 1
        assert result["rerun_triggered"] == 1
        interest = await db_session.get(ListingInterest, interest_id, populate_existing=True)
        assert interest.status == InterestStatus.EXPIRED.value
        assert interest.requester_listing_id == requester_listing.id
        notices = await db_session.scalar(
            select(func.count()).select_from(UserNotification)
            .where(UserNotification.type == NotificationType.INTEREST_EXPIRED.value)
        )
        assert notices == 2


class TestTick:

    async def test_runs_every_step(self, matching):
        result = await matching.sweeper.tick()

        assert result["skipped"] is False
        assert {"listings", "chains", "interests"} <= set(result)

    async def test_step_failure_does_not_stop_later_steps(self, matching):
        matching.sweeper.expire_listings = AsyncMock(side_effect=RuntimeError("db gone"))

        result = await matching.sweeper.tick()

        assert result["listings_error"] == "db gone"
        assert "chains" in result and "interests" in result

    async def test_overlapping_tick_is_skipped(self, matching):
        async with lifecycle_sweeper._tick_lock:
            result = await matching.sweeper.tick()
        assert result == {"skipped": True}

    async def test_inline_sweep_swallows_errors(self, matching):
        sweeper = LifecycleSweeper(matching)
        sweeper.expire_pending_chains = AsyncMock(side_effect=RuntimeError("boom"))

        await sweeper.sweep_inline()

        sweeper.expire_pending_chains.assert_awaited_once()
