"""Lifecycle sweeper — time-driven expiry of listings, chains and interests."""

import asyncio
import logging
from typing import Optional

from sqlalchemy import select, update

from swap_platform.domain.enums import (
    ActorType,
    ChainBreakReason,
    ChainStatus,
    InterestStatus,
    ListingStatus,
    SweepTrigger,
)
from swap_platform.domain.models import ListingInterest, SwapChain, SwapListing
from swap_platform.services import notification_service as notices
from swap_platform.services.chain_state_machine import OPEN_INTEREST_STATES

logger = logging.getLogger(__name__)

OPEN_STATUS_VALUES = [s.value for s in OPEN_INTEREST_STATES]

# One tick at a time per process; overlapping ticks are skipped, not queued
_tick_lock = asyncio.Lock()


class LifecycleSweeper:
    """Expires stale state and cascades reruns for the affected listings."""

    def __init__(self, matching):
        self.matching = matching
        self.db = matching.db

    @property
    def settings(self):
        return self.matching.settings

    async def expire_listings(self, trigger: SweepTrigger) -> dict:
        """ACTIVE listings past ``expires_at`` become EXPIRED, oldest deadline first."""
        now = self.matching.now()
        result = await self.db.execute(
            select(SwapListing.id)
            .where(
                SwapListing.status == ListingStatus.ACTIVE.value,
                SwapListing.expires_at.isnot(None),
                SwapListing.expires_at < now,
            )
            .order_by(SwapListing.expires_at.asc())
            .limit(self.settings.listing_expire_sweep_limit)
        )
        listing_ids = list(result.scalars().all())

        expired = 0
        if listing_ids:
            update_result = await self.db.execute(
                update(SwapListing)
                .where(
                    SwapListing.id.in_(listing_ids),
                    SwapListing.status == ListingStatus.ACTIVE.value,
                )
                .values(
                    status=ListingStatus.EXPIRED.value,
                    closed_at=now,
                    close_reason="expired",
                    updated_at=now,
                )
            )
            await self.db.commit()
            expired = update_result.rowcount

        if expired:
            logger.warning("[LISTING_EXPIRE_SWEEP] trigger=%s expiredListings=%d", trigger.value, expired)
        return {"trigger": trigger.value, "checked": len(listing_ids), "expired_listings": expired}

    async def expire_pending_chains(self, trigger: SweepTrigger, actor_user_id: Optional[str] = None) -> dict:
        """PENDING chains past ``accept_by`` break as EXPIRED by SYSTEM."""
        now = self.matching.now()
        result = await self.db.execute(
            select(SwapChain.id)
            .where(
                SwapChain.status == ChainStatus.PENDING.value,
                SwapChain.accept_by.isnot(None),
                SwapChain.accept_by < now,
            )
            .order_by(SwapChain.accept_by.asc())
            .limit(self.settings.chain_expire_sweep_limit)
        )
        chain_ids = list(result.scalars().all())

        expired = 0
        async with self.matching.cascade() as queue:
            for chain_id in chain_ids:
                outcome = await self.matching.chains.break_chain_and_recover(
                    chain_id, ChainBreakReason.EXPIRED, ActorType.SYSTEM, actor_user_id=actor_user_id
                )
                if outcome.changed:
                    expired += 1

        if expired:
            logger.warning(
                "[CHAIN_EXPIRE_SWEEP] trigger=%s expiredChains=%d rerunTriggered=%d",
                trigger.value, expired, queue.summary.triggered,
            )
        return {
            "trigger": trigger.value,
            "checked": len(chain_ids),
            "expired_chains": expired,
            "rerun_triggered": queue.summary.triggered,
        }

    async def expire_listing_interests(self, trigger: SweepTrigger) -> dict:
        """Open interests past ``expires_at`` become EXPIRED; requesters are rerun."""
        now = self.matching.now()
        result = await self.db.execute(
            select(ListingInterest.id, ListingInterest.listing_id, ListingInterest.requester_listing_id,
                   ListingInterest.requester_user_id, SwapListing.user_id.label("owner_user_id"))
            .join(SwapListing, SwapListing.id == ListingInterest.listing_id)
            .where(
                ListingInterest.status.in_(OPEN_STATUS_VALUES),
                ListingInterest.expires_at.isnot(None),
                ListingInterest.expires_at < now,
            )
            .order_by(ListingInterest.expires_at.asc())
            .limit(self.settings.interest_expire_sweep_limit)
        )
        rows = result.all()

        expired = 0
        async with self.matching.cascade() as queue:
            for row in rows:
                update_result = await self.db.execute(
                    update(ListingInterest)
                    .where(ListingInterest.id == row.id, ListingInterest.status.in_(OPEN_STATUS_VALUES))
                    .values(
                        status=InterestStatus.EXPIRED.value,
                        responded_at=now,
                        released_at=now,
                        updated_at=now,
                    )
                )
                await self.db.commit()
                if update_result.rowcount == 0:
                    continue

                expired += 1
                await self.matching.notifier.notify_many(
                    notices.interest_expired(
                        row.owner_user_id, row.requester_user_id, row.id,
                        row.listing_id, row.requester_listing_id,
                    )
                )
                queue.enqueue([row.requester_listing_id], source=f"interest-expired:{row.id}")

        if expired:
            logger.warning(
                "[INTEREST_EXPIRE_SWEEP] trigger=%s expiredInterests=%d rerunTriggered=%d",
                trigger.value, expired, queue.summary.triggered,
            )
        return {
            "trigger": trigger.value,
            "checked": len(rows),
            "expired_interests": expired,
            "rerun_triggered": queue.summary.triggered,
        }

    async def sweep_inline(self) -> None:
        """Best-effort sweep before a user-facing action. Never raises."""
        try:
            await self.expire_pending_chains(SweepTrigger.REQUEST)
            await self.expire_listing_interests(SweepTrigger.REQUEST)
        except Exception as e:
            await self.db.rollback()
            logger.warning("Inline lifecycle sweep failed: %s", e)

    async def tick(self, trigger: SweepTrigger = SweepTrigger.SYSTEM_SWEEP) -> dict:
        """Run all expiry steps. Called by the background loop and the cron endpoint.

        Returns summary of actions taken.
        """
        if _tick_lock.locked():
            logger.info("Lifecycle sweep already running, skipping tick")
            return {"skipped": True}

        async with _tick_lock:
            results = {"skipped": False}

            # 1. Listings past their TTL
            try:
                results["listings"] = await self.expire_listings(trigger)
            except Exception as e:
                await self.db.rollback()
                logger.error("expire_listings failed: %s", e)
                results["listings_error"] = str(e)

            # 2. PENDING chains past accept-by
            try:
                results["chains"] = await self.expire_pending_chains(trigger)
            except Exception as e:
                await self.db.rollback()
                logger.error("expire_pending_chains failed: %s", e)
                results["chains_error"] = str(e)

            # 3. Open interests past expiry
            try:
                results["interests"] = await self.expire_listing_interests(trigger)
            except Exception as e:
                await self.db.rollback()
                logger.error("expire_listing_interests failed: %s", e)
                results["interests_error"] = str(e)

            return results


async def lifecycle_sweeper_loop(session_factory, interval_seconds: int):
    """Run the lifecycle sweeper every ``interval_seconds``."""
    from swap_platform.services.matching_service import MatchingService

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with session_factory() as db:
                results = await MatchingService(db).sweeper.tick()
                logger.info("Lifecycle sweep tick: %s", results)
        except Exception as e:
            logger.error("Lifecycle sweeper error: %s", e)
