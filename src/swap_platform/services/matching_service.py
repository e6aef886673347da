"""Matching engine entry point.

``MatchingService`` owns one ``AsyncSession`` and wires together the graph
builder, the cycle finder and the chain, interest and sweeper services that
share that session. Every mutating entry point runs a best-effort inline
sweep first so stale chains and interests are never acted upon; reruns
triggered by a cascade skip that sweep.

Reruns are processed through a breadth-first ``RerunQueue`` owned by the
outermost triggering call (see ``cascade``). Nested break/release/expiry
paths enqueue into that same queue and the trigger drains it once, so a
listing is rerun at most once per trigger no matter how many chains or
interests released it.
"""

import logging
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.app.config import Settings, get_settings
from swap_platform.domain.contracts import (
    ChainConflict,
    ChainCreated,
    ChainExists,
    ListingNode,
    MatchRunResult,
    RerunSummary,
)
from swap_platform.domain.enums import (
    ListingStatus,
    MatchOutcome,
    MatchScenario,
)
from swap_platform.domain.models import MatchCandidate, SwapListing, User
from swap_platform.services.advisory_service import AdvisoryService
from swap_platform.services.compatibility_graph import CompatibilityGraph, build_graph
from swap_platform.services.cycle_finder import (
    build_recommendations,
    find_cycles_from,
    pick_best_cycle,
    pick_best_direct_pair,
    recommendation_stats,
)
from swap_platform.services.errors import NotFoundError, PermissionDeniedError, PreconditionError
from swap_platform.services.notification_service import NotificationService
from swap_platform.services.reliability import ReliabilityHook

logger = logging.getLogger(__name__)


class RerunQueue:
    """Breadth-first rerun work queue scoped to one top-level trigger."""

    def __init__(self, service: "MatchingService", max_listings: int):
        self._service = service
        self._max_listings = max_listings
        self._pending: deque[tuple[str, str]] = deque()
        self._seen: set[str] = set()
        self.summary = RerunSummary()

    def enqueue(self, listing_ids: Iterable[str], source: str) -> int:
        added = 0
        for listing_id in listing_ids:
            if listing_id in self._seen:
                continue
            if len(self._seen) >= self._max_listings:
                logger.warning(
                    "[MATCH_RERUN_CAPPED] source=%s limit=%d listingId=%s",
                    source, self._max_listings, listing_id,
                )
                break
            self._seen.add(listing_id)
            self._pending.append((listing_id, source))
            added += 1
        return added

    def __len__(self) -> int:
        return len(self._pending)

    async def drain(self) -> RerunSummary:
        while self._pending:
            listing_id, source = self._pending.popleft()
            self.summary.triggered += 1

            try:
                status = await self._service.listing_status(listing_id)
                if status != ListingStatus.ACTIVE.value:
                    self.summary.skipped += 1
                    continue

                await self._service.run_for_listing(listing_id, skip_sweep=True)
                self.summary.succeeded += 1
            except Exception as e:
                await self._service.db.rollback()
                self.summary.failed += 1
                logger.warning(
                    "[MATCH_RERUN_FAILED] source=%s listingId=%s error=%s",
                    source, listing_id, e,
                )

        return self.summary


class MatchingService:
    """Match runs plus access to the chain, interest and sweeper flows."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationService] = None,
        advisor: Optional[AdvisoryService] = None,
        reliability: Optional[ReliabilityHook] = None,
    ):
        # Imported here: these modules import MatchingService for typing
        from swap_platform.services.chain_service import ChainService
        from swap_platform.services.interest_service import InterestService
        from swap_platform.services.lifecycle_sweeper import LifecycleSweeper

        self.db = db
        self.settings = settings or get_settings()
        self.notifier = notifier or NotificationService(db)
        self.advisor = advisor or AdvisoryService()
        self.reliability = reliability or ReliabilityHook.from_settings(self.settings)

        self.chains = ChainService(self)
        self.interests = InterestService(self)
        self.sweeper = LifecycleSweeper(self)

        self._rerun_queue: Optional[RerunQueue] = None

    # ------------------------------------------------------------------
    # Cascades
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def cascade(self):
        """Yield the active rerun queue, creating and draining it at the outermost level."""
        if self._rerun_queue is not None:
            yield self._rerun_queue
            return

        queue = RerunQueue(self, self.settings.rerun_max_listings)
        self._rerun_queue = queue
        try:
            yield queue
            await queue.drain()
        finally:
            self._rerun_queue = None

    async def rerun_listings(self, listing_ids: Iterable[str], source: str) -> RerunSummary:
        async with self.cascade() as queue:
            queue.enqueue(listing_ids, source)
        return queue.summary

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    async def listing_status(self, listing_id: str) -> Optional[str]:
        result = await self.db.execute(
            select(SwapListing.status).where(SwapListing.id == listing_id)
        )
        return result.scalar_one_or_none()

    async def get_listing(self, listing_id: str) -> Optional[SwapListing]:
        return await self.db.get(SwapListing, listing_id, populate_existing=True)

    async def latest_active_listing(self, user_id: str) -> Optional[SwapListing]:
        result = await self.db.execute(
            select(SwapListing)
            .where(
                SwapListing.user_id == user_id,
                SwapListing.status == ListingStatus.ACTIVE.value,
            )
            .order_by(SwapListing.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def load_active_nodes(self) -> list[ListingNode]:
        result = await self.db.execute(
            select(SwapListing, User.reliability_score)
            .join(User, User.id == SwapListing.user_id)
            .where(SwapListing.status == ListingStatus.ACTIVE.value)
            .order_by(SwapListing.created_at)
            .execution_options(populate_existing=True)
        )
        return [
            ListingNode.from_listing(listing, reliability_score=score if score is not None else 100)
            for listing, score in result.all()
        ]

    async def persist_edges(self, graph: CompatibilityGraph, active_ids: list[str]) -> None:
        """Upsert every graph edge and drop rows for edges that vanished."""
        if not active_ids:
            return

        result = await self.db.execute(
            select(MatchCandidate).where(MatchCandidate.from_listing_id.in_(active_ids))
        )
        existing = {(row.from_listing_id, row.to_listing_id): row for row in result.scalars().all()}

        seen: set[tuple[str, str]] = set()
        for from_id, edges in graph.items():
            for edge in edges:
                key = (from_id, edge.to)
                seen.add(key)
                row = existing.get(key)
                if row is None:
                    row = MatchCandidate(from_listing_id=from_id, to_listing_id=edge.to)
                    self.db.add(row)
                row.city_score = edge.city_score
                row.type_score = edge.type_score
                row.budget_score = edge.budget_score
                row.timeline_score = edge.timeline_score
                row.feature_score = edge.feature_score
                row.reciprocity_bonus = edge.reciprocity_bonus
                row.total_score = edge.total_score
                row.rank_score = edge.rank_score
                row.is_mutual = edge.is_mutual

        stale_ids = [row.id for key, row in existing.items() if key not in seen]
        if stale_ids:
            await self.db.execute(delete(MatchCandidate).where(MatchCandidate.id.in_(stale_ids)))

        try:
            await self.db.commit()
        except IntegrityError as e:
            # A concurrent run wrote the same pair first; edges are rebuilt next run.
            await self.db.rollback()
            logger.warning("Edge persistence skipped: %s", e)

    # ------------------------------------------------------------------
    # Match runs
    # ------------------------------------------------------------------

    async def run_for_user(self, user_id: str) -> MatchRunResult:
        await self.sweeper.sweep_inline()

        listing = await self.latest_active_listing(user_id)
        if listing is None:
            raise PreconditionError("You have no ACTIVE listing. Create one first.")
        return await self.run_for_listing(listing.id, user_id, skip_sweep=True)

    async def run_for_listing(
        self,
        listing_id: str,
        user_id: Optional[str] = None,
        skip_sweep: bool = False,
    ) -> MatchRunResult:
        if not skip_sweep:
            await self.sweeper.sweep_inline()

        listing = await self.get_listing(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found")
        if user_id and listing.user_id != user_id:
            raise PermissionDeniedError("You can only run matching for your own listing")
        if listing.status != ListingStatus.ACTIVE.value:
            raise PreconditionError("Listing must be ACTIVE to run matching")

        nodes = await self.load_active_nodes()
        graph = build_graph(nodes, self.reliability)
        node_by_id = {node.id: node for node in nodes}
        await self.persist_edges(graph, list(node_by_id))

        recommendations = build_recommendations(
            listing_id, graph, node_by_id, self.settings.recommendation_limit
        )
        stats = recommendation_stats(recommendations)

        best_direct = pick_best_direct_pair(listing_id, graph)
        if best_direct is not None:
            outcome = await self.chains.create_chain_from_cycle(
                [listing_id, best_direct.peer_id], best_direct.avg, node_by_id
            )

            if isinstance(outcome, ChainCreated):
                return MatchRunResult(
                    found=True,
                    outcome=MatchOutcome.CHAIN_CREATED,
                    message="Direct one-to-one match found! Awaiting confirmations.",
                    match_scenario=MatchScenario.ONE_TO_ONE,
                    recommendations=recommendations,
                    stats=stats,
                    chain=outcome.chain,
                    badge=outcome.chain_type,
                )
            if isinstance(outcome, ChainExists):
                return MatchRunResult(
                    found=False,
                    outcome=MatchOutcome.CHAIN_EXISTS,
                    message="This direct chain already exists.",
                    match_scenario=MatchScenario.ONE_TO_MANY,
                    recommendations=recommendations,
                    stats=stats,
                    chain_id=outcome.chain_id,
                    status=outcome.status,
                )
            return self._conflict_result(
                outcome,
                "A direct match exists but one or more listings are already held by another chain.",
                recommendations,
                stats,
            )

        # Length-2 rings are resolved by the direct-pair path above; a ring
        # may pass through each owner only once
        cycles = [
            cycle
            for cycle in find_cycles_from(listing_id, graph, self.settings.max_cycle_length)
            if len(cycle) >= 3
            and len({node_by_id[member].user_id for member in cycle}) == len(cycle)
        ]

        if not cycles:
            if recommendations:
                return MatchRunResult(
                    found=False,
                    outcome=MatchOutcome.RECOMMENDATIONS,
                    message="No one-to-one chain found yet. Showing top one-way matches for this listing.",
                    match_scenario=MatchScenario.ONE_TO_MANY,
                    recommendations=recommendations,
                    stats=stats,
                )

            tips = self.advisor.suggest_no_match(listing)
            return MatchRunResult(
                found=False,
                outcome=MatchOutcome.INDEPENDENT,
                message="No compatible recommendation yet. This listing is currently independent.",
                match_scenario=MatchScenario.INDEPENDENT,
                recommendations=recommendations,
                stats=stats,
                ai_suggestions=tips,
            )

        best_cycle = pick_best_cycle(cycles, graph)
        outcome = await self.chains.create_chain_from_cycle(best_cycle.cycle, best_cycle.avg, node_by_id)

        if isinstance(outcome, ChainCreated):
            return MatchRunResult(
                found=True,
                outcome=MatchOutcome.CHAIN_CREATED,
                message="Circular chain found! Awaiting confirmations.",
                match_scenario=MatchScenario.ONE_TO_MANY,
                recommendations=recommendations,
                stats=stats,
                chain=outcome.chain,
                badge=outcome.chain_type,
            )
        if isinstance(outcome, ChainExists):
            return MatchRunResult(
                found=False,
                outcome=MatchOutcome.CHAIN_EXISTS,
                message="This chain already exists.",
                match_scenario=MatchScenario.ONE_TO_MANY,
                recommendations=recommendations,
                stats=stats,
                chain_id=outcome.chain_id,
                status=outcome.status,
            )
        return self._conflict_result(
            outcome,
            "A potential chain exists but one or more listings are already held by another chain.",
            recommendations,
            stats,
        )

    @staticmethod
    def _conflict_result(outcome: ChainConflict, message: str, recommendations, stats) -> MatchRunResult:
        return MatchRunResult(
            found=False,
            outcome=MatchOutcome(outcome.reason),
            message=message,
            match_scenario=MatchScenario.ONE_TO_MANY,
            recommendations=recommendations,
            stats=stats,
            status=outcome.blocking_status,
        )
