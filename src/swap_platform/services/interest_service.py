"""Interest negotiation: the one-to-many request / approve / confirm path.

A requester listing asks a target listing's owner directly, outside
automatic chain matching. Confirming a renter closes both listings, releases
every other open request touching either of them and breaks any chain that
still references them.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_, select, update

from swap_platform.domain.contracts import (
    ClosedInterestView,
    ConfirmedInterestView,
    InterestView,
    ListingNode,
    OpenInterestView,
)
from swap_platform.domain.enums import ActorType, InterestStatus, ListingStatus
from swap_platform.domain.models import ListingInterest, SwapListing, User
from swap_platform.services import notification_service as notices
from swap_platform.services.chain_state_machine import (
    OPEN_INTEREST_STATES,
    InterestStateMachine,
)
from swap_platform.services.errors import NotFoundError, PermissionDeniedError, PreconditionError
from swap_platform.services.match_scorer import is_edge_compatible

logger = logging.getLogger(__name__)

OPEN_STATUS_VALUES = [s.value for s in OPEN_INTEREST_STATES]

# Owner phone is visible to the requester only in these states
CONTACT_VISIBLE_STATES = {InterestStatus.CONTACT_APPROVED.value, InterestStatus.CONFIRMED_RENTER.value}


def interest_view(interest: ListingInterest) -> InterestView:
    """Project an interest row onto the view valid for its state."""
    status = InterestStatus(interest.status)
    if status in OPEN_INTEREST_STATES:
        return OpenInterestView(
            id=interest.id,
            status=status,
            listing_id=interest.listing_id,
            requester_listing_id=interest.requester_listing_id,
            expires_at=interest.expires_at,
            responded_at=interest.responded_at,
        )
    if status == InterestStatus.CONFIRMED_RENTER:
        return ConfirmedInterestView(
            id=interest.id,
            listing_id=interest.listing_id,
            requester_listing_id=interest.requester_listing_id,
            confirmed_at=interest.confirmed_at,
        )
    return ClosedInterestView(
        id=interest.id,
        status=status,
        listing_id=interest.listing_id,
        requester_listing_id=interest.requester_listing_id,
        closed_at=interest.released_at or interest.responded_at,
    )


class InterestService:
    """Request, approve, decline and confirm-renter flows."""

    def __init__(self, matching):
        self.matching = matching
        self.db = matching.db
        self.state_machine = InterestStateMachine()

    async def _load(self, interest_id: str) -> tuple[ListingInterest, SwapListing, User, SwapListing, User]:
        interest = await self.db.get(ListingInterest, interest_id, populate_existing=True)
        if interest is None:
            raise NotFoundError("Interest request not found")

        listing = await self.matching.get_listing(interest.listing_id)
        requester_listing = await self.matching.get_listing(interest.requester_listing_id)
        owner = await self.db.get(User, listing.user_id)
        requester = await self.db.get(User, requester_listing.user_id)
        return interest, listing, owner, requester_listing, requester

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    async def request_interest(
        self,
        target_listing_id: str,
        requester_user_id: str,
        requester_listing_id: Optional[str] = None,
    ) -> dict:
        await self.matching.sweeper.sweep_inline()

        target = await self.matching.get_listing(target_listing_id)
        if target is None:
            raise NotFoundError("Target listing not found")
        if target.status != ListingStatus.ACTIVE.value:
            raise PreconditionError("Target listing is no longer active")
        if target.user_id == requester_user_id:
            raise PreconditionError("You cannot request your own listing")

        if requester_listing_id:
            requester_listing = await self.matching.get_listing(requester_listing_id)
            if (
                requester_listing is not None
                and (requester_listing.user_id != requester_user_id
                     or requester_listing.status != ListingStatus.ACTIVE.value)
            ):
                requester_listing = None
        else:
            requester_listing = await self.matching.latest_active_listing(requester_user_id)

        if requester_listing is None:
            raise PreconditionError("You need an ACTIVE listing before sending a request")
        if requester_listing.id == target.id:
            raise PreconditionError("Invalid request for same listing")

        if not is_edge_compatible(ListingNode.from_listing(requester_listing), ListingNode.from_listing(target)):
            raise PreconditionError("Your current active listing is not compatible with this apartment request")

        now = self.matching.now()
        expires_at = now + timedelta(hours=self.matching.settings.interest_request_ttl_hours)

        result = await self.db.execute(
            select(ListingInterest).where(
                ListingInterest.listing_id == target.id,
                ListingInterest.requester_listing_id == requester_listing.id,
            )
        )
        interest = result.scalar_one_or_none()
        if interest is None:
            interest = ListingInterest(
                listing_id=target.id,
                requester_listing_id=requester_listing.id,
                created_at=now,
            )
            self.db.add(interest)
        else:
            self.state_machine.validate_transition(
                InterestStatus(interest.status), InterestStatus.REQUESTED, ActorType.USER
            )

        # Re-requesting revives the row and clears any earlier outcome
        interest.requester_user_id = requester_user_id
        interest.status = InterestStatus.REQUESTED.value
        interest.expires_at = expires_at
        interest.responded_at = None
        interest.released_at = None
        interest.confirmed_at = None
        interest.updated_at = now
        await self.db.commit()

        view = interest_view(interest)
        owner = await self.db.get(User, target.user_id)
        requester = await self.db.get(User, requester_user_id)
        await self.matching.notifier.notify_many(
            notices.interest_requested(
                owner.id, requester_user_id, view.id, owner.full_name, requester.full_name
            )
        )
        return {"success": True, "message": "Interest request sent", "interest": view}

    # ------------------------------------------------------------------
    # Owner responses
    # ------------------------------------------------------------------

    async def approve_interest(self, interest_id: str, owner_user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        interest, listing, owner, _, requester = await self._load(interest_id)
        if listing.user_id != owner_user_id:
            raise PermissionDeniedError("You can only approve your own listing requests")

        owner_contact = {"full_name": owner.full_name, "phone": owner.phone}
        if interest.status == InterestStatus.CONTACT_APPROVED.value:
            return {"success": True, "interest": interest_view(interest), "owner_contact": owner_contact}
        if interest.status != InterestStatus.REQUESTED.value:
            raise PreconditionError(f"This request cannot be approved from status {interest.status}")

        now = self.matching.now()
        result = await self.db.execute(
            update(ListingInterest)
            .where(ListingInterest.id == interest_id, ListingInterest.status == InterestStatus.REQUESTED.value)
            .values(status=InterestStatus.CONTACT_APPROVED.value, responded_at=now, updated_at=now)
        )
        await self.db.commit()
        interest = await self.db.get(ListingInterest, interest_id, populate_existing=True)

        if result.rowcount == 1:
            await self.matching.notifier.notify_many(
                notices.interest_approved(owner.id, requester.id, interest_id, owner.full_name, requester.full_name)
            )
        return {"success": True, "interest": interest_view(interest), "owner_contact": owner_contact}

    async def decline_interest(self, interest_id: str, owner_user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        interest, listing, owner, _, requester = await self._load(interest_id)
        if listing.user_id != owner_user_id:
            raise PermissionDeniedError("You can only decline your own listing requests")

        if interest.status == InterestStatus.DECLINED.value:
            return {"success": True, "interest": interest_view(interest)}
        if interest.status not in OPEN_STATUS_VALUES:
            raise PreconditionError(f"This request cannot be declined from status {interest.status}")

        now = self.matching.now()
        result = await self.db.execute(
            update(ListingInterest)
            .where(ListingInterest.id == interest_id, ListingInterest.status.in_(OPEN_STATUS_VALUES))
            .values(
                status=InterestStatus.DECLINED.value,
                responded_at=now,
                released_at=now,
                expires_at=None,
                updated_at=now,
            )
        )
        await self.db.commit()
        interest = await self.db.get(ListingInterest, interest_id, populate_existing=True)

        if result.rowcount == 1:
            await self.matching.notifier.notify_many(
                notices.interest_declined(owner.id, requester.id, interest_id, owner.full_name, requester.full_name)
            )
        return {"success": True, "interest": interest_view(interest)}

    # ------------------------------------------------------------------
    # Confirm renter
    # ------------------------------------------------------------------

    async def _release_open_interests(self, interest: ListingInterest, now) -> list[tuple[str, str]]:
        """RELEASE every other open interest touching either listing of ``interest``.

        Returns the ``(user_id, listing_id)`` of the other party on each released
        row: the requester, or the target owner when one of the closed listings
        was itself the requester.
        Runs inside the confirm-renter transaction; does not commit.
        """
        listing_ids = [interest.listing_id, interest.requester_listing_id]
        result = await self.db.execute(
            select(
                ListingInterest.id,
                ListingInterest.listing_id,
                ListingInterest.requester_user_id,
                ListingInterest.requester_listing_id,
                SwapListing.user_id.label("owner_user_id"),
            )
            .join(SwapListing, SwapListing.id == ListingInterest.listing_id)
            .where(
                ListingInterest.id != interest.id,
                ListingInterest.status.in_(OPEN_STATUS_VALUES),
                or_(
                    ListingInterest.listing_id.in_(listing_ids),
                    ListingInterest.requester_listing_id.in_(listing_ids),
                ),
            )
        )
        rows = result.all()
        if not rows:
            return []

        await self.db.execute(
            update(ListingInterest)
            .where(
                ListingInterest.id.in_([row.id for row in rows]),
                ListingInterest.status.in_(OPEN_STATUS_VALUES),
            )
            .values(
                status=InterestStatus.RELEASED.value,
                responded_at=now,
                released_at=now,
                expires_at=None,
                updated_at=now,
            )
        )
        return [
            (row.owner_user_id, row.listing_id)
            if row.requester_listing_id in listing_ids
            else (row.requester_user_id, row.requester_listing_id)
            for row in rows
        ]

    async def _close_listings(self, interest: ListingInterest, now) -> None:
        """Mark both listings MATCHED; fails if either is no longer ACTIVE."""
        for listing_id, values in (
            (interest.listing_id, {"matched_interest_id": interest.id}),
            (interest.requester_listing_id, {}),
        ):
            result = await self.db.execute(
                update(SwapListing)
                .where(SwapListing.id == listing_id, SwapListing.status == ListingStatus.ACTIVE.value)
                .values(status=ListingStatus.MATCHED.value, matched_at=now, updated_at=now, **values)
            )
            if result.rowcount != 1:
                raise PreconditionError("Both listings must still be ACTIVE to confirm a renter")

    async def confirm_renter(self, interest_id: str, owner_user_id: str) -> dict:
        """Close the deal for ``interest_id``. All storage writes commit together or not at all."""
        await self.matching.sweeper.sweep_inline()

        interest, listing, owner, _, requester = await self._load(interest_id)
        if listing.user_id != owner_user_id:
            raise PermissionDeniedError("You can only confirm renter for your own listing")

        if interest.status == InterestStatus.CONFIRMED_RENTER.value:
            return {
                "success": True,
                "interest": interest_view(interest),
                "released_count": 0,
                "rerun": None,
                "chain_conflict": None,
            }
        self.state_machine.validate_transition(
            InterestStatus(interest.status), InterestStatus.CONFIRMED_RENTER, ActorType.USER
        )

        now = self.matching.now()
        target_listing_id = interest.listing_id
        requester_listing_id = interest.requester_listing_id
        owner_name, requester_name = owner.full_name, requester.full_name
        requester_user_id = requester.id

        try:
            result = await self.db.execute(
                update(ListingInterest)
                .where(ListingInterest.id == interest_id, ListingInterest.status.in_(OPEN_STATUS_VALUES))
                .values(
                    status=InterestStatus.CONFIRMED_RENTER.value,
                    confirmed_at=now,
                    responded_at=now,
                    released_at=None,
                    expires_at=None,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                raise PreconditionError("This request was changed by another action; reload and retry")

            await self._close_listings(interest, now)
            released = await self._release_open_interests(interest, now)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "[RENTER_CONFIRMED] interestId=%s listingId=%s requesterListingId=%s released=%d",
            interest_id, target_listing_id, requester_listing_id, len(released),
        )

        released_user_ids = sorted({
            user_id for user_id, _ in released if user_id not in (owner_user_id, requester_user_id)
        })
        await self.matching.notifier.notify_many(
            notices.renter_confirmed(
                owner_user_id, requester_user_id, interest_id, target_listing_id,
                owner_name, requester_name, released_user_ids,
            )
        )

        async with self.matching.cascade() as queue:
            queue.enqueue([listing_id for _, listing_id in released], source=f"confirm-renter:{interest_id}")
            chain_conflict = await self.matching.chains.break_chains_for_listings(
                [target_listing_id, requester_listing_id], ActorType.SYSTEM, actor_user_id=owner_user_id
            )

        interest = await self.db.get(ListingInterest, interest_id, populate_existing=True)
        return {
            "success": True,
            "interest": interest_view(interest),
            "released_count": len(released),
            "rerun": queue.summary,
            "chain_conflict": chain_conflict,
        }

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_incoming_interests(self, owner_user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        requester_listing = SwapListing.__table__.alias("requester_listing")
        result = await self.db.execute(
            select(ListingInterest, SwapListing, User)
            .join(SwapListing, SwapListing.id == ListingInterest.listing_id)
            .join(requester_listing, requester_listing.c.id == ListingInterest.requester_listing_id)
            .join(User, User.id == requester_listing.c.user_id)
            .where(SwapListing.user_id == owner_user_id)
            .order_by(ListingInterest.created_at.desc())
            .execution_options(populate_existing=True)
        )
        rows = result.all()

        grouped: dict[str, dict] = {}
        for interest, listing, requester in rows:
            bucket = grouped.setdefault(listing.id, {
                "listing_id": listing.id,
                "listing_status": listing.status,
                "current_city": listing.current_city,
                "current_type": listing.current_type,
                "current_rent": listing.current_rent,
                "open_requests": 0,
                "requests": [],
            })
            if interest.status in OPEN_STATUS_VALUES:
                bucket["open_requests"] += 1
            bucket["requests"].append({
                "interest": interest_view(interest),
                "created_at": interest.created_at,
                "requester": {
                    "user_id": requester.id,
                    "full_name": requester.full_name,
                    "phone": requester.phone,
                    "listing_id": interest.requester_listing_id,
                },
            })

        listings = sorted(grouped.values(), key=lambda item: item["open_requests"], reverse=True)
        return {
            "total_requests": len(rows),
            "open_requests": sum(item["open_requests"] for item in listings),
            "listings": listings,
        }

    async def get_outgoing_interests(self, requester_user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        result = await self.db.execute(
            select(ListingInterest, SwapListing, User)
            .join(SwapListing, SwapListing.id == ListingInterest.listing_id)
            .join(User, User.id == SwapListing.user_id)
            .where(ListingInterest.requester_user_id == requester_user_id)
            .order_by(ListingInterest.created_at.desc())
            .execution_options(populate_existing=True)
        )
        rows = result.all()

        return {
            "total_requests": len(rows),
            "requests": [
                {
                    "interest": interest_view(interest),
                    "created_at": interest.created_at,
                    "listing": {
                        "id": listing.id,
                        "status": listing.status,
                        "current_city": listing.current_city,
                        "current_type": listing.current_type,
                        "current_rent": listing.current_rent,
                    },
                    "owner": {
                        "id": owner.id,
                        "full_name": owner.full_name,
                        "phone": owner.phone if interest.status in CONTACT_VISIBLE_STATES else None,
                    },
                }
                for interest, listing, owner in rows
            ],
        }
