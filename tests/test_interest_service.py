"""Tests for the request / approve / decline / confirm-renter flow."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from swap_platform.domain.contracts import ClosedInterestView, ConfirmedInterestView, OpenInterestView
from swap_platform.domain.enums import ChainBreakReason, ChainStatus, InterestStatus, ListingStatus, NotificationType
from swap_platform.domain.models import ListingInterest, SwapChain, SwapListing, UserNotification
from swap_platform.services.errors import PermissionDeniedError, PreconditionError


@pytest.fixture
def make_target(make_listing, make_user):
    """A listing offering exactly what the default listing desires."""

    async def _make(owner=None, **overrides):
        owner = owner or await make_user("Owner")
        fields = dict(
            current_city="Lagos", current_type="2-Bedroom", current_rent=900,
            desired_city="Ibadan", desired_type="Penthouse", max_budget=5000,
        )
        fields.update(overrides)
        return owner, await make_listing(owner, **fields)

    return _make


async def _status(db_session, model, row_id):
    return await db_session.scalar(select(model.status).where(model.id == row_id))


async def _count_notices(db_session, kind: NotificationType, user_id=None) -> int:
    query = select(func.count()).select_from(UserNotification).where(UserNotification.type == kind.value)
    if user_id is not None:
        query = query.where(UserNotification.user_id == user_id)
    return await db_session.scalar(query)


class TestRequestInterest:

    async def test_creates_open_request(self, matching, db_session, make_target, make_listing, make_user):
        owner, target = await make_target()
        requester = await make_user("Requester")
        await make_listing(requester)

        result = await matching.interests.request_interest(target.id, requester.id)

        view = result["interest"]
        assert isinstance(view, OpenInterestView)
        assert view.status == InterestStatus.REQUESTED
        assert view.expires_at is not None
        assert await _count_notices(db_session, NotificationType.INTEREST_REQUESTED) >= 1

    async def test_cannot_request_own_listing(self, matching, make_target):
        owner, target = await make_target()
        with pytest.raises(PreconditionError, match="own listing"):
            await matching.interests.request_interest(target.id, owner.id)

    async def test_requires_active_requester_listing(self, matching, make_target, make_user):
        _, target = await make_target()
        requester = await make_user()
        with pytest.raises(PreconditionError, match="ACTIVE listing"):
            await matching.interests.request_interest(target.id, requester.id)

    async def test_rejects_incompatible_listing(self, matching, make_target, make_listing, make_user):
        _, target = await make_target(current_type="Studio")
        requester = await make_user()
        await make_listing(requester)

        with pytest.raises(PreconditionError, match="not compatible"):
            await matching.interests.request_interest(target.id, requester.id)

    async def test_declined_request_can_be_revived(self, matching, db_session, make_target, make_listing, make_user):
        owner, target = await make_target()
        requester = await make_user()
        await make_listing(requester)
        first = await matching.interests.request_interest(target.id, requester.id)
        await matching.interests.decline_interest(first["interest"].id, owner.id)

        again = await matching.interests.request_interest(target.id, requester.id)

        assert again["interest"].id == first["interest"].id
        assert again["interest"].status == InterestStatus.REQUESTED
        rows = await db_session.scalar(select(func.count()).select_from(ListingInterest))
        assert rows == 1


class TestOwnerResponses:

    async def test_approve_is_idempotent(self, matching, db_session, make_target, make_listing, make_user):
        owner, target = await make_target()
        requester = await make_user()
        await make_listing(requester)
        interest_id = (await matching.interests.request_interest(target.id, requester.id))["interest"].id

        first = await matching.interests.approve_interest(interest_id, owner.id)
        second = await matching.interests.approve_interest(interest_id, owner.id)

        assert first["interest"].status == InterestStatus.CONTACT_APPROVED
        assert second["interest"].status == InterestStatus.CONTACT_APPROVED
        assert first["owner_contact"]["phone"] == owner.phone
        assert await _count_notices(db_session, NotificationType.INTEREST_APPROVED, requester.id) == 1
        assert await _count_notices(db_session, NotificationType.INTEREST_APPROVED) == 2

    async def test_only_owner_may_respond(self, matching, make_target, make_listing, make_user):
        _, target = await make_target()
        requester = await make_user()
        await make_listing(requester)
        interest_id = (await matching.interests.request_interest(target.id, requester.id))["interest"].id

        with pytest.raises(PermissionDeniedError):
            await matching.interests.approve_interest(interest_id, requester.id)

    async def test_decline_closes_request(self, matching, db_session, make_target, make_listing, make_user):
        owner, target = await make_target()
        requester = await make_user()
        await make_listing(requester)
        interest_id = (await matching.interests.request_interest(target.id, requester.id))["interest"].id

        first = await matching.interests.decline_interest(interest_id, owner.id)
        second = await matching.interests.decline_interest(interest_id, owner.id)

        assert isinstance(first["interest"], ClosedInterestView)
        assert first["interest"].status == InterestStatus.DECLINED
        assert first["interest"].closed_at is not None
        assert second["interest"].status == InterestStatus.DECLINED
        assert await _count_notices(db_session, NotificationType.INTEREST_DECLINED, requester.id) == 1
        assert await _count_notices(db_session, NotificationType.INTEREST_DECLINED) == 2

    async def test_outgoing_hides_phone_until_approved(self, matching, make_target, make_listing, make_user):
        owner, target = await make_target()
        requester = await make_user()
        await make_listing(requester)
        interest_id = (await matching.interests.request_interest(target.id, requester.id))["interest"].id

        before = await matching.interests.get_outgoing_interests(requester.id)
        await matching.interests.approve_interest(interest_id, owner.id)
        after = await matching.interests.get_outgoing_interests(requester.id)

        assert before["requests"][0]["owner"]["phone"] is None
        assert after["requests"][0]["owner"]["phone"] == owner.phone

    async def test_incoming_grouped_by_listing(self, matching, make_target, make_listing, make_user):
        owner, target = await make_target()
        for _ in range(2):
            requester = await make_user()
            await make_listing(requester)
            await matching.interests.request_interest(target.id, requester.id)

        incoming = await matching.interests.get_incoming_interests(owner.id)

        assert incoming["total_requests"] == 2
        assert incoming["open_requests"] == 2
        assert [item["listing_id"] for item in incoming["listings"]] == [target.id]


class TestConfirmRenter:

    async def _two_requests(self, matching, make_target, make_listing, make_user):
        owner, target = await make_target()
        winner, loser = await make_user("Winner"), await make_user("Loser")
        winner_listing = await make_listing(winner)
        loser_listing = await make_listing(loser)
        winning = (await matching.interests.request_interest(target.id, winner.id))["interest"].id
        losing = (await matching.interests.request_interest(target.id, loser.id))["interest"].id
        await matching.interests.approve_interest(winning, owner.id)
        return owner, target, winner_listing, loser_listing, winning, losing

    async def test_closes_listings_and_releases_others(self, matching, db_session, make_target, make_listing, make_user):
        owner, target, winner_listing, loser_listing, winning, losing = await self._two_requests(
            matching, make_target, make_listing, make_user
        )

        result = await matching.interests.confirm_renter(winning, owner.id)

        assert isinstance(result["interest"], ConfirmedInterestView)
        assert result["released_count"] == 1
        assert await _status(db_session, ListingInterest, losing) == InterestStatus.RELEASED.value
        assert await _status(db_session, SwapListing, target.id) == ListingStatus.MATCHED.value
        assert await _status(db_session, SwapListing, winner_listing.id) == ListingStatus.MATCHED.value
        assert await _status(db_session, SwapListing, loser_listing.id) == ListingStatus.ACTIVE.value
        # Released requester's listing goes back through matching
        assert result["rerun"].triggered >= 1
        assert await _count_notices(db_session, NotificationType.REQUEST_RELEASED) == 1

    async def test_winner_requests_elsewhere_are_released_to_their_owners(
        self, matching, db_session, make_target, make_listing, make_user
    ):
        owner, target, winner_listing, _, winning, _ = await self._two_requests(
            matching, make_target, make_listing, make_user
        )
        other_owner, other_target = await make_target()
        elsewhere = (await matching.interests.request_interest(
            other_target.id, winner_listing.user_id, requester_listing_id=winner_listing.id
        ))["interest"].id

        result = await matching.interests.confirm_renter(winning, owner.id)

        assert result["released_count"] == 2
        assert await _status(db_session, ListingInterest, elsewhere) == InterestStatus.RELEASED.value
        assert await _count_notices(db_session, NotificationType.REQUEST_RELEASED, other_owner.id) == 1
        assert await _status(db_session, SwapListing, other_target.id) == ListingStatus.ACTIVE.value

    async def test_confirm_twice_is_noop(self, matching, make_target, make_listing, make_user):
        owner, _, _, _, winning, _ = await self._two_requests(matching, make_target, make_listing, make_user)
        await matching.interests.confirm_renter(winning, owner.id)

        again = await matching.interests.confirm_renter(winning, owner.id)

        assert again["released_count"] == 0
        assert again["rerun"] is None

    async def test_failure_mid_confirm_leaves_no_partial_writes(
        self, matching, db_session, make_target, make_listing, make_user
    ):
        owner, target, winner_listing, _, winning, losing = await self._two_requests(
            matching, make_target, make_listing, make_user
        )
        target_id, winner_listing_id = target.id, winner_listing.id
        matching.interests._release_open_interests = AsyncMock(side_effect=RuntimeError("storage down"))

        with pytest.raises(RuntimeError):
            await matching.interests.confirm_renter(winning, owner.id)

        assert await _status(db_session, SwapListing, target_id) == ListingStatus.ACTIVE.value
        assert await _status(db_session, SwapListing, winner_listing_id) == ListingStatus.ACTIVE.value
        assert await _status(db_session, ListingInterest, winning) == InterestStatus.CONTACT_APPROVED.value
        assert await _status(db_session, ListingInterest, losing) == InterestStatus.REQUESTED.value

    async def test_breaks_chains_holding_closed_listings(
        self, matching, db_session, make_target, make_listing, make_user
    ):
        owner, target, winner_listing, _, winning, _ = await self._two_requests(
            matching, make_target, make_listing, make_user
        )
        partner = await make_user("Partner")
        partner_listing = await make_listing(partner)
        created = await matching.chains.create_chain_from_cycle([target.id, partner_listing.id], 70)
        chain_id = created.chain["id"]
        await matching.chains.accept_chain(chain_id, owner.id)
        await matching.chains.accept_chain(chain_id, partner.id)

        result = await matching.interests.confirm_renter(winning, owner.id)

        assert result["chain_conflict"] == {"affected_chains": 1, "broken_chains": 1}
        chain = await db_session.get(SwapChain, chain_id, populate_existing=True)
        assert chain.status == ChainStatus.BROKEN.value
        assert chain.broken_reason == ChainBreakReason.CONFLICT.value
        # The closed target is skipped, the partner listing is rerun
        assert result["rerun"].skipped >= 1
        assert await _status(db_session, SwapListing, partner_listing.id) == ListingStatus.ACTIVE.value

    async def test_declined_request_cannot_be_confirmed(self, matching, make_target, make_listing, make_user):
        owner, target = await make_target()
        requester = await make_user()
        await make_listing(requester)
        interest_id = (await matching.interests.request_interest(target.id, requester.id))["interest"].id
        await matching.interests.decline_interest(interest_id, owner.id)

        with pytest.raises(PreconditionError):
            await matching.interests.confirm_renter(interest_id, owner.id)
