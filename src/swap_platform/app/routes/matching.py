"""Matching API endpoints.

Match runs, the one-to-many interest flow, chain accept/decline and the
contact-unlock gate. Every handler delegates to ``MatchingService`` and
maps ``MatchingError`` onto an HTTP status.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.app.routes.auth import get_current_user_dep
from swap_platform.domain.models import User
from swap_platform.domain.schemas import RequestInterestBody
from swap_platform.infra.database import get_db
from swap_platform.services.errors import MatchingError
from swap_platform.services.matching_service import MatchingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/matching", tags=["matching"])


def _http_error(e: MatchingError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.detail)


# ---------------------------------------------------------------------------
# Match runs
# ---------------------------------------------------------------------------


@router.post("/run")
async def run_for_me(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Run matching for the caller's most recent ACTIVE listing."""
    try:
        return await MatchingService(db).run_for_user(user.id)
    except MatchingError as e:
        raise _http_error(e)


@router.post("/run/{listing_id}")
async def run_for_listing(
    listing_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).run_for_listing(listing_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


# ---------------------------------------------------------------------------
# Interests
# ---------------------------------------------------------------------------


@router.post("/interests/{target_listing_id}/request")
async def request_interest(
    target_listing_id: str,
    body: RequestInterestBody = RequestInterestBody(),
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).interests.request_interest(
            target_listing_id, user.id, body.requester_listing_id
        )
    except MatchingError as e:
        raise _http_error(e)


@router.get("/interests/incoming")
async def incoming_interests(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Requests received on the caller's listings, grouped per listing."""
    return await MatchingService(db).interests.get_incoming_interests(user.id)


@router.get("/interests/outgoing")
async def outgoing_interests(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await MatchingService(db).interests.get_outgoing_interests(user.id)


@router.post("/interests/{interest_id}/approve")
async def approve_interest(
    interest_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).interests.approve_interest(interest_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


@router.post("/interests/{interest_id}/decline")
async def decline_interest(
    interest_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).interests.decline_interest(interest_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


@router.post("/interests/{interest_id}/confirm-renter")
async def confirm_renter(
    interest_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Owner closes the deal with this requester."""
    try:
        return await MatchingService(db).interests.confirm_renter(interest_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------


@router.get("/chains/me")
async def my_chains(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await MatchingService(db).chains.get_my_chains(user.id)


@router.get("/chains/{chain_id}")
async def chain_detail(
    chain_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).chains.get_chain_detail(chain_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


@router.post("/chains/{chain_id}/accept")
async def accept_chain(
    chain_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).chains.accept_chain(chain_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


@router.post("/chains/{chain_id}/decline")
async def decline_chain(
    chain_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).chains.decline_chain(chain_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


@router.post("/chains/{chain_id}/connect")
async def request_contact_unlock(
    chain_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Ask the other members of a LOCKED chain to reveal contact details."""
    try:
        return await MatchingService(db).chains.request_contact_unlock(chain_id, user.id)
    except MatchingError as e:
        raise _http_error(e)


@router.post("/connect/{unlock_id}/approve")
async def approve_contact_unlock(
    unlock_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).chains.approve_contact_unlock(unlock_id, user.id)
    except MatchingError as e:
        raise _http_error(e)
