"""Listing endpoints: create, renew, list own."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.app.routes.auth import get_current_user_dep
from swap_platform.domain.models import User
from swap_platform.domain.schemas import ListingCreate, ListingResponse
from swap_platform.infra.database import get_db
from swap_platform.services.errors import MatchingError
from swap_platform.services.listing_service import ListingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/listings", tags=["listings"])


@router.post("", response_model=ListingResponse, status_code=201)
async def create_listing(
    data: ListingCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).create_listing(user.id, data.model_dump(), datetime.now(timezone.utc))


@router.get("/me", response_model=list[ListingResponse])
async def my_listings(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await ListingService(db).get_my_listings(user.id)


@router.post("/{listing_id}/renew", response_model=ListingResponse)
async def renew_listing(
    listing_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await ListingService(db).renew_listing(user.id, listing_id, datetime.now(timezone.utc))
    except MatchingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
