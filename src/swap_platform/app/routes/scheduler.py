"""Lifecycle sweeper cron endpoint — called by an external scheduler."""
import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.app.config import get_settings
from swap_platform.infra.database import get_db

logger = logging.getLogger(__name__)


async def verify_internal_token(x_internal_token: str = Header(...)):
    """Verify that the request includes a valid internal auth token."""
    settings = get_settings()
    if x_internal_token != settings.internal_token:
        raise HTTPException(status_code=401, detail="Invalid internal token")


router = APIRouter(
    prefix="/api/internal/scheduler",
    tags=["scheduler"],
    dependencies=[Depends(verify_internal_token)],
)


@router.post("/matching-tick")
async def matching_tick(db: AsyncSession = Depends(get_db)):
    """Run one lifecycle sweep: expire listings, chains and interests."""
    from swap_platform.services.matching_service import MatchingService

    results = await MatchingService(db).sweeper.tick()

    logger.info("Matching scheduler tick: %s", results)
    return {"ok": True, "results": results}
