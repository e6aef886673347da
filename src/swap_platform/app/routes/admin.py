"""Admin API routes -- chain support controls.

Force-break, expire and rerun chains, and trigger an overdue-chain sweep.
Every route requires the ``admin`` role.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.app.routes.auth import require_role
from swap_platform.domain.enums import SweepTrigger, UserRole
from swap_platform.domain.models import User
from swap_platform.domain.schemas import BreakChainBody
from swap_platform.infra.database import get_db
from swap_platform.services.errors import MatchingError
from swap_platform.services.matching_service import MatchingService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])

require_admin = require_role(UserRole.ADMIN.value)


@router.post("/chains/expire-overdue")
async def expire_overdue_chains(
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Break every PENDING chain whose accept-by deadline has passed."""
    result = await MatchingService(db).sweeper.expire_pending_chains(SweepTrigger.ADMIN_SWEEP, admin.id)
    logger.info("Admin %s expired overdue chains: %s", admin.id, result)
    return result


@router.post("/chains/{chain_id}/break")
async def break_chain(
    chain_id: str,
    body: BreakChainBody = BreakChainBody(),
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).chains.break_chain_by_admin(chain_id, admin.id, body.reason)
    except MatchingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/chains/{chain_id}/expire")
async def expire_chain(
    chain_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await MatchingService(db).chains.expire_chain_by_admin(chain_id, admin.id)
    except MatchingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/chains/{chain_id}/rerun")
async def rerun_chain(
    chain_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Rerun matching for every member listing of a chain."""
    try:
        return await MatchingService(db).chains.rerun_chain_members_by_admin(chain_id, admin.id)
    except MatchingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
