"""In-app notification endpoints for the current user."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.app.routes.auth import get_current_user_dep
from swap_platform.domain.models import User
from swap_platform.domain.schemas import NotificationResponse
from swap_platform.infra.database import get_db
from swap_platform.services.notification_service import NotificationService

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    return await NotificationService(db).list_for_user(user.id, unread_only=unread_only, limit=limit)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    notification = await NotificationService(db).mark_read(user.id, notification_id, datetime.now(timezone.utc))
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification
