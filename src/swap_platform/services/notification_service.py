"""Notification sink: writes in-app notifications for matching events.

Delivery is best-effort: callers commit their own state change first and a
failure here is logged and rolled back without undoing that change.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from swap_platform.domain.contracts import NotificationInput
from swap_platform.domain.enums import ChainBreakReason, ChainType, NotificationType
from swap_platform.domain.models import UserNotification

logger = logging.getLogger(__name__)

N = NotificationType


class NotificationService:
    """Persists ``UserNotification`` rows and logs one ``[NOTIFY]`` line per entry."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def notify_many(self, entries: Iterable[NotificationInput]) -> int:
        entries = list(entries)
        if not entries:
            return 0

        try:
            for entry in entries:
                self.db.add(
                    UserNotification(
                        user_id=entry.user_id,
                        chain_id=entry.chain_id,
                        type=entry.type,
                        title=entry.title,
                        message=entry.message,
                        payload=entry.payload,
                    )
                )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("[NOTIFY_FAILED] count=%d error=%s", len(entries), e)
            return 0

        for entry in entries:
            logger.info(
                "[NOTIFY] type=%s userId=%s chainId=%s message=%r",
                entry.type, entry.user_id, entry.chain_id or "n/a", entry.message,
            )
        return len(entries)

    async def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list[UserNotification]:
        stmt = select(UserNotification).where(UserNotification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(UserNotification.read_at.is_(None))
        stmt = stmt.order_by(UserNotification.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, user_id: str, notification_id: str, now: datetime) -> Optional[UserNotification]:
        result = await self.db.execute(
            select(UserNotification).where(
                UserNotification.id == notification_id,
                UserNotification.user_id == user_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            return None
        if notification.read_at is None:
            notification.read_at = now
            await self.db.commit()
        return notification


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------


def chain_pending(user_ids: list[str], chain_id: str, chain_type: ChainType, accept_by: Optional[datetime]):
    deadline = accept_by.isoformat() if accept_by else None
    return [
        NotificationInput(
            user_id=user_id,
            chain_id=chain_id,
            type=N.CHAIN_PENDING.value,
            title="New Chain Proposal",
            message=(
                f"A new {chain_type.value} chain was created. "
                f"Accept before {deadline or 'the deadline'}."
            ),
            payload={"chain_type": chain_type.value, "accept_by": deadline},
        )
        for user_id in user_ids
    ]


def chain_locked(user_ids: list[str], chain_id: str):
    return [
        NotificationInput(
            user_id=user_id,
            chain_id=chain_id,
            type=N.CHAIN_LOCKED.value,
            title="Chain Locked",
            message="All members accepted. Your chain is now LOCKED and ready for contact unlock.",
        )
        for user_id in user_ids
    ]


def chain_broken(user_ids: list[str], chain_id: str, reason: ChainBreakReason):
    return [
        NotificationInput(
            user_id=user_id,
            chain_id=chain_id,
            type=N.CHAIN_BROKEN.value,
            title="Chain Update",
            message=f"Your chain has been marked BROKEN ({reason.value}).",
            payload={"reason": reason.value},
        )
        for user_id in user_ids
    ]


def contact_unlocked(user_ids: list[str], chain_id: str, unlock_id: str):
    return [
        NotificationInput(
            user_id=user_id,
            chain_id=chain_id,
            type=N.CONTACT_UNLOCKED.value,
            title="Contacts Unlocked",
            message="Every member approved. Contact details are now visible on your chain.",
            payload={"contact_unlock_id": unlock_id},
        )
        for user_id in user_ids
    ]


def match_rerun(user_ids: list[str], chain_id: str):
    return [
        NotificationInput(
            user_id=user_id,
            chain_id=chain_id,
            type=N.MATCH_RERUN.value,
            title="Matching Rerun",
            message="Matching has been rerun for your listing by support.",
        )
        for user_id in user_ids
    ]


def interest_requested(owner_user_id: str, requester_user_id: str, interest_id: str,
                       owner_name: str, requester_name: str):
    payload = {"interest_id": interest_id}
    return [
        NotificationInput(
            user_id=owner_user_id,
            type=N.INTEREST_REQUESTED.value,
            title="New Request",
            message=f"{requester_name} requested your listing.",
            payload=payload,
        ),
        NotificationInput(
            user_id=requester_user_id,
            type=N.INTEREST_REQUESTED.value,
            title="Request Sent",
            message=f"Your request was sent to {owner_name}.",
            payload=payload,
        ),
    ]


def interest_approved(owner_user_id: str, requester_user_id: str, interest_id: str,
                      owner_name: str, requester_name: str):
    payload = {"interest_id": interest_id}
    return [
        NotificationInput(
            user_id=requester_user_id,
            type=N.INTEREST_APPROVED.value,
            title="Contact Approved",
            message=f"{owner_name} approved your request. You can now contact them.",
            payload=payload,
        ),
        NotificationInput(
            user_id=owner_user_id,
            type=N.INTEREST_APPROVED.value,
            title="Contact Shared",
            message=f"You approved contact for {requester_name}.",
            payload=payload,
        ),
    ]


def interest_declined(owner_user_id: str, requester_user_id: str, interest_id: str,
                      owner_name: str, requester_name: str):
    payload = {"interest_id": interest_id}
    return [
        NotificationInput(
            user_id=requester_user_id,
            type=N.INTEREST_DECLINED.value,
            title="Request Declined",
            message=f"{owner_name} declined your request.",
            payload=payload,
        ),
        NotificationInput(
            user_id=owner_user_id,
            type=N.INTEREST_DECLINED.value,
            title="Request Declined",
            message=f"You declined {requester_name}.",
            payload=payload,
        ),
    ]


def interest_expired(owner_user_id: str, requester_user_id: str, interest_id: str,
                     listing_id: str, requester_listing_id: str):
    return [
        NotificationInput(
            user_id=requester_user_id,
            type=N.INTEREST_EXPIRED.value,
            title="Request Expired",
            message="Your request expired before it was approved. Matching will continue automatically.",
            payload={"interest_id": interest_id, "listing_id": listing_id},
        ),
        NotificationInput(
            user_id=owner_user_id,
            type=N.INTEREST_EXPIRED.value,
            title="Request Expired",
            message="A pending request on your listing has expired.",
            payload={"interest_id": interest_id, "requester_listing_id": requester_listing_id},
        ),
    ]


def renter_confirmed(owner_user_id: str, requester_user_id: str, interest_id: str, listing_id: str,
                     owner_name: str, requester_name: str, released_user_ids: list[str]):
    entries = [
        NotificationInput(
            user_id=owner_user_id,
            type=N.RENTER_CONFIRMED.value,
            title="Confirmed Renter",
            message=f"You confirmed {requester_name} as renter for this listing.",
            payload={"interest_id": interest_id, "listing_id": listing_id},
        ),
        NotificationInput(
            user_id=requester_user_id,
            type=N.RENTER_CONFIRMED.value,
            title="Apartment Confirmed",
            message=f"{owner_name} confirmed you as renter for the apartment.",
            payload={"interest_id": interest_id, "listing_id": listing_id},
        ),
    ]
    entries.extend(
        NotificationInput(
            user_id=user_id,
            type=N.REQUEST_RELEASED.value,
            title="Request Released",
            message="This apartment has been confirmed for another renter. Matching has been rerun for you.",
            payload={"listing_id": listing_id},
        )
        for user_id in released_user_ids
    )
    return entries
