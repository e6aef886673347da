"""Tests for the in-app notification sink and the no-match advisor."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

from swap_platform.domain.enums import ChainBreakReason, NotificationType
from swap_platform.services import notification_service as notices
from swap_platform.services.advisory_service import AdvisoryService
from swap_platform.services.notification_service import NotificationService


async def test_notify_many_persists_rows(db_session, make_user):
    a, b = await make_user(), await make_user()
    sink = NotificationService(db_session)

    written = await sink.notify_many(notices.chain_broken([a.id, b.id], "chain-1", ChainBreakReason.DECLINED))

    assert written == 2
    rows = await sink.list_for_user(a.id)
    assert [row.type for row in rows] == [NotificationType.CHAIN_BROKEN.value]
    assert rows[0].payload == {"reason": "declined"}


async def test_storage_failure_is_swallowed(db_session, make_user):
    user = await make_user()
    sink = NotificationService(db_session)
    db_session.commit = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))

    written = await sink.notify_many(notices.chain_locked([user.id], "chain-1"))

    assert written == 0


async def test_empty_batch_is_noop(db_session):
    assert await NotificationService(db_session).notify_many([]) == 0


async def test_mark_read_only_for_owner(db_session, make_user):
    owner, other = await make_user(), await make_user()
    sink = NotificationService(db_session)
    await sink.notify_many(notices.chain_locked([owner.id], "chain-1"))
    notification_id = (await sink.list_for_user(owner.id))[0].id
    now = datetime.now(timezone.utc)

    assert await sink.mark_read(other.id, notification_id, now) is None
    marked = await sink.mark_read(owner.id, notification_id, now)
    assert marked.read_at is not None
    assert await sink.list_for_user(owner.id, unread_only=True) == []


def test_renter_confirmed_tells_released_requesters():
    entries = notices.renter_confirmed("owner", "winner", "i-1", "l-1", "Olu", "Wale", ["loser"])
    kinds = {(e.user_id, e.type) for e in entries}
    assert ("loser", NotificationType.REQUEST_RELEASED.value) in kinds
    assert ("winner", NotificationType.RENTER_CONFIRMED.value) in kinds


def test_advisor_budget_tip_only_for_low_budgets():
    advisor = AdvisoryService()
    low = SimpleNamespace(max_budget=1200, desired_city="Lagos", timeline="ASAP")
    high = SimpleNamespace(max_budget=2_000_000, desired_city="Lagos", timeline="ASAP")

    assert any("budget" in tip for tip in advisor.suggest_no_match(low))
    assert not any("budget" in tip for tip in advisor.suggest_no_match(high))
    assert any("Lagos" in tip for tip in advisor.suggest_no_match(high))
