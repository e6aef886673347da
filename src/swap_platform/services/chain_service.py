"""Chain manager: creation, dedup, accept/decline, break-and-recover, contact unlock."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from swap_platform.domain.contracts import (
    BreakOutcome,
    ChainConflict,
    ChainCreated,
    ChainCreateOutcome,
    ChainExists,
    ListingNode,
)
from swap_platform.domain.enums import (
    ActorType,
    ChainBreakReason,
    ChainStatus,
    ChainType,
    UserRole,
)
from swap_platform.domain.models import (
    ContactUnlock,
    ContactUnlockApproval,
    SwapChain,
    SwapChainMember,
    SwapListing,
    User,
)
from swap_platform.services import notification_service as notices
from swap_platform.services.chain_state_machine import (
    OPEN_CHAIN_STATES,
    ChainStateMachine,
)
from swap_platform.services.errors import NotFoundError, PermissionDeniedError, PreconditionError

logger = logging.getLogger(__name__)

CYCLE_HASH_SEPARATOR = ":"


def canonical_cycle_hash(listing_ids: list[str]) -> str:
    """Direction- and rotation-independent identity of a set of listings."""
    return CYCLE_HASH_SEPARATOR.join(sorted(listing_ids))


def serialize_chain(chain: SwapChain, members: list[SwapChainMember]) -> dict:
    return {
        "id": chain.id,
        "cycle_size": chain.cycle_size,
        "avg_score": chain.avg_score,
        "cycle_hash": chain.cycle_hash,
        "status": chain.status,
        "type": chain.type,
        "accept_by": chain.accept_by,
        "locked_at": chain.locked_at,
        "broken_reason": chain.broken_reason,
        "broken_at": chain.broken_at,
        "created_at": chain.created_at,
        "members": [
            {
                "listing_id": member.listing_id,
                "user_id": member.user_id,
                "position": member.position,
                "has_accepted": member.has_accepted,
            }
            for member in sorted(members, key=lambda m: m.position)
        ],
    }


class ChainService:
    """Drives chains through PENDING -> LOCKED / BROKEN."""

    def __init__(self, matching):
        self.matching = matching
        self.db = matching.db
        self.state_machine = ChainStateMachine()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _get_chain(self, chain_id: str) -> SwapChain:
        chain = await self.db.get(SwapChain, chain_id, populate_existing=True)
        if chain is None:
            raise NotFoundError("Chain not found")
        return chain

    async def _get_members(self, chain_id: str) -> list[SwapChainMember]:
        result = await self.db.execute(
            select(SwapChainMember)
            .where(SwapChainMember.chain_id == chain_id)
            .order_by(SwapChainMember.position)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    @staticmethod
    def _require_member(members: list[SwapChainMember], user_id: str) -> SwapChainMember:
        for member in members:
            if member.user_id == user_id:
                return member
        raise PermissionDeniedError("You are not a member of this chain")

    async def _require_admin(self, user_id: str) -> None:
        user = await self.db.get(User, user_id)
        if user is None or user.role != UserRole.ADMIN.value:
            raise PermissionDeniedError("Admin access required")

    async def _find_existing(self, cycle_hash: str) -> Optional[SwapChain]:
        result = await self.db.execute(
            select(SwapChain)
            .where(SwapChain.cycle_hash == cycle_hash)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _blocking_status(self, listing_ids: list[str]) -> Optional[ChainStatus]:
        result = await self.db.execute(
            select(SwapChain.status)
            .join(SwapChainMember, SwapChainMember.chain_id == SwapChain.id)
            .where(
                SwapChainMember.listing_id.in_(listing_ids),
                SwapChain.status.in_([s.value for s in OPEN_CHAIN_STATES]),
            )
        )
        statuses = {row for row in result.scalars().all()}
        if ChainStatus.LOCKED.value in statuses:
            return ChainStatus.LOCKED
        if ChainStatus.PENDING.value in statuses:
            return ChainStatus.PENDING
        return None

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_chain_from_cycle(
        self,
        cycle: list[str],
        avg_score: float,
        node_by_id: Optional[dict[str, ListingNode]] = None,
    ) -> ChainCreateOutcome:
        """Materialize a PENDING chain for ``cycle`` unless it exists or conflicts.

        The pre-check on the hash is only a fast path; the unique constraint on
        ``cycle_hash`` decides concurrent races.
        """
        cycle_hash = canonical_cycle_hash(cycle)

        existing = await self._find_existing(cycle_hash)
        if existing is not None:
            return ChainExists(chain_id=existing.id, status=ChainStatus(existing.status))

        blocking = await self._blocking_status(cycle)
        if blocking is not None:
            logger.info("Chain refused: cycle=%s blocked_by=%s", cycle_hash, blocking.value)
            return ChainConflict(blocking_status=blocking)

        owner_by_listing = await self._owners(cycle, node_by_id)
        if len(set(owner_by_listing.values())) != len(cycle):
            raise PreconditionError("Every listing in a chain must belong to a different owner")

        chain_type = ChainType.DIRECT if len(cycle) == 2 else ChainType.CIRCULAR
        now = self.matching.now()
        accept_by = now + timedelta(hours=self.matching.settings.chain_accept_ttl_hours)

        chain = SwapChain(
            cycle_size=len(cycle),
            avg_score=avg_score,
            cycle_hash=cycle_hash,
            status=ChainStatus.PENDING.value,
            type=chain_type.value,
            accept_by=accept_by,
            created_at=now,
            updated_at=now,
        )
        self.db.add(chain)
        try:
            await self.db.flush()
            members = [
                SwapChainMember(
                    chain_id=chain.id,
                    listing_id=listing_id,
                    user_id=owner_by_listing[listing_id],
                    position=position,
                )
                for position, listing_id in enumerate(cycle)
            ]
            self.db.add_all(members)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing = await self._find_existing(cycle_hash)
            if existing is None:
                raise
            return ChainExists(chain_id=existing.id, status=ChainStatus(existing.status))

        chain_id = chain.id
        payload = serialize_chain(chain, members)
        user_ids = [member.user_id for member in members]

        await self.matching.notifier.notify_many(
            notices.chain_pending(user_ids, chain_id, chain_type, accept_by)
        )
        logger.info(
            "[CHAIN_CREATED] chainId=%s type=%s size=%d avg=%s",
            chain_id, chain_type.value, len(cycle), avg_score,
        )
        return ChainCreated(chain_type=chain_type, chain=payload)

    async def _owners(self, listing_ids: list[str], node_by_id: Optional[dict[str, ListingNode]]) -> dict[str, str]:
        if node_by_id and all(listing_id in node_by_id for listing_id in listing_ids):
            return {listing_id: node_by_id[listing_id].user_id for listing_id in listing_ids}
        result = await self.db.execute(
            select(SwapListing.id, SwapListing.user_id).where(SwapListing.id.in_(listing_ids))
        )
        owners = {row.id: row.user_id for row in result.all()}
        missing = [listing_id for listing_id in listing_ids if listing_id not in owners]
        if missing:
            raise NotFoundError(f"Listing not found: {missing[0]}")
        return owners

    # ------------------------------------------------------------------
    # Accept / decline
    # ------------------------------------------------------------------

    async def accept_chain(self, chain_id: str, user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        chain = await self._get_chain(chain_id)
        members = await self._get_members(chain_id)
        member = self._require_member(members, user_id)

        if chain.status != ChainStatus.PENDING.value:
            raise PreconditionError("Only PENDING chains can be accepted")

        now = self.matching.now()
        if self.state_machine.check_deadline(chain, now):
            await self.break_chain_and_recover(chain_id, ChainBreakReason.EXPIRED, ActorType.SYSTEM)
            raise PreconditionError("This chain has expired and was marked BROKEN")

        await self.db.execute(
            update(SwapChainMember)
            .where(SwapChainMember.id == member.id)
            .values(has_accepted=True, accepted_at=now)
        )
        members = await self._get_members(chain_id)
        all_accepted = all(m.has_accepted for m in members)

        locked = False
        if all_accepted:
            self.state_machine.validate_transition(ChainStatus.PENDING, ChainStatus.LOCKED, ActorType.SYSTEM)
            result = await self.db.execute(
                update(SwapChain)
                .where(SwapChain.id == chain_id, SwapChain.status == ChainStatus.PENDING.value)
                .values(status=ChainStatus.LOCKED.value, accept_by=None, locked_at=now, updated_at=now)
            )
            locked = result.rowcount == 1
        await self.db.commit()

        if locked:
            await self.matching.notifier.notify_many(
                notices.chain_locked([m.user_id for m in members], chain_id)
            )
            logger.info("[CHAIN_LOCKED] chainId=%s members=%d", chain_id, len(members))

        status = await self.db.scalar(select(SwapChain.status).where(SwapChain.id == chain_id))
        return {"success": True, "all_accepted": all_accepted, "status": status}

    async def decline_chain(self, chain_id: str, user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        await self._get_chain(chain_id)
        members = await self._get_members(chain_id)
        self._require_member(members, user_id)

        outcome = await self.break_chain_and_recover(
            chain_id, ChainBreakReason.DECLINED, ActorType.USER, actor_user_id=user_id
        )
        return {
            "success": True,
            "status": ChainStatus.BROKEN.value,
            "changed": outcome.changed,
            "rerun": outcome.rerun,
        }

    # ------------------------------------------------------------------
    # Break and recover
    # ------------------------------------------------------------------

    async def break_chain_and_recover(
        self,
        chain_id: str,
        reason: ChainBreakReason,
        actor_type: ActorType,
        actor_user_id: Optional[str] = None,
        rerun_members: bool = True,
    ) -> BreakOutcome:
        """Mark a chain BROKEN, notify its members and rerun their listings.

        Already-BROKEN chains and SYSTEM expiry of LOCKED chains are no-ops.
        A conditional update that matches no row (another writer moved the
        chain first) is also reported as unchanged.
        """
        chain = await self._get_chain(chain_id)
        current = ChainStatus(chain.status)

        if current == ChainStatus.BROKEN:
            return BreakOutcome(changed=False, reason="already_broken")
        if current == ChainStatus.LOCKED and actor_type == ActorType.SYSTEM and reason == ChainBreakReason.EXPIRED:
            return BreakOutcome(changed=False, reason="already_locked")

        self.state_machine.validate_transition(current, ChainStatus.BROKEN, actor_type, reason)

        members = await self._get_members(chain_id)
        listing_ids = [m.listing_id for m in members]
        user_ids = [m.user_id for m in members]

        now = self.matching.now()
        result = await self.db.execute(
            update(SwapChain)
            .where(SwapChain.id == chain_id, SwapChain.status == current.value)
            .values(
                status=ChainStatus.BROKEN.value,
                broken_reason=reason.value,
                broken_actor_type=actor_type.value,
                broken_by_user_id=actor_user_id,
                broken_at=now,
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            await self.db.rollback()
            return BreakOutcome(changed=False, reason="concurrent_update")
        await self.db.commit()

        await self.matching.notifier.notify_many(notices.chain_broken(user_ids, chain_id, reason))

        async with self.matching.cascade() as queue:
            if rerun_members:
                queue.enqueue(listing_ids, source=chain_id)

        logger.warning(
            "[CHAIN_BROKEN] chainId=%s reason=%s actorType=%s actorUserId=%s rerun=%s",
            chain_id, reason.value, actor_type.value, actor_user_id or "n/a", queue.summary,
        )
        return BreakOutcome(changed=True, reason=reason.value, listing_ids=listing_ids, rerun=queue.summary)

    async def break_chains_for_listings(
        self,
        listing_ids: list[str],
        actor_type: ActorType,
        actor_user_id: Optional[str] = None,
    ) -> dict:
        """Force-break every PENDING/LOCKED chain touching ``listing_ids`` with CONFLICT."""
        if not listing_ids:
            return {"affected_chains": 0, "broken_chains": 0}

        result = await self.db.execute(
            select(SwapChainMember.chain_id)
            .join(SwapChain, SwapChain.id == SwapChainMember.chain_id)
            .where(
                SwapChainMember.listing_id.in_(listing_ids),
                SwapChain.status.in_([s.value for s in OPEN_CHAIN_STATES]),
            )
            .distinct()
        )
        chain_ids = list(result.scalars().all())

        broken = 0
        async with self.matching.cascade():
            for chain_id in chain_ids:
                outcome = await self.break_chain_and_recover(
                    chain_id, ChainBreakReason.CONFLICT, actor_type, actor_user_id=actor_user_id
                )
                if outcome.changed:
                    broken += 1

        return {"affected_chains": len(chain_ids), "broken_chains": broken}

    # ------------------------------------------------------------------
    # Admin controls
    # ------------------------------------------------------------------

    async def break_chain_by_admin(
        self,
        chain_id: str,
        admin_user_id: str,
        reason: ChainBreakReason = ChainBreakReason.ADMIN_FORCE,
    ) -> dict:
        await self._require_admin(admin_user_id)
        outcome = await self.break_chain_and_recover(
            chain_id, reason, ActorType.ADMIN, actor_user_id=admin_user_id
        )
        return {
            "success": True,
            "status": ChainStatus.BROKEN.value,
            "reason": reason.value,
            "changed": outcome.changed,
            "rerun": outcome.rerun,
        }

    async def expire_chain_by_admin(self, chain_id: str, admin_user_id: str) -> dict:
        return await self.break_chain_by_admin(chain_id, admin_user_id, ChainBreakReason.EXPIRED)

    async def rerun_chain_members_by_admin(self, chain_id: str, admin_user_id: str) -> dict:
        await self._require_admin(admin_user_id)
        await self._get_chain(chain_id)
        members = await self._get_members(chain_id)
        user_ids = [m.user_id for m in members]

        rerun = await self.matching.rerun_listings([m.listing_id for m in members], source=chain_id)

        await self.matching.notifier.notify_many(notices.match_rerun(user_ids, chain_id))
        return {"success": True, "rerun": rerun}

    # ------------------------------------------------------------------
    # Contact unlock
    # ------------------------------------------------------------------

    async def _approver_ids(self, unlock_id: str) -> set[str]:
        result = await self.db.execute(
            select(ContactUnlockApproval.approver_user_id).where(
                ContactUnlockApproval.contact_unlock_id == unlock_id,
                ContactUnlockApproval.approved.is_(True),
            )
        )
        return set(result.scalars().all())

    async def _add_approval(self, unlock_id: str, user_id: str) -> None:
        if user_id in await self._approver_ids(unlock_id):
            return
        self.db.add(ContactUnlockApproval(contact_unlock_id=unlock_id, approver_user_id=user_id, approved=True))
        try:
            await self.db.commit()
        except IntegrityError:
            # Same approver raced us; one approval row is enough
            await self.db.rollback()

    async def _notify_if_unlocked(self, chain_id: str, unlock_id: str, member_ids: list[str], before: bool) -> bool:
        unlocked = set(member_ids) <= await self._approver_ids(unlock_id)
        if unlocked and not before:
            await self.matching.notifier.notify_many(notices.contact_unlocked(member_ids, chain_id, unlock_id))
        return unlocked

    async def request_contact_unlock(self, chain_id: str, user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        chain = await self._get_chain(chain_id)
        members = await self._get_members(chain_id)
        self._require_member(members, user_id)
        if chain.status != ChainStatus.LOCKED.value:
            raise PreconditionError("Chain must be LOCKED before unlocking contacts")

        member_ids = [m.user_id for m in members]
        result = await self.db.execute(
            select(ContactUnlock).where(ContactUnlock.chain_id == chain_id).order_by(ContactUnlock.created_at)
        )
        unlock = result.scalars().first()
        if unlock is None:
            unlock = ContactUnlock(chain_id=chain_id, requester_user_id=user_id)
            self.db.add(unlock)
            await self.db.commit()
        unlock_id = unlock.id

        before = set(member_ids) <= await self._approver_ids(unlock_id)
        await self._add_approval(unlock_id, user_id)
        unlocked = await self._notify_if_unlocked(chain_id, unlock_id, member_ids, before)
        return {"success": True, "unlock_id": unlock_id, "contact_unlocked": unlocked}

    async def approve_contact_unlock(self, unlock_id: str, user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        unlock = await self.db.get(ContactUnlock, unlock_id)
        if unlock is None:
            raise NotFoundError("Unlock request not found")
        chain_id = unlock.chain_id

        chain = await self._get_chain(chain_id)
        members = await self._get_members(chain_id)
        self._require_member(members, user_id)
        if chain.status != ChainStatus.LOCKED.value:
            raise PreconditionError("Chain must be LOCKED before unlocking contacts")

        member_ids = [m.user_id for m in members]
        before = set(member_ids) <= await self._approver_ids(unlock_id)
        await self._add_approval(unlock_id, user_id)
        unlocked = await self._notify_if_unlocked(chain_id, unlock_id, member_ids, before)
        return {"success": True, "unlock_id": unlock_id, "contact_unlocked": unlocked}

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    async def get_my_chains(self, user_id: str) -> list[dict]:
        await self.matching.sweeper.sweep_inline()

        result = await self.db.execute(
            select(SwapChain)
            .join(SwapChainMember, SwapChainMember.chain_id == SwapChain.id)
            .where(SwapChainMember.user_id == user_id)
            .order_by(SwapChain.created_at.desc())
            .distinct()
            .execution_options(populate_existing=True)
        )
        chains = list(result.scalars().all())
        return [serialize_chain(chain, await self._get_members(chain.id)) for chain in chains]

    async def get_chain_detail(self, chain_id: str, user_id: str) -> dict:
        await self.matching.sweeper.sweep_inline()

        chain = await self._get_chain(chain_id)
        members = await self._get_members(chain_id)
        self._require_member(members, user_id)

        result = await self.db.execute(
            select(SwapListing, User)
            .join(User, User.id == SwapListing.user_id)
            .where(SwapListing.id.in_([m.listing_id for m in members]))
        )
        listing_by_id = {listing.id: (listing, owner) for listing, owner in result.all()}

        unlock_result = await self.db.execute(
            select(ContactUnlock).where(ContactUnlock.chain_id == chain_id).order_by(ContactUnlock.created_at)
        )
        unlock = unlock_result.scalars().first()
        contact_unlocked = False
        if unlock is not None:
            contact_unlocked = {m.user_id for m in members} <= await self._approver_ids(unlock.id)

        detail_members = []
        for member in members:
            listing, owner = listing_by_id.get(member.listing_id, (None, None))
            detail_members.append({
                "listing_id": member.listing_id,
                "position": member.position,
                "has_accepted": member.has_accepted,
                "full_name": owner.full_name if owner else None,
                "phone": owner.phone if owner and contact_unlocked else None,
                "current_city": listing.current_city if listing else None,
                "current_type": listing.current_type if listing else None,
                "current_rent": listing.current_rent if listing else None,
                "desired_city": listing.desired_city if listing else None,
            })

        return {
            "id": chain.id,
            "cycle_size": chain.cycle_size,
            "avg_score": chain.avg_score,
            "status": chain.status,
            "type": chain.type,
            "cycle_hash": chain.cycle_hash,
            "accept_by": chain.accept_by,
            "broken_reason": chain.broken_reason,
            "broken_at": chain.broken_at,
            "members": detail_members,
            "contact_unlock_id": unlock.id if unlock else None,
            "contact_unlocked": contact_unlocked,
        }
