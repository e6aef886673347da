"""Chain and interest state machines: validate transitions and deadlines."""

from datetime import datetime, timezone
from typing import Optional

from swap_platform.domain.enums import (
    ActorType,
    ChainBreakReason,
    ChainStatus,
    InterestStatus,
)
from swap_platform.services.errors import PreconditionError


class InvalidTransitionError(PreconditionError):
    """Raised when a chain or interest state transition is not allowed."""

    def __init__(self, current_status, target_status, reason: str):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            f"Invalid transition from {current_status.value} to {target_status.value}: {reason}"
        )


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps read back from storage as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Chains: from_status -> {to_status: set_of_allowed_actors}
# ---------------------------------------------------------------------------

C = ChainStatus
A = ActorType

CHAIN_TRANSITION_MAP: dict[ChainStatus, dict[ChainStatus, set[ActorType]]] = {
    C.PENDING: {
        C.LOCKED: {A.SYSTEM},
        C.BROKEN: {A.USER, A.ADMIN, A.SYSTEM},
    },
    C.LOCKED: {
        C.BROKEN: {A.USER, A.ADMIN, A.SYSTEM},
    },
}

CHAIN_TERMINAL_STATES: set[ChainStatus] = {C.BROKEN}

# Chains the sweeper and conflict checks still consider live
OPEN_CHAIN_STATES: set[ChainStatus] = {C.PENDING, C.LOCKED}


class ChainStateMachine:
    """Validates chain state transitions."""

    def validate_transition(
        self,
        current_status: ChainStatus,
        target_status: ChainStatus,
        actor: ActorType,
        reason: Optional[ChainBreakReason] = None,
    ) -> bool:
        """Return True if the transition is valid. Raise InvalidTransitionError if not."""
        allowed_targets = CHAIN_TRANSITION_MAP.get(current_status)
        if allowed_targets is None:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"No transitions allowed from {current_status.value}",
            )

        if target_status not in allowed_targets:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"Transition from {current_status.value} to {target_status.value} is not allowed",
            )

        allowed_actors = allowed_targets[target_status]
        if actor not in allowed_actors:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"Actor {actor.value} is not permitted for this transition",
            )

        # Locked chains are immune to deadline expiry
        if (
            current_status == C.LOCKED
            and target_status == C.BROKEN
            and actor == A.SYSTEM
            and reason == ChainBreakReason.EXPIRED
        ):
            raise InvalidTransitionError(
                current_status, target_status, "Locked chains do not expire"
            )

        return True

    def can_transition(self, current_status, target_status, actor, reason=None) -> bool:
        try:
            return self.validate_transition(current_status, target_status, actor, reason)
        except InvalidTransitionError:
            return False

    def check_deadline(self, chain, now: Optional[datetime] = None) -> bool:
        """Return True if a PENDING chain's accept-by deadline has passed."""
        if ChainStatus(chain.status) != C.PENDING:
            return False
        accept_by = as_aware(chain.accept_by)
        if accept_by is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now > accept_by


# ---------------------------------------------------------------------------
# Interests
# ---------------------------------------------------------------------------

I = InterestStatus

OPEN_INTEREST_STATES: set[InterestStatus] = {I.REQUESTED, I.CONTACT_APPROVED}

INTEREST_TRANSITION_MAP: dict[InterestStatus, set[InterestStatus]] = {
    I.REQUESTED: {I.REQUESTED, I.CONTACT_APPROVED, I.DECLINED, I.CONFIRMED_RENTER, I.EXPIRED, I.RELEASED},
    I.CONTACT_APPROVED: {I.REQUESTED, I.DECLINED, I.CONFIRMED_RENTER, I.EXPIRED, I.RELEASED},
    # A requester may revive a closed request by asking again
    I.DECLINED: {I.REQUESTED},
    I.EXPIRED: {I.REQUESTED},
    I.RELEASED: {I.REQUESTED},
}

# Only the system closes interests this way
SYSTEM_ONLY_INTEREST_TARGETS: set[InterestStatus] = {I.EXPIRED, I.RELEASED}


class InterestStateMachine:
    """Validates listing-interest state transitions."""

    def validate_transition(
        self,
        current_status: InterestStatus,
        target_status: InterestStatus,
        actor: ActorType,
    ) -> bool:
        allowed = INTEREST_TRANSITION_MAP.get(current_status, set())
        if target_status not in allowed:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"This request cannot move from {current_status.value} to {target_status.value}",
            )
        if target_status in SYSTEM_ONLY_INTEREST_TARGETS and actor != A.SYSTEM:
            raise InvalidTransitionError(
                current_status,
                target_status,
                f"Actor {actor.value} is not permitted for this transition",
            )
        return True
