"""Role-aware validation of ticket status transitions.

The validator is a pure decision function: it never touches storage and never
raises for business-rule violations. Callers receive a
:class:`TransitionDecision` that either allows the request or names the rule
that was broken.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .state import ActorRole, TicketStateMachine, TicketStatus


class DenialKind(str, Enum):
    """Specific reasons a ticket operation can be refused."""

    INVALID_TRANSITION = "InvalidTransition"
    FORBIDDEN_FOR_ROLE = "ForbiddenForRole"
    NOT_OWN_COMPLAINT = "NotOwnComplaint"
    NOT_ASSIGNED_TO_ACTOR = "NotAssignedToActor"
    REASON_REQUIRED = "ReasonRequired"
    REOPEN_WINDOW_EXPIRED = "ReopenWindowExpired"
    SKIP_STATE_NOT_ALLOWED = "SkipStateNotAllowed"
    HANDLER_UNAVAILABLE = "HandlerUnavailable"
    RATING_NOT_ALLOWED = "RatingNotAllowed"
    TICKET_NOT_FOUND = "TicketNotFound"
    PERSISTENCE_ERROR = "PersistenceError"


@dataclass(frozen=True, slots=True)
class TransitionContext:
    """Facts about the actor and ticket that the role rules depend on."""

    is_owner: bool = False
    is_assigned_handler: bool = False
    has_reason: bool = False
    days_since_resolution: float | None = None


@dataclass(frozen=True, slots=True)
class TransitionDecision:
    """Outcome of a validation: allowed, or denied with a specific kind."""

    allowed: bool
    kind: DenialKind | None = None
    message: str = ""

    @classmethod
    def allow(cls) -> "TransitionDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, kind: DenialKind, message: str) -> "TransitionDecision":
        return cls(allowed=False, kind=kind, message=message)

    def __bool__(self) -> bool:
        return self.allowed


_RESIDENT_FORBIDDEN = frozenset(
    {TicketStatus.OPEN, TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED}
)
_RESIDENT_CANCELLABLE_FROM = frozenset({TicketStatus.OPEN, TicketStatus.ASSIGNED})
_RESIDENT_CLOSABLE_FROM = frozenset({TicketStatus.RESOLVED})
_RESIDENT_REOPENABLE_FROM = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})
_RESIDENT_REASON_REQUIRED = frozenset({TicketStatus.CANCELLED, TicketStatus.REOPENED})

_STAFF_ALLOWED = frozenset({TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED})

_ADMIN_ALLOWED = frozenset(
    {
        TicketStatus.OPEN,
        TicketStatus.ASSIGNED,
        TicketStatus.IN_PROGRESS,
        TicketStatus.RESOLVED,
        TicketStatus.CLOSED,
        TicketStatus.CANCELLED,
        TicketStatus.REOPENED,
    }
)
_ADMIN_REASON_REQUIRED = frozenset({TicketStatus.CANCELLED, TicketStatus.CLOSED, TicketStatus.REOPENED})

_VERBS = {
    TicketStatus.CANCELLED: "cancel",
    TicketStatus.CLOSED: "close",
    TicketStatus.REOPENED: "reopen",
}


class TransitionValidator:
    """Apply the base transition table and the per-role rules layered on top."""

    DEFAULT_REOPEN_WINDOW_DAYS = 7.0

    def __init__(
        self,
        *,
        reopen_window_days: float = DEFAULT_REOPEN_WINDOW_DAYS,
        state_machine: TicketStateMachine | None = None,
    ) -> None:
        self._reopen_window_days = float(reopen_window_days)
        self._state_machine = state_machine or TicketStateMachine()

    @property
    def reopen_window_days(self) -> float:
        return self._reopen_window_days

    def validate(
        self,
        current: TicketStatus | str,
        requested: TicketStatus | str,
        role: ActorRole | str,
        ctx: TransitionContext,
    ) -> TransitionDecision:
        current = TicketStatus(current)
        requested = TicketStatus(requested)
        role = ActorRole(role)

        if not self._state_machine.can_transition(current, requested):
            if role is ActorRole.ADMIN and self._state_machine.skips_forward(current, requested):
                return TransitionDecision.deny(
                    DenialKind.SKIP_STATE_NOT_ALLOWED,
                    f"Cannot skip intermediate states going from {current.value} to {requested.value}",
                )
            return TransitionDecision.deny(
                DenialKind.INVALID_TRANSITION,
                f"Cannot transition from {current.value} to {requested.value}",
            )

        if role is ActorRole.RESIDENT:
            return self._validate_resident(current, requested, ctx)
        if role is ActorRole.STAFF:
            return self._validate_staff(requested, ctx)
        return self._validate_admin(requested, ctx)

    def allowed_targets(
        self, current: TicketStatus | str, role: ActorRole | str, ctx: TransitionContext
    ) -> list[TicketStatus]:
        """List the statuses ``role`` could request right now.

        The reason requirement is ignored here since the caller has not
        written one yet.
        """

        current = TicketStatus(current)
        relaxed = TransitionContext(
            is_owner=ctx.is_owner,
            is_assigned_handler=ctx.is_assigned_handler,
            has_reason=True,
            days_since_resolution=ctx.days_since_resolution,
        )
        return [
            target
            for target in self._state_machine.allowed_targets(current)
            if self.validate(current, target, role, relaxed).allowed
        ]

    def _validate_resident(
        self, current: TicketStatus, requested: TicketStatus, ctx: TransitionContext
    ) -> TransitionDecision:
        if not ctx.is_owner:
            return TransitionDecision.deny(
                DenialKind.NOT_OWN_COMPLAINT, "Residents can only modify their own complaints"
            )
        if requested in _RESIDENT_FORBIDDEN:
            return TransitionDecision.deny(
                DenialKind.FORBIDDEN_FOR_ROLE, f"Residents cannot set status to {requested.value}"
            )
        if requested is TicketStatus.CANCELLED and current not in _RESIDENT_CANCELLABLE_FROM:
            return TransitionDecision.deny(
                DenialKind.FORBIDDEN_FOR_ROLE,
                f"Residents can only cancel Open or Assigned complaints, not {current.value}",
            )
        if requested is TicketStatus.CLOSED and current not in _RESIDENT_CLOSABLE_FROM:
            return TransitionDecision.deny(
                DenialKind.FORBIDDEN_FOR_ROLE, "Residents can only close Resolved complaints"
            )
        if requested is TicketStatus.REOPENED:
            if current not in _RESIDENT_REOPENABLE_FROM:
                return TransitionDecision.deny(
                    DenialKind.FORBIDDEN_FOR_ROLE,
                    "Residents can only reopen Resolved or Closed complaints",
                )
            elapsed = ctx.days_since_resolution
            if elapsed is not None and elapsed > self._reopen_window_days:
                return TransitionDecision.deny(
                    DenialKind.REOPEN_WINDOW_EXPIRED,
                    "Complaints can only be reopened within "
                    f"{self._reopen_window_days:g} days of resolution",
                )
        if requested in _RESIDENT_REASON_REQUIRED and not ctx.has_reason:
            return _reason_required(requested)
        return TransitionDecision.allow()

    @staticmethod
    def _validate_staff(requested: TicketStatus, ctx: TransitionContext) -> TransitionDecision:
        if not ctx.is_assigned_handler:
            return TransitionDecision.deny(
                DenialKind.NOT_ASSIGNED_TO_ACTOR, "Staff can only update tickets assigned to them"
            )
        if requested not in _STAFF_ALLOWED:
            return TransitionDecision.deny(
                DenialKind.FORBIDDEN_FOR_ROLE, f"Staff cannot set status to {requested.value}"
            )
        return TransitionDecision.allow()

    @staticmethod
    def _validate_admin(requested: TicketStatus, ctx: TransitionContext) -> TransitionDecision:
        if requested not in _ADMIN_ALLOWED:
            return TransitionDecision.deny(
                DenialKind.FORBIDDEN_FOR_ROLE, f"Admin cannot set status to {requested.value}"
            )
        if requested in _ADMIN_REASON_REQUIRED and not ctx.has_reason:
            return _reason_required(requested)
        return TransitionDecision.allow()


def _reason_required(requested: TicketStatus) -> TransitionDecision:
    verb = _VERBS.get(requested, f"set {requested.value} on")
    return TransitionDecision.deny(
        DenialKind.REASON_REQUIRED, f"A reason is required to {verb} this ticket"
    )
