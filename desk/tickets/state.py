from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


class TicketStatus(str, Enum):
    """Canonical states of the complaint lifecycle."""

    OPEN = "Open"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"
    REOPENED = "Reopened"


# The SLA clock runs while a ticket is in one of these states.
ACTIVE_STATUSES = frozenset(
    {TicketStatus.OPEN, TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.REOPENED}
)


class TicketPriority(str, Enum):
    """Priority chosen by the resident when the ticket is raised."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    EMERGENCY = "Emergency"


class TicketCategory(str, Enum):
    ELECTRICAL = "Electrical"
    PLUMBING = "Plumbing"
    CARPENTRY = "Carpentry"
    PAINTING = "Painting"
    CLEANING = "Cleaning"
    SECURITY = "Security"
    ELEVATOR = "Elevator"
    COMMON_AREA = "Common Area"
    OTHER = "Other"


class ActorRole(str, Enum):
    """Account roles acting on tickets.

    ``RESIDENT`` acts as the ticket owner, ``STAFF`` as the assigned handler and
    ``ADMIN`` as oversight.
    """

    RESIDENT = "resident"
    STAFF = "staff"
    ADMIN = "admin"


class TicketStateMachine:
    """Base transition table, independent of who is asking."""

    _DEFAULT_TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.OPEN: (TicketStatus.ASSIGNED, TicketStatus.CANCELLED),
        TicketStatus.ASSIGNED: (TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED, TicketStatus.OPEN),
        TicketStatus.IN_PROGRESS: (TicketStatus.RESOLVED, TicketStatus.CANCELLED),
        TicketStatus.RESOLVED: (TicketStatus.CLOSED, TicketStatus.REOPENED),
        TicketStatus.CLOSED: (TicketStatus.REOPENED,),
        TicketStatus.REOPENED: (TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED),
        TicketStatus.CANCELLED: (),
    }

    # Forward path through the workflow; used to tell a skipped step apart from
    # a plainly invalid request.
    _WORKFLOW_ORDER: Sequence[TicketStatus] = (
        TicketStatus.OPEN,
        TicketStatus.ASSIGNED,
        TicketStatus.IN_PROGRESS,
        TicketStatus.RESOLVED,
        TicketStatus.CLOSED,
    )

    def __init__(self, transitions: Mapping[TicketStatus, Sequence[TicketStatus]] | None = None) -> None:
        self._transitions = transitions or self._DEFAULT_TRANSITIONS

    @staticmethod
    def initial_state() -> TicketStatus:
        return TicketStatus.OPEN

    def allowed_targets(self, current: TicketStatus) -> tuple[TicketStatus, ...]:
        return tuple(self._transitions.get(current, ()))

    def can_transition(self, current: TicketStatus, target: TicketStatus) -> bool:
        return target in self._transitions.get(current, ())

    def is_terminal(self, status: TicketStatus) -> bool:
        return not self._transitions.get(status, ())

    def skips_forward(self, current: TicketStatus, target: TicketStatus) -> bool:
        """Return True when ``target`` lies more than one step ahead of ``current``."""

        origin = TicketStatus.OPEN if current == TicketStatus.REOPENED else current
        if origin not in self._WORKFLOW_ORDER or target not in self._WORKFLOW_ORDER:
            return False
        return self._WORKFLOW_ORDER.index(target) > self._WORKFLOW_ORDER.index(origin) + 1
