from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from .sla import SLATracker
from .state import ACTIVE_STATUSES, ActorRole, TicketCategory, TicketPriority, TicketStatus

RATING_MIN = 1
RATING_MAX = 5


def _freeze(metadata: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(metadata or {}))


@dataclass(frozen=True, slots=True)
class TransitionRecord:
    """Immutable history entry describing one status change."""

    id: str
    ticket_id: str
    sequence: int
    from_status: TicketStatus | None
    to_status: TicketStatus
    actor_id: str
    actor_role: ActorRole
    reason: str | None
    created_at: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _freeze(self.metadata))


@dataclass(frozen=True, slots=True)
class TicketRating:
    """Resident's score for the work done on a resolved ticket."""

    score: int
    feedback: str | None
    rated_by: str
    rated_at: datetime


@dataclass(frozen=True, slots=True)
class TicketSnapshot:
    """Read-only view of a ticket aggregate at a point in time."""

    id: str
    ticket_number: str
    title: str
    description: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    owner_id: str
    assigned_handler_id: str | None
    assigned_at: datetime | None
    history: tuple[TransitionRecord, ...]
    sla_deadline: datetime
    sla_breached: bool
    resolution_hours: float | None
    reopen_count: int
    resolved_at: datetime | None
    closed_at: datetime | None
    cancelled_at: datetime | None
    reopened_at: datetime | None
    created_at: datetime
    updated_at: datetime
    rating: TicketRating | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    @property
    def version(self) -> int:
        return len(self.history)

    @property
    def last_transition(self) -> TransitionRecord:
        return self.history[-1]

    def is_overdue(self, now: datetime) -> bool:
        """True while the ticket is still being worked on past its SLA deadline."""

        return self.status in ACTIVE_STATUSES and SLATracker.is_overdue(self.sla_deadline, now)

    def sla_hours_remaining(self, now: datetime) -> float | None:
        if self.status not in ACTIVE_STATUSES:
            return None
        return round(SLATracker.time_remaining(self.sla_deadline, now).total_seconds() / 3600.0, 1)


@dataclass(frozen=True, slots=True)
class TicketComment:
    """Comment posted on a ticket by any participant."""

    id: str
    ticket_id: str
    author_id: str
    author_role: ActorRole
    text: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class WorkUpdate:
    """Progress note posted by the assigned handler."""

    id: str
    ticket_id: str
    author_id: str
    description: str
    created_at: datetime


def format_ticket_number(prefix: str, created_at: datetime, sequence: int) -> str:
    """Build a human readable number such as ``APT-482913-0042``."""

    millis = str(int(created_at.timestamp() * 1000))[-6:]
    return f"{prefix}-{millis}-{sequence:04d}"
