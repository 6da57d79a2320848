from __future__ import annotations

from datetime import datetime, timedelta
from typing import Mapping

from .state import TicketPriority


class SLATracker:
    """Priority based resolution deadlines and breach bookkeeping."""

    _DEFAULT_HOURS: Mapping[TicketPriority, int] = {
        TicketPriority.EMERGENCY: 2,
        TicketPriority.HIGH: 24,
        TicketPriority.MEDIUM: 72,
        TicketPriority.LOW: 168,
    }

    def __init__(self, hours: Mapping[TicketPriority, int] | None = None) -> None:
        self._hours = dict(hours or self._DEFAULT_HOURS)

    def hours_for(self, priority: TicketPriority | str) -> int:
        return self._hours[TicketPriority(priority)]

    def deadline_for(self, priority: TicketPriority | str, created_at: datetime) -> datetime:
        return created_at + timedelta(hours=self.hours_for(priority))

    @staticmethod
    def on_resolved(deadline: datetime, resolved_at: datetime) -> bool:
        """Return whether resolving at ``resolved_at`` breached ``deadline``."""

        return resolved_at > deadline

    @staticmethod
    def resolution_hours(created_at: datetime, resolved_at: datetime) -> float:
        elapsed = (resolved_at - created_at).total_seconds() / 3600.0
        return round(elapsed, 1)

    @staticmethod
    def time_remaining(deadline: datetime, now: datetime) -> timedelta:
        return deadline - now

    @staticmethod
    def is_overdue(deadline: datetime, now: datetime) -> bool:
        return now > deadline
