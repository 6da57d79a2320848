from datetime import timedelta

import pytest

from desk.tickets.sla import SLATracker
from desk.tickets.state import TicketPriority

from helpers import T0


@pytest.mark.parametrize(
    ("priority", "hours"),
    [
        (TicketPriority.EMERGENCY, 2),
        (TicketPriority.HIGH, 24),
        (TicketPriority.MEDIUM, 72),
        (TicketPriority.LOW, 168),
    ],
)
def test_deadline_per_priority(priority, hours):
    tracker = SLATracker()
    assert tracker.hours_for(priority) == hours
    assert tracker.deadline_for(priority, T0) == T0 + timedelta(hours=hours)


def test_priority_accepts_plain_strings():
    assert SLATracker().deadline_for("High", T0) == T0 + timedelta(hours=24)


def test_custom_hours_override_defaults():
    tracker = SLATracker({TicketPriority.HIGH: 4})
    assert tracker.deadline_for(TicketPriority.HIGH, T0) == T0 + timedelta(hours=4)
    with pytest.raises(KeyError):
        tracker.hours_for(TicketPriority.LOW)


def test_breach_only_after_deadline():
    deadline = T0 + timedelta(hours=24)
    assert not SLATracker.on_resolved(deadline, deadline)
    assert SLATracker.on_resolved(deadline, deadline + timedelta(seconds=1))


def test_resolution_hours_rounded_to_one_decimal():
    resolved_at = T0 + timedelta(hours=30, minutes=8)
    assert SLATracker.resolution_hours(T0, resolved_at) == 30.1


def test_time_remaining_and_overdue():
    deadline = T0 + timedelta(hours=2)
    now = T0 + timedelta(hours=3)

    assert SLATracker.time_remaining(deadline, now) == timedelta(hours=-1)
    assert SLATracker.is_overdue(deadline, now)
    assert not SLATracker.is_overdue(deadline, T0)
