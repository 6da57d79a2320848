from __future__ import annotations

from datetime import timedelta

import pytest

from desk.notifications.dispatcher import ChannelKind, DeliveryOutcome, NotificationDispatcher
from desk.tickets.events import DomainEvent
from desk.tickets.service import TicketService
from desk.tickets.state import ActorRole, TicketPriority, TicketStatus

from helpers import T0, FakeDirectory, FakeEmail, FakePush, FakeRealtime, make_profile


@pytest.mark.asyncio
async def test_high_priority_ticket_lifecycle(repository, audit_sink, event_bus, metrics, clock):
    directory = FakeDirectory(
        make_profile("resident-1", ActorRole.RESIDENT),
        make_profile("staff-1", ActorRole.STAFF),
        make_profile("admin-1", ActorRole.ADMIN),
    )
    realtime = FakeRealtime()
    dispatcher = NotificationDispatcher(
        directory, realtime=realtime, push=FakePush(), email=FakeEmail(), metrics=metrics
    )
    reports = []

    async def record(event: DomainEvent) -> None:
        reports.append(await dispatcher.dispatch(event))

    event_bus.subscribe(record)
    service = TicketService(
        repository,
        event_bus=event_bus,
        audit_sink=audit_sink,
        metrics=metrics,
        clock=clock,
        directory=directory,
    )

    ticket = await service.create_ticket(
        owner_id="resident-1",
        title="No hot water",
        description="Boiler shows an error code",
        priority=TicketPriority.HIGH,
        category="Plumbing",
    )
    assert ticket.sla_deadline == T0 + timedelta(hours=24)

    clock.advance(hours=1)
    await service.assign_handler(ticket.id, "staff-1", "admin-1")
    await event_bus.drain()
    assignment = next(r for r in reports if r.event_name == "ticket_assigned")
    assert sorted(assignment.recipients) == ["resident-1", "staff-1"]
    emitted = [(user, name) for user, name, _ in realtime.emitted]
    assert emitted.count(("staff-1", "ticket_assigned_to_you")) == 1
    assert emitted.count(("resident-1", "ticket_assigned")) == 1

    clock.advance(hours=1)
    await service.request_transition(ticket.id, TicketStatus.IN_PROGRESS, "staff-1", ActorRole.STAFF)

    clock.now = T0 + timedelta(hours=30)
    resolved = await service.request_transition(ticket.id, TicketStatus.RESOLVED, "staff-1", ActorRole.STAFF)
    assert resolved.sla_breached is True
    assert resolved.resolution_hours == pytest.approx(30.0)

    rated = await service.rate_ticket(
        ticket.id, actor_id="resident-1", actor_role=ActorRole.RESIDENT, score=4, feedback="Sorted in the end"
    )
    assert rated.rating.score == 4
    assert rated.version == resolved.version

    clock.advance(hours=2)
    closed = await service.request_transition(ticket.id, TicketStatus.CLOSED, "resident-1", ActorRole.RESIDENT)
    assert closed.status is TicketStatus.CLOSED

    clock.advance(days=3)
    reopened = await service.request_transition(
        ticket.id, TicketStatus.REOPENED, "resident-1", ActorRole.RESIDENT, "Boiler failed again"
    )
    assert reopened.reopen_count == 1
    assert reopened.resolved_at is None
    assert reopened.resolution_hours is None
    assert reopened.sla_breached is False
    assert [r.sequence for r in reopened.history] == [0, 1, 2, 3, 4, 5]
    assert len(audit_sink.records) == 6

    await event_bus.drain()
    created = next(r for r in reports if r.event_name == "ticket_created")
    assert created.recipients == ["admin-1"]
    resolved_reports = [r for r in reports if r.event_id.endswith(resolved.last_transition.id)]
    resolved_report = next(r for r in resolved_reports if r.event_name == "ticket_transitioned")
    assert sorted(resolved_report.recipients) == ["admin-1", "resident-1", "staff-1"]
    assert resolved_report.outcome_for("resident-1", ChannelKind.EMAIL) is DeliveryOutcome.SENT

    rating_report = next(r for r in reports if r.event_name == "ticket_rated")
    assert rating_report.recipients == ["staff-1"]
    assert ("staff-1", "complaint_rated") in [(user, name) for user, name, _ in realtime.emitted]
