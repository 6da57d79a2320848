from __future__ import annotations

import pytest

from desk.metrics import MetricsRegistry, register_default_metrics
from desk.tickets.events import EventBus
from desk.tickets.service import TicketService
from desk.tickets.state import ActorRole

from helpers import FakeClock, FakeDirectory, InMemoryTicketRepository, RecordingAuditSink, make_profile


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory(
        make_profile("resident-1", ActorRole.RESIDENT),
        make_profile("resident-2", ActorRole.RESIDENT),
        make_profile("staff-1", ActorRole.STAFF),
        make_profile("staff-2", ActorRole.STAFF),
        make_profile("staff-retired", ActorRole.STAFF, is_active=False),
        make_profile("admin-1", ActorRole.ADMIN),
    )


@pytest.fixture
def ticket_service(repository, audit_sink, event_bus, metrics, clock, directory) -> TicketService:
    return TicketService(
        repository,
        event_bus=event_bus,
        audit_sink=audit_sink,
        metrics=metrics,
        clock=clock,
        directory=directory,
    )
