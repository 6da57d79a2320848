"""Fakes shared by the test modules."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from desk.notifications.channels import EmailOutcome, PushNotification, PushOutcome
from desk.notifications.directory import UserProfile
from desk.tickets.errors import PersistenceError
from desk.tickets.models import TicketComment, TicketSnapshot, TransitionRecord, WorkUpdate
from desk.tickets.state import ActorRole, TicketStatus

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryTicketRepository:
    """Mirrors the SQL repository's version check and history key."""

    def __init__(self) -> None:
        self.tickets: dict[str, TicketSnapshot] = {}
        self.comments: list[TicketComment] = []
        self.work_updates: list[WorkUpdate] = []
        self.saved_records: list[TransitionRecord] = []
        self.fail_next_save: Exception | None = None

    async def count_tickets(self) -> int:
        return len(self.tickets)

    async def create_ticket(self, snapshot: TicketSnapshot) -> None:
        if snapshot.id in self.tickets:
            raise PersistenceError(f"Ticket {snapshot.id} already exists")
        self.tickets[snapshot.id] = snapshot
        self.saved_records.extend(snapshot.history)

    async def save_transition(
        self, snapshot: TicketSnapshot, record: TransitionRecord, *, expected_version: int
    ) -> None:
        # Yield so concurrent writers can interleave here.
        await asyncio.sleep(0)
        if self.fail_next_save is not None:
            error, self.fail_next_save = self.fail_next_save, None
            raise error
        current = self.tickets.get(snapshot.id)
        if current is None or current.version != expected_version:
            raise PersistenceError(f"Ticket {snapshot.id} was modified concurrently; reload and retry")
        if record.sequence != current.version:
            raise PersistenceError("History position already taken")
        self.tickets[snapshot.id] = snapshot
        self.saved_records.append(record)

    async def save_rating(self, snapshot: TicketSnapshot, *, expected_version: int) -> None:
        await asyncio.sleep(0)
        current = self.tickets.get(snapshot.id)
        if current is None or current.version != expected_version:
            raise PersistenceError(f"Ticket {snapshot.id} was modified concurrently; reload and retry")
        self.tickets[snapshot.id] = snapshot

    async def get_ticket(self, ticket_id: str) -> TicketSnapshot | None:
        return self.tickets.get(ticket_id)

    async def list_tickets(
        self,
        *,
        owner_id: str | None = None,
        handler_id: str | None = None,
        status: TicketStatus | None = None,
    ) -> list[TicketSnapshot]:
        return [
            ticket
            for ticket in self.tickets.values()
            if (owner_id is None or ticket.owner_id == owner_id)
            and (handler_id is None or ticket.assigned_handler_id == handler_id)
            and (status is None or ticket.status is status)
        ]

    async def add_comment(self, comment: TicketComment) -> None:
        self.comments.append(comment)
        self._touch(comment.ticket_id, comment.created_at)

    async def add_work_update(self, work_update: WorkUpdate) -> None:
        self.work_updates.append(work_update)
        self._touch(work_update.ticket_id, work_update.created_at)

    async def list_comments(self, ticket_id: str) -> list[TicketComment]:
        return [item for item in self.comments if item.ticket_id == ticket_id]

    async def list_work_updates(self, ticket_id: str) -> list[WorkUpdate]:
        return [item for item in self.work_updates if item.ticket_id == ticket_id]

    def _touch(self, ticket_id: str, when: datetime) -> None:
        self.tickets[ticket_id] = replace(self.tickets[ticket_id], updated_at=when)


class RecordingAuditSink:
    def __init__(self, *, fail: bool = False) -> None:
        self.records: list[TransitionRecord] = []
        self.fail = fail

    async def append(self, record: TransitionRecord) -> None:
        if self.fail:
            raise RuntimeError("audit store offline")
        self.records.append(record)


class FakeDirectory:
    def __init__(self, *profiles: UserProfile) -> None:
        self.profiles = {profile.user_id: profile for profile in profiles}

    def add(self, profile: UserProfile) -> None:
        self.profiles[profile.user_id] = profile

    async def get(self, user_id: str) -> UserProfile | None:
        return self.profiles.get(user_id)

    async def list_active(self, role: ActorRole) -> list[UserProfile]:
        return [p for p in self.profiles.values() if p.role is role and p.is_active]


class FakeRealtime:
    def __init__(self) -> None:
        self.emitted: list[tuple[str, str, dict[str, Any]]] = []

    async def emit(self, user_id: str, event_name: str, payload: Mapping[str, Any]) -> bool:
        self.emitted.append((user_id, event_name, dict(payload)))
        return True


class FakePush:
    def __init__(self, outcomes: Mapping[str, PushOutcome] | None = None) -> None:
        self.outcomes = dict(outcomes or {})
        self.sent: list[tuple[str, PushNotification, dict[str, str]]] = []

    async def send(
        self, token: str, notification: PushNotification, data: Mapping[str, str]
    ) -> PushOutcome:
        self.sent.append((token, notification, dict(data)))
        return self.outcomes.get(token, PushOutcome.DELIVERED)


class FakeEmail:
    def __init__(self, outcomes: Mapping[str, EmailOutcome] | None = None) -> None:
        self.outcomes = dict(outcomes or {})
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, address: str, template_id: str, variables: Mapping[str, Any]) -> EmailOutcome:
        self.sent.append((address, template_id, dict(variables)))
        return self.outcomes.get(address, EmailOutcome.SENT)


def make_profile(
    user_id: str,
    role: ActorRole,
    *,
    online: bool = True,
    token: str | None = "default",
    email: str | None = "default",
    **kwargs: Any,
) -> UserProfile:
    return UserProfile(
        user_id=user_id,
        role=role,
        full_name=user_id.title(),
        email=f"{user_id}@example.com" if email == "default" else email,
        device_token=f"token-{user_id}" if token == "default" else token,
        has_active_session=online,
        **kwargs,
    )

