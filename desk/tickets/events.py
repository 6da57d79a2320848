"""Domain events emitted by the ticket aggregate and the bus that delivers them.

Events are published only after the change they describe has been committed.
Handlers run as background tasks so a slow or failing subscriber never blocks
or fails the operation that produced the event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, ClassVar

from .state import ActorRole, TicketCategory, TicketPriority, TicketStatus

logger = logging.getLogger(__name__)


def make_event_id(name: str, source_id: str) -> str:
    """Stable identity derived from the record that caused the event."""

    return f"{name}:{source_id}"


@dataclass(frozen=True, slots=True, kw_only=True)
class DomainEvent:
    """Base class shared by every ticket event."""

    name: ClassVar[str] = "ticket_event"

    event_id: str
    ticket_id: str
    ticket_number: str
    owner_id: str
    actor_id: str
    actor_role: ActorRole
    handler_id: str | None = None
    occurred_at: datetime

    @property
    def delivery_id(self) -> str:
        """Key the delivery ledger uses; events announcing the same change share it."""

        return self.event_id

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.name,
            "event_id": self.event_id,
            "ticket_id": self.ticket_id,
            "ticket_number": self.ticket_number,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role.value,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True, slots=True, kw_only=True)
class TicketCreated(DomainEvent):
    name: ClassVar[str] = "ticket_created"

    title: str
    priority: TicketPriority
    category: TicketCategory

    def to_payload(self) -> dict[str, Any]:
        payload = DomainEvent.to_payload(self)
        payload.update(title=self.title, priority=self.priority.value, category=self.category.value)
        return payload


@dataclass(frozen=True, slots=True, kw_only=True)
class TicketTransitioned(DomainEvent):
    name: ClassVar[str] = "ticket_transitioned"

    from_status: TicketStatus
    to_status: TicketStatus
    reason: str | None = None
    previous_handler_id: str | None = None
    record_id: str | None = None

    @property
    def delivery_id(self) -> str:
        # An assignment is announced once, whichever of the two events gets there first.
        if self.to_status is TicketStatus.ASSIGNED and self.record_id:
            return make_event_id(TicketAssigned.name, self.record_id)
        return self.event_id

    def to_payload(self) -> dict[str, Any]:
        payload = DomainEvent.to_payload(self)
        payload.update(
            old_status=self.from_status.value,
            new_status=self.to_status.value,
            reason=self.reason,
        )
        return payload


@dataclass(frozen=True, slots=True, kw_only=True)
class TicketAssigned(DomainEvent):
    name: ClassVar[str] = "ticket_assigned"

    previous_handler_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = DomainEvent.to_payload(self)
        payload.update(assigned_to=self.handler_id)
        return payload


@dataclass(frozen=True, slots=True, kw_only=True)
class CommentAdded(DomainEvent):
    name: ClassVar[str] = "comment_added"

    comment_id: str
    preview: str

    def to_payload(self) -> dict[str, Any]:
        payload = DomainEvent.to_payload(self)
        payload.update(comment_id=self.comment_id, comment_text=self.preview)
        return payload


@dataclass(frozen=True, slots=True, kw_only=True)
class WorkUpdateAdded(DomainEvent):
    name: ClassVar[str] = "work_update_added"

    work_update_id: str
    preview: str

    def to_payload(self) -> dict[str, Any]:
        payload = DomainEvent.to_payload(self)
        payload.update(work_update_id=self.work_update_id, update_description=self.preview)
        return payload


@dataclass(frozen=True, slots=True, kw_only=True)
class TicketRated(DomainEvent):
    name: ClassVar[str] = "ticket_rated"

    score: int
    feedback: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = DomainEvent.to_payload(self)
        payload.update(score=self.score, feedback=self.feedback)
        return payload


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """In-process publish/subscribe point for committed domain events."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []
        self._tasks: set[asyncio.Task[None]] = set()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: DomainEvent) -> None:
        loop = asyncio.get_running_loop()
        for handler in list(self._handlers):
            task = loop.create_task(self._deliver(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every handler scheduled so far, including ones they schedule."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def stream(self) -> AsyncIterator[DomainEvent]:
        queue: asyncio.Queue[DomainEvent] = asyncio.Queue()

        async def enqueue(event: DomainEvent) -> None:
            queue.put_nowait(event)

        unsubscribe = self.subscribe(enqueue)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    @staticmethod
    async def _deliver(handler: EventHandler, event: DomainEvent) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Event handler %r failed for %s (%s)", handler, event.name, event.event_id
            )
