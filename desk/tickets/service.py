"""Orchestration of ticket operations: load, decide, commit, audit, publish."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence
from weakref import WeakValueDictionary

from opentelemetry import trace

from desk.metrics import MetricsRegistry, metrics_registry
from desk.metrics.definitions import (
    AUDIT_SINK_FAILURES,
    TICKET_SLA_BREACHES,
    TICKET_TRANSITION_DENIALS,
    TICKET_TRANSITIONS,
)

from .aggregate import TicketAggregate, TicketOperationDenied
from .audit import AuditSink, LoggingAuditSink
from .errors import TicketNotFoundError, TransitionError
from .events import EventBus
from .models import TicketComment, TicketSnapshot, TransitionRecord, WorkUpdate, format_ticket_number
from .repository import TicketRepository
from .sla import SLATracker
from .state import ActorRole, TicketCategory, TicketPriority, TicketStatus
from .validator import DenialKind, TransitionDecision, TransitionValidator

if TYPE_CHECKING:
    from desk.notifications.directory import UserDirectory, UserProfile

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    """High level entry point for every ticket operation.

    Writes to one ticket are serialised through a per-ticket lock, and the
    repository's version check rejects writers from other processes that
    raced us. Audit records and domain events are emitted only after the
    repository has committed, and neither can fail the operation.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        event_bus: EventBus | None = None,
        audit_sink: AuditSink | None = None,
        validator: TransitionValidator | None = None,
        sla: SLATracker | None = None,
        metrics: MetricsRegistry | None = None,
        ticket_number_prefix: str = "APT",
        clock: Callable[[], datetime] | None = None,
        directory: UserDirectory | None = None,
    ) -> None:
        self._repository = repository
        self._event_bus = event_bus or EventBus()
        self._audit_sink = audit_sink or LoggingAuditSink()
        self._validator = validator or TransitionValidator()
        self._sla = sla or SLATracker()
        self._metrics = metrics or metrics_registry
        self._ticket_number_prefix = ticket_number_prefix
        self._clock = clock or _utcnow
        self._directory = directory
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()
        self._numbering_lock = asyncio.Lock()

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def _lock_for(self, ticket_id: str) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ticket_id] = lock
        return lock

    async def create_ticket(
        self,
        *,
        owner_id: str,
        title: str,
        description: str,
        priority: TicketPriority | str = TicketPriority.MEDIUM,
        category: TicketCategory | str = TicketCategory.OTHER,
        metadata: Mapping[str, Any] | None = None,
    ) -> TicketSnapshot:
        with tracer.start_as_current_span("ticket.create") as span:
            async with self._numbering_lock:
                now = self._clock()
                sequence = await self._repository.count_tickets() + 1
                aggregate = TicketAggregate.create(
                    owner_id=owner_id,
                    priority=priority,
                    category=category,
                    title=title,
                    description=description,
                    ticket_number=format_ticket_number(self._ticket_number_prefix, now, sequence),
                    metadata=metadata,
                    now=now,
                    validator=self._validator,
                    sla=self._sla,
                )
                snapshot = aggregate.snapshot()
                await self._repository.create_ticket(snapshot)

            span.set_attribute("ticket.id", snapshot.id)
            span.set_attribute("ticket.priority", snapshot.priority.value)
            logger.info(
                "Ticket %s (%s) created by %s with priority %s",
                snapshot.ticket_number,
                snapshot.id,
                owner_id,
                snapshot.priority.value,
            )
            self._metrics.counter(TICKET_TRANSITIONS).inc(labels={"to_status": TicketStatus.OPEN.value})
            await self._append_audit(snapshot.history[0])
            self._publish(aggregate)
            return snapshot

    async def request_transition(
        self,
        ticket_id: str,
        to_status: TicketStatus | str,
        actor_id: str,
        actor_role: ActorRole | str,
        reason: str | None = None,
        *,
        handler_id: str | None = None,
        audit_meta: Mapping[str, Any] | None = None,
    ) -> TicketSnapshot:
        """Validate and commit one status change, raising :class:`TransitionError` if refused."""

        to_status = TicketStatus(to_status)
        actor_role = ActorRole(actor_role)
        with tracer.start_as_current_span("ticket.transition") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.to_status", to_status.value)
            span.set_attribute("actor.role", actor_role.value)

            # The assignee is looked up before the ticket lock is taken.
            handler_check = bool(handler_id) and to_status is TicketStatus.ASSIGNED and self._directory is not None
            handler: UserProfile | None = None
            if handler_check:
                handler = await self._directory.get(handler_id)

            async with self._lock_for(ticket_id):
                current = await self._load(ticket_id)
                aggregate = TicketAggregate(current, validator=self._validator, sla=self._sla)
                result = aggregate.request_transition(
                    to_status,
                    actor_id,
                    actor_role,
                    reason=reason,
                    handler_id=handler_id,
                    audit_meta=audit_meta,
                    now=self._clock(),
                )
                if not result.decision.allowed:
                    span.set_attribute("ticket.denied", result.decision.kind.value)
                    raise self._denied(ticket_id, actor_id, result.decision)
                if handler_check and not _can_handle(handler):
                    span.set_attribute("ticket.denied", DenialKind.HANDLER_UNAVAILABLE.value)
                    raise self._denied(
                        ticket_id,
                        actor_id,
                        TransitionDecision.deny(DenialKind.HANDLER_UNAVAILABLE, "Staff not found or inactive"),
                    )
                updated = aggregate.snapshot()
                await self._repository.save_transition(
                    updated, result.record, expected_version=current.version
                )

            logger.info(
                "Ticket %s moved %s -> %s by %s (%s)",
                updated.ticket_number,
                current.status.value,
                updated.status.value,
                actor_id,
                actor_role.value,
            )
            self._metrics.counter(TICKET_TRANSITIONS).inc(labels={"to_status": to_status.value})
            if to_status is TicketStatus.RESOLVED and updated.sla_breached:
                logger.warning(
                    "Ticket %s resolved after its SLA deadline (%s h)",
                    updated.ticket_number,
                    updated.resolution_hours,
                )
                self._metrics.counter(TICKET_SLA_BREACHES).inc(
                    labels={"priority": updated.priority.value}
                )
            await self._append_audit(result.record)
            self._publish(aggregate)
            return updated

    async def assign_handler(
        self,
        ticket_id: str,
        handler_id: str,
        actor_id: str,
        actor_role: ActorRole | str = ActorRole.ADMIN,
        reason: str | None = None,
    ) -> TicketSnapshot:
        return await self.request_transition(
            ticket_id,
            TicketStatus.ASSIGNED,
            actor_id,
            actor_role,
            reason,
            handler_id=handler_id,
        )

    async def rate_ticket(
        self,
        ticket_id: str,
        *,
        actor_id: str,
        actor_role: ActorRole | str,
        score: int,
        feedback: str | None = None,
    ) -> TicketSnapshot:
        """Store the owner's rating of a resolved ticket and notify its handler."""

        with tracer.start_as_current_span("ticket.rate") as span:
            span.set_attribute("ticket.id", ticket_id)
            async with self._lock_for(ticket_id):
                current = await self._load(ticket_id)
                aggregate = TicketAggregate(current, validator=self._validator, sla=self._sla)
                try:
                    aggregate.rate(actor_id, actor_role, score, feedback, now=self._clock())
                except TicketOperationDenied as exc:
                    span.set_attribute("ticket.denied", exc.decision.kind.value)
                    raise self._denied(ticket_id, actor_id, exc.decision) from None
                updated = aggregate.snapshot()
                await self._repository.save_rating(updated, expected_version=current.version)

        logger.info("Ticket %s rated %d/5 by %s", updated.ticket_number, score, actor_id)
        self._publish(aggregate)
        return updated

    async def add_comment(
        self, ticket_id: str, *, author_id: str, author_role: ActorRole | str, text: str
    ) -> TicketComment:
        async with self._lock_for(ticket_id):
            aggregate = TicketAggregate(await self._load(ticket_id), validator=self._validator, sla=self._sla)
            try:
                comment = aggregate.add_comment(author_id, author_role, text, now=self._clock())
            except TicketOperationDenied as exc:
                raise self._denied(ticket_id, author_id, exc.decision) from None
            await self._repository.add_comment(comment)
        logger.info("Comment %s added to ticket %s by %s", comment.id, ticket_id, author_id)
        self._publish(aggregate)
        return comment

    async def add_work_update(
        self, ticket_id: str, *, actor_id: str, actor_role: ActorRole | str, description: str
    ) -> WorkUpdate:
        async with self._lock_for(ticket_id):
            aggregate = TicketAggregate(await self._load(ticket_id), validator=self._validator, sla=self._sla)
            try:
                update = aggregate.add_work_update(actor_id, actor_role, description, now=self._clock())
            except TicketOperationDenied as exc:
                raise self._denied(ticket_id, actor_id, exc.decision) from None
            await self._repository.add_work_update(update)
        logger.info("Work update %s added to ticket %s by %s", update.id, ticket_id, actor_id)
        self._publish(aggregate)
        return update

    async def get_ticket(
        self,
        ticket_id: str,
        *,
        actor_id: str | None = None,
        actor_role: ActorRole | str | None = None,
    ) -> TicketSnapshot:
        snapshot = await self._load(ticket_id)
        if actor_role is not None and ActorRole(actor_role) is ActorRole.RESIDENT and actor_id != snapshot.owner_id:
            raise TransitionError(DenialKind.NOT_OWN_COMPLAINT, "You can only view your own tickets")
        return snapshot

    async def list_tickets(
        self,
        *,
        actor_id: str | None = None,
        actor_role: ActorRole | str | None = None,
        status: TicketStatus | str | None = None,
    ) -> Sequence[TicketSnapshot]:
        status = TicketStatus(status) if status is not None else None
        role = ActorRole(actor_role) if actor_role is not None else None
        if role is ActorRole.RESIDENT:
            return await self._repository.list_tickets(owner_id=actor_id, status=status)
        if role is ActorRole.STAFF:
            return await self._repository.list_tickets(handler_id=actor_id, status=status)
        return await self._repository.list_tickets(status=status)

    async def list_comments(self, ticket_id: str) -> Sequence[TicketComment]:
        await self._load(ticket_id)
        return await self._repository.list_comments(ticket_id)

    async def list_work_updates(self, ticket_id: str) -> Sequence[WorkUpdate]:
        await self._load(ticket_id)
        return await self._repository.list_work_updates(ticket_id)

    async def allowed_transitions(
        self, ticket_id: str, *, actor_id: str, actor_role: ActorRole | str
    ) -> list[TicketStatus]:
        aggregate = TicketAggregate(await self._load(ticket_id), validator=self._validator, sla=self._sla)
        return aggregate.allowed_targets(actor_id, actor_role, now=self._clock())

    async def _load(self, ticket_id: str) -> TicketSnapshot:
        snapshot = await self._repository.get_ticket(ticket_id)
        if snapshot is None:
            self._metrics.counter(TICKET_TRANSITION_DENIALS).inc(
                labels={"kind": DenialKind.TICKET_NOT_FOUND.value}
            )
            raise TicketNotFoundError(ticket_id)
        return snapshot

    def _denied(self, ticket_id: str, actor_id: str, decision: TransitionDecision) -> TransitionError:
        logger.info(
            "Ticket %s: request by %s refused (%s): %s",
            ticket_id,
            actor_id,
            decision.kind.value,
            decision.message,
        )
        self._metrics.counter(TICKET_TRANSITION_DENIALS).inc(labels={"kind": decision.kind.value})
        return TransitionError.from_decision(decision)

    async def _append_audit(self, record: TransitionRecord) -> None:
        try:
            await self._audit_sink.append(record)
        except Exception:
            self._metrics.counter(AUDIT_SINK_FAILURES).inc()
            logger.exception(
                "Audit sink failed for ticket %s record %s", record.ticket_id, record.id
            )

    def _publish(self, aggregate: TicketAggregate) -> None:
        for event in aggregate.pull_events():
            self._event_bus.publish(event)


def _can_handle(profile: UserProfile | None) -> bool:
    return profile is not None and profile.is_active and profile.role is ActorRole.STAFF
