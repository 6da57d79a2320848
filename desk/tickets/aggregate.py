"""Ticket aggregate: the single owner of a ticket's mutable state.

Every status change goes through :meth:`TicketAggregate.request_transition`,
which validates the request, appends exactly one history record, applies the
status specific side effects and queues the domain events describing the
change. Queued events are released with :meth:`TicketAggregate.pull_events`
once the caller has durably committed the new state.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Mapping

from .events import (
    CommentAdded,
    DomainEvent,
    TicketAssigned,
    TicketCreated,
    TicketRated,
    TicketTransitioned,
    WorkUpdateAdded,
    make_event_id,
)
from .models import (
    RATING_MAX,
    RATING_MIN,
    TicketComment,
    TicketRating,
    TicketSnapshot,
    TransitionRecord,
    WorkUpdate,
)
from .sla import SLATracker
from .state import ActorRole, TicketCategory, TicketPriority, TicketStatus
from .validator import DenialKind, TransitionContext, TransitionDecision, TransitionValidator

COMMENT_MAX_LENGTH = 1000
_PREVIEW_LENGTH = 100


class TicketOperationDenied(Exception):
    """Raised by non-transition operations (comments, work updates) that are refused."""

    def __init__(self, decision: TransitionDecision) -> None:
        super().__init__(decision.message)
        self.decision = decision


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class TransitionResult:
    """Decision plus the record appended when the transition was allowed."""

    decision: TransitionDecision
    record: TransitionRecord | None = None


class TicketAggregate:
    """Mutable ticket state with an append-only transition history."""

    def __init__(
        self,
        snapshot: TicketSnapshot,
        *,
        validator: TransitionValidator | None = None,
        sla: SLATracker | None = None,
    ) -> None:
        if not snapshot.history:
            raise ValueError("A ticket cannot exist without history")
        self._validator = validator or TransitionValidator()
        self._sla = sla or SLATracker()
        self._state = snapshot
        self._history: list[TransitionRecord] = list(snapshot.history)
        self._pending: list[DomainEvent] = []

    @classmethod
    def create(
        cls,
        *,
        owner_id: str,
        priority: TicketPriority | str,
        title: str,
        description: str,
        ticket_number: str,
        category: TicketCategory | str = TicketCategory.OTHER,
        metadata: Mapping[str, Any] | None = None,
        ticket_id: str | None = None,
        now: datetime | None = None,
        validator: TransitionValidator | None = None,
        sla: SLATracker | None = None,
    ) -> "TicketAggregate":
        if not owner_id:
            raise ValueError("owner_id is required")
        if not title or not title.strip():
            raise ValueError("title is required")
        sla = sla or SLATracker()
        priority = TicketPriority(priority)
        category = TicketCategory(category)
        created_at = now or _utcnow()
        ticket_id = ticket_id or str(uuid.uuid4())

        record = TransitionRecord(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            sequence=0,
            from_status=None,
            to_status=TicketStatus.OPEN,
            actor_id=owner_id,
            actor_role=ActorRole.RESIDENT,
            reason="Complaint registered",
            created_at=created_at,
            metadata={
                "ticket_number": ticket_number,
                "priority": priority.value,
                "category": category.value,
            },
        )
        snapshot = TicketSnapshot(
            id=ticket_id,
            ticket_number=ticket_number,
            title=title.strip(),
            description=description.strip(),
            category=category,
            priority=priority,
            status=TicketStatus.OPEN,
            owner_id=owner_id,
            assigned_handler_id=None,
            assigned_at=None,
            history=(record,),
            sla_deadline=sla.deadline_for(priority, created_at),
            sla_breached=False,
            resolution_hours=None,
            reopen_count=0,
            resolved_at=None,
            closed_at=None,
            cancelled_at=None,
            reopened_at=None,
            created_at=created_at,
            updated_at=created_at,
            metadata=metadata or {},
        )
        aggregate = cls(snapshot, validator=validator, sla=sla)
        aggregate._pending.append(
            TicketCreated(
                event_id=make_event_id(TicketCreated.name, record.id),
                ticket_id=ticket_id,
                ticket_number=ticket_number,
                owner_id=owner_id,
                actor_id=owner_id,
                actor_role=ActorRole.RESIDENT,
                occurred_at=created_at,
                title=snapshot.title,
                priority=priority,
                category=category,
            )
        )
        return aggregate

    @property
    def id(self) -> str:
        return self._state.id

    @property
    def status(self) -> TicketStatus:
        return self._state.status

    @property
    def version(self) -> int:
        return len(self._history)

    def snapshot(self) -> TicketSnapshot:
        return self._state

    def pull_events(self) -> list[DomainEvent]:
        events, self._pending = self._pending, []
        return events

    def context_for(
        self, actor_id: str, *, has_reason: bool = False, now: datetime | None = None
    ) -> TransitionContext:
        state = self._state
        days_since_resolution: float | None = None
        if state.resolved_at is not None:
            elapsed = (now or _utcnow()) - state.resolved_at
            days_since_resolution = elapsed.total_seconds() / 86400.0
        return TransitionContext(
            is_owner=actor_id == state.owner_id,
            is_assigned_handler=state.assigned_handler_id is not None
            and actor_id == state.assigned_handler_id,
            has_reason=has_reason,
            days_since_resolution=days_since_resolution,
        )

    def allowed_targets(
        self, actor_id: str, actor_role: ActorRole | str, *, now: datetime | None = None
    ) -> list[TicketStatus]:
        ctx = self.context_for(actor_id, now=now)
        return self._validator.allowed_targets(self._state.status, actor_role, ctx)

    def request_transition(
        self,
        to_status: TicketStatus | str,
        actor_id: str,
        actor_role: ActorRole | str,
        *,
        reason: str | None = None,
        handler_id: str | None = None,
        audit_meta: Mapping[str, Any] | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        to_status = TicketStatus(to_status)
        actor_role = ActorRole(actor_role)
        reason = (reason or "").strip() or None
        now = now or _utcnow()

        ctx = self.context_for(actor_id, has_reason=bool(reason), now=now)
        decision = self._validator.validate(self._state.status, to_status, actor_role, ctx)
        if not decision.allowed:
            return TransitionResult(decision=decision)
        if to_status is TicketStatus.ASSIGNED and not handler_id:
            raise ValueError("handler_id is required when assigning a ticket")

        state = self._state
        metadata = dict(audit_meta or {})
        metadata.update(
            ticket_number=state.ticket_number,
            priority=state.priority.value,
            category=state.category.value,
        )
        record = TransitionRecord(
            id=str(uuid.uuid4()),
            ticket_id=state.id,
            sequence=len(self._history),
            from_status=state.status,
            to_status=to_status,
            actor_id=actor_id,
            actor_role=actor_role,
            reason=reason,
            created_at=now,
            metadata=metadata,
        )

        changes: dict[str, Any] = {"status": to_status, "updated_at": now}
        previous_handler = state.assigned_handler_id
        if to_status is TicketStatus.ASSIGNED:
            changes.update(assigned_handler_id=handler_id, assigned_at=now)
        elif to_status is TicketStatus.OPEN:
            changes.update(assigned_handler_id=None, assigned_at=None)
        elif to_status is TicketStatus.RESOLVED:
            changes.update(
                resolved_at=now,
                sla_breached=self._sla.on_resolved(state.sla_deadline, now),
                resolution_hours=self._sla.resolution_hours(state.created_at, now),
            )
        elif to_status is TicketStatus.CLOSED:
            changes.update(closed_at=now)
        elif to_status is TicketStatus.REOPENED:
            changes.update(
                reopened_at=now,
                reopen_count=state.reopen_count + 1,
                resolved_at=None,
                sla_breached=False,
                resolution_hours=None,
            )
        elif to_status is TicketStatus.CANCELLED:
            changes.update(cancelled_at=now)

        self._history.append(record)
        self._state = replace(state, history=tuple(self._history), **changes)

        current = self._state
        self._pending.append(
            TicketTransitioned(
                event_id=make_event_id(TicketTransitioned.name, record.id),
                ticket_id=current.id,
                ticket_number=current.ticket_number,
                owner_id=current.owner_id,
                actor_id=actor_id,
                actor_role=actor_role,
                handler_id=current.assigned_handler_id,
                occurred_at=now,
                from_status=record.from_status,
                to_status=to_status,
                reason=reason,
                previous_handler_id=previous_handler,
                record_id=record.id,
            )
        )
        if to_status is TicketStatus.ASSIGNED:
            self._pending.append(
                TicketAssigned(
                    event_id=make_event_id(TicketAssigned.name, record.id),
                    ticket_id=current.id,
                    ticket_number=current.ticket_number,
                    owner_id=current.owner_id,
                    actor_id=actor_id,
                    actor_role=actor_role,
                    handler_id=handler_id,
                    occurred_at=now,
                    previous_handler_id=previous_handler,
                )
            )
        return TransitionResult(decision=decision, record=record)

    def add_comment(
        self,
        author_id: str,
        author_role: ActorRole | str,
        text: str,
        *,
        now: datetime | None = None,
    ) -> TicketComment:
        author_role = ActorRole(author_role)
        text = (text or "").strip()
        if not text:
            raise ValueError("Comment text is required")
        if len(text) > COMMENT_MAX_LENGTH:
            raise ValueError(f"Comment cannot exceed {COMMENT_MAX_LENGTH} characters")
        if author_role is ActorRole.RESIDENT and author_id != self._state.owner_id:
            raise TicketOperationDenied(
                TransitionDecision.deny(
                    DenialKind.NOT_OWN_COMPLAINT, "You can only comment on your own tickets"
                )
            )

        now = now or _utcnow()
        comment = TicketComment(
            id=str(uuid.uuid4()),
            ticket_id=self._state.id,
            author_id=author_id,
            author_role=author_role,
            text=text,
            created_at=now,
        )
        self._state = replace(self._state, updated_at=now)
        self._pending.append(
            CommentAdded(
                event_id=make_event_id(CommentAdded.name, comment.id),
                ticket_id=self._state.id,
                ticket_number=self._state.ticket_number,
                owner_id=self._state.owner_id,
                actor_id=author_id,
                actor_role=author_role,
                handler_id=self._state.assigned_handler_id,
                occurred_at=now,
                comment_id=comment.id,
                preview=text[:_PREVIEW_LENGTH],
            )
        )
        return comment

    def add_work_update(
        self,
        actor_id: str,
        actor_role: ActorRole | str,
        description: str,
        *,
        now: datetime | None = None,
    ) -> WorkUpdate:
        actor_role = ActorRole(actor_role)
        description = (description or "").strip()
        if not description:
            raise ValueError("Work update description is required")
        if actor_role is not ActorRole.STAFF:
            raise TicketOperationDenied(
                TransitionDecision.deny(
                    DenialKind.FORBIDDEN_FOR_ROLE, "Only staff can post work updates"
                )
            )
        if actor_id != self._state.assigned_handler_id:
            raise TicketOperationDenied(
                TransitionDecision.deny(
                    DenialKind.NOT_ASSIGNED_TO_ACTOR, "Complaint not assigned to you"
                )
            )

        now = now or _utcnow()
        update = WorkUpdate(
            id=str(uuid.uuid4()),
            ticket_id=self._state.id,
            author_id=actor_id,
            description=description,
            created_at=now,
        )
        self._state = replace(self._state, updated_at=now)
        self._pending.append(
            WorkUpdateAdded(
                event_id=make_event_id(WorkUpdateAdded.name, update.id),
                ticket_id=self._state.id,
                ticket_number=self._state.ticket_number,
                owner_id=self._state.owner_id,
                actor_id=actor_id,
                actor_role=actor_role,
                handler_id=self._state.assigned_handler_id,
                occurred_at=now,
                work_update_id=update.id,
                preview=description[:_PREVIEW_LENGTH],
            )
        )
        return update

    def rate(
        self,
        actor_id: str,
        actor_role: ActorRole | str,
        score: int,
        feedback: str | None = None,
        *,
        now: datetime | None = None,
    ) -> TicketRating:
        """Record the owner's rating of a resolved ticket, replacing any earlier one."""

        actor_role = ActorRole(actor_role)
        if isinstance(score, bool) or not isinstance(score, int) or not RATING_MIN <= score <= RATING_MAX:
            raise ValueError(f"Rating score must be between {RATING_MIN} and {RATING_MAX}")
        feedback = (feedback or "").strip() or None
        if feedback is not None and len(feedback) > COMMENT_MAX_LENGTH:
            raise ValueError(f"Rating feedback cannot exceed {COMMENT_MAX_LENGTH} characters")
        if actor_role is not ActorRole.RESIDENT:
            raise TicketOperationDenied(
                TransitionDecision.deny(DenialKind.FORBIDDEN_FOR_ROLE, "Only residents can rate tickets")
            )
        if actor_id != self._state.owner_id:
            raise TicketOperationDenied(
                TransitionDecision.deny(DenialKind.NOT_OWN_COMPLAINT, "You can only rate your own tickets")
            )
        if self._state.status is not TicketStatus.RESOLVED:
            raise TicketOperationDenied(
                TransitionDecision.deny(
                    DenialKind.RATING_NOT_ALLOWED,
                    f"Only Resolved tickets can be rated, this one is {self._state.status.value}",
                )
            )

        now = now or _utcnow()
        rating = TicketRating(score=score, feedback=feedback, rated_by=actor_id, rated_at=now)
        self._state = replace(self._state, rating=rating, updated_at=now)
        self._pending.append(
            TicketRated(
                event_id=make_event_id(TicketRated.name, str(uuid.uuid4())),
                ticket_id=self._state.id,
                ticket_number=self._state.ticket_number,
                owner_id=self._state.owner_id,
                actor_id=actor_id,
                actor_role=actor_role,
                handler_id=self._state.assigned_handler_id,
                occurred_at=now,
                score=score,
                feedback=feedback,
            )
        )
        return rating
