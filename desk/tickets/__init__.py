"""Ticket lifecycle: validation, aggregate, persistence and orchestration."""

from .aggregate import TicketAggregate, TicketOperationDenied, TransitionResult
from .audit import AuditSink, LoggingAuditSink, SqlAuditSink
from .errors import PersistenceError, TicketNotFoundError, TransitionError
from .events import (
    CommentAdded,
    DomainEvent,
    EventBus,
    TicketAssigned,
    TicketCreated,
    TicketRated,
    TicketTransitioned,
    WorkUpdateAdded,
)
from .models import TicketComment, TicketRating, TicketSnapshot, TransitionRecord, WorkUpdate
from .repository import TicketRepository
from .service import TicketService
from .sla import SLATracker
from .state import ActorRole, TicketCategory, TicketPriority, TicketStateMachine, TicketStatus
from .validator import DenialKind, TransitionContext, TransitionDecision, TransitionValidator

__all__ = [
    "ActorRole",
    "AuditSink",
    "CommentAdded",
    "DenialKind",
    "DomainEvent",
    "EventBus",
    "LoggingAuditSink",
    "PersistenceError",
    "SLATracker",
    "SqlAuditSink",
    "TicketAggregate",
    "TicketAssigned",
    "TicketCategory",
    "TicketComment",
    "TicketCreated",
    "TicketNotFoundError",
    "TicketOperationDenied",
    "TicketPriority",
    "TicketRated",
    "TicketRating",
    "TicketRepository",
    "TicketService",
    "TicketSnapshot",
    "TicketStateMachine",
    "TicketStatus",
    "TicketTransitioned",
    "TransitionContext",
    "TransitionDecision",
    "TransitionError",
    "TransitionRecord",
    "TransitionResult",
    "TransitionValidator",
    "WorkUpdate",
    "WorkUpdateAdded",
]
