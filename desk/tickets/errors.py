from __future__ import annotations

from .validator import DenialKind, TransitionDecision


class TransitionError(RuntimeError):
    """Raised when a ticket operation is refused.

    ``kind`` is one of :class:`DenialKind` so callers can map the refusal
    to a response without parsing the message.
    """

    retryable = False

    def __init__(self, kind: DenialKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    @classmethod
    def from_decision(cls, decision: TransitionDecision) -> "TransitionError":
        if decision.kind is None:
            raise ValueError("Cannot build an error from an allowed decision")
        return cls(decision.kind, decision.message)


class TicketNotFoundError(TransitionError):
    """Raised when an operation targets a non-existent ticket."""

    def __init__(self, ticket_id: str) -> None:
        super().__init__(DenialKind.TICKET_NOT_FOUND, f"Ticket {ticket_id} not found")
        self.ticket_id = ticket_id


class PersistenceError(TransitionError):
    """Raised when the store rejects a write; nothing was committed."""

    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(DenialKind.PERSISTENCE_ERROR, message)
