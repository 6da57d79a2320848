"""Database models and utilities."""

from .models import (
    AuditLogTable,
    NotificationDeliveryTable,
    TicketCommentTable,
    TicketTable,
    TicketTransitionTable,
    TicketWorkUpdateTable,
    UserTable,
)

__all__ = [
    "AuditLogTable",
    "NotificationDeliveryTable",
    "TicketCommentTable",
    "TicketTable",
    "TicketTransitionTable",
    "TicketWorkUpdateTable",
    "UserTable",
]
