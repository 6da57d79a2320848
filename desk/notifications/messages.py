"""Per-event wording for realtime, push and email notifications."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from desk.tickets.events import (
    CommentAdded,
    DomainEvent,
    TicketAssigned,
    TicketCreated,
    TicketRated,
    TicketTransitioned,
    WorkUpdateAdded,
)
from desk.tickets.state import TicketStatus

from .audience import AudienceRole, Recipient

TEMPLATE_REGISTERED = "complaint_registered"
TEMPLATE_STATUS_UPDATE = "complaint_status_update"
TEMPLATE_RESOLVED = "complaint_resolved"
TEMPLATE_COMMENT = "complaint_comment"
TEMPLATE_WORK_UPDATE = "complaint_work_update"
TEMPLATE_RATED = "complaint_rated"

_STATUS_EVENT_NAMES: Mapping[TicketStatus, str] = {
    TicketStatus.RESOLVED: "ticket_resolved",
    TicketStatus.CLOSED: "ticket_closed",
    TicketStatus.REOPENED: "ticket_reopened",
    TicketStatus.CANCELLED: "ticket_cancelled",
}

_STATUS_TITLES: Mapping[TicketStatus, str] = {
    TicketStatus.RESOLVED: "Ticket Resolved",
    TicketStatus.CLOSED: "Ticket Closed",
    TicketStatus.REOPENED: "Ticket Reopened",
    TicketStatus.CANCELLED: "Ticket Cancelled",
}


@dataclass(frozen=True, slots=True)
class NotificationContent:
    """Everything the channels need to tell one recipient about one event."""

    realtime_event: str
    message: str
    push_title: str
    push_body: str
    email_template: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def push_data(self) -> dict[str, str]:
        """Push gateways only accept flat string values."""

        return {key: "" if value is None else str(value) for key, value in self.data.items()}

    def email_variables(self, recipient: Recipient) -> dict[str, Any]:
        variables = dict(self.data)
        variables.update(
            recipient_name=recipient.profile.full_name,
            message=self.message,
        )
        return variables


def compose(event: DomainEvent, recipient: Recipient) -> NotificationContent:
    """Build the notification ``recipient`` receives for ``event``."""

    data = event.to_payload()
    number = event.ticket_number
    role = recipient.audience_role

    if isinstance(event, TicketCreated):
        return NotificationContent(
            realtime_event="new_ticket",
            message=f"New ticket {number} created: {event.title}",
            push_title="New Ticket Created",
            push_body=f"Ticket {number} ({event.priority.value}, {event.category.value}): {event.title}",
            email_template=TEMPLATE_REGISTERED,
            data=data,
        )

    if isinstance(event, TicketAssigned) or (
        isinstance(event, TicketTransitioned) and event.to_status is TicketStatus.ASSIGNED
    ):
        return _assignment_content(event, role)

    if isinstance(event, TicketTransitioned):
        status = event.to_status.value
        event_name = _STATUS_EVENT_NAMES.get(event.to_status, "ticket_status_updated")
        title = _STATUS_TITLES.get(event.to_status, "Ticket Status Updated")
        if event.to_status is TicketStatus.RESOLVED and role is AudienceRole.OWNER:
            body = "Issue resolved! Please verify and close the ticket."
            template = TEMPLATE_RESOLVED
        elif role is AudienceRole.OWNER:
            body = f"Your complaint has been updated. Status: {status}"
            template = TEMPLATE_STATUS_UPDATE
        else:
            body = f"Ticket {number} is now {status}"
            template = TEMPLATE_STATUS_UPDATE
        return NotificationContent(
            realtime_event=event_name,
            message=f"Ticket {number} status changed from {event.from_status.value} to {status}",
            push_title=title,
            push_body=body,
            email_template=template,
            data=data,
        )

    if isinstance(event, CommentAdded):
        message = (
            "New comment on your ticket"
            if role is AudienceRole.OWNER
            else f"New comment on ticket {number}"
        )
        return NotificationContent(
            realtime_event="ticket_comment_added",
            message=message,
            push_title="New Comment",
            push_body=event.preview,
            email_template=TEMPLATE_COMMENT,
            data=data,
        )

    if isinstance(event, WorkUpdateAdded):
        return NotificationContent(
            realtime_event="work_update_added",
            message=f"Work update added to ticket {number}",
            push_title="Work Update",
            push_body=f"Progress update on ticket {number}",
            email_template=TEMPLATE_WORK_UPDATE,
            data=data,
        )

    if isinstance(event, TicketRated):
        return NotificationContent(
            realtime_event="complaint_rated",
            message="Your work has been rated",
            push_title="Ticket Rated",
            push_body=f"Ticket {number} rated {event.score}/5",
            email_template=TEMPLATE_RATED,
            data=data,
        )

    raise ValueError(f"No notification content for event type {type(event).__name__}")


def _assignment_content(event: DomainEvent, role: AudienceRole) -> NotificationContent:
    # Both assignment events carry the same wording; whichever is delivered first wins.
    number = event.ticket_number
    data = DomainEvent.to_payload(event)
    data.update(type=TicketAssigned.name, event_id=event.delivery_id, assigned_to=event.handler_id)
    if role is AudienceRole.HANDLER:
        return NotificationContent(
            realtime_event="ticket_assigned_to_you",
            message=f"New ticket {number} assigned to you",
            push_title="New Ticket Assigned",
            push_body=f"Ticket {number} has been assigned to you",
            email_template=TEMPLATE_STATUS_UPDATE,
            data=data,
        )
    return NotificationContent(
        realtime_event="ticket_assigned",
        message=f"Your ticket {number} has been assigned to a staff member",
        push_title="Ticket Assigned",
        push_body="Your complaint has been assigned. We're actively working on it.",
        email_template=TEMPLATE_STATUS_UPDATE,
        data=data,
    )
