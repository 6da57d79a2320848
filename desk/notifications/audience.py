"""Who has to hear about a ticket event."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from desk.tickets.events import (
    CommentAdded,
    DomainEvent,
    TicketAssigned,
    TicketCreated,
    TicketRated,
    TicketTransitioned,
    WorkUpdateAdded,
)
from desk.tickets.state import ActorRole, TicketStatus

from .directory import UserDirectory, UserProfile

logger = logging.getLogger(__name__)

_OVERSIGHT_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CANCELLED})


class AudienceRole(str, Enum):
    """Relationship of a recipient to the ticket."""

    OWNER = "owner"
    HANDLER = "handler"
    OVERSIGHT = "oversight"


@dataclass(frozen=True, slots=True)
class AudiencePlan:
    """Named members plus whether every active oversight account is included."""

    members: tuple[tuple[str, AudienceRole], ...] = ()
    include_oversight: bool = False


@dataclass(frozen=True, slots=True)
class Recipient:
    profile: UserProfile
    audience_role: AudienceRole

    @property
    def user_id(self) -> str:
        return self.profile.user_id


def plan_audience(event: DomainEvent) -> AudiencePlan:
    """Return the audience of ``event`` without looking anyone up."""

    if isinstance(event, TicketCreated):
        return AudiencePlan(include_oversight=True)

    if isinstance(event, TicketAssigned):
        members = [(event.owner_id, AudienceRole.OWNER)]
        if event.handler_id:
            members.append((event.handler_id, AudienceRole.HANDLER))
        return AudiencePlan(members=tuple(members))

    if isinstance(event, TicketTransitioned):
        members = [(event.owner_id, AudienceRole.OWNER)]
        handler = event.handler_id or event.previous_handler_id
        if handler:
            members.append((handler, AudienceRole.HANDLER))
        return AudiencePlan(
            members=tuple(members),
            include_oversight=event.to_status in _OVERSIGHT_STATUSES,
        )

    if isinstance(event, CommentAdded):
        members = []
        if event.owner_id != event.actor_id:
            members.append((event.owner_id, AudienceRole.OWNER))
        if event.handler_id and event.handler_id != event.actor_id:
            members.append((event.handler_id, AudienceRole.HANDLER))
        return AudiencePlan(members=tuple(members))

    if isinstance(event, WorkUpdateAdded):
        members = [(event.owner_id, AudienceRole.OWNER)]
        if event.handler_id:
            members.append((event.handler_id, AudienceRole.HANDLER))
        return AudiencePlan(members=tuple(members))

    if isinstance(event, TicketRated):
        if not event.handler_id:
            return AudiencePlan()
        return AudiencePlan(members=((event.handler_id, AudienceRole.HANDLER),))

    raise ValueError(f"No audience rule for event type {type(event).__name__}")


class AudienceResolver:
    """Turn an :class:`AudiencePlan` into directory profiles, one per account."""

    def __init__(self, directory: UserDirectory) -> None:
        self._directory = directory

    async def resolve(self, event: DomainEvent) -> list[Recipient]:
        plan = plan_audience(event)
        recipients: dict[str, Recipient] = {}

        for user_id, role in plan.members:
            if user_id in recipients:
                continue
            profile = await self._directory.get(user_id)
            if profile is None or not profile.is_active:
                logger.warning(
                    "Skipping %s %s for %s on ticket %s: no active account",
                    role.value,
                    user_id,
                    event.name,
                    event.ticket_id,
                )
                continue
            recipients[user_id] = Recipient(profile=profile, audience_role=role)

        if plan.include_oversight:
            oversight: Sequence[UserProfile] = await self._directory.list_active(ActorRole.ADMIN)
            for profile in oversight:
                if profile.user_id not in recipients:
                    recipients[profile.user_id] = Recipient(
                        profile=profile, audience_role=AudienceRole.OVERSIGHT
                    )

        return list(recipients.values())
