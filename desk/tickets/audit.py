"""Append-only audit sinks fed with committed transition records."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from packages.db.models import AuditLogTable

from .models import TransitionRecord

logger = logging.getLogger(__name__)


def _action_for(record: TransitionRecord) -> str:
    if record.from_status is None:
        return "ticket_created"
    return f"status_changed_to_{record.to_status.name.lower()}"


class AuditSink(Protocol):
    async def append(self, record: TransitionRecord) -> None:
        ...


class LoggingAuditSink:
    """Write each record to the ``desk.audit`` logger."""

    def __init__(self, logger_name: str = "desk.audit") -> None:
        self._logger = logging.getLogger(logger_name)

    async def append(self, record: TransitionRecord) -> None:
        self._logger.info(
            "%s ticket=%s seq=%d %s -> %s actor=%s(%s) reason=%r",
            _action_for(record),
            record.ticket_id,
            record.sequence,
            record.from_status.value if record.from_status else "-",
            record.to_status.value,
            record.actor_id,
            record.actor_role.value,
            record.reason,
        )


class SqlAuditSink:
    """Persist records into the `audit_logs` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, record: TransitionRecord) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    AuditLogTable(
                        record_id=record.id,
                        ticket_id=record.ticket_id,
                        action=_action_for(record),
                        actor_id=record.actor_id,
                        actor_role=record.actor_role.value,
                        from_status=record.from_status.value if record.from_status else None,
                        to_status=record.to_status.value,
                        reason=record.reason,
                        metadata_=dict(record.metadata),
                        created_at=record.created_at,
                    )
                )
        logger.debug("Audit record %s stored for ticket %s", record.id, record.ticket_id)
