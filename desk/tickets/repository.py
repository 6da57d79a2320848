"""SQL persistence for tickets, their history, ratings, comments and work updates."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import (
    TicketCommentTable,
    TicketTable,
    TicketTransitionTable,
    TicketWorkUpdateTable,
)

from .errors import PersistenceError
from .models import TicketComment, TicketRating, TicketSnapshot, TransitionRecord, WorkUpdate
from .state import ActorRole, TicketCategory, TicketPriority, TicketStatus

logger = logging.getLogger(__name__)


class TicketRepository:
    """Persistence helper wrapping `tickets`, `ticket_transitions` and ticket activity.

    Every write that changes a ticket's status commits the ticket row and its
    history row in one transaction. Status writes are guarded by the ticket
    version so a writer holding a stale snapshot loses with a retryable
    :class:`PersistenceError` instead of overwriting newer state.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def count_tickets(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(func.count()).select_from(TicketTable))
                return int(result.scalar_one())
        except SQLAlchemyError as exc:
            raise PersistenceError("Unable to count tickets") from exc

    async def create_ticket(self, snapshot: TicketSnapshot) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(self._ticket_to_row(snapshot))
                    # Flush the parent first so the history foreign key resolves.
                    await session.flush()
                    for record in snapshot.history:
                        session.add(self._record_to_row(record))
        except IntegrityError as exc:
            raise PersistenceError(f"Ticket {snapshot.ticket_number} already exists") from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to store ticket {snapshot.id}") from exc

    async def save_transition(
        self,
        snapshot: TicketSnapshot,
        record: TransitionRecord,
        *,
        expected_version: int,
    ) -> None:
        """Persist ``snapshot`` and append ``record`` if nobody else wrote first."""

        values = self._ticket_values(snapshot)
        values["version"] = snapshot.version
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(TicketTable)
                        .where(TicketTable.id == snapshot.id)
                        .where(TicketTable.version == expected_version)
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        raise PersistenceError(
                            f"Ticket {snapshot.id} was modified concurrently; reload and retry"
                        )
                    session.add(self._record_to_row(record))
        except IntegrityError as exc:
            raise PersistenceError(
                f"History position {record.sequence} of ticket {snapshot.id} is already taken"
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to store transition for ticket {snapshot.id}") from exc

    async def save_rating(self, snapshot: TicketSnapshot, *, expected_version: int) -> None:
        """Store the rating carried by ``snapshot`` unless the ticket moved on meanwhile."""

        rating = snapshot.rating
        if rating is None:
            raise ValueError("snapshot carries no rating")
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(TicketTable)
                        .where(TicketTable.id == snapshot.id)
                        .where(TicketTable.version == expected_version)
                        .values(
                            rating_score=rating.score,
                            rating_feedback=rating.feedback,
                            rated_by=rating.rated_by,
                            rated_at=rating.rated_at,
                            updated_at=snapshot.updated_at,
                        )
                    )
                    if result.rowcount != 1:
                        raise PersistenceError(
                            f"Ticket {snapshot.id} was modified concurrently; reload and retry"
                        )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to store rating for ticket {snapshot.id}") from exc

    async def add_comment(self, comment: TicketComment) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        TicketCommentTable(
                            id=comment.id,
                            ticket_id=comment.ticket_id,
                            author_id=comment.author_id,
                            author_role=comment.author_role.value,
                            text=comment.text,
                            created_at=comment.created_at,
                        )
                    )
                    await session.execute(
                        update(TicketTable)
                        .where(TicketTable.id == comment.ticket_id)
                        .values(updated_at=comment.created_at)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to store comment on ticket {comment.ticket_id}") from exc

    async def add_work_update(self, work_update: WorkUpdate) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        TicketWorkUpdateTable(
                            id=work_update.id,
                            ticket_id=work_update.ticket_id,
                            author_id=work_update.author_id,
                            description=work_update.description,
                            created_at=work_update.created_at,
                        )
                    )
                    await session.execute(
                        update(TicketTable)
                        .where(TicketTable.id == work_update.ticket_id)
                        .values(updated_at=work_update.created_at)
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Unable to store work update on ticket {work_update.ticket_id}"
            ) from exc

    async def get_ticket(self, ticket_id: str) -> TicketSnapshot | None:
        try:
            async with self._session_factory() as session:
                ticket_row = await session.get(TicketTable, ticket_id)
                if ticket_row is None:
                    return None
                history_result = await session.execute(
                    select(TicketTransitionTable)
                    .where(TicketTransitionTable.ticket_id == ticket_id)
                    .order_by(TicketTransitionTable.sequence.asc())
                )
                history_rows = history_result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to load ticket {ticket_id}") from exc
        return self._row_to_snapshot(ticket_row, history_rows)

    async def list_tickets(
        self,
        *,
        owner_id: str | None = None,
        handler_id: str | None = None,
        status: TicketStatus | None = None,
    ) -> Sequence[TicketSnapshot]:
        statement = select(TicketTable).order_by(TicketTable.created_at.desc())
        if owner_id is not None:
            statement = statement.where(TicketTable.owner_id == owner_id)
        if handler_id is not None:
            statement = statement.where(TicketTable.assigned_handler_id == handler_id)
        if status is not None:
            statement = statement.where(TicketTable.status == status.value)
        try:
            async with self._session_factory() as session:
                ticket_rows = (await session.execute(statement)).scalars().all()
                ids = [row.id for row in ticket_rows]
                history: dict[str, list[TicketTransitionTable]] = {ticket_id: [] for ticket_id in ids}
                if ids:
                    history_result = await session.execute(
                        select(TicketTransitionTable)
                        .where(TicketTransitionTable.ticket_id.in_(ids))
                        .order_by(TicketTransitionTable.sequence.asc())
                    )
                    for row in history_result.scalars().all():
                        history[row.ticket_id].append(row)
        except SQLAlchemyError as exc:
            raise PersistenceError("Unable to list tickets") from exc
        return [self._row_to_snapshot(row, history[row.id]) for row in ticket_rows]

    async def list_comments(self, ticket_id: str) -> Sequence[TicketComment]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TicketCommentTable)
                    .where(TicketCommentTable.ticket_id == ticket_id)
                    .order_by(TicketCommentTable.created_at.asc())
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to load comments for ticket {ticket_id}") from exc
        return [
            TicketComment(
                id=row.id,
                ticket_id=row.ticket_id,
                author_id=row.author_id,
                author_role=ActorRole(row.author_role),
                text=row.text,
                created_at=_ensure_datetime(row.created_at),
            )
            for row in rows
        ]

    async def list_work_updates(self, ticket_id: str) -> Sequence[WorkUpdate]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(TicketWorkUpdateTable)
                    .where(TicketWorkUpdateTable.ticket_id == ticket_id)
                    .order_by(TicketWorkUpdateTable.created_at.asc())
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Unable to load work updates for ticket {ticket_id}") from exc
        return [
            WorkUpdate(
                id=row.id,
                ticket_id=row.ticket_id,
                author_id=row.author_id,
                description=row.description,
                created_at=_ensure_datetime(row.created_at),
            )
            for row in rows
        ]

    @staticmethod
    def _ticket_values(snapshot: TicketSnapshot) -> dict[str, object]:
        return {
            "status": snapshot.status.value,
            "assigned_handler_id": snapshot.assigned_handler_id,
            "assigned_at": snapshot.assigned_at,
            "sla_breached": snapshot.sla_breached,
            "resolution_hours": snapshot.resolution_hours,
            "reopen_count": snapshot.reopen_count,
            "resolved_at": snapshot.resolved_at,
            "closed_at": snapshot.closed_at,
            "cancelled_at": snapshot.cancelled_at,
            "reopened_at": snapshot.reopened_at,
            "rating_score": snapshot.rating.score if snapshot.rating else None,
            "rating_feedback": snapshot.rating.feedback if snapshot.rating else None,
            "rated_by": snapshot.rating.rated_by if snapshot.rating else None,
            "rated_at": snapshot.rating.rated_at if snapshot.rating else None,
            "updated_at": snapshot.updated_at,
        }

    @classmethod
    def _ticket_to_row(cls, snapshot: TicketSnapshot) -> TicketTable:
        return TicketTable(
            id=snapshot.id,
            ticket_number=snapshot.ticket_number,
            title=snapshot.title,
            description=snapshot.description,
            category=snapshot.category.value,
            priority=snapshot.priority.value,
            owner_id=snapshot.owner_id,
            sla_deadline=snapshot.sla_deadline,
            version=snapshot.version,
            metadata_=dict(snapshot.metadata),
            created_at=snapshot.created_at,
            **cls._ticket_values(snapshot),
        )

    @staticmethod
    def _record_to_row(record: TransitionRecord) -> TicketTransitionTable:
        return TicketTransitionTable(
            id=record.id,
            ticket_id=record.ticket_id,
            sequence=record.sequence,
            from_status=record.from_status.value if record.from_status else None,
            to_status=record.to_status.value,
            actor_id=record.actor_id,
            actor_role=record.actor_role.value,
            reason=record.reason,
            metadata_=dict(record.metadata),
            created_at=record.created_at,
        )

    @staticmethod
    def _row_to_record(row: TicketTransitionTable) -> TransitionRecord:
        return TransitionRecord(
            id=row.id,
            ticket_id=row.ticket_id,
            sequence=row.sequence,
            from_status=TicketStatus(row.from_status) if row.from_status else None,
            to_status=TicketStatus(row.to_status),
            actor_id=row.actor_id,
            actor_role=ActorRole(row.actor_role),
            reason=row.reason,
            created_at=_ensure_datetime(row.created_at),
            metadata=dict(row.metadata_ or {}),
        )

    @classmethod
    def _row_to_snapshot(
        cls, row: TicketTable, history_rows: Sequence[TicketTransitionTable]
    ) -> TicketSnapshot:
        return TicketSnapshot(
            id=row.id,
            ticket_number=row.ticket_number,
            title=row.title,
            description=row.description,
            category=TicketCategory(row.category),
            priority=TicketPriority(row.priority),
            status=TicketStatus(row.status),
            owner_id=row.owner_id,
            assigned_handler_id=row.assigned_handler_id,
            assigned_at=_optional_datetime(row.assigned_at),
            history=tuple(cls._row_to_record(item) for item in history_rows),
            sla_deadline=_ensure_datetime(row.sla_deadline),
            sla_breached=bool(row.sla_breached),
            resolution_hours=row.resolution_hours,
            reopen_count=row.reopen_count,
            resolved_at=_optional_datetime(row.resolved_at),
            closed_at=_optional_datetime(row.closed_at),
            cancelled_at=_optional_datetime(row.cancelled_at),
            reopened_at=_optional_datetime(row.reopened_at),
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            rating=_row_to_rating(row),
            metadata=dict(row.metadata_ or {}),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def _row_to_rating(row: TicketTable) -> TicketRating | None:
    if row.rating_score is None:
        return None
    return TicketRating(
        score=row.rating_score,
        feedback=row.rating_feedback,
        rated_by=row.rated_by or row.owner_id,
        rated_at=_ensure_datetime(row.rated_at),
    )


def _optional_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return _ensure_datetime(value)
