"""Read access to the accounts a notification may be delivered to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from desk.tickets.state import ActorRole
from packages.db.models import UserTable


@dataclass(frozen=True, slots=True)
class UserProfile:
    """Contact details and preferences of one account."""

    user_id: str
    role: ActorRole
    full_name: str = ""
    email: str | None = None
    device_token: str | None = None
    push_enabled: bool = True
    email_enabled: bool = True
    has_active_session: bool = False
    is_active: bool = True

    @property
    def can_receive_push(self) -> bool:
        return bool(self.device_token) and self.push_enabled

    @property
    def can_receive_email(self) -> bool:
        return bool(self.email) and self.email_enabled


class UserDirectory(Protocol):
    async def get(self, user_id: str) -> UserProfile | None:
        ...

    async def list_active(self, role: ActorRole) -> Sequence[UserProfile]:
        ...


class Presence(Protocol):
    def is_connected(self, user_id: str) -> bool:
        ...


class SqlUserDirectory:
    """:class:`UserDirectory` backed by the `users` table.

    Whether an account has a live session is asked of ``presence`` (normally the
    realtime hub) at lookup time, so it always reflects open connections.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        presence: Presence | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._presence = presence

    async def get(self, user_id: str) -> UserProfile | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
        return self._row_to_profile(row) if row is not None else None

    async def list_active(self, role: ActorRole) -> Sequence[UserProfile]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserTable)
                .where(UserTable.role == ActorRole(role).value)
                .where(UserTable.is_active.is_(True))
                .order_by(UserTable.created_at.asc())
            )
            rows = result.scalars().all()
        return [self._row_to_profile(row) for row in rows]

    def _row_to_profile(self, row: UserTable) -> UserProfile:
        return UserProfile(
            user_id=row.id,
            role=ActorRole(row.role),
            full_name=row.full_name,
            email=row.email,
            device_token=row.device_token,
            push_enabled=row.push_enabled,
            email_enabled=row.email_enabled,
            has_active_session=self._is_connected(row.id),
            is_active=row.is_active,
        )

    def _is_connected(self, user_id: str) -> bool:
        if self._presence is None:
            return False
        return self._presence.is_connected(user_id)
