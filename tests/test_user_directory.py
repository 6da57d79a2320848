from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from desk.notifications.channels import RealtimeHub
from desk.notifications.directory import SqlUserDirectory
from desk.tickets.state import ActorRole
from packages.db.models import UserTable


class DummySession:
    def __init__(self, rows):
        self.rows = {row.id: row for row in rows}
        self.get = AsyncMock(side_effect=lambda table, user_id: self.rows.get(user_id))
        scalars = MagicMock()
        scalars.all.return_value = list(rows)
        self.execute = AsyncMock(return_value=MagicMock(scalars=MagicMock(return_value=scalars)))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    def __init__(self) -> None:
        self.sent = []

    async def send_json(self, data) -> None:
        self.sent.append(data)


def _rows():
    return [
        UserTable(id="staff-1", full_name="Sam Staff", role="staff", email="sam@example.com"),
        UserTable(id="staff-2", full_name="Kim Staff", role="staff", device_token="token-staff-2"),
    ]


@pytest.mark.asyncio
async def test_presence_comes_from_open_realtime_connections():
    hub = RealtimeHub()
    await hub.register("staff-1", FakeConnection())
    session = DummySession(_rows())
    directory = SqlUserDirectory(lambda: session, presence=hub)  # type: ignore[arg-type]

    online = await directory.get("staff-1")
    offline = await directory.get("staff-2")

    assert online is not None and online.has_active_session
    assert offline is not None and not offline.has_active_session
    assert online.role is ActorRole.STAFF
    assert online.can_receive_email and not online.can_receive_push


@pytest.mark.asyncio
async def test_presence_follows_disconnects():
    hub = RealtimeHub()
    connection = FakeConnection()
    session = DummySession(_rows())
    directory = SqlUserDirectory(lambda: session, presence=hub)  # type: ignore[arg-type]

    await hub.register("staff-2", connection)
    assert [p.has_active_session for p in await directory.list_active(ActorRole.STAFF)] == [False, True]

    await hub.unregister("staff-2", connection)
    assert [p.has_active_session for p in await directory.list_active(ActorRole.STAFF)] == [False, False]


@pytest.mark.asyncio
async def test_without_presence_nobody_is_online():
    session = DummySession(_rows())
    directory = SqlUserDirectory(lambda: session)  # type: ignore[arg-type]

    profile = await directory.get("staff-1")

    assert profile is not None and not profile.has_active_session
    assert await directory.get("missing") is None
