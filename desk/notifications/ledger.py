"""Delivery ledger: remembers terminal outcomes so a redelivered event is not resent."""

from __future__ import annotations

import asyncio
import logging
from typing import NamedTuple, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from packages.db.models import NotificationDeliveryTable

logger = logging.getLogger(__name__)


class DeliveryKey(NamedTuple):
    event_id: str
    recipient_id: str
    channel: str


class DeliveryLedger(Protocol):
    async def claim(self, key: DeliveryKey) -> bool:
        """Return ``False`` if ``key`` already has a terminal outcome or is in flight."""
        ...

    async def record(self, key: DeliveryKey, outcome: str) -> None:
        ...

    async def release(self, key: DeliveryKey) -> None:
        """Give up a claim without recording anything."""
        ...


class InMemoryDeliveryLedger:
    def __init__(self) -> None:
        self._recorded: dict[DeliveryKey, str] = {}
        self._in_flight: set[DeliveryKey] = set()
        self._lock = asyncio.Lock()

    async def claim(self, key: DeliveryKey) -> bool:
        async with self._lock:
            if key in self._recorded or key in self._in_flight:
                return False
            self._in_flight.add(key)
            return True

    async def record(self, key: DeliveryKey, outcome: str) -> None:
        async with self._lock:
            self._in_flight.discard(key)
            self._recorded.setdefault(key, outcome)

    async def release(self, key: DeliveryKey) -> None:
        async with self._lock:
            self._in_flight.discard(key)

    def outcome_for(self, key: DeliveryKey) -> str | None:
        return self._recorded.get(key)


class SqlDeliveryLedger:
    """Ledger stored in `notification_deliveries`.

    In-flight claims are tracked per process; the table only holds terminal
    outcomes, so two processes racing on the same key may both send.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._in_flight: set[DeliveryKey] = set()
        self._lock = asyncio.Lock()

    async def claim(self, key: DeliveryKey) -> bool:
        async with self._lock:
            if key in self._in_flight:
                return False
            async with self._session_factory() as session:
                row = await session.get(NotificationDeliveryTable, tuple(key))
            if row is not None:
                return False
            self._in_flight.add(key)
            return True

    async def record(self, key: DeliveryKey, outcome: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(
                        NotificationDeliveryTable(
                            event_id=key.event_id,
                            recipient_id=key.recipient_id,
                            channel=key.channel,
                            outcome=outcome,
                        )
                    )
        except IntegrityError:
            logger.debug("Delivery %s already recorded", key)
        finally:
            async with self._lock:
                self._in_flight.discard(key)

    async def release(self, key: DeliveryKey) -> None:
        async with self._lock:
            self._in_flight.discard(key)
