"""Channel contracts and the adapters shipped with the service."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(connect=2.0, read=5.0, write=5.0, pool=2.0)

_INVALID_TOKEN_ERRORS = frozenset(
    {
        "invalid-registration-token",
        "registration-token-not-registered",
        "messaging/invalid-registration-token",
        "messaging/registration-token-not-registered",
    }
)


class PushOutcome(str, Enum):
    DELIVERED = "Delivered"
    INVALID_TOKEN = "InvalidToken"
    TRANSIENT_FAILURE = "TransientFailure"


class EmailOutcome(str, Enum):
    SENT = "Sent"
    FAILED = "Failed"


@dataclass(frozen=True, slots=True)
class PushNotification:
    title: str
    body: str


class RealtimeChannel(Protocol):
    async def emit(self, user_id: str, event_name: str, payload: Mapping[str, Any]) -> bool:
        ...


class PushChannel(Protocol):
    async def send(
        self, token: str, notification: PushNotification, data: Mapping[str, str]
    ) -> PushOutcome:
        ...


class EmailChannel(Protocol):
    async def send(
        self, address: str, template_id: str, variables: Mapping[str, Any]
    ) -> EmailOutcome:
        ...


class RealtimeConnection(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class RealtimeHub:
    """Per-user registry of open realtime connections.

    Owned by the composition root and injected wherever events are emitted.
    Starlette's ``WebSocket`` satisfies :class:`RealtimeConnection`.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[RealtimeConnection]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, user_id: str, connection: RealtimeConnection) -> None:
        async with self._lock:
            self._connections[user_id].add(connection)

    async def unregister(self, user_id: str, connection: RealtimeConnection) -> None:
        async with self._lock:
            connections = self._connections.get(user_id)
            if connections is None:
                return
            connections.discard(connection)
            if not connections:
                del self._connections[user_id]

    def is_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    async def emit(self, user_id: str, event_name: str, payload: Mapping[str, Any]) -> bool:
        async with self._lock:
            connections = list(self._connections.get(user_id, ()))
        if not connections:
            return False

        message = {"event": event_name, "data": dict(payload)}
        delivered = False
        for connection in connections:
            try:
                await connection.send_json(message)
            except Exception:
                logger.warning("Dropping broken realtime connection for user %s", user_id, exc_info=True)
                await self.unregister(user_id, connection)
            else:
                delivered = True
        return delivered


class HttpPushChannel:
    """Send push notifications through an HTTP push gateway."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: httpx.Timeout | float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout or DEFAULT_TIMEOUT,
            headers=headers,
        )

    async def send(
        self, token: str, notification: PushNotification, data: Mapping[str, str]
    ) -> PushOutcome:
        body = {
            "token": token,
            "notification": {"title": notification.title, "body": notification.body},
            "data": dict(data),
        }
        try:
            response = await self._client.post("/send", json=body)
        except httpx.HTTPError as exc:
            logger.warning("Push gateway request failed: %s", exc)
            return PushOutcome.TRANSIENT_FAILURE

        if response.is_success:
            return PushOutcome.DELIVERED
        if response.status_code in (404, 410) or _error_code(response) in _INVALID_TOKEN_ERRORS:
            return PushOutcome.INVALID_TOKEN
        logger.warning("Push gateway answered %s", response.status_code)
        return PushOutcome.TRANSIENT_FAILURE

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class HttpEmailChannel:
    """Send templated email through an HTTP mail API.

    A 4xx answer is a permanent ``Failed``. Transport errors and 5xx answers
    are raised so the caller can treat them as transient.
    """

    def __init__(
        self,
        base_url: str,
        *,
        sender: str,
        api_key: str | None = None,
        timeout: httpx.Timeout | float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._sender = sender
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout or DEFAULT_TIMEOUT,
            headers=headers,
        )

    async def send(
        self, address: str, template_id: str, variables: Mapping[str, Any]
    ) -> EmailOutcome:
        response = await self._client.post(
            "/send",
            json={
                "from": self._sender,
                "to": address,
                "template_id": template_id,
                "variables": dict(variables),
            },
        )
        if response.is_success:
            return EmailOutcome.SENT
        if response.is_client_error:
            logger.warning(
                "Email API rejected template %s: %s %s",
                template_id,
                response.status_code,
                _error_code(response) or response.text[:200],
            )
            return EmailOutcome.FAILED
        response.raise_for_status()
        return EmailOutcome.FAILED

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_code(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, Mapping):
        error = data.get("error")
        if isinstance(error, Mapping):
            code = error.get("code") or error.get("status")
            return str(code).lower() if code else None
        if isinstance(error, str):
            return error.lower()
    return None
