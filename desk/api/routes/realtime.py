from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from desk.core.config import get_settings
from desk.dependencies.auth import resolve_user_from_token
from desk.notifications import RealtimeHub

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


def _token_from(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    scheme, _, credentials = websocket.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    """Keep a user's realtime connection registered for as long as it stays open.

    Authenticates with the same static tokens as the HTTP API, passed as the
    ``token`` query parameter or an ``Authorization: Bearer`` header.
    """

    try:
        user = resolve_user_from_token(_token_from(websocket), get_settings().api_tokens)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub: RealtimeHub | None = getattr(websocket.app.state, "realtime_hub", None)
    if hub is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    await hub.register(user.user_id, websocket)
    logger.info("Realtime connection opened for user %s", user.user_id)
    try:
        await websocket.send_json({"event": "connected", "data": {"user_id": user.user_id}})
        while True:
            # Clients only listen; anything they send is ignored.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.unregister(user.user_id, websocket)
        logger.info("Realtime connection closed for user %s", user.user_id)
