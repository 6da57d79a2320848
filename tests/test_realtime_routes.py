import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from desk.main import create_app
from desk.notifications.channels import RealtimeHub


@pytest.fixture
def hub_app():
    app = create_app()
    hub = RealtimeHub()
    app.state.realtime_hub = hub
    return TestClient(app), hub


def test_connection_registers_user_until_closed(hub_app):
    client, hub = hub_app

    with client.websocket_connect("/realtime/ws?token=resident-token") as websocket:
        assert websocket.receive_json() == {"event": "connected", "data": {"user_id": "resident-1"}}
        assert hub.is_connected("resident-1")
        assert not hub.is_connected("staff-1")

    assert not hub.is_connected("resident-1")


def test_events_reach_the_open_socket(hub_app):
    client, hub = hub_app

    with client.websocket_connect(
        "/realtime/ws", headers={"Authorization": "Bearer staff-token"}
    ) as websocket:
        websocket.receive_json()
        delivered = websocket.portal.call(hub.emit, "staff-1", "ticket_assigned_to_you", {"ticket_id": "t-1"})
        assert delivered is True
        assert websocket.receive_json() == {"event": "ticket_assigned_to_you", "data": {"ticket_id": "t-1"}}


def test_unknown_token_is_refused(hub_app):
    client, hub = hub_app

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/realtime/ws?token=nope") as websocket:
            websocket.receive_json()

    assert not hub.is_connected("resident-1")


def test_missing_hub_closes_connection():
    client = TestClient(create_app())

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/realtime/ws?token=admin-token") as websocket:
            websocket.receive_json()
