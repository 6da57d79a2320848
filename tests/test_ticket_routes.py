from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from desk.dependencies import auth
from desk.dependencies import tickets as ticket_deps
from desk.dependencies.auth import User
from desk.main import create_app
from desk.tickets.errors import PersistenceError, TicketNotFoundError, TransitionError
from desk.tickets.service import TicketService
from desk.tickets.state import ActorRole
from desk.tickets.validator import DenialKind

from helpers import FakeClock, FakeDirectory, InMemoryTicketRepository, RecordingAuditSink, make_profile

RESIDENT = User("resident-1", ActorRole.RESIDENT)
OTHER_RESIDENT = User("resident-2", ActorRole.RESIDENT)
STAFF = User("staff-1", ActorRole.STAFF)
ADMIN = User("admin-1", ActorRole.ADMIN)


class _Session:
    """Lets a test switch the authenticated user between requests."""

    def __init__(self, app, service):
        self.user = RESIDENT
        self.client = TestClient(app)
        app.dependency_overrides[auth.get_current_user] = lambda: self.user
        app.dependency_overrides[ticket_deps.get_ticket_service] = lambda: service

    def as_(self, user: User) -> TestClient:
        self.user = user
        return self.client


@pytest.fixture
def session():
    service = TicketService(InMemoryTicketRepository(), audit_sink=RecordingAuditSink(), clock=FakeClock())
    return _Session(create_app(), service)


@pytest.fixture
def mocked():
    app = create_app()
    service = AsyncMock()
    app.dependency_overrides[auth.get_current_user] = lambda: ADMIN
    app.dependency_overrides[ticket_deps.get_ticket_service] = lambda: service
    return TestClient(app), service


def _create(session) -> dict:
    response = session.as_(RESIDENT).post(
        "/tickets",
        json={"title": "Door jammed", "description": "Front door sticks", "priority": "High", "category": "Carpentry"},
    )
    assert response.status_code == 201
    return response.json()


def test_create_and_fetch_ticket(session):
    created = _create(session)

    assert created["status"] == "Open"
    assert created["priority"] == "High"
    assert created["version"] == 1
    assert created["history"][0]["to_status"] == "Open"

    fetched = session.as_(RESIDENT).get(f"/tickets/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["ticket_number"] == created["ticket_number"]


def test_only_residents_create_tickets(session):
    response = session.as_(STAFF).post("/tickets", json={"title": "x", "description": "y"})
    assert response.status_code == 403


def test_assignment_and_progress(session):
    ticket = _create(session)

    assigned = session.as_(ADMIN).post(f"/tickets/{ticket['id']}/assignment", json={"handler_id": "staff-1"})
    assert assigned.status_code == 200
    assert assigned.json()["assigned_handler_id"] == "staff-1"

    started = session.as_(STAFF).post(f"/tickets/{ticket['id']}/transitions", json={"status": "In Progress"})
    assert started.status_code == 200
    body = started.json()
    assert body["status"] == "In Progress"
    assert [entry["sequence"] for entry in body["history"]] == [0, 1, 2]
    assert body["history"][-1]["metadata"]["user_agent"] == "testclient"


def test_denials_map_to_http_status(session):
    ticket = _create(session)
    url = f"/tickets/{ticket['id']}/transitions"

    skipped = session.as_(ADMIN).post(url, json={"status": "Resolved"})
    assert skipped.status_code == 409
    assert skipped.json()["detail"]["kind"] == "SkipStateNotAllowed"

    not_assigned = session.as_(STAFF).post(url, json={"status": "Cancelled"})
    assert not_assigned.status_code == 403
    assert not_assigned.json()["detail"]["kind"] == "NotAssignedToActor"

    no_reason = session.as_(RESIDENT).post(url, json={"status": "Cancelled"})
    assert no_reason.status_code == 422
    assert no_reason.json()["detail"]["kind"] == "ReasonRequired"

    not_owner = session.as_(OTHER_RESIDENT).post(url, json={"status": "Cancelled", "reason": "spam"})
    assert not_owner.status_code == 403
    assert not_owner.json()["detail"]["kind"] == "NotOwnComplaint"

    cancelled = session.as_(RESIDENT).post(url, json={"status": "Cancelled", "reason": "Fixed it"})
    assert cancelled.status_code == 200
    assert cancelled.json()["cancelled_at"] is not None


def test_unknown_status_is_rejected(session):
    ticket = _create(session)
    response = session.as_(ADMIN).post(f"/tickets/{ticket['id']}/transitions", json={"status": "Pending"})
    assert response.status_code == 422


def test_assign_without_handler_is_unprocessable(session):
    ticket = _create(session)
    response = session.as_(ADMIN).post(f"/tickets/{ticket['id']}/transitions", json={"status": "Assigned"})
    assert response.status_code == 422


def test_missing_ticket_is_404(session):
    response = session.as_(ADMIN).get("/tickets/does-not-exist")
    assert response.status_code == 404
    assert response.json()["detail"]["kind"] == "TicketNotFound"


def test_residents_only_see_their_own_tickets(session):
    ticket = _create(session)

    assert session.as_(OTHER_RESIDENT).get(f"/tickets/{ticket['id']}").status_code == 403
    assert session.as_(OTHER_RESIDENT).get("/tickets").json() == []
    assert [t["id"] for t in session.as_(RESIDENT).get("/tickets").json()] == [ticket["id"]]
    assert [t["id"] for t in session.as_(ADMIN).get("/tickets", params={"status": "Open"}).json()] == [ticket["id"]]
    assert session.as_(ADMIN).get("/tickets", params={"status": "Closed"}).json() == []


def test_allowed_transitions(session):
    ticket = _create(session)

    response = session.as_(ADMIN).get(f"/tickets/{ticket['id']}/allowed-transitions")

    assert response.status_code == 200
    assert response.json() == {
        "ticket_id": ticket["id"],
        "current_status": "Open",
        "allowed": ["Assigned", "Cancelled"],
    }


def test_comments_and_work_updates(session):
    ticket = _create(session)
    session.as_(ADMIN).post(f"/tickets/{ticket['id']}/assignment", json={"handler_id": "staff-1"})

    comment = session.as_(RESIDENT).post(f"/tickets/{ticket['id']}/comments", json={"text": "Please hurry"})
    assert comment.status_code == 201
    assert comment.json()["author_role"] == "resident"

    too_long = session.as_(RESIDENT).post(f"/tickets/{ticket['id']}/comments", json={"text": "x" * 1001})
    assert too_long.status_code == 422

    update = session.as_(STAFF).post(
        f"/tickets/{ticket['id']}/work-updates", json={"description": "Hinges oiled"}
    )
    assert update.status_code == 201

    refused = session.as_(ADMIN).post(f"/tickets/{ticket['id']}/work-updates", json={"description": "Checked"})
    assert refused.status_code == 403

    comments = session.as_(STAFF).get(f"/tickets/{ticket['id']}/comments").json()
    assert [c["text"] for c in comments] == ["Please hurry"]
    updates = session.as_(RESIDENT).get(f"/tickets/{ticket['id']}/work-updates").json()
    assert [u["description"] for u in updates] == ["Hinges oiled"]


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (TicketNotFoundError("t-1"), 404),
        (TransitionError(DenialKind.NOT_ASSIGNED_TO_ACTOR, "not yours"), 403),
        (TransitionError(DenialKind.REOPEN_WINDOW_EXPIRED, "too late"), 409),
        (TransitionError(DenialKind.HANDLER_UNAVAILABLE, "Staff not found or inactive"), 422),
        (TransitionError(DenialKind.RATING_NOT_ALLOWED, "not resolved"), 409),
        (PersistenceError("version conflict"), 503),
    ],
)
def test_error_mapping(mocked, error, expected):
    client, service = mocked
    service.request_transition.side_effect = error

    response = client.post("/tickets/t-1/transitions", json={"status": "Closed", "reason": "done"})

    assert response.status_code == expected
    assert response.json()["detail"] == {"kind": error.kind.value, "message": error.message}


def test_missing_service_is_503():
    app = create_app()
    app.dependency_overrides[auth.get_current_user] = lambda: ADMIN
    response = TestClient(app).get("/tickets")
    assert response.status_code == 503


def _resolve(session, ticket_id: str) -> None:
    session.as_(ADMIN).post(f"/tickets/{ticket_id}/assignment", json={"handler_id": "staff-1"})
    session.as_(STAFF).post(f"/tickets/{ticket_id}/transitions", json={"status": "In Progress"})
    resolved = session.as_(STAFF).post(f"/tickets/{ticket_id}/transitions", json={"status": "Resolved"})
    assert resolved.status_code == 200


def test_resident_rates_resolved_ticket(session):
    ticket = _create(session)

    early = session.as_(RESIDENT).post(f"/tickets/{ticket['id']}/rating", json={"score": 4})
    assert early.status_code == 409
    assert early.json()["detail"]["kind"] == "RatingNotAllowed"

    _resolve(session, ticket["id"])
    rated = session.as_(RESIDENT).post(
        f"/tickets/{ticket['id']}/rating", json={"score": 4, "feedback": "Door works again"}
    )

    assert rated.status_code == 200
    body = rated.json()
    assert body["rating"]["score"] == 4
    assert body["rating"]["feedback"] == "Door works again"
    assert body["rating"]["rated_by"] == "resident-1"
    assert session.as_(ADMIN).get(f"/tickets/{ticket['id']}").json()["rating"]["score"] == 4


def test_rating_is_validated(session):
    ticket = _create(session)
    _resolve(session, ticket["id"])
    url = f"/tickets/{ticket['id']}/rating"

    assert session.as_(RESIDENT).post(url, json={"score": 6}).status_code == 422
    assert session.as_(RESIDENT).post(url, json={"score": 0}).status_code == 422
    assert session.as_(STAFF).post(url, json={"score": 5}).status_code == 403

    not_owner = session.as_(OTHER_RESIDENT).post(url, json={"score": 5})
    assert not_owner.status_code == 403
    assert not_owner.json()["detail"]["kind"] == "NotOwnComplaint"


def test_ticket_exposes_sla_countdown():
    service = TicketService(
        InMemoryTicketRepository(),
        audit_sink=RecordingAuditSink(),
        clock=FakeClock(datetime.now(timezone.utc)),
    )
    fresh = _create(_Session(create_app(), service))

    assert fresh["is_overdue"] is False
    assert fresh["sla_hours_remaining"] == pytest.approx(24.0, abs=0.2)


def test_ticket_past_deadline_is_overdue(session):
    ticket = _create(session)
    assert ticket["is_overdue"] is True
    assert ticket["sla_hours_remaining"] < 0

    _resolve(session, ticket["id"])
    resolved = session.as_(ADMIN).get(f"/tickets/{ticket['id']}").json()
    assert resolved["is_overdue"] is False
    assert resolved["sla_hours_remaining"] is None


def test_assignment_to_unknown_staff_is_unprocessable():
    directory = FakeDirectory(
        make_profile("staff-1", ActorRole.STAFF),
        make_profile("resident-2", ActorRole.RESIDENT),
    )
    service = TicketService(
        InMemoryTicketRepository(), audit_sink=RecordingAuditSink(), clock=FakeClock(), directory=directory
    )
    session = _Session(create_app(), service)
    ticket = _create(session)
    url = f"/tickets/{ticket['id']}/assignment"

    for handler_id in ("staff-404", "resident-2"):
        response = session.as_(ADMIN).post(url, json={"handler_id": handler_id})
        assert response.status_code == 422
        assert response.json()["detail"] == {"kind": "HandlerUnavailable", "message": "Staff not found or inactive"}

    assert session.as_(ADMIN).post(url, json={"handler_id": "staff-1"}).status_code == 200
