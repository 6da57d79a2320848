import pytest

from desk.notifications.audience import AudienceResolver, AudienceRole, Recipient, plan_audience
from desk.notifications.messages import TEMPLATE_RATED, TEMPLATE_RESOLVED, TEMPLATE_STATUS_UPDATE, compose
from desk.tickets.events import (
    CommentAdded,
    TicketAssigned,
    TicketCreated,
    TicketRated,
    TicketTransitioned,
    WorkUpdateAdded,
    make_event_id,
)
from desk.tickets.state import ActorRole, TicketCategory, TicketPriority, TicketStatus

from helpers import T0, FakeDirectory, make_profile

BASE = dict(ticket_id="t-1", ticket_number="APT-123456-0001", owner_id="resident-1", occurred_at=T0)


def _transitioned(to_status, *, handler_id="staff-1", previous_handler_id="staff-1", from_status=TicketStatus.IN_PROGRESS):
    return TicketTransitioned(
        event_id=f"transitioned:{to_status.value}",
        actor_id="staff-1",
        actor_role=ActorRole.STAFF,
        handler_id=handler_id,
        from_status=from_status,
        to_status=to_status,
        previous_handler_id=previous_handler_id,
        **BASE,
    )


def _members(plan):
    return [(user_id, role) for user_id, role in plan.members]


def test_created_goes_to_oversight_only():
    event = TicketCreated(
        event_id="created",
        actor_id="resident-1",
        actor_role=ActorRole.RESIDENT,
        title="Leak",
        priority=TicketPriority.HIGH,
        category=TicketCategory.PLUMBING,
        **BASE,
    )
    plan = plan_audience(event)
    assert plan.members == ()
    assert plan.include_oversight


def test_assigned_goes_to_owner_and_handler():
    event = TicketAssigned(
        event_id="assigned", actor_id="admin-1", actor_role=ActorRole.ADMIN, handler_id="staff-1", **BASE
    )
    plan = plan_audience(event)
    assert _members(plan) == [("resident-1", AudienceRole.OWNER), ("staff-1", AudienceRole.HANDLER)]
    assert not plan.include_oversight


def test_transition_to_assigned_goes_to_owner_and_handler():
    event = _transitioned(TicketStatus.ASSIGNED, previous_handler_id=None, from_status=TicketStatus.OPEN)
    plan = plan_audience(event)
    assert _members(plan) == [("resident-1", AudienceRole.OWNER), ("staff-1", AudienceRole.HANDLER)]
    assert not plan.include_oversight


def test_rating_goes_to_handler_only():
    event = TicketRated(
        event_id="rated",
        actor_id="resident-1",
        actor_role=ActorRole.RESIDENT,
        handler_id="staff-1",
        score=4,
        **BASE,
    )
    assert _members(plan_audience(event)) == [("staff-1", AudienceRole.HANDLER)]


def test_rating_without_handler_has_no_audience():
    event = TicketRated(
        event_id="rated", actor_id="resident-1", actor_role=ActorRole.RESIDENT, score=5, **BASE
    )
    assert plan_audience(event).members == ()


@pytest.mark.parametrize(
    ("to_status", "oversight"),
    [
        (TicketStatus.IN_PROGRESS, False),
        (TicketStatus.RESOLVED, True),
        (TicketStatus.CLOSED, False),
        (TicketStatus.REOPENED, False),
        (TicketStatus.CANCELLED, True),
    ],
)
def test_status_change_audience(to_status, oversight):
    plan = plan_audience(_transitioned(to_status))
    assert _members(plan) == [("resident-1", AudienceRole.OWNER), ("staff-1", AudienceRole.HANDLER)]
    assert plan.include_oversight is oversight


def test_unassigned_handler_still_hears_about_it():
    plan = plan_audience(_transitioned(TicketStatus.OPEN, handler_id=None, from_status=TicketStatus.ASSIGNED))
    assert ("staff-1", AudienceRole.HANDLER) in _members(plan)


def test_comment_skips_its_author():
    event = CommentAdded(
        event_id="comment",
        actor_id="resident-1",
        actor_role=ActorRole.RESIDENT,
        handler_id="staff-1",
        comment_id="c-1",
        preview="Any news?",
        **BASE,
    )
    assert _members(plan_audience(event)) == [("staff-1", AudienceRole.HANDLER)]


def test_work_update_goes_to_owner_and_handler():
    event = WorkUpdateAdded(
        event_id="update",
        actor_id="staff-1",
        actor_role=ActorRole.STAFF,
        handler_id="staff-1",
        work_update_id="w-1",
        preview="Parts ordered",
        **BASE,
    )
    assert _members(plan_audience(event)) == [
        ("resident-1", AudienceRole.OWNER),
        ("staff-1", AudienceRole.HANDLER),
    ]


@pytest.mark.asyncio
async def test_resolver_dedups_and_skips_inactive_accounts(caplog):
    directory = FakeDirectory(
        make_profile("resident-1", ActorRole.RESIDENT),
        make_profile("staff-1", ActorRole.STAFF, is_active=False),
        make_profile("admin-1", ActorRole.ADMIN),
        make_profile("admin-2", ActorRole.ADMIN, is_active=False),
        make_profile("resident-1-admin", ActorRole.ADMIN),
    )

    recipients = await AudienceResolver(directory).resolve(_transitioned(TicketStatus.RESOLVED))

    assert [(r.user_id, r.audience_role) for r in recipients] == [
        ("resident-1", AudienceRole.OWNER),
        ("admin-1", AudienceRole.OVERSIGHT),
        ("resident-1-admin", AudienceRole.OVERSIGHT),
    ]
    assert "Skipping handler staff-1" in caplog.text


@pytest.mark.asyncio
async def test_admin_handler_is_not_notified_twice():
    directory = FakeDirectory(
        make_profile("resident-1", ActorRole.RESIDENT),
        make_profile("admin-1", ActorRole.ADMIN),
    )
    event = _transitioned(TicketStatus.CANCELLED, handler_id="admin-1", previous_handler_id="admin-1")

    recipients = await AudienceResolver(directory).resolve(event)

    assert [(r.user_id, r.audience_role) for r in recipients] == [
        ("resident-1", AudienceRole.OWNER),
        ("admin-1", AudienceRole.HANDLER),
    ]


def test_resolved_wording_differs_for_owner():
    event = _transitioned(TicketStatus.RESOLVED)
    owner = Recipient(make_profile("resident-1", ActorRole.RESIDENT), AudienceRole.OWNER)
    admin = Recipient(make_profile("admin-1", ActorRole.ADMIN), AudienceRole.OVERSIGHT)

    for_owner = compose(event, owner)
    for_admin = compose(event, admin)

    assert for_owner.realtime_event == "ticket_resolved"
    assert for_owner.email_template == TEMPLATE_RESOLVED
    assert for_owner.push_body == "Issue resolved! Please verify and close the ticket."
    assert for_admin.email_template == TEMPLATE_STATUS_UPDATE
    assert for_owner.data["new_status"] == "Resolved"
    assert for_owner.push_data()["reason"] == ""
    assert for_owner.email_variables(owner)["recipient_name"] == "Resident-1"


def test_assignment_wording_for_handler():
    event = TicketAssigned(
        event_id="assigned", actor_id="admin-1", actor_role=ActorRole.ADMIN, handler_id="staff-1", **BASE
    )
    handler = Recipient(make_profile("staff-1", ActorRole.STAFF), AudienceRole.HANDLER)

    content = compose(event, handler)

    assert content.realtime_event == "ticket_assigned_to_you"
    assert content.data["assigned_to"] == "staff-1"


def test_both_assignment_events_compose_the_same_notification():
    assigned = TicketAssigned(
        event_id=make_event_id(TicketAssigned.name, "record-1"),
        actor_id="admin-1",
        actor_role=ActorRole.ADMIN,
        handler_id="staff-1",
        **BASE,
    )
    transitioned = TicketTransitioned(
        event_id=make_event_id(TicketTransitioned.name, "record-1"),
        actor_id="admin-1",
        actor_role=ActorRole.ADMIN,
        handler_id="staff-1",
        from_status=TicketStatus.OPEN,
        to_status=TicketStatus.ASSIGNED,
        record_id="record-1",
        **BASE,
    )
    owner = Recipient(make_profile("resident-1", ActorRole.RESIDENT), AudienceRole.OWNER)
    handler = Recipient(make_profile("staff-1", ActorRole.STAFF), AudienceRole.HANDLER)

    assert transitioned.delivery_id == assigned.delivery_id
    assert compose(transitioned, owner) == compose(assigned, owner)
    assert compose(transitioned, handler) == compose(assigned, handler)
    assert compose(transitioned, owner).realtime_event == "ticket_assigned"


def test_rating_wording_for_handler():
    event = TicketRated(
        event_id="rated",
        actor_id="resident-1",
        actor_role=ActorRole.RESIDENT,
        handler_id="staff-1",
        score=4,
        feedback="Quick and tidy",
        **BASE,
    )
    handler = Recipient(make_profile("staff-1", ActorRole.STAFF), AudienceRole.HANDLER)

    content = compose(event, handler)

    assert content.realtime_event == "complaint_rated"
    assert content.message == "Your work has been rated"
    assert content.push_body == "Ticket APT-123456-0001 rated 4/5"
    assert content.email_template == TEMPLATE_RATED
    assert content.data["score"] == 4
    assert content.data["feedback"] == "Quick and tidy"
