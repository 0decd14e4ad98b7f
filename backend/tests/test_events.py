from datetime import timedelta

import pytest
from sqlalchemy import select

from clubhouse.models import Event, EventRegistration, utcnow

from conftest import bearer


@pytest.fixture
def small_event(db, admin_user):
    ev = Event(
        title="Build night",
        start_at=utcnow() + timedelta(days=3),
        end_at=utcnow() + timedelta(days=3, hours=2),
        capacity=1,
        created_by=admin_user.id,
    )
    db.add(ev)
    db.commit()
    return ev


def _register(client, event_id, user):
    return client.post(f"/api/events/{event_id}/register", headers=bearer(user))


def _cancel(client, event_id, user):
    return client.post(f"/api/events/{event_id}/cancel", headers=bearer(user))


def test_second_registration_is_waitlisted(client, make_user, small_event):
    first = make_user("first@example.com", subscribed=True)
    second = make_user("second@example.com", subscribed=True)

    assert _register(client, small_event.id, first).json()["data"]["status"] == "registered"
    assert _register(client, small_event.id, second).json()["data"]["status"] == "waitlisted"

    data = client.get(f"/api/events/{small_event.id}", headers=bearer(second)).json()["data"]
    assert data["registered"] == 1
    assert data["waitlisted"] == 1
    assert data["spots_left"] == 0
    assert data["my_status"] == "waitlisted"


def test_registering_twice_keeps_one_row(client, member, small_event):
    _register(client, small_event.id, member)
    again = _register(client, small_event.id, member)
    assert again.json()["data"]["status"] == "registered"

    data = client.get(f"/api/events/{small_event.id}", headers=bearer(member)).json()["data"]
    assert data["registered"] == 1


def test_cancel_promotes_oldest_waitlisted(client, make_user, small_event):
    first = make_user("first@example.com", subscribed=True)
    second = make_user("second@example.com", subscribed=True)
    third = make_user("third@example.com", subscribed=True)
    for u in (first, second, third):
        _register(client, small_event.id, u)

    r = _cancel(client, small_event.id, first)
    assert r.status_code == 200
    body = r.json()["data"]
    assert body["status"] == "cancelled"
    assert body["promoted_user_id"] == second.id

    assert client.get(f"/api/events/{small_event.id}", headers=bearer(second)).json()["data"]["my_status"] == "registered"
    assert client.get(f"/api/events/{small_event.id}", headers=bearer(third)).json()["data"]["my_status"] == "waitlisted"


def test_cancelled_user_rejoins_at_back_of_queue(client, make_user, small_event):
    first = make_user("first@example.com", subscribed=True)
    second = make_user("second@example.com", subscribed=True)
    _register(client, small_event.id, first)
    _register(client, small_event.id, second)
    _cancel(client, small_event.id, first)

    rejoined = _register(client, small_event.id, first).json()["data"]
    assert rejoined["status"] == "waitlisted"


def test_cancel_without_registration(client, member, small_event):
    r = _cancel(client, small_event.id, member)
    assert r.status_code == 404
    assert r.json()["error"] == "Registration not found"


def test_unknown_event(client, member):
    r = client.get("/api/events/999", headers=bearer(member))
    assert r.status_code == 404
    assert r.json()["error"] == "Event not found"


def test_events_need_active_membership(client, free_user, small_event):
    r = _register(client, small_event.id, free_user)
    assert r.status_code == 403
    assert r.json()["redirect_to"] == "/payment"


def test_list_hides_past_events(client, db, member, small_event):
    db.add(Event(title="Last month", start_at=utcnow() - timedelta(days=30)))
    db.commit()

    upcoming = client.get("/api/events", headers=bearer(member)).json()["data"]
    assert [e["title"] for e in upcoming] == ["Build night"]

    everything = client.get("/api/events?include_past=true", headers=bearer(member)).json()["data"]
    assert [e["title"] for e in everything] == ["Last month", "Build night"]


def test_admin_creates_event(client, member, admin_user):
    body = {"title": "Demo day", "start_at": "2030-05-01T17:00:00Z", "capacity": 20}

    assert client.post("/api/events", json=body, headers=bearer(member)).status_code == 403

    r = client.post("/api/events", json=body, headers=bearer(admin_user))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["start_at"] == "2030-05-01T17:00:00"
    assert data["spots_left"] == 20


def test_event_end_before_start_rejected(client, admin_user):
    body = {"title": "Backwards", "start_at": "2030-05-01T17:00:00", "end_at": "2030-05-01T16:00:00"}
    r = client.post("/api/events", json=body, headers=bearer(admin_user))
    assert r.status_code == 400
    assert r.json()["error"] == "End time must be after start time"


def test_raising_capacity_promotes_waitlist(client, make_user, admin_user, small_event):
    first = make_user("first@example.com", subscribed=True)
    second = make_user("second@example.com", subscribed=True)
    _register(client, small_event.id, first)
    _register(client, small_event.id, second)

    r = client.put(f"/api/events/{small_event.id}", json={"capacity": 2}, headers=bearer(admin_user))
    assert r.json()["data"]["registered"] == 2
    assert r.json()["data"]["waitlisted"] == 0


def test_mark_attended(client, member, admin_user, small_event):
    _register(client, small_event.id, member)

    r = client.patch(f"/api/events/{small_event.id}/registrations/{member.id}", headers=bearer(admin_user))
    assert r.json()["data"]["status"] == "attended"

    regs = client.get(f"/api/events/{small_event.id}/registrations", headers=bearer(admin_user)).json()["data"]
    assert [(r["user_id"], r["status"]) for r in regs] == [(member.id, "attended")]


def test_waitlisted_registration_cannot_be_marked_attended(client, make_user, admin_user, small_event):
    first = make_user("first@example.com", subscribed=True)
    second = make_user("second@example.com", subscribed=True)
    _register(client, small_event.id, first)
    _register(client, small_event.id, second)

    r = client.patch(f"/api/events/{small_event.id}/registrations/{second.id}", headers=bearer(admin_user))
    assert r.status_code == 400
    assert r.json()["error"] == "Only registered attendees can be marked attended"

    again = client.patch(f"/api/events/{small_event.id}/registrations/{first.id}", headers=bearer(admin_user))
    assert again.json()["data"]["status"] == "attended"
    twice = client.patch(f"/api/events/{small_event.id}/registrations/{first.id}", headers=bearer(admin_user))
    assert twice.json()["data"]["status"] == "attended"


def test_update_rejects_null_required_fields(client, admin_user, small_event):
    r = client.put(f"/api/events/{small_event.id}", json={"start_at": None}, headers=bearer(admin_user))
    assert r.status_code == 400
    assert r.json()["error"] == "Start at cannot be null"

    r = client.put(f"/api/events/{small_event.id}", json={"title": None}, headers=bearer(admin_user))
    assert r.status_code == 400

    cleared = client.put(f"/api/events/{small_event.id}", json={"capacity": None}, headers=bearer(admin_user))
    assert cleared.status_code == 200
    assert cleared.json()["data"]["capacity"] is None


def test_invite_counts_members_only(client, member, free_user, admin_user, small_event):
    r = client.post(f"/api/events/{small_event.id}/invite", json={"message": "See you there"}, headers=bearer(admin_user))
    data = r.json()["data"]
    # email is disabled in tests, so every attempt counts as failed
    assert data["sent"] == 0
    assert data["failed"] == 2  # member + admin
    assert data["skipped"] == 1


def test_delete_event_removes_registrations(client, db, member, admin_user, small_event):
    event_id = small_event.id
    _register(client, event_id, member)
    assert client.delete(f"/api/events/{event_id}", headers=bearer(admin_user)).status_code == 200

    db.expunge_all()
    assert db.scalar(select(Event).where(Event.id == event_id)) is None
    assert db.scalars(select(EventRegistration).where(EventRegistration.event_id == event_id)).all() == []
