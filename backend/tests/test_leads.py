from sqlalchemy import func, select

from clubhouse.models import Lead
from clubhouse.routers import leads as leads_routes

from conftest import bearer


def _lead(db, email):
    db.expire_all()
    return db.scalar(select(Lead).where(Lead.email == email))


def test_create_lead_normalizes_email(client, db):
    r = client.post(
        "/api/leads",
        json={"email": "  Visitor@Example.COM ", "name": "Visitor", "pain_level": 7, "utm_source": "newsletter"},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["email"] == "visitor@example.com"
    assert data["stage"] == "lead"
    assert data["source"] == "landing_page"
    assert data["pain_level"] == 7
    assert data["utm_source"] == "newsletter"


def test_resubmitting_updates_the_same_row(client, db):
    client.post("/api/leads", json={"email": "v@example.com", "name": "First"})
    client.post("/api/leads", json={"email": "V@example.com", "full_name": "Second Name", "source": "webinar"})

    assert db.scalar(select(func.count(Lead.id))) == 1
    lead = _lead(db, "v@example.com")
    assert lead.name == "Second Name"
    assert lead.source == "webinar"


def test_resubmitting_never_regresses_stage(client, db):
    db.add(Lead(email="m@example.com", stage="member"))
    db.add(Lead(email="o@example.com", stage="optout"))
    db.commit()

    client.post("/api/leads", json={"email": "m@example.com", "name": "Member"})
    client.post("/api/leads", json={"email": "o@example.com", "name": "Opted"})

    assert _lead(db, "m@example.com").stage == "member"
    assert _lead(db, "o@example.com").stage == "optout"


def test_lead_validation(client):
    r = client.post("/api/leads", json={"email": "x@example.com", "pain_level": 11})
    assert r.status_code == 400
    assert r.json()["error"] == "Pain level must be between 1 and 10"

    r = client.post("/api/leads", json={"email": "x@example.com", "name": "X"})
    assert r.status_code == 400
    assert r.json()["error"] == "Name must be at least 2 characters"

    r = client.post("/api/leads", json={"email": "not-an-email"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid email address"


def test_lead_links_existing_account(client, db, free_user):
    client.post("/api/leads", json={"email": free_user.email})
    assert _lead(db, free_user.email).user_id == free_user.id


def test_optout_unknown_email(client):
    r = client.post("/api/leads/optout", json={"email": "ghost@example.com"})
    assert r.status_code == 404
    assert r.json()["error"] == "Email not found"


def test_optout_member_conflicts(client, db):
    db.add(Lead(email="m@example.com", stage="member"))
    db.commit()

    r = client.post("/api/leads/optout", json={"email": "m@example.com"})
    assert r.status_code == 409
    assert _lead(db, "m@example.com").stage == "member"


def test_optout_is_idempotent(client, db):
    db.add(Lead(email="l@example.com"))
    db.commit()

    first = client.post("/api/leads/optout", json={"email": "L@example.com"})
    assert first.status_code == 200
    assert first.json()["data"]["message"] == leads_routes.UNSUBSCRIBED_MESSAGE
    optout_at = _lead(db, "l@example.com").optout_at
    assert optout_at is not None

    second = client.post("/api/leads/optout", json={"email": "l@example.com"})
    assert second.status_code == 200
    lead = _lead(db, "l@example.com")
    assert lead.stage == "optout"
    assert lead.optout_at == optout_at


def test_analytics_admin_only(client, member):
    r = client.get("/api/leads", headers=bearer(member))
    assert r.status_code == 403


def test_analytics_funnel(client, db, admin_user):
    db.add_all(
        [
            Lead(email="a@example.com", stage="lead", source="landing_page", utm_source="ads"),
            Lead(email="b@example.com", stage="lead", source="webinar"),
            Lead(email="c@example.com", stage="member", source="landing_page", utm_source="ads"),
            Lead(email="d@example.com", stage="optout", source="landing_page"),
        ]
    )
    db.commit()

    r = client.get("/api/leads", headers=bearer(admin_user))
    assert r.status_code == 200
    data = r.json()["data"]

    assert data["funnel"] == {
        "total_leads": 4,
        "leads": 2,
        "members": 1,
        "optouts": 1,
        "conversion_rate": 25.0,
    }
    assert len(data["recentLeads"]) == 4
    assert {"utm_source": "ads", "count": 2} in data["analytics"]["by_utm_source"]


def test_analytics_with_no_leads(client, admin_user):
    data = client.get("/api/leads", headers=bearer(admin_user)).json()["data"]
    assert data["funnel"]["total_leads"] == 0
    assert data["funnel"]["conversion_rate"] == 0.0


def test_debug_endpoint_hidden_by_default(client):
    r = client.post("/api/leads-debug", json={"email": "d@example.com"})
    assert r.status_code == 404


def test_debug_endpoint_when_enabled(client, settings_override):
    settings_override(leads_routes, debug_endpoints_enabled=True)

    r = client.post("/api/leads-debug", json={"email": "Dbg@Example.com", "name": "Debug"})
    assert r.status_code == 200
    body = r.json()
    assert body["data"]["email"] == "dbg@example.com"
    assert body["debug"]["created"] is True
    assert body["debug"]["normalized_email"] == "dbg@example.com"
