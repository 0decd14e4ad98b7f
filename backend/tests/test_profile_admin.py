from sqlalchemy import select

from clubhouse import main
from clubhouse.config import APP_VERSION
from clubhouse.models import User

from conftest import bearer


def test_profile_roundtrip(client, free_user):
    r = client.put(
        "/api/profile",
        json={"full_name": "Grace Hopper", "bio": "  Compilers  "},
        headers=bearer(free_user),
    )
    assert r.status_code == 200
    assert r.json()["data"]["full_name"] == "Grace Hopper"
    assert r.json()["data"]["bio"] == "Compilers"

    profile = client.get("/api/profile", headers=bearer(free_user)).json()["data"]
    assert profile["full_name"] == "Grace Hopper"
    assert profile["access"]["level"] == "free"


def test_profile_requires_sign_in(client):
    assert client.get("/api/profile").status_code == 401


def test_admin_lists_users_by_founding_number(client, free_user, member, admin_user):
    r = client.get("/api/admin/users", headers=bearer(admin_user))
    assert r.status_code == 200
    users = r.json()["data"]
    assert [u["email"] for u in users] == [free_user.email, member.email, admin_user.email]
    assert [u["access_level"] for u in users] == ["free", "active", "admin"]


def test_admin_tier_change_does_not_grant_access(client, free_user, admin_user):
    r = client.patch(
        f"/api/admin/users/{free_user.id}",
        json={"membership_tier": "paid"},
        headers=bearer(admin_user),
    )
    data = r.json()["data"]
    assert data["membership_tier"] == "paid"
    assert data["access_level"] == "free"


def test_admin_promotes_user(client, free_user, admin_user):
    r = client.patch(f"/api/admin/users/{free_user.id}", json={"is_admin": True}, headers=bearer(admin_user))
    assert r.json()["data"]["access_level"] == "admin"


def test_admin_cannot_demote_self(client, admin_user):
    r = client.patch(f"/api/admin/users/{admin_user.id}", json={"is_admin": False}, headers=bearer(admin_user))
    assert r.status_code == 400
    assert r.json()["error"] == "You cannot remove your own admin access"


def test_admin_update_unknown_user(client, admin_user):
    r = client.patch("/api/admin/users/nobody", json={"is_admin": True}, headers=bearer(admin_user))
    assert r.status_code == 404


def test_health_and_version(client):
    assert client.get("/health").json() == {"status": "ok", "db": "ok"}
    assert client.get("/version").json()["version"] == APP_VERSION


def test_seed_admin_creates_one_admin(db, monkeypatch):
    monkeypatch.setattr(main, "seed_admin_config", lambda: ("owner@example.com", "OwnerPass123"))

    main.seed_default_admin()
    main.seed_default_admin()

    admins = db.scalars(select(User).where(User.is_admin == True)).all()  # noqa: E712
    assert [a.email for a in admins] == ["owner@example.com"]


def test_seed_admin_disabled_by_default(db):
    main.seed_default_admin()
    assert db.scalars(select(User)).all() == []


def test_payment_success_page_polls_status(client, free_user):
    r = client.get("/payment/success", headers=bearer(free_user), follow_redirects=False)
    assert r.status_code == 200
    assert "/api/stripe/subscription-status?wait=true" in r.text
