import pytest
from sqlalchemy import select

from clubhouse import auth
from clubhouse.models import AuthCode, Lead, User

from conftest import PASSWORD, bearer


def _signup(client, email, password=PASSWORD, full_name="Ada Lovelace"):
    return client.post(
        "/api/auth/signup",
        json={"email": email, "password": password, "full_name": full_name},
    )


def test_short_password_rejected_before_lookup(client, monkeypatch):
    def _boom(*args, **kwargs):
        raise AssertionError("database lookup should not happen")

    monkeypatch.setattr(auth, "find_user_by_email", _boom)

    r = _signup(client, "new@example.com", password="short")
    assert r.status_code == 400
    assert r.json() == {"error": "Password must be at least 8 characters"}


@pytest.mark.parametrize(
    "body, message",
    [
        ({"email": "nope", "password": PASSWORD, "full_name": "Ada"}, "Invalid email address"),
        ({"email": "a@example.com", "password": PASSWORD, "full_name": "A"}, "Name must be at least 2 characters"),
        ({"email": "a@example.com", "password": PASSWORD, "full_name": "x" * 51}, "Name must be less than 50 characters"),
    ],
)
def test_signup_validation_messages(client, body, message):
    r = client.post("/api/auth/signup", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == message


def test_signup_creates_free_account_and_points_to_payment(client, db):
    r = _signup(client, "First@Example.com")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["redirectTo"] == "/payment"
    assert data["user"]["email"] == "first@example.com"
    assert data["user"]["membership_tier"] == "free"
    assert data["user"]["founding_number"] == 1
    assert data["session"]["access_token"]
    assert "access_token" in r.cookies

    second = _signup(client, "second@example.com").json()["data"]
    assert second["user"]["founding_number"] == 2


def test_signup_duplicate_email(client, free_user):
    r = _signup(client, free_user.email)
    assert r.status_code == 400
    assert r.json()["error"] == "User already registered"


def test_signup_links_existing_lead(client, db):
    db.add(Lead(email="lead@example.com", name="Lead"))
    db.commit()

    user_id = _signup(client, "lead@example.com").json()["data"]["user"]["id"]

    db.expire_all()
    lead = db.scalar(select(Lead).where(Lead.email == "lead@example.com"))
    assert lead.user_id == user_id
    assert lead.stage == "lead"


def test_login_invalid_credentials(client, free_user):
    r = client.post("/api/auth/login", json={"email": free_user.email, "password": "not-it"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid login credentials"

    r = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "whatever1"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid login credentials"


def test_login_empty_password(client, free_user):
    r = client.post("/api/auth/login", json={"email": free_user.email, "password": ""})
    assert r.status_code == 400
    assert r.json()["error"] == "Password is required"


def test_login_free_user_goes_to_payment(client, free_user):
    r = client.post("/api/auth/login", json={"email": free_user.email, "password": PASSWORD})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["hasActiveSubscription"] is False
    assert data["redirectTo"] == "/payment"
    assert "access_token" in r.cookies
    assert "refresh_token" in r.cookies


def test_login_member_goes_to_community(client, member):
    r = client.post("/api/auth/login", json={"email": member.email, "password": PASSWORD})
    data = r.json()["data"]
    assert data["hasActiveSubscription"] is True
    assert data["redirectTo"] == "/threads"


def test_refresh_with_body_token(client, free_user):
    token = auth.create_refresh_token(free_user)
    r = client.post("/api/auth/refresh", json={"refresh_token": token})
    assert r.status_code == 200
    assert r.json()["data"]["user"]["id"] == free_user.id


def test_refresh_rejects_access_token(client, free_user):
    r = client.post("/api/auth/refresh", json={"refresh_token": auth.create_access_token(free_user)})
    assert r.status_code == 401
    assert r.json()["error"] == "No session"


def test_refresh_without_session(client):
    r = client.post("/api/auth/refresh")
    assert r.status_code == 401


def test_me_returns_access_decision(client, member):
    r = client.get("/api/auth/me", headers=bearer(member))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["user"]["email"] == member.email
    assert data["access"]["level"] == "active"


def test_me_requires_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401


def test_me_redirects_browsers_to_login(client):
    r = client.get("/api/auth/me", headers={"Accept": "text/html"}, follow_redirects=False)
    assert r.status_code == 303
    assert r.headers["location"] == "/login"


def test_logout_clears_cookies(client, free_user):
    client.post("/api/auth/login", json={"email": free_user.email, "password": PASSWORD})
    r = client.post("/api/auth/logout")
    assert r.status_code == 200

    cleared = r.headers.get_list("set-cookie")
    assert any(c.startswith('access_token=""') for c in cleared)
    assert any(c.startswith('refresh_token=""') for c in cleared)


def test_forgot_password_same_answer_for_unknown_email(client, db, free_user):
    known = client.post("/api/auth/forgot-password", json={"email": free_user.email})
    unknown = client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()

    codes = db.scalars(select(AuthCode)).all()
    assert len(codes) == 1
    assert codes[0].user_id == free_user.id


def test_recovery_callback_signs_in_and_goes_to_reset(client, db, free_user):
    code = auth.create_auth_code(db, free_user, auth.CODE_RECOVERY)

    r = client.get(f"/auth/callback?code={code}&type=recovery", follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == "/reset-password"
    assert "access_token" in r.cookies

    # single use
    again = client.get(f"/auth/callback?code={code}", follow_redirects=False)
    assert again.headers["location"] == "/"


def test_magic_link_callback_routes_by_access(client, db, member):
    code = auth.create_auth_code(db, member, auth.CODE_MAGICLINK)
    r = client.get(f"/auth/callback?code={code}", follow_redirects=False)
    assert r.headers["location"] == "/threads"


def test_callback_with_bad_code_goes_home(client):
    r = client.get("/auth/callback?code=nope", follow_redirects=False)
    assert r.status_code == 307
    assert r.headers["location"] == "/"


def test_reset_password_changes_hash(client, db, free_user):
    r = client.post(
        "/api/auth/reset-password",
        json={"password": "BrandNewPass9"},
        headers=bearer(free_user),
    )
    assert r.status_code == 200

    db.expire_all()
    user = db.get(User, free_user.id)
    assert auth.verify_password("BrandNewPass9", user.hashed_password)
    assert not auth.verify_password(PASSWORD, user.hashed_password)
