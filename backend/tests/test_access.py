from clubhouse.access import (
    LEVEL_ACTIVE,
    LEVEL_ADMIN,
    LEVEL_ANONYMOUS,
    LEVEL_FREE,
    course_access,
    evaluate_access,
    redirect_target,
)
from clubhouse.models import Course, StripeSubscription

from conftest import bearer


def test_anonymous_has_no_access(db):
    decision = evaluate_access(db, None)
    assert decision.level == LEVEL_ANONYMOUS
    assert not decision.is_signed_in
    assert not decision.has_full_access


def test_admin_has_full_access_without_subscription(db, admin_user):
    decision = evaluate_access(db, admin_user)
    assert decision.level == LEVEL_ADMIN
    assert decision.has_full_access
    assert redirect_target(decision) == "/threads"


def test_active_subscription_grants_full_access(db, member):
    decision = evaluate_access(db, member)
    assert decision.level == LEVEL_ACTIVE
    assert decision.subscription_status == "active"
    assert redirect_target(decision) == "/threads"


def test_free_user_is_sent_to_payment(db, free_user):
    decision = evaluate_access(db, free_user)
    assert decision.level == LEVEL_FREE
    assert not decision.has_full_access
    assert decision.allows(allow_free_tier=True)
    assert not decision.allows()
    assert redirect_target(decision) == "/payment"


def test_paid_tier_without_active_subscription_is_free(db, make_user):
    user = make_user("stale@example.com", tier="paid")
    db.add(StripeSubscription(id="sub_old", user_id=user.id, status="canceled"))
    db.commit()

    decision = evaluate_access(db, user)
    assert decision.level == LEVEL_FREE
    assert decision.subscription_status == "canceled"
    assert not decision.has_full_access


def test_past_due_subscription_is_not_active(db, make_user):
    user = make_user("pastdue@example.com")
    db.add(StripeSubscription(id="sub_pd", user_id=user.id, status="past_due"))
    db.commit()

    assert evaluate_access(db, user).level == LEVEL_FREE


def test_course_access_rules(db, free_user, member):
    free_course = Course(title="Start here", is_free=True)
    paid_course = Course(title="Deep dive", is_free=False)
    db.add_all([free_course, paid_course])
    db.commit()

    assert course_access(db, None, free_course).reason == "not_authenticated"
    assert course_access(db, free_user, free_course).has_access

    denied = course_access(db, free_user, paid_course)
    assert not denied.has_access
    assert denied.reason == "tier_mismatch"
    assert denied.requires_upgrade

    assert course_access(db, member, paid_course).has_access


def test_community_api_rejects_free_user_with_redirect(client, free_user):
    r = client.get("/api/threads", headers=bearer(free_user))
    assert r.status_code == 403
    assert r.json() == {"error": "Active subscription required", "redirect_to": "/payment"}


def test_community_api_requires_sign_in(client):
    r = client.get("/api/threads")
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized"


def test_access_status_reports_decision(client, member):
    r = client.get("/api/access/status", headers=bearer(member))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["level"] == "active"
    assert data["has_full_access"] is True


def test_access_status_for_anonymous(client):
    r = client.get("/api/access/status")
    assert r.status_code == 200
    assert r.json()["data"]["level"] == "anonymous"


def test_admin_api_forbidden_for_members(client, member):
    r = client.get("/api/admin/users", headers=bearer(member))
    assert r.status_code == 403
    assert r.json()["error"] == "Forbidden"
