from sqlalchemy import select

from clubhouse.models import SiteContent

from conftest import bearer

ABOUT = {
    "title": "Build What You Need",
    "subtitle": "Stop paying for SaaS. Start building.",
    "learnItems": ["Replace expensive subscriptions", "Own your data"],
}


def test_admin_saves_and_member_reads_about_page(client, db, member, admin_user):
    r = client.put("/api/site-content/about", json={"content": ABOUT}, headers=bearer(admin_user))
    assert r.status_code == 200
    assert r.json()["data"]["updated_by"] == admin_user.id

    data = client.get("/api/site-content/about", headers=bearer(member)).json()["data"]
    assert data["page"] == "about"
    assert data["content"] == ABOUT


def test_saving_again_replaces_the_page(client, db, admin_user):
    client.put("/api/site-content/about", json={"content": ABOUT}, headers=bearer(admin_user))
    changed = {**ABOUT, "title": "New title"}
    client.put("/api/site-content/about", json={"content": changed}, headers=bearer(admin_user))

    db.expire_all()
    rows = db.scalars(select(SiteContent)).all()
    assert [(row.page, row.content["title"]) for row in rows] == [("about", "New title")]


def test_missing_page_is_404(client, member):
    r = client.get("/api/site-content/about", headers=bearer(member))
    assert r.status_code == 404
    assert r.json()["error"] == "Page content not found"


def test_site_content_needs_membership(client, free_user, member):
    r = client.get("/api/site-content/about", headers=bearer(free_user))
    assert r.status_code == 403
    assert r.json()["redirect_to"] == "/payment"

    assert client.put("/api/site-content/about", json={"content": ABOUT}, headers=bearer(member)).status_code == 403


def test_site_content_rejects_bad_input(client, admin_user):
    assert client.put("/api/site-content/about", json={"content": {}}, headers=bearer(admin_user)).status_code == 400
    assert client.put("/api/site-content/About%20Us", json={"content": ABOUT}, headers=bearer(admin_user)).status_code == 400


def test_member_stats(client, free_user, member, admin_user):
    r = client.get("/api/stats/members", headers=bearer(free_user))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["active_member_count"] == 1
    assert data["admin_count"] == 1
    assert data["founding_member_count"] == 3
    assert data["latest_founding_number"] == 3
    assert {m["id"] for m in data["recent_members"]} == {free_user.id, member.id, admin_user.id}
    assert all("email" not in m for m in data["recent_members"])


def test_member_stats_requires_sign_in(client):
    assert client.get("/api/stats/members").status_code == 401
