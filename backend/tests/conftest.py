# tests/conftest.py
import os

# Must be set before any clubhouse import (settings and engine are built at import time)
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["APP_BASE_URL"] = "http://testserver"
os.environ["BILLING_ENABLED"] = "true"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_dummy"
os.environ["STRIPE_PRICE_ID"] = "price_dummy"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["DEBUG_ENDPOINTS_ENABLED"] = "false"
os.environ["SEED_ADMIN"] = "false"

import dataclasses
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from clubhouse import auth, rate_limit
from clubhouse.config import get_settings
from clubhouse.database import Base, SessionLocal, engine
from clubhouse.main import app
from clubhouse.models import StripeSubscription, User, utcnow

PASSWORD = "CorrectHorse1!"


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    rate_limit._store.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def settings_override(monkeypatch):
    """
    settings_override(module, **changes) swaps get_settings() in `module`
    for a copy of the real settings with `changes` applied.
    """

    def _apply(module, **changes):
        patched = dataclasses.replace(get_settings(), **changes)
        monkeypatch.setattr(module, "get_settings", lambda: patched)
        return patched

    return _apply


def _make_user(db, email, is_admin=False, subscribed=False, tier="free", full_name="Test User"):
    user = auth.create_user(db, email, PASSWORD, full_name=full_name, is_admin=is_admin)
    user.membership_tier = tier
    if subscribed:
        db.add(
            StripeSubscription(
                id=f"sub_{email.split('@')[0]}",
                user_id=user.id,
                status="active",
                current_period_end=utcnow() + timedelta(days=30),
            )
        )
        user.membership_tier = "paid"
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def make_user(db):
    def _factory(email, **kwargs):
        return _make_user(db, email, **kwargs)

    return _factory


@pytest.fixture
def free_user(make_user):
    return make_user("free@example.com")


@pytest.fixture
def member(make_user):
    return make_user("member@example.com", subscribed=True)


@pytest.fixture
def admin_user(make_user):
    return make_user("admin@example.com", is_admin=True, full_name="Admin")


def bearer(user: User) -> dict:
    return {"Authorization": f"Bearer {auth.create_access_token(user)}"}
