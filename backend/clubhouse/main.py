# clubhouse/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from sqlalchemy import select

from clubhouse import auth
from clubhouse.config import APP_VERSION, get_settings, seed_admin_config
from clubhouse.database import SessionLocal, init_db
from clubhouse.errors import register_exception_handlers
from clubhouse.gate import RouteGateMiddleware
from clubhouse.models import User

from clubhouse.routers import about
from clubhouse.routers import admin
from clubhouse.routers import auth as auth_routes
from clubhouse.routers import calendar
from clubhouse.routers import courses
from clubhouse.routers import events
from clubhouse.routers import health
from clubhouse.routers import leads
from clubhouse.routers import pages
from clubhouse.routers import profile
from clubhouse.routers import stripe_routes
from clubhouse.routers import threads


# -------------------------------------------------
# LOGGING
# -------------------------------------------------
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------------------------------------
# APP SETUP
# -------------------------------------------------
app = FastAPI(title=f"{get_settings().org_name} Backend", version=APP_VERSION)

register_exception_handlers(app)
app.add_middleware(RouteGateMiddleware)

# Routers
app.include_router(health.router)
app.include_router(auth_routes.router)
app.include_router(auth_routes.callback_router)
app.include_router(leads.router)
app.include_router(stripe_routes.router)
app.include_router(threads.router)
app.include_router(courses.router)
app.include_router(events.router)
app.include_router(calendar.router)
app.include_router(profile.router)
app.include_router(admin.router)
app.include_router(about.router)
app.include_router(pages.router)


# -------------------------------------------------
# STARTUP: CREATE TABLES + OPTIONAL DEFAULT ADMIN SEED
# -------------------------------------------------
def seed_default_admin() -> None:
    """Creates the default admin ONLY when SEED_ADMIN is on and no admin exists."""
    cfg = seed_admin_config()
    if not cfg:
        return

    admin_email, admin_password = cfg
    db = SessionLocal()
    try:
        if db.scalar(select(User).where(User.is_admin == True)):  # noqa: E712
            return
        if auth.find_user_by_email(db, admin_email):
            logger.warning("SEED ADMIN skipped: %s already exists as a non-admin", admin_email)
            return

        auth.create_user(db, admin_email, admin_password, full_name="Default Admin", is_admin=True)
        db.commit()
        logger.info("SEED ADMIN created %s", admin_email)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    seed_default_admin()
    s = get_settings()
    logger.info(
        "STARTUP %s (env=%s, billing=%s, rate_limit=%s)",
        APP_VERSION,
        s.environment,
        "on" if s.billing_enabled else "off",
        s.rate_limit_backend,
    )
