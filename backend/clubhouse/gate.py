# clubhouse/gate.py
from __future__ import annotations

import logging
from typing import Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from . import auth
from .database import SessionLocal
from .access import AccessDecision, evaluate_access, redirect_target, LEVEL_ADMIN
from .models import User

logger = logging.getLogger(__name__)

# Never gated: APIs enforce their own access, assets are public
SKIPPED_PREFIXES = (
    "/api",
    "/static",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/health",
    "/version",
    "/favicon.ico",
)
IMAGE_SUFFIXES = (".svg", ".png", ".jpg", ".jpeg", ".gif", ".webp")

PUBLIC_PAGES = {
    "/",
    "/join",
    "/login",
    "/signup",
    "/terms",
    "/privacy",
    "/forgot-password",
    "/reset-password",
    "/auth/callback",
}

AUTH_PAGES = {"/login", "/signup"}

# signed in, no subscription needed
PAYMENT_PAGES = {"/payment", "/payment/success"}

COMMUNITY_PREFIXES = (
    "/threads",
    "/classroom",
    "/calendar",
    "/about",
    "/profile",
    "/settings",
    "/admin",
)
FREE_TIER_PREFIXES = ("/classroom",)
ADMIN_PREFIXES = ("/admin",)

LOGIN_PAGE = "/login"


def _matches(path: str, prefixes: tuple) -> bool:
    return any(path == p or path.startswith(p + "/") for p in prefixes)


def is_skipped(path: str) -> bool:
    return path.startswith(SKIPPED_PREFIXES) or path.lower().endswith(IMAGE_SUFFIXES)


def gate_redirect(path: str, decision: AccessDecision) -> Optional[str]:
    """
    Where to send this request instead, or None to let it through.
    """
    if not decision.is_signed_in:
        return None if path in PUBLIC_PAGES else LOGIN_PAGE

    if path in AUTH_PAGES:
        return redirect_target(decision)

    if path in PAYMENT_PAGES:
        return None

    if _matches(path, ADMIN_PREFIXES):
        return None if decision.level == LEVEL_ADMIN else redirect_target(decision)

    if _matches(path, COMMUNITY_PREFIXES):
        allow_free = _matches(path, FREE_TIER_PREFIXES)
        return None if decision.allows(allow_free_tier=allow_free) else redirect_target(decision)

    return None


def _resolve_session(request: Request, db) -> Tuple[Optional[User], bool]:
    """
    (user, refreshed). A missing/expired access token with a valid refresh
    cookie still yields the user, flagged for a new access cookie.
    """
    user = auth.user_from_token(db, auth.extract_token(request))
    if user is not None:
        return user, False

    refresh = request.cookies.get(auth.REFRESH_COOKIE)
    user = auth.user_from_token(db, refresh, auth.TOKEN_REFRESH)
    return user, user is not None


class RouteGateMiddleware(BaseHTTPMiddleware):
    """
    Page gate.

    Behavior:
      - API/static/docs paths: pass-through
      - Refreshes the access cookie from the refresh cookie when needed
      - Redirects according to gate_redirect()
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path

        if is_skipped(path):
            return await call_next(request)

        db = SessionLocal()
        try:
            user, refreshed = _resolve_session(request, db)
            decision = evaluate_access(db, user)
        finally:
            db.close()

        target = gate_redirect(path, decision)
        if target is not None and target != path:
            logger.debug("GATE %s -> %s (%s)", path, target, decision.level)
            response = RedirectResponse(url=target, status_code=307)
        else:
            response = await call_next(request)

        if refreshed and user is not None:
            auth.set_access_cookie(response, user)

        return response
