# clubhouse/routers/auth.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from clubhouse import auth, email_templates, schemas
from clubhouse.access import evaluate_access, redirect_target, PAYMENT_PAGE
from clubhouse.config import get_settings
from clubhouse.database import get_db
from clubhouse.emailer import send_email_if_configured
from clubhouse.models import Lead, User
from clubhouse.rate_limit import rate_limit, auth_limiter, strict_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

# /auth/callback is a page route, not under /api
callback_router = APIRouter(tags=["auth"])


def _user_out(user: User) -> dict:
    return schemas.UserOut.model_validate(user).model_dump(mode="json")


@router.post("/signup", dependencies=[Depends(rate_limit(strict_limiter))])
def signup(payload: schemas.SignupIn, response: Response, db: Session = Depends(get_db)):
    if auth.find_user_by_email(db, payload.email):
        raise HTTPException(status_code=400, detail="User already registered")

    try:
        user = auth.create_user(db, payload.email, payload.password, full_name=payload.full_name)

        lead = db.scalar(select(Lead).where(Lead.email == user.email))
        if lead and not lead.user_id:
            lead.user_id = user.id

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("SIGNUP %s (founding #%s)", user.email, user.founding_number)

    s = get_settings()
    parts = email_templates.welcome(s.org_name, user.full_name, user.email, user.founding_number, s.app_base_url)
    send_email_if_configured(user.email, parts.subject, parts.body)

    session = auth.issue_session(response, user)
    return {
        "data": {
            "user": _user_out(user),
            "session": session,
            "message": "Account created! Redirecting to checkout...",
            "redirectTo": PAYMENT_PAGE,
        }
    }


@router.post("/login", dependencies=[Depends(rate_limit(auth_limiter))])
def login(payload: schemas.LoginIn, response: Response, db: Session = Depends(get_db)):
    user = auth.find_user_by_email(db, payload.email)
    if not user or not auth.verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid login credentials")

    decision = evaluate_access(db, user)
    session = auth.issue_session(response, user)

    return {
        "data": {
            "user": _user_out(user),
            "session": session,
            "hasActiveSubscription": decision.has_full_access,
            "redirectTo": redirect_target(decision),
        }
    }


@router.post("/refresh")
def refresh(
    request: Request,
    response: Response,
    payload: Optional[schemas.RefreshIn] = None,
    db: Session = Depends(get_db),
):
    token = (payload.refresh_token if payload else None) or request.cookies.get(auth.REFRESH_COOKIE)
    user = auth.user_from_token(db, token, auth.TOKEN_REFRESH)
    if not user:
        raise HTTPException(status_code=401, detail="No session")

    session = auth.issue_session(response, user)
    return {
        "data": {
            "user": {
                "id": user.id,
                "email": user.email,
                "membership_tier": user.membership_tier,
                "is_admin": user.is_admin,
            },
            "session": session,
        }
    }


@router.post("/logout")
def logout(response: Response):
    auth.clear_session(response)
    return {"data": {"message": "Signed out"}}


@router.post("/forgot-password", dependencies=[Depends(rate_limit(strict_limiter))])
def forgot_password(payload: schemas.ForgotPasswordIn, db: Session = Depends(get_db)):
    user = auth.find_user_by_email(db, payload.email)
    if user:
        code = auth.create_auth_code(db, user, auth.CODE_RECOVERY, ttl_minutes=60)
        s = get_settings()
        link = f"{s.app_base_url}/auth/callback?code={code}&type=recovery"
        parts = email_templates.password_recovery(s.org_name, user.email, link)
        send_email_if_configured(user.email, parts.subject, parts.body)
        logger.info("PASSWORD RECOVERY requested for %s", user.email)

    # same answer whether or not the account exists
    return {"data": {"message": "If an account exists for that email, a reset link is on its way."}}


@router.post("/reset-password", dependencies=[Depends(rate_limit(strict_limiter))])
def reset_password(
    payload: schemas.ResetPasswordIn,
    db: Session = Depends(get_db),
    user: User = Depends(auth.get_current_user),
):
    user.hashed_password = auth.hash_password(payload.password)
    db.add(user)
    db.commit()
    return {"data": {"message": "Password updated"}}


@router.get("/me")
def me(db: Session = Depends(get_db), user: User = Depends(auth.get_current_user)):
    decision = evaluate_access(db, user)
    return {"data": {"user": _user_out(user), "access": decision.to_dict()}}


@callback_router.get("/auth/callback")
def auth_callback(code: Optional[str] = None, type: Optional[str] = None, db: Session = Depends(get_db)):
    exchanged = auth.consume_auth_code(db, code)
    if not exchanged:
        return RedirectResponse(url="/", status_code=307)

    user, code_type = exchanged
    if (type or code_type) == auth.CODE_RECOVERY:
        target = "/reset-password"
    else:
        target = redirect_target(evaluate_access(db, user))

    response = RedirectResponse(url=target, status_code=307)
    auth.issue_session(response, user)
    return response
