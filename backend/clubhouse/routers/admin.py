# clubhouse/routers/admin.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from clubhouse import schemas
from clubhouse.access import evaluate_access, require_admin
from clubhouse.database import get_db
from clubhouse.models import User, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


def _admin_user_out(db: Session, u: User) -> dict:
    d = schemas.UserOut.model_validate(u).model_dump(mode="json")
    d["access_level"] = evaluate_access(db, u).level
    return d


@router.get("/users")
def admin_list_users(db: Session = Depends(get_db)):
    users = db.scalars(
        select(User).order_by(func.coalesce(User.founding_number, 999999999), User.email)
    ).all()
    return {"data": [_admin_user_out(db, u) for u in users]}


@router.patch("/users/{user_id}")
def admin_update_user(
    user_id: str,
    payload: schemas.AdminUserUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    u = db.get(User, user_id)
    if not u:
        raise HTTPException(status_code=404, detail="User not found")

    if payload.is_admin is False and u.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot remove your own admin access")

    if payload.is_admin is not None:
        u.is_admin = payload.is_admin

    if payload.membership_tier is not None and payload.membership_tier != u.membership_tier:
        # tier is informational; entitlement still comes from the subscription row
        u.membership_tier = payload.membership_tier
        u.tier_updated_at = utcnow()

    db.commit()
    db.refresh(u)
    logger.info("ADMIN %s updated user %s", admin.id, u.id)
    return {"data": _admin_user_out(db, u)}
