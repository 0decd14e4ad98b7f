# clubhouse/routers/profile.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clubhouse import auth, schemas
from clubhouse.access import evaluate_access
from clubhouse.database import get_db
from clubhouse.models import User

router = APIRouter(prefix="/api", tags=["profile"])


@router.get("/profile")
def get_profile(db: Session = Depends(get_db), user: User = Depends(auth.get_current_user)):
    decision = evaluate_access(db, user)
    return {
        "data": {
            **schemas.UserOut.model_validate(user).model_dump(mode="json"),
            "access": decision.to_dict(),
        }
    }


@router.put("/profile")
def update_profile(
    payload: schemas.ProfileUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(auth.get_current_user),
):
    changes = payload.model_dump(exclude_unset=True)
    if "full_name" in changes and changes["full_name"] is not None:
        user.full_name = changes["full_name"]
    if "bio" in changes:
        user.bio = (changes["bio"] or "").strip() or None

    db.add(user)
    db.commit()
    db.refresh(user)
    return {"data": schemas.UserOut.model_validate(user).model_dump(mode="json")}


@router.get("/access/status")
def access_status(db: Session = Depends(get_db), user=Depends(auth.get_optional_user)):
    """
    Access decision for UI code (menus, upgrade banners). Works signed-out too.
    """
    decision = evaluate_access(db, user)
    return {"data": decision.to_dict()}
