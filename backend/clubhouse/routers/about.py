# clubhouse/routers/about.py
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from clubhouse import schemas
from clubhouse.access import require_access, require_admin
from clubhouse.database import get_db
from clubhouse.models import SiteContent, StripeSubscription, User, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["about"])

RECENT_MEMBERS = 8

PageKey = Annotated[str, Path(pattern=r"^[a-z0-9-]{1,50}$")]


def _content_out(row: SiteContent) -> dict:
    return {
        "page": row.page,
        "content": row.content,
        "updated_by": row.updated_by,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


@router.get("/site-content/{page}")
def get_site_content(
    page: PageKey,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    row = db.get(SiteContent, page)
    if row is None:
        # clients fall back to their built-in copy
        raise HTTPException(status_code=404, detail="Page content not found")
    return {"data": _content_out(row)}


@router.put("/site-content/{page}")
def upsert_site_content(
    page: PageKey,
    payload: schemas.SiteContentIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    row = db.get(SiteContent, page)
    if row is None:
        row = SiteContent(page=page)
        db.add(row)

    row.content = payload.content
    row.updated_by = admin.id
    row.updated_at = utcnow()
    db.commit()
    db.refresh(row)
    logger.info("ADMIN %s updated site content %r", admin.id, page)
    return {"data": _content_out(row)}


@router.get("/stats/members")
def member_stats(db: Session = Depends(get_db), user: User = Depends(require_access(allow_free_tier=True))):
    active_members = db.scalar(
        select(func.count(func.distinct(StripeSubscription.user_id))).where(StripeSubscription.status == "active")
    )
    admins = db.scalar(select(func.count(User.id)).where(User.is_admin.is_(True)))
    founding = db.execute(
        select(func.count(User.founding_number), func.max(User.founding_number))
    ).one()
    recent = db.scalars(select(User).order_by(User.created_at.desc()).limit(RECENT_MEMBERS)).all()

    return {
        "data": {
            "active_member_count": active_members or 0,
            "admin_count": admins or 0,
            "founding_member_count": founding[0] or 0,
            "latest_founding_number": founding[1],
            "recent_members": [
                {"id": u.id, "full_name": u.full_name, "founding_number": u.founding_number} for u in recent
            ],
        }
    }
