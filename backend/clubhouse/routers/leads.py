# clubhouse/routers/leads.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clubhouse import schemas
from clubhouse.access import require_admin
from clubhouse.config import get_settings
from clubhouse.database import get_db
from clubhouse.models import (
    Lead,
    User,
    LEAD_STAGE_LEAD,
    LEAD_STAGE_MEMBER,
    LEAD_STAGE_OPTOUT,
    utcnow,
)
from clubhouse.rate_limit import rate_limit, api_limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["leads"])

DEFAULT_SOURCE = "landing_page"
UNSUBSCRIBED_MESSAGE = "You have been successfully unsubscribed."


def _lead_out(lead: Lead) -> dict:
    return schemas.LeadOut.model_validate(lead).model_dump(mode="json")


def upsert_lead(db: Session, payload: schemas.LeadIn) -> tuple[Lead, bool]:
    """
    Insert-or-update keyed by lower-cased email. Returns (lead, created).
    Stage is never regressed: member/optout rows keep their stage.
    """
    email = payload.email.lower()
    lead = db.scalar(select(Lead).where(Lead.email == email))
    created = lead is None

    if created:
        lead = Lead(email=email, stage=LEAD_STAGE_LEAD)
        user = db.scalar(select(User).where(User.email == email))
        if user:
            lead.user_id = user.id
        db.add(lead)

    name = payload.display_name
    if name:
        lead.name = name
    lead.source = payload.source or lead.source or DEFAULT_SOURCE
    if payload.pain_level is not None:
        lead.pain_level = payload.pain_level
    for field in ("utm_source", "utm_medium", "utm_campaign"):
        value = getattr(payload, field)
        if value is not None:
            setattr(lead, field, value)

    try:
        db.commit()
    except IntegrityError:
        # concurrent insert for the same email; update that row instead
        db.rollback()
        if not created:
            raise
        return upsert_lead(db, payload)

    db.refresh(lead)
    return lead, created


@router.post("/leads", dependencies=[Depends(rate_limit(api_limiter))])
def create_lead(payload: schemas.LeadIn, db: Session = Depends(get_db)):
    lead, created = upsert_lead(db, payload)
    logger.info("LEAD %s %s (source=%s)", "created" if created else "updated", lead.email, lead.source)
    return {"data": _lead_out(lead)}


@router.post("/leads/optout", dependencies=[Depends(rate_limit(api_limiter))])
def optout_lead(payload: schemas.OptoutIn, db: Session = Depends(get_db)):
    lead = db.scalar(select(Lead).where(Lead.email == payload.email.lower()))
    if not lead:
        raise HTTPException(status_code=404, detail="Email not found")

    if lead.stage == LEAD_STAGE_MEMBER:
        raise HTTPException(status_code=409, detail="Members can manage email preferences from their account settings")

    if lead.stage != LEAD_STAGE_OPTOUT:
        lead.stage = LEAD_STAGE_OPTOUT
        lead.optout_at = utcnow()
        db.commit()
        logger.info("LEAD optout %s", lead.email)

    return {"data": {"message": UNSUBSCRIBED_MESSAGE}}


@router.get("/leads")
def lead_analytics(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    counts = dict(
        db.execute(select(Lead.stage, func.count(Lead.id)).group_by(Lead.stage)).all()
    )
    total = sum(counts.values())
    members = counts.get(LEAD_STAGE_MEMBER, 0)

    funnel = {
        "total_leads": total,
        "leads": counts.get(LEAD_STAGE_LEAD, 0),
        "members": members,
        "optouts": counts.get(LEAD_STAGE_OPTOUT, 0),
        "conversion_rate": round(members * 100.0 / total, 2) if total else 0.0,
    }

    recent = db.scalars(select(Lead).order_by(Lead.created_at.desc(), Lead.id.desc()).limit(50)).all()

    by_source = db.execute(
        select(Lead.source, Lead.stage, func.count(Lead.id)).group_by(Lead.source, Lead.stage)
    ).all()
    by_utm = db.execute(
        select(Lead.utm_source, func.count(Lead.id))
        .where(Lead.utm_source.is_not(None))
        .group_by(Lead.utm_source)
    ).all()

    analytics = {
        "by_source": [{"source": s, "stage": st, "count": c} for s, st, c in by_source],
        "by_utm_source": [{"utm_source": u, "count": c} for u, c in by_utm],
    }

    return {
        "data": {
            "funnel": funnel,
            "recentLeads": [_lead_out(l) for l in recent],
            "analytics": analytics,
        }
    }


def _require_debug_endpoints() -> None:
    if not get_settings().debug_endpoints_enabled:
        raise HTTPException(status_code=404, detail="Not found")


@router.post("/leads-debug", dependencies=[Depends(_require_debug_endpoints)])
def create_lead_debug(payload: schemas.LeadIn, db: Session = Depends(get_db)):
    lead, created = upsert_lead(db, payload)
    return {
        "data": _lead_out(lead),
        "debug": {
            "received": payload.model_dump(),
            "created": created,
            "normalized_email": lead.email,
        },
    }
