# clubhouse/routers/events.py
from __future__ import annotations

import logging
from datetime import timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from clubhouse import email_templates, schemas, schedule
from clubhouse.access import evaluate_access, require_access, require_admin
from clubhouse.config import get_settings
from clubhouse.database import get_db
from clubhouse.emailer import send_email_if_configured
from clubhouse.models import (
    Event,
    EventRegistration,
    User,
    REG_ATTENDED,
    REG_CANCELLED,
    REG_REGISTERED,
    REG_WAITLISTED,
    utcnow,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])

# statuses that hold a seat
SEATED = (REG_REGISTERED, REG_ATTENDED)


def _get_event(db: Session, event_id: int) -> Event:
    ev = db.get(Event, event_id)
    if not ev:
        raise HTTPException(status_code=404, detail="Event not found")
    return ev


def _counts(ev: Event) -> dict:
    seated = sum(1 for r in ev.registrations if r.status in SEATED)
    waitlisted = sum(1 for r in ev.registrations if r.status == REG_WAITLISTED)
    return {
        "registered": seated,
        "waitlisted": waitlisted,
        "spots_left": None if ev.capacity is None else max(0, ev.capacity - seated),
    }


def _event_out(ev: Event, user: Optional[User] = None) -> dict:
    d = {
        "id": ev.id,
        "title": ev.title,
        "description": ev.description,
        "location": ev.location,
        "meeting_url": ev.meeting_url,
        "start_at": ev.start_at.isoformat() if ev.start_at else None,
        "end_at": ev.end_at.isoformat() if ev.end_at else None,
        "capacity": ev.capacity,
        **_counts(ev),
    }
    if user is not None:
        mine = next((r for r in ev.registrations if r.user_id == user.id), None)
        d["my_status"] = mine.status if mine else None
    return d


def _registration_out(reg: EventRegistration) -> dict:
    return {
        "event_id": reg.event_id,
        "user_id": reg.user_id,
        "status": reg.status,
        "created_at": reg.created_at.isoformat() if reg.created_at else None,
        "updated_at": reg.updated_at.isoformat() if reg.updated_at else None,
    }


def _has_seat(ev: Event) -> bool:
    return ev.capacity is None or _counts(ev)["registered"] < ev.capacity


def _promote_waitlist(ev: Event) -> Optional[EventRegistration]:
    """First waitlisted registration (oldest) takes a free seat."""
    if not _has_seat(ev):
        return None
    waiting = [r for r in ev.registrations if r.status == REG_WAITLISTED]
    if not waiting:
        return None
    first = min(waiting, key=lambda r: (r.created_at, r.id))
    first.status = REG_REGISTERED
    return first


# ------------------------------------------------------------
# Members
# ------------------------------------------------------------
@router.get("")
def list_events(
    include_past: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(require_access()),
):
    q = select(Event).order_by(Event.start_at.asc(), Event.id.asc())
    if not include_past:
        q = q.where(Event.start_at >= utcnow())
    events = db.scalars(q).all()
    return {"data": [_event_out(ev, user) for ev in events]}


@router.get("/{event_id}")
def get_event(event_id: int, db: Session = Depends(get_db), user: User = Depends(require_access())):
    return {"data": _event_out(_get_event(db, event_id), user)}


@router.post("/{event_id}/register")
def register_for_event(event_id: int, db: Session = Depends(get_db), user: User = Depends(require_access())):
    ev = _get_event(db, event_id)

    reg = db.scalar(
        select(EventRegistration).where(
            EventRegistration.event_id == ev.id,
            EventRegistration.user_id == user.id,
        )
    )
    if reg is not None and reg.status != REG_CANCELLED:
        return {"data": _registration_out(reg)}

    status = REG_REGISTERED if _has_seat(ev) else REG_WAITLISTED
    if reg is None:
        reg = EventRegistration(event_id=ev.id, user_id=user.id, status=status)
        db.add(reg)
    else:
        # back of the queue
        reg.status = status
        reg.created_at = utcnow()

    db.commit()
    db.refresh(reg)
    logger.info("EVENT %s: %s %s", ev.id, user.id, status)
    return {"data": _registration_out(reg)}


@router.post("/{event_id}/cancel")
def cancel_registration(event_id: int, db: Session = Depends(get_db), user: User = Depends(require_access())):
    ev = _get_event(db, event_id)

    reg = db.scalar(
        select(EventRegistration).where(
            EventRegistration.event_id == ev.id,
            EventRegistration.user_id == user.id,
        )
    )
    if reg is None or reg.status == REG_CANCELLED:
        raise HTTPException(status_code=404, detail="Registration not found")

    reg.status = REG_CANCELLED
    db.flush()
    db.refresh(ev)
    promoted = _promote_waitlist(ev)
    db.commit()

    if promoted is not None:
        logger.info("EVENT %s: promoted %s from waitlist", ev.id, promoted.user_id)

    return {
        "data": {
            **_registration_out(reg),
            "promoted_user_id": promoted.user_id if promoted else None,
        }
    }


# ------------------------------------------------------------
# Admin
# ------------------------------------------------------------
@router.post("")
def create_event(payload: schemas.EventCreateIn, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    data = payload.model_dump()
    for k in ("start_at", "end_at"):
        if data[k] is not None and data[k].tzinfo is not None:
            data[k] = data[k].astimezone(timezone.utc).replace(tzinfo=None)
    if data["end_at"] and data["end_at"] < data["start_at"]:
        raise HTTPException(status_code=400, detail="End time must be after start time")

    ev = Event(created_by=admin.id, **data)
    db.add(ev)
    db.commit()
    db.refresh(ev)
    return {"data": _event_out(ev)}


@router.put("/{event_id}")
def update_event(
    event_id: int,
    payload: schemas.EventUpdateIn,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    ev = _get_event(db, event_id)
    for k, v in payload.model_dump(exclude_unset=True).items():
        if k in ("start_at", "end_at") and v is not None and v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        setattr(ev, k, v)

    if ev.end_at and ev.start_at and ev.end_at < ev.start_at:
        db.rollback()
        raise HTTPException(status_code=400, detail="End time must be after start time")

    # more capacity may free seats for the waitlist
    while _promote_waitlist(ev) is not None:
        pass

    db.commit()
    db.refresh(ev)
    return {"data": _event_out(ev)}


@router.delete("/{event_id}")
def delete_event(event_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    ev = _get_event(db, event_id)
    db.delete(ev)
    db.commit()
    return {"data": {"id": event_id, "deleted": True}}


@router.get("/{event_id}/registrations")
def list_registrations(event_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    ev = _get_event(db, event_id)
    return {"data": [_registration_out(r) for r in ev.registrations]}


@router.patch("/{event_id}/registrations/{user_id}")
def mark_attended(
    event_id: int,
    user_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    reg = db.scalar(
        select(EventRegistration).where(
            EventRegistration.event_id == event_id,
            EventRegistration.user_id == user_id,
        )
    )
    if reg is None or reg.status == REG_CANCELLED:
        raise HTTPException(status_code=404, detail="Registration not found")
    if reg.status == REG_ATTENDED:
        return {"data": _registration_out(reg)}
    if reg.status != REG_REGISTERED:
        raise HTTPException(status_code=400, detail="Only registered attendees can be marked attended")

    reg.status = REG_ATTENDED
    db.commit()
    db.refresh(reg)
    return {"data": _registration_out(reg)}


@router.post("/{event_id}/invite")
def invite_members_to_event(
    event_id: int,
    payload: Optional[schemas.EventInviteIn] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    ev = _get_event(db, event_id)

    users = db.scalars(select(User)).all()
    recipients = [u.email for u in users if u.email and evaluate_access(db, u).has_full_access]

    if not recipients:
        return {"data": {"event_id": ev.id, "sent": 0, "failed": 0, "skipped": len(users)}}

    s = get_settings()
    parts = email_templates.event_reminder(
        org_name=s.org_name,
        title=ev.title,
        when=schedule.fmt_range_pst(ev.start_at, ev.end_at),
        location=ev.location,
        meeting_url=ev.meeting_url,
        description=ev.description,
        message=payload.message if payload else None,
        base_url=s.app_base_url,
    )

    sent = 0
    failed = 0
    for email in recipients:
        if send_email_if_configured(email, parts.subject, parts.body):
            sent += 1
        else:
            failed += 1

    return {
        "data": {
            "event_id": ev.id,
            "sent": sent,
            "failed": failed,
            "skipped": max(0, len(users) - len(recipients)),
        }
    }
