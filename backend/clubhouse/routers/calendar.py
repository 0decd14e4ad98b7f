# clubhouse/routers/calendar.py
from __future__ import annotations

from fastapi import APIRouter

from clubhouse import schedule

router = APIRouter(prefix="/api", tags=["calendar"])


@router.get("/calendar")
def get_calendar():
    """Static weekly schedule, no database needed."""
    return {"data": schedule.upcoming()}
