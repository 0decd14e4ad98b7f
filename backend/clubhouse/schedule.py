# clubhouse/schedule.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

# ------------------------------------------------------------
# PACIFIC TIME, FIXED OFFSET
# ------------------------------------------------------------
# Live calls are announced as "10:00 PST" all year round, so the
# schedule uses a fixed UTC-8 offset (no daylight saving).
# Datetimes are naive UTC everywhere else in the app.
# ------------------------------------------------------------
PST_OFFSET = timedelta(hours=-8)


@dataclass(frozen=True)
class RecurringEvent:
    id: str
    title: str
    description: str
    day_of_week: int  # 0 = Sunday ... 6 = Saturday
    time: str         # "HH:MM" in PST
    duration: int     # minutes
    meeting_url: str
    timezone: str = "PST"


WEEKLY_SCHEDULE = (
    RecurringEvent(
        id="tuesday-build-review",
        title="Build Review",
        description="Show what you built this week. Get feedback from the community.",
        day_of_week=2,
        time="10:00",
        duration=60,
        meeting_url="https://zoom.us/j/placeholder",
    ),
    RecurringEvent(
        id="thursday-office-hours",
        title="Open Office Hours",
        description="Get help with your builds. Ask questions. Share problems.",
        day_of_week=4,
        time="10:00",
        duration=60,
        meeting_url="https://zoom.us/j/placeholder",
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_pst(utc_naive: datetime) -> datetime:
    return utc_naive + PST_OFFSET


def from_pst(pst_naive: datetime) -> datetime:
    return pst_naive - PST_OFFSET


def sunday_based_weekday(dt: datetime) -> int:
    """0 = Sunday ... 6 = Saturday (Python's weekday() starts on Monday)."""
    return (dt.weekday() + 1) % 7


def next_occurrence(event: RecurringEvent, now: Optional[datetime] = None) -> datetime:
    """
    Start (naive UTC) of the occurrence that is in progress, or else the
    next one to start.
    """
    now = now or _utcnow()
    local_now = to_pst(now)
    hours, minutes = (int(p) for p in event.time.split(":"))

    days_until = (event.day_of_week - sunday_based_weekday(local_now)) % 7
    start_local = (local_now + timedelta(days=days_until)).replace(
        hour=hours, minute=minutes, second=0, microsecond=0
    )

    # today's occurrence already ended -> next week
    if start_local + timedelta(minutes=event.duration) < local_now:
        start_local += timedelta(days=7)

    return from_pst(start_local)


def is_live(start_utc: datetime, duration_minutes: int, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    return start_utc <= now <= start_utc + timedelta(minutes=duration_minutes)


def upcoming(now: Optional[datetime] = None) -> list[dict]:
    now = now or _utcnow()
    out = []
    for ev in WEEKLY_SCHEDULE:
        start = next_occurrence(ev, now)
        live = is_live(start, ev.duration, now)
        out.append(
            {
                "id": ev.id,
                "title": ev.title,
                "description": ev.description,
                "dayOfWeek": ev.day_of_week,
                "time": ev.time,
                "timezone": ev.timezone,
                "duration": ev.duration,
                "nextDate": start.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z"),
                "isLive": live,
                "joinUrl": ev.meeting_url if live else None,
            }
        )
    return out


def fmt_pst(dt: Optional[datetime]) -> str:
    """MM/DD/YYYY at h:mm AM/PM (PST)"""
    if not dt:
        return "-"

    local = to_pst(dt.replace(tzinfo=None))
    hour_12 = local.strftime("%I").lstrip("0") or "12"
    return f"{local.strftime('%m/%d/%Y')} at {hour_12}:{local.strftime('%M')} {local.strftime('%p')} (PST)"


def fmt_range_pst(start: Optional[datetime], end: Optional[datetime]) -> str:
    if not start:
        return "-"
    if not end:
        return fmt_pst(start)
    return f"{fmt_pst(start)} to {fmt_pst(end)}"
