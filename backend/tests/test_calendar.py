from datetime import datetime

import pytest

from clubhouse import schedule
from clubhouse.schedule import WEEKLY_SCHEDULE, next_occurrence, sunday_based_weekday, upcoming

BUILD_REVIEW, OFFICE_HOURS = WEEKLY_SCHEDULE

# 2026-10-20 is a Tuesday; 10:00 PST == 18:00 UTC
TUESDAY_START = datetime(2026, 10, 20, 18, 0)


def test_sunday_based_weekday():
    assert sunday_based_weekday(datetime(2026, 10, 18)) == 0  # Sunday
    assert sunday_based_weekday(datetime(2026, 10, 20)) == 2  # Tuesday
    assert sunday_based_weekday(datetime(2026, 10, 24)) == 6  # Saturday


@pytest.mark.parametrize(
    "now, expected",
    [
        # Tuesday 09:00 PST, before the call
        (datetime(2026, 10, 20, 17, 0), TUESDAY_START),
        # Tuesday 10:30 PST, call in progress
        (datetime(2026, 10, 20, 18, 30), TUESDAY_START),
        # exactly at the scheduled end
        (datetime(2026, 10, 20, 19, 0), TUESDAY_START),
        # Tuesday 11:30 PST, already over
        (datetime(2026, 10, 20, 19, 30), datetime(2026, 10, 27, 18, 0)),
        # Wednesday 03:00 UTC is still Tuesday evening in PST
        (datetime(2026, 10, 21, 3, 0), datetime(2026, 10, 27, 18, 0)),
        # Sunday
        (datetime(2026, 10, 18, 12, 0), TUESDAY_START),
    ],
)
def test_next_build_review(now, expected):
    assert next_occurrence(BUILD_REVIEW, now) == expected


def test_thursday_follows_pst_date():
    now = datetime(2026, 10, 21, 3, 0)  # Tuesday 19:00 PST
    assert next_occurrence(OFFICE_HOURS, now) == datetime(2026, 10, 22, 18, 0)


def test_upcoming_marks_live_call():
    events = {e["id"]: e for e in upcoming(datetime(2026, 10, 20, 18, 30))}

    live = events["tuesday-build-review"]
    assert live["isLive"] is True
    assert live["joinUrl"] == BUILD_REVIEW.meeting_url
    assert live["nextDate"] == "2026-10-20T18:00:00Z"
    assert live["dayOfWeek"] == 2
    assert live["timezone"] == "PST"

    later = events["thursday-office-hours"]
    assert later["isLive"] is False
    assert later["joinUrl"] is None
    assert later["nextDate"] == "2026-10-22T18:00:00Z"


def test_fmt_pst():
    assert schedule.fmt_pst(TUESDAY_START) == "10/20/2026 at 10:00 AM (PST)"
    assert schedule.fmt_pst(None) == "-"
    assert schedule.fmt_range_pst(TUESDAY_START, datetime(2026, 10, 20, 21, 0)) == (
        "10/20/2026 at 10:00 AM (PST) to 10/20/2026 at 1:00 PM (PST)"
    )


def test_calendar_endpoint(client):
    r = client.get("/api/calendar")
    assert r.status_code == 200
    data = r.json()["data"]
    assert [e["id"] for e in data] == ["tuesday-build-review", "thursday-office-hours"]
    assert all(e["nextDate"].endswith("Z") for e in data)
