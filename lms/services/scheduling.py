"""Weekly occurrence math and session creation for classes.

Schedules use ``day`` 0=Sunday .. 6=Saturday and wall-clock times in the
schedule's timezone. Every stored datetime is naive UTC.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import HTTPException

from lms.config import settings
from lms.models.lms_class import LmsClass, TimeSchedule
from lms.models.session import ClassSession
from lms.services.zoom import ZoomError, ZoomService

logger = logging.getLogger(__name__)


def get_zone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or settings.default_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {name}")


def local_to_utc(day: date, hhmm: str, tz: ZoneInfo) -> datetime:
    hour, minute = (int(p) for p in hhmm.split(":"))
    local = datetime.combine(day, time(hour, minute), tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def utc_to_local(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def format_local(value: datetime, tz_name: Optional[str]) -> str:
    """Human readable local time for SMS, e.g. ``Sun 05 Jul 2026, 06:30 PM``."""
    return utc_to_local(value, get_zone(tz_name)).strftime("%a %d %b %Y, %I:%M %p")


def schedule_zone_name(schedule: TimeSchedule) -> str:
    return schedule.timezone or settings.default_timezone


def next_occurrence(schedule: TimeSchedule, after: datetime, inclusive: bool = False) -> datetime:
    """First start of ``schedule`` later than ``after`` (naive UTC).

    With ``inclusive`` a start exactly at ``after`` counts.
    """
    tz = get_zone(schedule_zone_name(schedule))
    local_after = utc_to_local(after, tz)
    target_weekday = (schedule.day - 1) % 7  # Python: Monday=0
    days_ahead = (target_weekday - local_after.weekday()) % 7
    candidate_day = local_after.date() + timedelta(days=days_ahead)
    candidate = local_to_utc(candidate_day, schedule.start_time, tz)
    if candidate < after or (candidate == after and not inclusive):
        candidate = local_to_utc(candidate_day + timedelta(days=7), schedule.start_time, tz)
    return candidate


def weekly_occurrences(
    schedules: list[TimeSchedule],
    after: datetime,
    weeks: int,
    inclusive: bool = False,
) -> list[tuple[datetime, TimeSchedule]]:
    """``weeks`` consecutive starts per schedule after ``after``, sorted by start.

    Week offsets are applied to the local date so a DST change keeps the
    wall-clock time.
    """
    occurrences: list[tuple[datetime, TimeSchedule]] = []
    for schedule in schedules:
        tz = get_zone(schedule_zone_name(schedule))
        first = next_occurrence(schedule, after, inclusive=inclusive)
        first_day = utc_to_local(first, tz).date()
        for week in range(weeks):
            start = local_to_utc(first_day + timedelta(weeks=week), schedule.start_time, tz)
            occurrences.append((start, schedule))
    occurrences.sort(key=lambda item: item[0])
    return occurrences


def session_duration(lms_class: LmsClass, schedule: Optional[TimeSchedule] = None) -> int:
    """Minutes from the schedule's end time when it has one, else the class default."""
    if schedule and schedule.end_time:
        sh, sm = (int(p) for p in schedule.start_time.split(":"))
        eh, em = (int(p) for p in schedule.end_time.split(":"))
        minutes = (eh * 60 + em) - (sh * 60 + sm)
        if minutes > 0:
            return minutes
    return lms_class.session_duration_minutes


async def next_session_index(class_id: str, session=None) -> int:
    last = await ClassSession.find(
        {"class_id": class_id}, session=session
    ).sort("-index").limit(1).to_list()
    return (last[0].index + 1) if last else 1


async def attach_zoom_meeting(
    class_session: ClassSession,
    lms_class: LmsClass,
    zoom: ZoomService,
) -> bool:
    """Create a meeting for ``class_session`` best-effort. Returns whether it worked."""
    if not zoom.is_configured:
        return False
    duration = int((class_session.end_at - class_session.start_at).total_seconds() // 60)
    body = zoom.meeting_body(
        topic=class_session.title or f"{lms_class.name} - Session {class_session.index}",
        start_at=class_session.start_at,
        duration_minutes=duration,
        timezone=class_session.timezone,
        auto_recording=lms_class.zoom_auto_recording,
        waiting_room=lms_class.zoom_waiting_room,
    )
    try:
        meeting = await zoom.create_meeting(body)
    except ZoomError as e:
        logger.error("Zoom meeting for %s session %s not created: %s", lms_class.id, class_session.index, e)
        return False
    class_session.zoom_meeting_id = str(meeting.get("id"))
    class_session.zoom_start_url = meeting.get("start_url")
    class_session.zoom_join_url = meeting.get("join_url")
    return True


async def delete_zoom_meeting_quietly(class_session: ClassSession, zoom: ZoomService) -> None:
    if not class_session.zoom_meeting_id or not zoom.is_configured:
        return
    try:
        await zoom.delete_meeting(class_session.zoom_meeting_id)
    except ZoomError as e:
        logger.warning("Zoom meeting %s not deleted: %s", class_session.zoom_meeting_id, e)


async def create_sessions(
    lms_class: LmsClass,
    occurrences: list[tuple[datetime, TimeSchedule]],
    zoom: ZoomService,
    with_zoom: bool = True,
) -> list[ClassSession]:
    """Insert one session per occurrence with a running index, link them to the class."""
    if not occurrences:
        return []
    class_id = str(lms_class.id)
    index = await next_session_index(class_id)
    created: list[ClassSession] = []
    try:
        for start_at, schedule in occurrences:
            duration = session_duration(lms_class, schedule)
            class_session = ClassSession(
                class_id=class_id,
                index=index,
                start_at=start_at,
                end_at=start_at + timedelta(minutes=duration),
                timezone=schedule_zone_name(schedule),
                title=f"{lms_class.name} - Session {index}",
            )
            if with_zoom:
                await attach_zoom_meeting(class_session, lms_class, zoom)
            await class_session.insert()
            created.append(class_session)
            index += 1
    finally:
        # sessions inserted before a failure stay linked to the class
        if created:
            lms_class.sessions = [*lms_class.sessions, *(str(s.id) for s in created)]
            lms_class.updated_at = datetime.utcnow()
            await lms_class.save()
    return created


async def generate_initial_sessions(
    lms_class: LmsClass,
    zoom: ZoomService,
    with_zoom: bool = True,
    now: Optional[datetime] = None,
) -> list[ClassSession]:
    """``total_sessions`` weeks of every schedule, from the first slot at or after the first session date (or now)."""
    if not lms_class.time_schedules or lms_class.total_sessions <= 0:
        return []
    now = now or datetime.utcnow()
    after = max(now, lms_class.first_session_date) if lms_class.first_session_date else now
    occurrences = weekly_occurrences(lms_class.time_schedules, after, lms_class.total_sessions, inclusive=True)
    return await create_sessions(lms_class, occurrences, zoom, with_zoom=with_zoom)


async def remove_class_sessions(lms_class: LmsClass, zoom: ZoomService) -> int:
    """Delete every session of the class and its meetings (meetings best-effort)."""
    class_sessions = await ClassSession.find({"class_id": str(lms_class.id)}).to_list()
    for class_session in class_sessions:
        await delete_zoom_meeting_quietly(class_session, zoom)
    if class_sessions:
        await ClassSession.find({"class_id": str(lms_class.id)}).delete()
    lms_class.sessions = []
    lms_class.updated_at = datetime.utcnow()
    await lms_class.save()
    return len(class_sessions)
