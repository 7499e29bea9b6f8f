"""Background top-up of upcoming class sessions."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from lms.config import settings
from lms.models.lms_class import LmsClass
from lms.models.session import ClassSession
from lms.services.scheduling import create_sessions, weekly_occurrences
from lms.services.zoom import ZoomService, get_zoom_service

logger = logging.getLogger(__name__)


async def top_up_class(
    lms_class: LmsClass,
    zoom: ZoomService,
    now: Optional[datetime] = None,
    lookahead_days: Optional[int] = None,
    weeks: Optional[int] = None,
) -> list[ClassSession]:
    """Append ``weeks`` of sessions when the latest one starts inside the look-ahead window.

    Classes without a session yet are left alone; their first batch comes from
    class creation.
    """
    now = now or datetime.utcnow()
    lookahead_days = settings.session_lookahead_days if lookahead_days is None else lookahead_days
    weeks = settings.session_topup_weeks if weeks is None else weeks

    latest = await ClassSession.find({"class_id": str(lms_class.id)}).sort("-start_at").limit(1).to_list()
    if not latest:
        return []
    last_start = latest[0].start_at
    if last_start >= now + timedelta(days=lookahead_days):
        return []

    occurrences = weekly_occurrences(lms_class.time_schedules, last_start, weeks)
    created = await create_sessions(lms_class, occurrences, zoom)
    logger.info("Generated %d session(s) for class %s", len(created), lms_class.id)
    return created


async def run_generation_cycle(
    zoom: Optional[ZoomService] = None,
    now: Optional[datetime] = None,
) -> int:
    """One pass over active classes. A failing class is logged and skipped."""
    zoom = zoom or get_zoom_service()
    classes = await LmsClass.find(
        {"is_active": True, "is_deleted": False, "time_schedules": {"$ne": []}}
    ).to_list()
    total = 0
    for lms_class in classes:
        if not lms_class.time_schedules:
            continue
        try:
            total += len(await top_up_class(lms_class, zoom, now=now))
        except Exception:
            logger.exception("Session generation failed for class %s", lms_class.id)
    return total


class SessionGenerator:
    """Runs :func:`run_generation_cycle` every ``interval_seconds``."""

    def __init__(self, interval_seconds: Optional[int] = None):
        self.interval_seconds = interval_seconds or settings.session_generator_interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        if self.running:
            logger.warning("Session generator already running")
            return
        self.running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Session generator started, interval %ss", self.interval_seconds)

    async def stop(self):
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Session generator stopped")

    async def _loop(self):
        while self.running:
            try:
                created = await run_generation_cycle()
                if created:
                    logger.info("Session generator created %d session(s)", created)
            except Exception:
                logger.exception("Session generator cycle failed")
            await asyncio.sleep(self.interval_seconds)


session_generator = SessionGenerator()
