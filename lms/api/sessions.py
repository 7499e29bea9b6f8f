"""Class sessions: custom creation, rescheduling, cancellation cascade."""
import json
import logging
from datetime import date as date_cls, datetime, timedelta

from fastapi import APIRouter, HTTPException, Request
from pymongo.errors import DuplicateKeyError

from lms import db
from lms.api.deps import CurrentUser, StaffOnly, get_object_or_404
from lms.config import settings
from lms.models.fields import to_naive_utc
from lms.models.lms_class import LmsClass
from lms.models.session import ClassSession, SessionCancel, SessionCreate, SessionUpdate
from lms.models.user import User, UserRole
from lms.services.enrollments import active_enrollment, active_students, get_class_or_404
from lms.services.recordings import link_recording
from lms.services.scheduling import (
    attach_zoom_meeting,
    delete_zoom_meeting_quietly,
    format_local,
    get_zone,
    local_to_utc,
    next_session_index,
)
from lms.services.sms import get_sms_service
from lms.services.zoom import ZoomError, get_zoom_service, url_validation_response, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter()
public_router = APIRouter()


def session_to_dict(s: ClassSession, show_host_url: bool, show_join_url: bool = True) -> dict:
    data = s.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(s.id)
    if not show_host_url:
        data.pop("zoom_start_url", None)
        data.pop("attendance", None)
        if not s.recording_shared:
            data.pop("recording_url", None)
    if not show_join_url:
        data.pop("zoom_join_url", None)
    return data


def _is_class_staff(user: User, c: LmsClass) -> bool:
    return user.role == UserRole.ADMIN or (
        user.role == UserRole.INSTRUCTOR and c.instructor_id == str(user.id)
    )


async def _staff_class(user: User, class_id: str) -> LmsClass:
    c = await get_class_or_404(class_id)
    if not _is_class_staff(user, c):
        raise HTTPException(status_code=403, detail="Only the class instructor or an admin can manage sessions")
    return c


async def _notify_students(class_id: str, message: str) -> int:
    students = await active_students(class_id)
    return await get_sms_service().send_many([s.phone for s in students], message)


@router.get("/")
async def list_sessions(
    user: CurrentUser,
    class_id: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    include_cancelled: bool = True,
    page: int = 1,
    limit: int = 50,
):
    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    query: dict = {}
    if class_id:
        query["class_id"] = class_id
    if user.role == UserRole.STUDENT:
        if not class_id:
            raise HTTPException(status_code=400, detail="class_id is required")
        if not await active_enrollment(str(user.id), class_id):
            raise HTTPException(status_code=403, detail="No active enrollment for this class")
    elif user.role == UserRole.INSTRUCTOR and not class_id:
        own = await LmsClass.find({"instructor_id": str(user.id), "is_deleted": False}).to_list()
        query["class_id"] = {"$in": [str(c.id) for c in own]}
    if from_date or to_date:
        query["start_at"] = {}
        if from_date:
            query["start_at"]["$gte"] = to_naive_utc(from_date)
        if to_date:
            query["start_at"]["$lte"] = to_naive_utc(to_date)
    if not include_cancelled:
        query["is_cancelled"] = False

    total = await ClassSession.find(query).count()
    items = await ClassSession.find(query).sort("start_at").skip((page - 1) * limit).limit(limit).to_list()
    show_host = user.role != UserRole.STUDENT
    return {
        "items": [session_to_dict(s, show_host) for s in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{session_id}")
async def get_session(session_id: str, user: CurrentUser):
    s = await get_object_or_404(ClassSession, session_id, "Session")
    if user.role == UserRole.STUDENT:
        if not await active_enrollment(str(user.id), s.class_id):
            raise HTTPException(status_code=403, detail="No active enrollment for this class")
        return session_to_dict(s, show_host_url=False, show_join_url=not s.is_cancelled)
    return session_to_dict(s, show_host_url=True)


@router.post("/classes/{class_id}", status_code=201)
async def create_session(class_id: str, data: SessionCreate, user: StaffOnly):
    c = await _staff_class(user, class_id)
    tz_name = data.timezone or (c.time_schedules[0].timezone if c.time_schedules else None)
    tz = get_zone(tz_name)
    if data.start_at:
        start_at = to_naive_utc(data.start_at)
    elif data.date and data.time:
        try:
            start_at = local_to_utc(date_cls.fromisoformat(data.date), data.time, tz)
        except ValueError:
            raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD and time HH:MM")
    else:
        raise HTTPException(status_code=400, detail="Provide start_at or date and time")

    duration = data.duration_minutes or c.session_duration_minutes
    index = await next_session_index(str(c.id))
    s = ClassSession(
        class_id=str(c.id),
        index=index,
        start_at=start_at,
        end_at=start_at + timedelta(minutes=duration),
        timezone=tz.key,
        title=data.title or f"{c.name} - Session {index}",
        notes=data.notes,
    )
    zoom = get_zoom_service()
    if not data.skip_zoom:
        await attach_zoom_meeting(s, c, zoom)

    async def _save(session):
        await s.insert(session=session)
        await LmsClass.find({"_id": c.id}, session=session).update(
            {"$push": {"sessions": str(s.id)}}, session=session
        )

    try:
        await db.run_in_transaction(_save)
    except DuplicateKeyError:
        await delete_zoom_meeting_quietly(s, zoom)
        raise HTTPException(status_code=409, detail="A session with this index already exists, retry")
    except Exception:
        logger.exception("Saving session for class %s failed", c.id)
        await delete_zoom_meeting_quietly(s, zoom)
        raise HTTPException(status_code=500, detail="Session could not be created")
    return session_to_dict(s, show_host_url=True)


@router.patch("/{session_id}")
async def update_session(session_id: str, data: SessionUpdate, user: StaffOnly):
    s = await get_object_or_404(ClassSession, session_id, "Session")
    c = await _staff_class(user, s.class_id)
    update_data = data.model_dump(exclude_unset=True)

    old_start, old_end = s.start_at, s.end_at
    if "timezone" in update_data and data.timezone:
        s.timezone = get_zone(data.timezone).key
    duration = data.duration_minutes or int((s.end_at - s.start_at).total_seconds() // 60)
    if data.start_at:
        s.start_at = to_naive_utc(data.start_at)
    s.end_at = s.start_at + timedelta(minutes=duration)
    for field in ("title", "notes", "materials", "youtube_video_id", "recording_shared"):
        if field in update_data:
            setattr(s, field, update_data[field])
    if data.is_cancelled is True and not s.is_cancelled:
        s.is_cancelled = True
        s.cancelled_at = datetime.utcnow()
        s.cancellation_reason = data.cancellation_reason
    elif data.is_cancelled is False:
        s.is_cancelled = False
        s.cancelled_at = None
        s.cancellation_reason = None

    rescheduled = (s.start_at, s.end_at) != (old_start, old_end)
    zoom = get_zoom_service()
    if rescheduled and zoom.is_configured and not s.is_cancelled:
        body = {
            "topic": s.title or f"{c.name} - Session {s.index}",
            "start_time": s.start_at.replace(microsecond=0).isoformat() + "Z",
            "duration": duration,
            "timezone": s.timezone,
        }
        if s.zoom_meeting_id:
            try:
                await zoom.update_meeting(s.zoom_meeting_id, body)
            except ZoomError as e:
                if e.status_code == 404:
                    logger.info("Zoom meeting %s gone, recreating", s.zoom_meeting_id)
                    s.zoom_meeting_id = s.zoom_start_url = s.zoom_join_url = None
                    await attach_zoom_meeting(s, c, zoom)
                else:
                    logger.error("Zoom update for session %s failed: %s", s.id, e)
        else:
            await attach_zoom_meeting(s, c, zoom)

    s.updated_at = datetime.utcnow()
    await s.save()

    notified = 0
    if rescheduled and not s.is_cancelled:
        sms = get_sms_service()
        notified = await _notify_students(s.class_id, sms.reschedule(c.name, format_local(s.start_at, s.timezone)))
    result = session_to_dict(s, show_host_url=True)
    result["notified"] = notified
    return result


@router.post("/{session_id}/cancel")
async def cancel_session(session_id: str, data: SessionCancel, user: StaffOnly):
    """Cancel a session: Zoom meeting removed best-effort, students notified by SMS."""
    s = await get_object_or_404(ClassSession, session_id, "Session")
    c = await _staff_class(user, s.class_id)
    if s.is_cancelled:
        raise HTTPException(status_code=400, detail="Session is already cancelled")

    if data.delete_zoom and s.zoom_meeting_id:
        await delete_zoom_meeting_quietly(s, get_zoom_service())
        s.zoom_meeting_id = s.zoom_start_url = s.zoom_join_url = None
    s.is_cancelled = True
    s.cancelled_at = datetime.utcnow()
    s.cancellation_reason = data.reason
    s.updated_at = datetime.utcnow()
    await s.save()

    notified = 0
    if data.notify:
        sms = get_sms_service()
        notified = await _notify_students(s.class_id, sms.cancellation(c.name, data.reason or "Not specified"))
    result = session_to_dict(s, show_host_url=True)
    result["notified"] = notified
    return result


@router.delete("/{session_id}")
async def delete_session(session_id: str, user: StaffOnly):
    s = await get_object_or_404(ClassSession, session_id, "Session")
    c = await _staff_class(user, s.class_id)
    await delete_zoom_meeting_quietly(s, get_zoom_service())

    async def _remove(session):
        await LmsClass.find({"_id": c.id}, session=session).update(
            {"$pull": {"sessions": str(s.id)}}, session=session
        )
        await s.delete(session=session)

    try:
        await db.run_in_transaction(_remove)
    except Exception:
        logger.exception("Deleting session %s failed", session_id)
        raise HTTPException(status_code=500, detail="Session could not be deleted")
    return {"id": session_id, "deleted": True}


@public_router.post("/zoom/webhook")
async def zoom_webhook(request: Request):
    """Zoom event endpoint: URL validation and ``recording.completed``.

    Events are signed with the webhook secret token; unsigned or wrongly
    signed events are rejected once a secret is configured.
    """
    body = await request.body()
    try:
        event = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid event")
    payload = event.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    secret = settings.zoom_webhook_secret

    if event.get("event") == "endpoint.url_validation":
        if not secret:
            raise HTTPException(status_code=503, detail="Zoom webhook secret is not configured")
        return url_validation_response(str(payload.get("plainToken", "")), secret)

    if secret and not verify_webhook_signature(
        secret,
        request.headers.get("x-zm-request-timestamp", ""),
        body,
        request.headers.get("x-zm-signature", ""),
    ):
        logger.warning("Rejected Zoom webhook with a bad signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    if event.get("event") == "recording.completed":
        linked = await link_recording(payload.get("object") or {}, get_zoom_service())
        return {"status": "linked" if linked else "ignored"}
    return {"status": "ignored"}
