"""Session attendance: join/leave marks and reports."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from lms.api.deps import CurrentUser, StaffOnly, get_object_or_404
from lms.models.lms_class import LmsClass
from lms.models.session import ClassSession, SessionAttendance
from lms.models.user import User, UserRole
from lms.services.enrollments import active_enrollment, get_class_or_404

router = APIRouter()


class AttendanceMark(BaseModel):
    session_id: str
    student_id: Optional[str] = None


def _is_class_staff(user: User, c: LmsClass) -> bool:
    return user.role == UserRole.ADMIN or (
        user.role == UserRole.INSTRUCTOR and c.instructor_id == str(user.id)
    )


async def _resolve(data: AttendanceMark, user: User) -> tuple[ClassSession, str]:
    s = await get_object_or_404(ClassSession, data.session_id, "Session")
    c = await get_class_or_404(s.class_id, label="Parent class")
    if _is_class_staff(user, c):
        if not data.student_id:
            raise HTTPException(status_code=400, detail="student_id is required")
        return s, data.student_id
    student_id = str(user.id)
    if data.student_id and data.student_id != student_id:
        raise HTTPException(status_code=403, detail="Students can only mark their own attendance")
    if not await active_enrollment(student_id, s.class_id):
        raise HTTPException(status_code=403, detail="Student is not enrolled in this class")
    return s, student_id


def _entry(s: ClassSession, student_id: str) -> Optional[SessionAttendance]:
    return next((a for a in s.attendance if a.student_id == student_id), None)


@router.post("/start")
async def mark_start(data: AttendanceMark, user: CurrentUser):
    s, student_id = await _resolve(data, user)
    if s.is_cancelled:
        raise HTTPException(status_code=400, detail="Session is cancelled")
    entry = _entry(s, student_id)
    if entry is None:
        entry = SessionAttendance(student_id=student_id, joined_at=datetime.utcnow())
        s.attendance.append(entry)
    elif entry.joined_at is None:
        entry.joined_at = datetime.utcnow()
    else:
        return {"session_id": str(s.id), "attendance": entry.model_dump(mode="json")}
    s.updated_at = datetime.utcnow()
    await s.save()
    return {"session_id": str(s.id), "attendance": entry.model_dump(mode="json")}


@router.post("/end")
async def mark_end(data: AttendanceMark, user: CurrentUser):
    s, student_id = await _resolve(data, user)
    entry = _entry(s, student_id)
    if entry is None or entry.joined_at is None:
        raise HTTPException(status_code=400, detail="Attendance was not started")
    entry.left_at = datetime.utcnow()
    entry.duration_minutes = round((entry.left_at - entry.joined_at).total_seconds() / 60)
    s.updated_at = datetime.utcnow()
    await s.save()
    return {"session_id": str(s.id), "attendance": entry.model_dump(mode="json")}


@router.get("/{session_id}")
async def session_attendance(session_id: str, user: CurrentUser):
    s = await get_object_or_404(ClassSession, session_id, "Session")
    c = await get_class_or_404(s.class_id, label="Parent class")
    rows = [a.model_dump(mode="json") for a in s.attendance]
    if not _is_class_staff(user, c):
        rows = [r for r in rows if r["student_id"] == str(user.id)]
        return {"session_id": session_id, "attendance": rows}
    return {"session_id": session_id, "count": len(rows), "attendance": rows}


@router.delete("/{session_id}")
async def clear_attendance(session_id: str, user: StaffOnly):
    s = await get_object_or_404(ClassSession, session_id, "Session")
    c = await get_class_or_404(s.class_id, label="Parent class")
    if not _is_class_staff(user, c):
        raise HTTPException(status_code=403, detail="Not the instructor of this class")
    s.attendance = []
    s.updated_at = datetime.utcnow()
    await s.save()
    return {"session_id": session_id, "cleared": True}
