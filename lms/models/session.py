"""Class sessions (one Zoom meeting each) with attendance."""
from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, ConfigDict, Field
import pymongo

from lms.models.fields import UtcDateTime


class SessionAttendance(BaseModel):
    student_id: str
    joined_at: Optional[datetime] = None
    left_at: Optional[datetime] = None
    duration_minutes: Optional[int] = None


class ClassSession(Document):
    class_id: Indexed(str)
    index: int
    start_at: datetime
    end_at: datetime
    timezone: str
    title: Optional[str] = None

    zoom_meeting_id: Optional[str] = None
    zoom_start_url: Optional[str] = None
    zoom_join_url: Optional[str] = None
    youtube_video_id: Optional[str] = None
    recording_url: Optional[str] = None
    recording_ready_at: Optional[datetime] = None
    recording_shared: bool = False
    materials: list[str] = Field(default_factory=list)
    attendance: list[SessionAttendance] = Field(default_factory=list)
    notes: Optional[str] = None

    is_cancelled: bool = False
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "sessions"
        use_state_management = True
        indexes = [
            pymongo.IndexModel(
                [("class_id", pymongo.ASCENDING), ("index", pymongo.ASCENDING)],
                unique=True,
            ),
            [("start_at", pymongo.ASCENDING)],
        ]


class SessionCreate(BaseModel):
    """Either ``start_at`` or ``date`` + ``time`` (local to ``timezone``)."""

    model_config = ConfigDict(extra="ignore")
    start_at: Optional[UtcDateTime] = None
    date: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    title: Optional[str] = None
    notes: Optional[str] = None
    skip_zoom: bool = False


class SessionUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    start_at: Optional[UtcDateTime] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    timezone: Optional[str] = None
    title: Optional[str] = None
    notes: Optional[str] = None
    materials: Optional[list[str]] = None
    youtube_video_id: Optional[str] = None
    recording_shared: Optional[bool] = None
    is_cancelled: Optional[bool] = None
    cancellation_reason: Optional[str] = None


class SessionCancel(BaseModel):
    reason: Optional[str] = None
    delete_zoom: bool = True
    notify: bool = True
