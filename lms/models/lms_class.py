"""Classes with weekly schedules and optional revision/paper bundle links."""
import re
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, ConfigDict, Field, field_validator

from lms.models.fields import UtcDateTime

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class ClassLevel(str, Enum):
    GENERAL = "general"
    ORDINARY = "ordinary"
    ADVANCED = "advanced"


class TimeSchedule(BaseModel):
    """Weekly slot. ``day`` is 0=Sunday .. 6=Saturday, times are local to ``timezone``."""

    day: int = Field(ge=0, le=6)
    start_time: str
    end_time: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _HHMM_RE.match(value):
            raise ValueError("Time must be HH:MM (24h)")
        return value


class BundlePricing(BaseModel):
    """Precomputed prices for the four bundle combinations. ``None`` means not set."""

    theory_only: Optional[float] = None
    theory_revision: Optional[float] = None
    theory_paper: Optional[float] = None
    full: Optional[float] = None


class LmsClass(Document):
    name: str
    slug: Indexed(str, unique=True)
    description: Optional[str] = None
    time_schedules: list[TimeSchedule] = Field(default_factory=list)
    first_session_date: Optional[datetime] = None
    recurrence: str = "weekly"
    total_sessions: int = 4
    session_duration_minutes: int = 120
    images: list[str] = Field(default_factory=list)
    students: list[str] = Field(default_factory=list)
    sessions: list[str] = Field(default_factory=list)
    instructor_id: Optional[str] = None
    batch_id: Optional[str] = None
    price: float = 0.0
    level: ClassLevel = ClassLevel.GENERAL
    language: str = "si"
    tags: list[str] = Field(default_factory=list)

    revision_class_id: Optional[str] = None
    paper_class_id: Optional[str] = None
    bundle_pricing: BundlePricing = Field(default_factory=BundlePricing)

    zoom_auto_recording: str = "cloud"
    zoom_waiting_room: bool = True
    youtube_playlist_id: Optional[str] = None

    is_active: bool = True
    is_published: bool = False
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "classes"
        use_state_management = True


class ClassCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str
    description: Optional[str] = None
    time_schedules: list[TimeSchedule] = Field(default_factory=list)
    first_session_date: Optional[UtcDateTime] = None
    total_sessions: int = Field(default=4, ge=0, le=52)
    session_duration_minutes: int = Field(default=120, gt=0)
    images: list[str] = Field(default_factory=list)
    instructor_id: Optional[str] = None
    batch_id: Optional[str] = None
    price: float = Field(default=0.0, ge=0)
    level: ClassLevel = ClassLevel.GENERAL
    language: str = "si"
    tags: list[str] = Field(default_factory=list)
    revision_class_id: Optional[str] = None
    paper_class_id: Optional[str] = None
    bundle_pricing: BundlePricing = Field(default_factory=BundlePricing)
    youtube_playlist_id: Optional[str] = None
    is_published: bool = False
    skip_zoom: bool = False


class ClassUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: Optional[str] = None
    description: Optional[str] = None
    time_schedules: Optional[list[TimeSchedule]] = None
    first_session_date: Optional[UtcDateTime] = None
    total_sessions: Optional[int] = Field(default=None, ge=0, le=52)
    session_duration_minutes: Optional[int] = Field(default=None, gt=0)
    images: Optional[list[str]] = None
    instructor_id: Optional[str] = None
    batch_id: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    level: Optional[ClassLevel] = None
    language: Optional[str] = None
    tags: Optional[list[str]] = None
    revision_class_id: Optional[str] = None
    paper_class_id: Optional[str] = None
    bundle_pricing: Optional[BundlePricing] = None
    youtube_playlist_id: Optional[str] = None
    is_published: Optional[bool] = None
    skip_zoom: bool = False
