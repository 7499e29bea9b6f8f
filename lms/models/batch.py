from datetime import datetime
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, ConfigDict, Field

from lms.models.fields import UtcDateTime


class Batch(Document):
    """Intake cohort (e.g. "2026 A/L")."""
    name: Indexed(str, unique=True)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    class_ids: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "batches"
        use_state_management = True


class BatchCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str
    description: Optional[str] = None
    start_date: Optional[UtcDateTime] = None
    end_date: Optional[UtcDateTime] = None
    class_ids: list[str] = Field(default_factory=list)
    is_active: bool = True


class BatchUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[UtcDateTime] = None
    end_date: Optional[UtcDateTime] = None
    class_ids: Optional[list[str]] = None
    is_active: Optional[bool] = None
