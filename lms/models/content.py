"""Knowledge base documents, class materials and announcements."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, ConfigDict, Field

from lms.models.fields import UtcDateTime


class KnowledgeBase(Document):
    title: str
    description: Optional[str] = None
    file_url: Optional[str] = None
    file_s3_key: Optional[str] = None
    file_name: Optional[str] = None
    file_mime: Optional[str] = None
    category: str = "General"
    uploaded_by: Optional[str] = None
    publish_at: datetime = Field(default_factory=datetime.utcnow)
    is_published: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "knowledge_base"
        use_state_management = True


class MaterialType(str, Enum):
    PDF = "pdf"
    PPTX = "pptx"
    DOCX = "docx"
    IMAGE = "image"
    OTHER = "other"


class Material(Document):
    class_id: Indexed(str)
    title: str
    description: Optional[str] = None
    file_url: str
    file_s3_key: Optional[str] = None
    file_type: MaterialType = MaterialType.OTHER
    file_size: Optional[int] = None
    uploaded_by: Optional[str] = None
    is_published: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "materials"
        use_state_management = True


class Announcement(Document):
    title: str
    content: str
    class_id: Optional[str] = None
    author_id: Optional[str] = None
    is_published: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "announcements"
        use_state_management = True


class AnnouncementCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    title: str
    content: str
    class_id: Optional[str] = None
    is_published: bool = True


class AnnouncementUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    title: Optional[str] = None
    content: Optional[str] = None
    class_id: Optional[str] = None
    is_published: Optional[bool] = None


class ContentUpdate(BaseModel):
    """Metadata update shared by knowledge base entries and materials."""
    model_config = ConfigDict(extra="ignore")
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    publish_at: Optional[UtcDateTime] = None
    is_published: Optional[bool] = None
