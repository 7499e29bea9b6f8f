"""Messages sent through the public contact form."""
from datetime import datetime
from typing import Optional

from beanie import Document
from pydantic import BaseModel, ConfigDict, EmailStr, Field


class ContactMessage(Document):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    message: str
    reply: Optional[str] = None
    replied_by: Optional[str] = None
    replied_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "contact_messages"
        use_state_management = True


class ContactCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    phone: Optional[str] = None
    message: str = Field(min_length=1, max_length=5000)


class ContactReply(BaseModel):
    reply: str = Field(min_length=1)
