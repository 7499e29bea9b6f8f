"""Ticket chat and class chat messages."""
from datetime import datetime
from enum import Enum
from typing import Optional

from beanie import Document, Indexed
from pydantic import BaseModel, Field, model_validator


class AttachmentType(str, Enum):
    IMAGE = "image"
    FILE = "file"


class ChatAttachment(BaseModel):
    url: str
    file_type: AttachmentType = AttachmentType.FILE
    original_name: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    mime_type: Optional[str] = None


class _MessageBody(BaseModel):
    message: str = ""
    attachments: list[ChatAttachment] = Field(default_factory=list)

    @model_validator(mode="after")
    def _text_or_attachment(self):
        self.message = (self.message or "").strip()
        if not self.message and not self.attachments:
            raise ValueError("Message text or at least one attachment is required")
        return self


class Chat(Document):
    ticket_id: Indexed(str)
    sender_id: str
    sender_role: str
    sender_name: str = ""
    sender_avatar: Optional[str] = None
    client_message_id: Optional[str] = None
    message: str = ""
    attachments: list[ChatAttachment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "chats"
        use_state_management = True


class ClassChat(Document):
    class_id: Indexed(str)
    sender_id: str
    sender_role: str
    sender_name: str = ""
    sender_avatar: Optional[str] = None
    client_message_id: Optional[str] = None
    message: str = ""
    attachments: list[ChatAttachment] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "class_chats"
        use_state_management = True


class ChatMessageCreate(_MessageBody):
    client_message_id: Optional[str] = None
