"""Public contact form and the staff inbox that answers it."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter

from lms.api.deps import CurrentUser, get_object_or_404
from lms.config import settings
from lms.models.contact import ContactCreate, ContactMessage, ContactReply
from lms.services.email import contact_received_email, contact_reply_email, get_email_service

logger = logging.getLogger(__name__)

public_router = APIRouter()
router = APIRouter()


def contact_to_dict(m: ContactMessage) -> dict:
    data = m.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(m.id)
    return data


@public_router.post("/", status_code=201)
async def submit_contact_message(data: ContactCreate):
    """Anyone may write in; the support inbox is alerted by email."""
    message = ContactMessage(
        name=data.name.strip(),
        email=data.email,
        phone=data.phone,
        message=data.message.strip(),
    )
    await message.insert()
    if settings.admin_email:
        subject, html = contact_received_email(message.name, message.email, message.phone, message.message)
        await get_email_service().send_quietly(settings.admin_email, subject, html)
    return {"id": str(message.id), "status": "received"}


@router.get("/")
async def list_contact_messages(user: CurrentUser, replied: Optional[bool] = None):
    query: dict = {}
    if replied is True:
        query["reply"] = {"$ne": None}
    elif replied is False:
        query["reply"] = None
    messages = await ContactMessage.find(query).sort("-created_at").to_list()
    return [contact_to_dict(m) for m in messages]


@router.get("/{message_id}")
async def get_contact_message(message_id: str, user: CurrentUser):
    message = await get_object_or_404(ContactMessage, message_id, "Message")
    return contact_to_dict(message)


@router.put("/{message_id}/reply")
async def reply_to_contact_message(message_id: str, data: ContactReply, user: CurrentUser):
    message = await get_object_or_404(ContactMessage, message_id, "Message")
    message.reply = data.reply.strip()
    message.replied_by = str(user.id)
    message.replied_at = datetime.utcnow()
    message.updated_at = message.replied_at
    await message.save()

    subject, html = contact_reply_email(message.name, message.message, message.reply)
    emailed = await get_email_service().send_quietly(message.email, subject, html)
    result = contact_to_dict(message)
    result["emailed"] = emailed
    return result


@router.delete("/{message_id}")
async def delete_contact_message(message_id: str, user: CurrentUser):
    message = await get_object_or_404(ContactMessage, message_id, "Message")
    await message.delete()
    return {"id": message_id, "deleted": True}
