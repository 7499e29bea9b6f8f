"""Chat persistence and room access rules shared by REST and WebSocket."""
from __future__ import annotations

from typing import Optional, Union

from lms.models.chat import Chat, ChatMessageCreate, ClassChat
from lms.models.lms_class import LmsClass
from lms.models.ticket import Ticket
from lms.models.user import User, UserRole
from lms.services.enrollments import active_enrollment
from lms.services.payments import safe_object_id


async def ticket_for_user(user: User, ticket_id: str) -> Optional[Ticket]:
    """The ticket if ``user`` may read and write its chat (owner or admin)."""
    oid = safe_object_id(ticket_id)
    ticket = await Ticket.get(oid) if oid else None
    if not ticket:
        return None
    if user.role == UserRole.ADMIN or ticket.user_id == str(user.id):
        return ticket
    return None


async def class_for_chat(user: User, class_id: str) -> Optional[LmsClass]:
    """Admins, the class instructor and actively enrolled students may use class chat."""
    oid = safe_object_id(class_id)
    lms_class = await LmsClass.get(oid) if oid else None
    if not lms_class or lms_class.is_deleted:
        return None
    if user.role == UserRole.ADMIN:
        return lms_class
    if user.role == UserRole.INSTRUCTOR:
        return lms_class if lms_class.instructor_id == str(user.id) else None
    if await active_enrollment(str(user.id), class_id):
        return lms_class
    return None


def _sender_fields(user: User) -> dict:
    return {
        "sender_id": str(user.id),
        "sender_role": user.role.value,
        "sender_name": user.full_name,
        "sender_avatar": user.profile_image,
    }


async def save_ticket_message(user: User, ticket: Ticket, body: ChatMessageCreate) -> Chat:
    chat = Chat(
        ticket_id=str(ticket.id),
        client_message_id=body.client_message_id,
        message=body.message,
        attachments=body.attachments,
        **_sender_fields(user),
    )
    await chat.insert()
    return chat


async def save_class_message(user: User, lms_class: LmsClass, body: ChatMessageCreate) -> ClassChat:
    chat = ClassChat(
        class_id=str(lms_class.id),
        client_message_id=body.client_message_id,
        message=body.message,
        attachments=body.attachments,
        **_sender_fields(user),
    )
    await chat.insert()
    return chat


def message_to_dict(message: Union[Chat, ClassChat]) -> dict:
    data = message.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(message.id)
    return data


async def ticket_history(ticket_id: str) -> list[dict]:
    messages = await Chat.find({"ticket_id": ticket_id}).sort("created_at", "_id").to_list()
    return [message_to_dict(m) for m in messages]


async def class_history(class_id: str, page: int = 1, limit: int = 50) -> list[dict]:
    """A page counted from the newest message, returned oldest first."""
    messages = (
        await ClassChat.find({"class_id": class_id})
        .sort("-created_at", "-_id")
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list()
    )
    messages.reverse()
    return [message_to_dict(m) for m in messages]
