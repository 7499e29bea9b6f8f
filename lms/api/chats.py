"""REST fallback for ticket and class chat; posts are also pushed to WebSocket rooms."""
from fastapi import APIRouter, File, HTTPException, UploadFile

from lms.api.deps import CurrentUser
from lms.models.chat import AttachmentType, ChatAttachment, ChatMessageCreate
from lms.services.chat import (
    class_for_chat,
    class_history,
    message_to_dict,
    save_class_message,
    save_ticket_message,
    ticket_for_user,
    ticket_history,
)
from lms.services.realtime import class_room, get_connection_manager, ticket_room
from lms.services.s3 import upload_file

router = APIRouter()


@router.get("/tickets/{ticket_id}")
async def get_ticket_messages(ticket_id: str, user: CurrentUser):
    if not await ticket_for_user(user, ticket_id):
        raise HTTPException(status_code=404, detail="Ticket not found")
    return await ticket_history(ticket_id)


@router.post("/tickets/{ticket_id}", status_code=201)
async def post_ticket_message(ticket_id: str, body: ChatMessageCreate, user: CurrentUser):
    ticket = await ticket_for_user(user, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    data = message_to_dict(await save_ticket_message(user, ticket, body))
    await get_connection_manager().broadcast(ticket_room(ticket_id), "receive_message", data)
    return data


@router.get("/classes/{class_id}")
async def get_class_messages(class_id: str, user: CurrentUser, page: int = 1, limit: int = 50):
    if not await class_for_chat(user, class_id):
        raise HTTPException(status_code=403, detail="No access to this class chat")
    return await class_history(class_id, max(page, 1), min(max(limit, 1), 200))


@router.post("/classes/{class_id}", status_code=201)
async def post_class_message(class_id: str, body: ChatMessageCreate, user: CurrentUser):
    lms_class = await class_for_chat(user, class_id)
    if not lms_class:
        raise HTTPException(status_code=403, detail="No access to this class chat")
    data = message_to_dict(await save_class_message(user, lms_class, body))
    await get_connection_manager().broadcast(class_room(class_id), "receive_class_message", data)
    return data


@router.post("/attachments", status_code=201)
async def upload_attachment(user: CurrentUser, file: UploadFile = File(...)):
    """Store a chat attachment; the returned object is sent back inside a message."""
    uploaded = await upload_file(file, folder=f"chat/{user.id}")
    mime = uploaded.get("mime_type") or ""
    attachment = ChatAttachment(
        url=uploaded["url"],
        file_type=AttachmentType.IMAGE if mime.startswith("image/") else AttachmentType.FILE,
        original_name=uploaded.get("original_name"),
        file_name=uploaded.get("file_name"),
        file_size=uploaded.get("size"),
        mime_type=mime or None,
    )
    return attachment.model_dump(mode="json")
