"""Support tickets."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException

from lms.api.deps import AdminOnly, CurrentUser, get_object_or_404
from lms.models.chat import Chat
from lms.models.ticket import Ticket, TicketCreate, TicketPriority, TicketStatus, TicketUpdate
from lms.models.user import UserRole

router = APIRouter()


def ticket_to_dict(t: Ticket) -> dict:
    data = t.model_dump(mode="json", exclude={"id", "revision_id"})
    data["id"] = str(t.id)
    return data


@router.get("/")
async def list_tickets(
    user: CurrentUser,
    status: Optional[TicketStatus] = None,
    priority: Optional[TicketPriority] = None,
):
    query: dict = {}
    if user.role != UserRole.ADMIN:
        query["user_id"] = str(user.id)
    if status:
        query["status"] = status.value
    if priority:
        query["priority"] = priority.value
    tickets = await Ticket.find(query).sort("-created_at").to_list()
    return [ticket_to_dict(t) for t in tickets]


@router.post("/", status_code=201)
async def create_ticket(data: TicketCreate, user: CurrentUser):
    if user.role != UserRole.STUDENT:
        raise HTTPException(status_code=403, detail="Only students can raise tickets")
    ticket = Ticket(
        user_id=str(user.id),
        name=user.full_name,
        email=user.email,
        phone=data.phone or user.phone,
        category=data.category,
        message=data.message.strip(),
    )
    await ticket.insert()
    return ticket_to_dict(ticket)


@router.get("/{ticket_id}")
async def get_ticket(ticket_id: str, user: CurrentUser):
    ticket = await get_object_or_404(Ticket, ticket_id, "Ticket")
    if user.role != UserRole.ADMIN and ticket.user_id != str(user.id):
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket_to_dict(ticket)


@router.patch("/{ticket_id}")
async def update_ticket(ticket_id: str, data: TicketUpdate, admin: AdminOnly):
    ticket = await get_object_or_404(Ticket, ticket_id, "Ticket")
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(ticket, field, value)
    ticket.updated_at = datetime.utcnow()
    await ticket.save()
    return ticket_to_dict(ticket)


@router.delete("/{ticket_id}")
async def delete_ticket(ticket_id: str, admin: AdminOnly):
    """Delete the ticket together with its chat history."""
    ticket = await get_object_or_404(Ticket, ticket_id, "Ticket")
    await Chat.find({"ticket_id": str(ticket.id)}).delete()
    await ticket.delete()
    return {"id": ticket_id, "deleted": True}
