"""WebSocket endpoint for ticket and class chat."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from lms.api.deps import user_from_token
from lms.models.chat import ChatMessageCreate
from lms.models.user import User
from lms.services.chat import (
    class_for_chat,
    message_to_dict,
    save_class_message,
    save_ticket_message,
    ticket_for_user,
)
from lms.services.realtime import ConnectionManager, class_room, get_connection_manager, ticket_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


async def _ack(websocket: WebSocket, event: str, ok: bool, **extra: Any) -> None:
    await websocket.send_json({"event": "ack", "data": {"event": event, "ok": ok, **extra}})


async def _room_for(user: User, data: dict) -> Optional[str]:
    """Resolve ``ticket_id``/``class_id`` in an event payload to a room the user may use."""
    if data.get("ticket_id"):
        if await ticket_for_user(user, str(data["ticket_id"])):
            return ticket_room(str(data["ticket_id"]))
        return None
    if data.get("class_id"):
        if await class_for_chat(user, str(data["class_id"])):
            return class_room(str(data["class_id"]))
    return None


async def handle_event(
    manager: ConnectionManager,
    websocket: WebSocket,
    user: User,
    event: str,
    data: dict,
) -> None:
    if event == "ping":
        await websocket.send_json({"event": "pong", "data": {}})
        return

    if event in ("join_ticket", "join_class"):
        key = "ticket_id" if event == "join_ticket" else "class_id"
        room = await _room_for(user, {key: data.get(key)})
        if not room:
            await _ack(websocket, event, False, error="Access denied")
            return
        manager.join(websocket, room)
        await _ack(websocket, event, True, room=room)
        return

    if event in ("leave_ticket", "leave_class"):
        key = "ticket_id" if event == "leave_ticket" else "class_id"
        room = ticket_room(str(data.get(key))) if key == "ticket_id" else class_room(str(data.get(key)))
        manager.leave(websocket, room)
        await _ack(websocket, event, True, room=room)
        return

    if event == "send_message":
        ticket = await ticket_for_user(user, str(data.get("ticket_id") or ""))
        if not ticket:
            await _ack(websocket, event, False, error="Access denied")
            return
        try:
            body = ChatMessageCreate(**data)
        except ValidationError as e:
            await _ack(websocket, event, False, error=e.errors()[0]["msg"])
            return
        message = message_to_dict(await save_ticket_message(user, ticket, body))
        await manager.broadcast(ticket_room(str(ticket.id)), "receive_message", message)
        await _ack(websocket, event, True, message=message)
        return

    if event == "send_class_message":
        lms_class = await class_for_chat(user, str(data.get("class_id") or ""))
        if not lms_class:
            await _ack(websocket, event, False, error="Access denied")
            return
        try:
            body = ChatMessageCreate(**data)
        except ValidationError as e:
            await _ack(websocket, event, False, error=e.errors()[0]["msg"])
            return
        message = message_to_dict(await save_class_message(user, lms_class, body))
        await manager.broadcast(class_room(str(lms_class.id)), "receive_class_message", message)
        await _ack(websocket, event, True, message=message)
        return

    if event in ("typing", "stop_typing"):
        room = await _room_for(user, data)
        if not room or not manager.in_room(websocket, room):
            await _ack(websocket, event, False, error="Join the room first")
            return
        relayed = "user_typing" if event == "typing" else "user_stop_typing"
        await manager.broadcast(
            room,
            relayed,
            {"room": room, "user_id": str(user.id), "name": user.full_name},
            exclude=websocket,
        )
        await _ack(websocket, event, True)
        return

    await _ack(websocket, event or "unknown", False, error="Unknown event")


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = ""):
    """
    Chat socket. The JWT is passed as ``?token=`` since browsers cannot set
    headers on WebSocket upgrades. Frames are ``{"event": ..., "data": {...}}``.
    """
    user = await user_from_token(token) if token else None
    if not user:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return

    user_id = str(user.id)
    manager = get_connection_manager()
    await manager.connect(websocket, user_id)
    try:
        await websocket.send_json({"event": "connected", "data": {"user_id": user_id}})
        while True:
            frame = await websocket.receive_json()
            if not isinstance(frame, dict):
                await _ack(websocket, "unknown", False, error="Frames must be JSON objects")
                continue
            data = frame.get("data") if isinstance(frame.get("data"), dict) else {}
            await handle_event(manager, websocket, user, str(frame.get("event") or ""), data)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error for %s: %s", user_id, e)
    finally:
        manager.disconnect(websocket, user_id)
