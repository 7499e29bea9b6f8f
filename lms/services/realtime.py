"""In-process WebSocket rooms for ticket and class chat."""
import logging
from typing import Any, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def ticket_room(ticket_id: str) -> str:
    return f"ticket_{ticket_id}"


def class_room(class_id: str) -> str:
    return f"class_{class_id}"


class ConnectionManager:
    """
    Tracks connected sockets and the rooms each socket joined.

    Room membership is the only access control for broadcasts, so callers
    must check authorisation before :meth:`join`.
    """

    def __init__(self):
        self.rooms: dict[str, set[WebSocket]] = {}
        self.memberships: dict[WebSocket, set[str]] = {}

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        self.memberships[websocket] = set()
        logger.info("WebSocket connected: %s", user_id)

    def disconnect(self, websocket: WebSocket, user_id: Optional[str] = None):
        for room in self.memberships.pop(websocket, set()):
            members = self.rooms.get(room)
            if members is not None:
                members.discard(websocket)
                if not members:
                    del self.rooms[room]
        logger.info("WebSocket disconnected: %s", user_id)

    def join(self, websocket: WebSocket, room: str):
        self.rooms.setdefault(room, set()).add(websocket)
        self.memberships.setdefault(websocket, set()).add(room)

    def leave(self, websocket: WebSocket, room: str):
        self.rooms.get(room, set()).discard(websocket)
        self.memberships.get(websocket, set()).discard(room)

    def in_room(self, websocket: WebSocket, room: str) -> bool:
        return room in self.memberships.get(websocket, set())

    async def broadcast(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Optional[WebSocket] = None,
    ) -> int:
        """Send ``{"event", "data"}`` to every socket in ``room``. Returns deliveries."""
        delivered = 0
        for ws in list(self.rooms.get(room, ())):
            if ws is exclude:
                continue
            try:
                await ws.send_json({"event": event, "data": data})
                delivered += 1
            except Exception as e:
                logger.debug("Failed to send to websocket: %s", e)
        return delivered


_connection_manager: Optional[ConnectionManager] = None


def get_connection_manager() -> ConnectionManager:
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager
