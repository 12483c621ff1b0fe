"""
Realtime Fan-out

WebSocket session tracking with two kinds of groups: a shared "kitchen" group
for kitchen/admin sessions and one "user_<id>" group per customer. Messages
are JSON objects of the form {"event": <name>, "data": {...}}. Delivery is
best effort: a session that fails to receive is dropped and is expected to
reconcile with a full fetch after reconnecting.

The hub is only touched from the event loop, so it needs no locking.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)

KITCHEN_ROOM = "kitchen"
STAFF_ROLES = ("kitchen", "admin")


def user_room(user_id: Any) -> str:
    return f"user_{user_id}"


class RealtimeHub:
    """Tracks connected sessions and their groups."""

    def __init__(self):
        self.connections: Set[WebSocket] = set()
        self.rooms: Dict[str, Set[WebSocket]] = {}
        self.connection_info: Dict[WebSocket, Dict[str, Any]] = {}
        self.stats = {"total_connections": 0, "messages_sent": 0}

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)
        self.connection_info[websocket] = {
            "room": None,
            "role": None,
            "user_id": None,
            "connected_at": datetime.now(timezone.utc).isoformat(),
        }
        self.stats["total_connections"] += 1
        await self.send_personal(websocket, "connected", {"message": "Connected to real-time updates"})

    def join(self, websocket: WebSocket, role: Optional[str], user_id: Any = None) -> Optional[str]:
        """Place a session into the kitchen group or its user group."""
        if role in STAFF_ROLES:
            room = KITCHEN_ROOM
        elif role == "user" and user_id is not None:
            room = user_room(user_id)
        else:
            return None

        self._leave(websocket)
        self.rooms.setdefault(room, set()).add(websocket)
        info = self.connection_info.setdefault(websocket, {})
        info.update(room=room, role=role, user_id=user_id)
        logger.info("Session joined %s (role=%s, userId=%s)", room, role, user_id)
        return room

    def _leave(self, websocket: WebSocket) -> None:
        room = self.connection_info.get(websocket, {}).get("room")
        if room and room in self.rooms:
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]

    def disconnect(self, websocket: WebSocket) -> None:
        self._leave(websocket)
        self.connections.discard(websocket)
        info = self.connection_info.pop(websocket, {})
        logger.info("Session disconnected (role=%s, userId=%s)", info.get("role"), info.get("user_id"))

    def room_of(self, websocket: WebSocket) -> Optional[str]:
        return self.connection_info.get(websocket, {}).get("room")

    async def send_personal(self, websocket: WebSocket, event: str, data: Any) -> bool:
        try:
            await websocket.send_json({"event": event, "data": jsonable_encoder(data)})
        except Exception as e:
            logger.error(f"Failed to send '{event}' to session: {e}")
            self.disconnect(websocket)
            return False
        self.stats["messages_sent"] += 1
        return True

    async def emit(self, event: str, data: Any, room: Optional[str] = None) -> int:
        """Send to every session in room, or to every session when room is None.

        Returns the number of sessions that accepted the message.
        """
        targets = self.rooms.get(room, set()) if room else self.connections
        delivered = 0
        for websocket in list(targets):
            if await self.send_personal(websocket, event, data):
                delivered += 1
        logger.debug("Emitted '%s' to %s (%d sessions)", event, room or "all", delivered)
        return delivered

    async def emit_to_kitchen(self, event: str, data: Any) -> int:
        return await self.emit(event, data, KITCHEN_ROOM)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "active_connections": len(self.connections),
            "rooms": {name: len(members) for name, members in self.rooms.items()},
        }
