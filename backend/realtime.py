# realtime.py — Broadcast Sink: fans board events out to connected WebSocket clients
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Protocol, Set

from fastapi import WebSocket

logger = logging.getLogger("taskforge.ws")

KANBAN_UPDATE = "kanban:update"
DEPLOYMENT_LOG = "deployment:log"
DEPLOYMENT_STATUS = "deployment:status"


def board_room(board_id: str) -> str:
    return f"board:{board_id}"


def deployment_room(board_id: str) -> str:
    return f"deployment:{board_id}"


class BroadcastSink(Protocol):
    async def emit(self, board_id: str, event: str, payload: Any) -> None:
        ...


class ConnectionManager:
    """Tracks sockets per room; sends are best-effort and never raise"""

    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = {}  # room -> sockets
        self._joined: Dict[WebSocket, Set[str]] = {}  # socket -> rooms

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self._joined.setdefault(websocket, set())

    def join(self, websocket: WebSocket, room: str):
        self._rooms.setdefault(room, set()).add(websocket)
        self._joined.setdefault(websocket, set()).add(room)

    def leave(self, websocket: WebSocket, room: str):
        sockets = self._rooms.get(room)
        if sockets is not None:
            sockets.discard(websocket)
            if not sockets:
                del self._rooms[room]
        self._joined.get(websocket, set()).discard(room)

    def disconnect(self, websocket: WebSocket):
        for room in list(self._joined.pop(websocket, set())):
            sockets = self._rooms.get(room)
            if sockets is not None:
                sockets.discard(websocket)
                if not sockets:
                    del self._rooms[room]

    async def send_to_room(self, room: str, message: dict):
        disconnected = []
        for ws in list(self._rooms.get(room, ())):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.info(f"Dropping socket from {room}: {e}")
                disconnected.append(ws)
        for ws in disconnected:
            self.disconnect(ws)

    async def emit(self, board_id: str, event: str, payload: Any) -> None:
        """Deliver ``event`` to everyone watching ``board_id`` (at most once)."""
        room = deployment_room(board_id) if event.startswith("deployment:") else board_room(board_id)
        await self.send_to_room(room, {
            "type": event,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def get_stats(self) -> dict:
        return {
            "total_connections": len(self._joined),
            "rooms": len(self._rooms),
        }
