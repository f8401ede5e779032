# routers/websocket_router.py — Real-time board updates over WebSocket
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, Query

from auth import verify_ws_token
from board_store import BoardStore
from database import async_session_maker
from dependencies import get_broadcaster
from realtime import ConnectionManager, board_room, deployment_room

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("taskforge.ws")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _can_view(board_id: str, user_id: str) -> bool:
    async with async_session_maker() as session:
        return await BoardStore(session).has_access(board_id, user_id)


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
    manager: ConnectionManager = Depends(get_broadcaster),
):
    """Clients join ``board:<id>`` rooms to receive kanban and deployment events"""
    payload = verify_ws_token(token)
    if not payload:
        await websocket.close(code=4001, reason="Authentication failed")
        return
    user_id = payload["sub"]

    await manager.connect(websocket)
    logger.info(f"WS connected: user={user_id[:8]}")
    await websocket.send_json({"type": "connected", "user_id": user_id, "timestamp": _now()})

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type", "") if isinstance(data, dict) else ""

            if msg_type == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})

            elif msg_type == "join":
                board_id = data.get("boardId")
                if not board_id or not await _can_view(board_id, user_id):
                    await websocket.send_json({"type": "error", "error": "forbidden", "boardId": board_id})
                    continue
                manager.join(websocket, board_room(board_id))
                manager.join(websocket, deployment_room(board_id))
                await websocket.send_json({"type": "joined", "boardId": board_id})

            elif msg_type == "leave":
                board_id = data.get("boardId")
                if board_id:
                    manager.leave(websocket, board_room(board_id))
                    manager.leave(websocket, deployment_room(board_id))
                    await websocket.send_json({"type": "left", "boardId": board_id})

    except WebSocketDisconnect:
        logger.info(f"WS disconnected: user={user_id[:8]}")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        manager.disconnect(websocket)


@router.get("/ws/stats")
async def websocket_stats(manager: ConnectionManager = Depends(get_broadcaster)):
    return manager.get_stats()
