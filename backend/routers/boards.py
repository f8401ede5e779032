# routers/boards.py — Kanban boards: create, snapshot, manual card moves
import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_board_access, CurrentUser
from board_store import BoardStore, MoveCard
from database import get_db_session
from dependencies import get_broadcaster
from errors import NotFoundError
from models import BoardList
from realtime import BroadcastSink, KANBAN_UPDATE

router = APIRouter(prefix="/api/boards", tags=["Kanban Board"])
logger = logging.getLogger("taskforge.boards")


# ============================================================
# SCHEMAS
# ============================================================

class BoardCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    members: List[str] = Field(default_factory=list)


class CardMove(BaseModel):
    column: BoardList


async def _snapshot_or_404(store: BoardStore, board_id: str):
    snapshot = await store.find_one(board_id)
    if snapshot is None:
        raise NotFoundError("Board not found", code="board_not_found")
    return snapshot


# ============================================================
# BOARDS
# ============================================================

@router.post("", status_code=201)
async def create_board(
    data: BoardCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create an empty board owned by the caller"""
    store = BoardStore(db)
    board_id = await store.create_board(owner_id=user.id, name=data.name, members=data.members)
    snapshot = await _snapshot_or_404(store, board_id)
    logger.info(f"Board created: {board_id[:8]} by user={user.id[:8]}")
    return {
        "id": snapshot.board_id,
        "name": snapshot.name,
        "ownerId": snapshot.owner_id,
        "members": snapshot.members,
        "kanban": snapshot.to_payload(),
    }


@router.get("/{board_id}/kanban")
async def get_kanban(
    board_id: str,
    user: CurrentUser = Depends(require_board_access),
    db: AsyncSession = Depends(get_db_session),
):
    snapshot = await _snapshot_or_404(BoardStore(db), board_id)
    return snapshot.to_payload()


@router.patch("/{board_id}/cards/{card_id}/move")
async def move_card(
    board_id: str,
    card_id: str,
    data: CardMove,
    user: CurrentUser = Depends(require_board_access),
    db: AsyncSession = Depends(get_db_session),
    sink: BroadcastSink = Depends(get_broadcaster),
):
    """Move a card to another column and notify board viewers"""
    store = BoardStore(db)
    snapshot = await _snapshot_or_404(store, board_id)
    if snapshot.find_card(card_id) is None:
        raise NotFoundError("Card not found", code="card_not_found")

    changed = await store.update_one(board_id, [MoveCard(card_id, data.column.value)])
    snapshot = await _snapshot_or_404(store, board_id)
    if changed:
        await sink.emit(board_id, KANBAN_UPDATE, snapshot.to_payload())
    return {"moved": bool(changed), "kanban": snapshot.to_payload()}
