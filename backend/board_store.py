# board_store.py — Board Store: snapshots plus targeted, conditional card mutations
#
# Every mutation is a single statement keyed on (board_id, card_id), so two
# deliveries touching different cards (or the same card) never overwrite
# each other's writes with a stale in-memory copy of the board.
import logging
from dataclasses import dataclass, field, fields as dataclass_fields
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from sqlalchemy import select, update, insert, func, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import PersistenceError, ValidationError
from models import Board, BoardCard, CardReference, BOARD_LISTS, new_uuid, utcnow

logger = logging.getLogger("taskforge.store")

CARD_FIELDS = (
    "title", "description", "card_type", "sha", "branch",
    "pr_number", "pr_state", "url", "ci_status",
)


# ============================================================
# PATCH OPERATIONS
# ============================================================

@dataclass
class CardDraft:
    """Field values of a card about to be written"""
    card_id: str
    title: str
    description: Optional[str] = None
    card_type: Optional[str] = None
    sha: Optional[str] = None
    branch: Optional[str] = None
    pr_number: Optional[int] = None
    pr_state: Optional[str] = None
    url: Optional[str] = None
    ci_status: Optional[dict] = None

    def values(self) -> Dict[str, Any]:
        """Columns to write; unset (None) fields are left untouched on update."""
        return {
            f.name: getattr(self, f.name)
            for f in dataclass_fields(self)
            if f.name != "card_id" and getattr(self, f.name) is not None
        }


@dataclass
class ReferenceEntry:
    """One ``metadata.referencedIn`` provenance entry"""
    source_type: str
    source_key: str
    url: Optional[str] = None
    message: Optional[str] = None
    title: Optional[str] = None
    context: Optional[str] = None


@dataclass
class PushCard:
    """Append a new card to the end of ``list_name``."""
    list_name: str
    card: CardDraft


@dataclass
class UpsertCard:
    """Pull the card from whichever list holds it and push it to ``list_name``.

    Creates the card when no list holds it. The card keeps its position when
    it already sits in ``list_name``.
    """
    list_name: str
    card: CardDraft


@dataclass
class SetCardFields:
    card_id: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MoveCard:
    """Move a card to ``to_list`` and set ``fields`` in the same statement.

    A card already in ``to_list`` only gets ``fields`` applied.
    """
    card_id: str
    to_list: str
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AddReference:
    card_id: str
    entry: ReferenceEntry


BoardPatch = Union[PushCard, UpsertCard, SetCardFields, MoveCard, AddReference]


# ============================================================
# SNAPSHOTS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat() if isinstance(dt, datetime) else str(dt)


def _reference_to_dict(ref: CardReference) -> dict:
    entry = {
        "type": ref.source_type,
        "url": ref.url,
        "context": ref.context,
        "timestamp": _ts(ref.created_at),
    }
    if ref.source_type == "pull_request":
        entry["number"] = int(ref.source_key) if ref.source_key.isdigit() else ref.source_key
        entry["title"] = ref.title
    else:
        entry["sha"] = ref.source_key
        entry["message"] = ref.message
    return entry


def card_to_dict(card: BoardCard, references: Sequence[CardReference] = ()) -> dict:
    metadata = {
        "type": card.card_type,
        "sha": card.sha,
        "branch": card.branch,
        "number": card.pr_number,
        "state": card.pr_state,
        "url": card.url,
        "ciStatus": card.ci_status,
    }
    metadata = {k: v for k, v in metadata.items() if v is not None}
    if references:
        metadata["referencedIn"] = [_reference_to_dict(r) for r in references]
    return {
        "id": card.card_id,
        "title": card.title,
        "description": card.description,
        "createdAt": _ts(card.created_at),
        "updatedAt": _ts(card.updated_at),
        "metadata": metadata,
    }


@dataclass
class BoardSnapshot:
    """Point-in-time copy of a board's three card lists"""
    board_id: str
    name: Optional[str]
    owner_id: str
    members: List[str]
    lists: Dict[str, List[dict]]
    updated_at: Optional[str] = None

    def cards(self) -> Iterator[Tuple[str, dict]]:
        for list_name in BOARD_LISTS:
            for card in self.lists.get(list_name, []):
                yield list_name, card

    def find_card(self, card_id: str) -> Optional[Tuple[str, dict]]:
        for list_name, card in self.cards():
            if card["id"] == card_id:
                return list_name, card
        return None

    def list_of(self, card_id: str) -> Optional[str]:
        found = self.find_card(card_id)
        return found[0] if found else None

    def to_payload(self) -> dict:
        return {
            "boardId": self.board_id,
            "todo": self.lists.get("todo", []),
            "doing": self.lists.get("doing", []),
            "done": self.lists.get("done", []),
        }


# ============================================================
# STORE
# ============================================================

def _check_list(list_name: str) -> str:
    if list_name not in BOARD_LISTS:
        raise ValidationError(f"Unknown list '{list_name}'", code="invalid_column", field="column")
    return list_name


def _check_fields(values: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(values) - set(CARD_FIELDS)
    if unknown:
        raise ValueError(f"Unknown card fields: {', '.join(sorted(unknown))}")
    return values


cards_table = BoardCard.__table__
references_table = CardReference.__table__
boards_table = Board.__table__


def _next_position(board_id: str, list_name: str):
    other = cards_table.alias("other_cards")
    return (
        select(func.coalesce(func.max(other.c.position), -1) + 1)
        .where(other.c.board_id == board_id, other.c.list_name == list_name)
        .scalar_subquery()
    )


class BoardStore:
    """SQL-backed Board Store bound to one session (one unit of work)"""

    def __init__(self, session: AsyncSession):
        self.session = session

    # --- reads ---

    async def find_one(self, board_id: str) -> Optional[BoardSnapshot]:
        board = (await self.session.execute(
            select(Board).where(Board.id == board_id).execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if board is None:
            return None

        cards = (await self.session.execute(
            select(BoardCard)
            .where(BoardCard.board_id == board_id)
            .order_by(BoardCard.position, BoardCard.created_at)
            .execution_options(populate_existing=True)
        )).scalars().all()
        refs = (await self.session.execute(
            select(CardReference)
            .where(CardReference.board_id == board_id)
            .order_by(CardReference.created_at)
        )).scalars().all()

        refs_by_card: Dict[str, List[CardReference]] = {}
        for ref in refs:
            refs_by_card.setdefault(ref.card_id, []).append(ref)

        lists: Dict[str, List[dict]] = {name: [] for name in BOARD_LISTS}
        for card in cards:
            lists.setdefault(card.list_name, []).append(card_to_dict(card, refs_by_card.get(card.card_id, ())))

        return BoardSnapshot(
            board_id=board.id,
            name=board.name,
            owner_id=board.owner_id,
            members=list(board.members or []),
            lists=lists,
            updated_at=_ts(board.updated_at),
        )

    async def has_access(self, board_id: str, user_id: str) -> bool:
        board = (await self.session.execute(
            select(Board.owner_id, Board.members).where(Board.id == board_id)
        )).one_or_none()
        if board is None or not user_id:
            return False
        owner_id, members = board
        return user_id == owner_id or user_id in (members or [])

    # --- writes ---

    async def create_board(self, owner_id: str, name: Optional[str] = None, members: Sequence[str] = ()) -> str:
        board = Board(id=new_uuid(), owner_id=owner_id, name=name, members=list(members))
        self.session.add(board)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("Could not create board") from e
        return board.id

    async def update_one(self, board_id: str, ops: Sequence[BoardPatch]) -> int:
        """Apply ``ops`` in one transaction and return how many changed a row.

        Raises PersistenceError (after rolling back) if any statement fails.
        """
        if not ops:
            return 0
        try:
            changed = 0
            for op in ops:
                if await self._apply(board_id, op):
                    changed += 1
            if changed:
                await self.session.execute(
                    update(boards_table).where(boards_table.c.id == board_id).values(updated_at=utcnow())
                )
            await self.session.commit()
            return changed
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Board update failed board={board_id[:8]}: {e}", exc_info=True)
            raise PersistenceError("Board update failed") from e

    async def _apply(self, board_id: str, op: BoardPatch) -> bool:
        if isinstance(op, PushCard):
            return await self._push(board_id, _check_list(op.list_name), op.card)
        if isinstance(op, UpsertCard):
            return await self._upsert(board_id, _check_list(op.list_name), op.card)
        if isinstance(op, SetCardFields):
            return await self._set_fields(board_id, op.card_id, _check_fields(op.fields))
        if isinstance(op, MoveCard):
            return await self._move(board_id, op.card_id, _check_list(op.to_list), _check_fields(op.fields))
        if isinstance(op, AddReference):
            return await self._add_reference(board_id, op.card_id, op.entry)
        raise TypeError(f"Unsupported board patch: {op!r}")

    def _insert_ignoring_conflicts(self, table, values: Dict[str, Any], index_elements: List[str]):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(table)
        elif dialect == "sqlite":
            stmt = sqlite_insert(table)
        else:
            return None
        return stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements)

    async def _rowcount(self, stmt) -> int:
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def _push(self, board_id: str, list_name: str, card: CardDraft) -> bool:
        now = utcnow()
        await self.session.execute(
            insert(cards_table).values(
                id=new_uuid(), board_id=board_id, card_id=card.card_id,
                list_name=list_name, position=_next_position(board_id, list_name),
                created_at=now, updated_at=now, **card.values(),
            )
        )
        return True

    async def _upsert(self, board_id: str, list_name: str, card: CardDraft) -> bool:
        move_stmt = (
            update(cards_table)
            .where(cards_table.c.board_id == board_id, cards_table.c.card_id == card.card_id)
            .values(
                list_name=list_name,
                position=case(
                    (cards_table.c.list_name == list_name, cards_table.c.position),
                    else_=_next_position(board_id, list_name),
                ),
                updated_at=utcnow(),
                **card.values(),
            )
        )
        if await self._rowcount(move_stmt):
            return True

        now = utcnow()
        values = dict(
            id=new_uuid(), board_id=board_id, card_id=card.card_id,
            list_name=list_name, position=_next_position(board_id, list_name),
            created_at=now, updated_at=now, **card.values(),
        )
        stmt = self._insert_ignoring_conflicts(cards_table, values, ["board_id", "card_id"])
        if stmt is None:
            await self.session.execute(insert(cards_table).values(**values))
            return True
        if await self._rowcount(stmt):
            return True

        # Another delivery inserted the card between our update and insert
        return bool(await self._rowcount(move_stmt))

    async def _set_fields(self, board_id: str, card_id: str, values: Dict[str, Any]) -> bool:
        stmt = (
            update(cards_table)
            .where(cards_table.c.board_id == board_id, cards_table.c.card_id == card_id)
            .values(updated_at=utcnow(), **values)
        )
        return bool(await self._rowcount(stmt))

    async def _move(self, board_id: str, card_id: str, to_list: str, values: Dict[str, Any]) -> bool:
        stmt = (
            update(cards_table)
            .where(
                cards_table.c.board_id == board_id,
                cards_table.c.card_id == card_id,
                cards_table.c.list_name != to_list,
            )
            .values(
                list_name=to_list,
                position=_next_position(board_id, to_list),
                updated_at=utcnow(),
                **values,
            )
        )
        if await self._rowcount(stmt):
            return True
        if values:
            return await self._set_fields(board_id, card_id, values)
        return False

    async def _add_reference(self, board_id: str, card_id: str, entry: ReferenceEntry) -> bool:
        values = dict(
            id=new_uuid(), board_id=board_id, card_id=card_id,
            source_type=entry.source_type, source_key=entry.source_key,
            url=entry.url, message=entry.message, title=entry.title,
            context=entry.context, created_at=utcnow(),
        )
        stmt = self._insert_ignoring_conflicts(
            references_table, values, ["board_id", "card_id", "source_type", "source_key"],
        )
        if stmt is not None:
            inserted = bool(await self._rowcount(stmt))
        else:
            existing = (await self.session.execute(
                select(references_table.c.id).where(
                    references_table.c.board_id == board_id,
                    references_table.c.card_id == card_id,
                    references_table.c.source_type == entry.source_type,
                    references_table.c.source_key == entry.source_key,
                )
            )).first()
            inserted = existing is None
            if inserted:
                await self.session.execute(insert(references_table).values(**values))

        if inserted:
            await self._set_fields(board_id, card_id, {})
        return inserted
