# tests/test_board_store.py — Board Store targeted mutation tests
import pytest

from board_store import (
    AddReference, BoardStore, CardDraft, MoveCard, PushCard, ReferenceEntry,
    SetCardFields, UpsertCard,
)
from errors import PersistenceError, ValidationError
from tests.conftest import read_board, seed_card


def _ids(snapshot, list_name):
    return [c["id"] for c in snapshot.lists[list_name]]


@pytest.mark.asyncio
async def test_find_one_unknown_board(db_session):
    assert await BoardStore(db_session).find_one("missing") is None


@pytest.mark.asyncio
async def test_new_board_has_three_empty_lists(session_factory, board, owner_id):
    snapshot = await read_board(session_factory, board)
    assert snapshot.owner_id == owner_id
    assert snapshot.to_payload() == {"boardId": board, "todo": [], "doing": [], "done": []}


@pytest.mark.asyncio
async def test_push_appends_in_order(session_factory, board):
    await seed_card(session_factory, board, "todo", "1")
    await seed_card(session_factory, board, "todo", "2")
    await seed_card(session_factory, board, "doing", "3")
    snapshot = await read_board(session_factory, board)
    assert _ids(snapshot, "todo") == ["1", "2"]
    assert _ids(snapshot, "doing") == ["3"]


@pytest.mark.asyncio
async def test_card_wire_shape_omits_empty_metadata(session_factory, board):
    await seed_card(session_factory, board, "todo", "pr-4", title="PR #4: x",
                    card_type="pull_request", pr_number=4, pr_state="open")
    card = (await read_board(session_factory, board)).lists["todo"][0]
    assert card["id"] == "pr-4"
    assert card["title"] == "PR #4: x"
    assert card["metadata"] == {"type": "pull_request", "number": 4, "state": "open"}
    assert card["createdAt"] and card["updatedAt"]


@pytest.mark.asyncio
async def test_upsert_moves_existing_card(session_factory, board):
    await seed_card(session_factory, board, "todo", "pr-1", card_type="pull_request")
    async with session_factory() as session:
        changed = await BoardStore(session).update_one(
            board, [UpsertCard("done", CardDraft(card_id="pr-1", title="Merged", pr_state="merged"))]
        )
    assert changed == 1
    snapshot = await read_board(session_factory, board)
    assert _ids(snapshot, "todo") == []
    assert _ids(snapshot, "done") == ["pr-1"]
    card = snapshot.lists["done"][0]
    assert card["title"] == "Merged"
    # Fields not given in the draft are left untouched
    assert card["metadata"]["type"] == "pull_request"


@pytest.mark.asyncio
async def test_upsert_keeps_position_within_same_list(session_factory, board):
    for card_id in ("a", "b", "c"):
        await seed_card(session_factory, board, "doing", card_id)
    async with session_factory() as session:
        await BoardStore(session).update_one(board, [UpsertCard("doing", CardDraft(card_id="a", title="A2"))])
    snapshot = await read_board(session_factory, board)
    assert _ids(snapshot, "doing") == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_upsert_creates_missing_card(session_factory, board):
    async with session_factory() as session:
        changed = await BoardStore(session).update_one(board, [UpsertCard("doing", CardDraft(card_id="pr-9", title="New"))])
    assert changed == 1
    assert _ids(await read_board(session_factory, board), "doing") == ["pr-9"]


@pytest.mark.asyncio
async def test_card_id_lives_in_one_list_only(session_factory, board):
    await seed_card(session_factory, board, "todo", "x")
    async with session_factory() as session:
        await BoardStore(session).update_one(board, [
            UpsertCard("doing", CardDraft(card_id="x", title="X")),
            UpsertCard("done", CardDraft(card_id="x", title="X")),
        ])
    snapshot = await read_board(session_factory, board)
    found = [name for name, card in snapshot.cards() if card["id"] == "x"]
    assert found == ["done"]


@pytest.mark.asyncio
async def test_move_is_noop_when_already_in_target(session_factory, board):
    await seed_card(session_factory, board, "done", "z")
    async with session_factory() as session:
        changed = await BoardStore(session).update_one(board, [MoveCard("z", "done")])
    assert changed == 0


@pytest.mark.asyncio
async def test_move_with_fields_in_target_only_sets_fields(session_factory, board):
    await seed_card(session_factory, board, "done", "z", sha="f" * 40)
    ci = {"state": "success", "context": "ci", "description": "", "target_url": None}
    async with session_factory() as session:
        changed = await BoardStore(session).update_one(board, [MoveCard("z", "done", {"ci_status": ci})])
    assert changed == 1
    card = (await read_board(session_factory, board)).lists["done"][0]
    assert card["metadata"]["ciStatus"] == ci


@pytest.mark.asyncio
async def test_set_fields_unknown_card_changes_nothing(session_factory, board):
    async with session_factory() as session:
        changed = await BoardStore(session).update_one(board, [SetCardFields("nope", {"title": "x"})])
    assert changed == 0


@pytest.mark.asyncio
async def test_add_reference_is_deduplicated(session_factory, board):
    await seed_card(session_factory, board, "todo", "12")
    entry = ReferenceEntry(source_type="commit", source_key="c" * 40, url="u", message="Fix #12", context="Fix #12")
    async with session_factory() as session:
        store = BoardStore(session)
        assert await store.update_one(board, [AddReference("12", entry)]) == 1
        assert await store.update_one(board, [AddReference("12", entry)]) == 0

    card = (await read_board(session_factory, board)).lists["todo"][0]
    refs = card["metadata"]["referencedIn"]
    assert len(refs) == 1
    assert refs[0]["type"] == "commit"
    assert refs[0]["sha"] == "c" * 40
    assert refs[0]["message"] == "Fix #12"


@pytest.mark.asyncio
async def test_pull_request_reference_shape(session_factory, board):
    await seed_card(session_factory, board, "todo", "12")
    entry = ReferenceEntry(source_type="pull_request", source_key="7", url="u", title="Login", context="Closes #12")
    async with session_factory() as session:
        await BoardStore(session).update_one(board, [AddReference("12", entry)])
    ref = (await read_board(session_factory, board)).lists["todo"][0]["metadata"]["referencedIn"][0]
    assert ref["number"] == 7
    assert ref["title"] == "Login"


@pytest.mark.asyncio
async def test_unknown_list_rejected(session_factory, board):
    async with session_factory() as session:
        with pytest.raises(ValidationError) as exc:
            await BoardStore(session).update_one(board, [PushCard("backlog", CardDraft(card_id="q", title="Q"))])
    assert exc.value.code == "invalid_column"


@pytest.mark.asyncio
async def test_failed_write_rolls_back_whole_update(session_factory, board):
    """A duplicate PushCard violates the unique card id; nothing is kept"""
    await seed_card(session_factory, board, "todo", "dup")
    async with session_factory() as session:
        with pytest.raises(PersistenceError):
            await BoardStore(session).update_one(board, [
                PushCard("doing", CardDraft(card_id="new", title="New")),
                PushCard("doing", CardDraft(card_id="dup", title="Dup")),
            ])
    snapshot = await read_board(session_factory, board)
    assert _ids(snapshot, "doing") == []
    assert _ids(snapshot, "todo") == ["dup"]


@pytest.mark.asyncio
async def test_has_access(session_factory, owner_id):
    async with session_factory() as session:
        store = BoardStore(session)
        board_id = await store.create_board(owner_id=owner_id, name="Shared", members=["member-1"])
        assert await store.has_access(board_id, owner_id)
        assert await store.has_access(board_id, "member-1")
        assert not await store.has_access(board_id, "stranger")
        assert not await store.has_access("missing", owner_id)
