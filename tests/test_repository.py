"""
Tests for the SQLAlchemy persistence collaborator.

Verifies:
- board creation, lookup and threshold fallback
- item documents round-trip through the database unchanged
- replace() is a compare-and-swap on the version token
- successful writes are published on the change feed
"""

import pytest

from idea_board.db.models import ItemModel
from idea_board.db.repository import BoardRepository, SqlItemRepository
from idea_board.engine.errors import (
    BoardNotFoundError,
    InvalidOperationError,
    ItemNotFoundError,
    VersionConflictError,
)
from idea_board.engine.enums import ChangeKind, Stage
from idea_board.engine.primitives import Thresholds
from idea_board.engine.store import ItemStore


@pytest.fixture
def boards(db_session):
    return BoardRepository(db_session)


@pytest.fixture
def board(boards):
    return boards.create("Product ideas", "product-ideas", admins=["admin@example.com"])


@pytest.fixture
def items(db_session, feed):
    return SqlItemRepository(db_session, feed)


@pytest.fixture
def board_store(board, thresholds, capabilities, clock):
    return ItemStore(board.id, thresholds=thresholds, capabilities=capabilities, clock=clock)


class TestBoardRepository:
    def test_create_and_get(self, boards, board):
        assert boards.get(board.id).slug == "product-ideas"
        assert boards.get_by_slug("product-ideas").id == board.id
        assert board.admin_list() == ["admin@example.com"]

    def test_duplicate_slug_rejected(self, boards, board):
        with pytest.raises(InvalidOperationError) as exc_info:
            boards.create("Other", "product-ideas")
        assert exc_info.value.code == "DUPLICATE_SLUG"

    def test_require_missing_board(self, boards):
        with pytest.raises(BoardNotFoundError):
            boards.require("missing")

    def test_thresholds_fall_back_to_settings(self, board):
        assert board.thresholds() == Thresholds.from_settings()

    def test_custom_thresholds(self, boards):
        custom = Thresholds(to_discussion=2, to_production=4, to_backlog=3)
        created = boards.create("Bugs", "bugs", thresholds=custom)

        assert created.thresholds() == custom
        assert created.to_dict()["thresholds"] == custom.model_dump()

    def test_list(self, boards, board):
        boards.create("Bugs", "bugs")

        assert {b.slug for b in boards.list()} == {"product-ideas", "bugs"}


class TestItemPersistence:
    def test_insert_and_get_round_trip(self, items, board_store):
        created = board_store.create("Dark mode", "alice", description="Please")
        board_store.comment(created.id, "bob", "Yes!")
        board_store.add_checklist_item(created.id, "Design")
        board_store.move(created.id, "roadblock", actor="bob", reason="Waiting")
        item = board_store.get(created.id)
        item = item.model_copy(update={"version": 1})

        items.insert(item)
        loaded = items.get(item.id)

        assert loaded == item
        assert loaded.created_at.tzinfo is not None

    def test_insert_unknown_board(self, items, store):
        with pytest.raises(BoardNotFoundError):
            items.insert(store.create("Orphan", "alice"))

    def test_duplicate_insert(self, items, board_store):
        item = board_store.create("Dark mode", "alice")
        items.insert(item)

        with pytest.raises(InvalidOperationError) as exc_info:
            items.insert(item)
        assert exc_info.value.code == "DUPLICATE_ITEM"

    def test_list_for_board(self, items, board_store):
        first = items.insert(board_store.create("First", "alice"))
        second = items.insert(board_store.create("Second", "alice"))

        assert [i.id for i in items.list_for_board(board_store.board_id)] == [second.id, first.id]
        assert items.list_for_board("other") == []

    def test_get_missing(self, items):
        assert items.get("missing") is None


class TestReplace:
    def test_replace_next_version(self, items, board_store, db_session):
        item = items.insert(board_store.create("Dark mode", "alice"))
        voted = board_store.vote(item.id, "t1", 1).item

        items.replace(voted)

        assert items.get(item.id) == voted
        row = db_session.query(ItemModel).filter(ItemModel.id == item.id).one()
        assert row.version == 2
        assert row.score == 1

    def test_stale_replace_conflicts(self, items, board_store, thresholds, capabilities):
        item = items.insert(board_store.create("Dark mode", "alice"))
        other = ItemStore(board_store.board_id, thresholds=thresholds, capabilities=capabilities)
        other.adopt(item)

        items.replace(board_store.vote(item.id, "a", 1).item)
        with pytest.raises(VersionConflictError) as exc_info:
            items.replace(other.vote(item.id, "b", -1).item)

        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2
        stored = items.get(item.id)
        assert stored.voters == {"a": 1}

    def test_replace_missing_item(self, items, board_store):
        item = board_store.create("Never stored", "alice")

        with pytest.raises(ItemNotFoundError):
            items.replace(board_store.vote(item.id, "a", 1).item)

    def test_stage_column_tracks_document(self, items, board_store, db_session):
        item = items.insert(board_store.create("Dark mode", "alice"))
        moved = board_store.move(item.id, Stage.REVIEW, actor="bob")

        items.replace(moved)

        row = db_session.query(ItemModel).filter(ItemModel.id == item.id).one()
        assert row.stage == "review"


class TestDelete:
    def test_delete(self, items, board_store):
        item = items.insert(board_store.create("Dark mode", "alice"))

        items.delete(item.id)

        assert items.get(item.id) is None

    def test_delete_missing_is_noop(self, items):
        items.delete("missing")


class TestPublishing:
    @pytest.mark.asyncio
    async def test_writes_are_published(self, items, board_store, feed):
        subscription = feed.subscribe(board_store.board_id)
        item = items.insert(board_store.create("Dark mode", "alice"), origin="session-a")
        items.replace(board_store.vote(item.id, "t1", 1).item, origin="session-a")
        items.delete(item.id, origin="session-b")

        kinds = []
        while subscription.pending():
            event = await subscription.get()
            kinds.append((event.kind, event.origin))

        assert kinds == [
            (ChangeKind.INSERT, "session-a"),
            (ChangeKind.UPDATE, "session-a"),
            (ChangeKind.DELETE, "session-b"),
        ]

    def test_failed_write_is_not_published(self, items, board_store, feed):
        subscription = feed.subscribe(board_store.board_id)
        item = board_store.create("Never stored", "alice")

        with pytest.raises(ItemNotFoundError):
            items.replace(board_store.vote(item.id, "a", 1).item)
        assert subscription.pending() == 0
