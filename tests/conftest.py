"""Test configuration and fixtures."""

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest
from sqlalchemy.orm import sessionmaker

from idea_board.db.base import create_db_engine, init_database
from idea_board.engine.collaborators import ChangeEvent, StaticCapabilities
from idea_board.engine.enums import ChangeKind
from idea_board.engine.errors import (
    InvalidOperationError,
    ItemNotFoundError,
    VersionConflictError,
)
from idea_board.engine.models import Item
from idea_board.engine.primitives import Thresholds
from idea_board.engine.store import ItemStore
from idea_board.feed import ChangeFeed

BOARD_ID = "board-1"
ADMIN = "admin@example.com"


class FakeClock:
    """Deterministic clock advancing one second per reading."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class InMemoryItemRepository:
    """Thread-safe ItemRepository with the same version checks as the SQL one.

    Every accepted write is appended to ``writes`` as ``(kind, item_id, version)``
    and published on ``feed`` when one is given.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed
        self.items: Dict[str, Item] = {}
        self.writes: List[Tuple[ChangeKind, str, int]] = []
        self.fail_with: Optional[Exception] = None
        self._lock = threading.Lock()

    def get(self, item_id: str) -> Optional[Item]:
        with self._lock:
            return self.items.get(item_id)

    def list_for_board(self, board_id: str) -> List[Item]:
        with self._lock:
            return [i for i in self.items.values() if i.board_id == board_id]

    def insert(self, item: Item, origin: Optional[str] = None) -> Item:
        with self._lock:
            self._maybe_fail()
            if item.id in self.items:
                raise InvalidOperationError(f"Item '{item.id}' already exists", code="DUPLICATE_ITEM")
            self.items[item.id] = item
            self.writes.append((ChangeKind.INSERT, item.id, item.version))
        self._publish(ChangeKind.INSERT, item, origin)
        return item

    def replace(self, item: Item, origin: Optional[str] = None) -> Item:
        with self._lock:
            self._maybe_fail()
            stored = self.items.get(item.id)
            if stored is None:
                raise ItemNotFoundError(item.id)
            if stored.version != item.version - 1:
                raise VersionConflictError(item.id, item.version - 1, stored.version)
            self.items[item.id] = item
            self.writes.append((ChangeKind.UPDATE, item.id, item.version))
        self._publish(ChangeKind.UPDATE, item, origin)
        return item

    def delete(self, item_id: str, origin: Optional[str] = None) -> None:
        with self._lock:
            self._maybe_fail()
            last = self.items.pop(item_id, None)
            if last is None:
                return
            self.writes.append((ChangeKind.DELETE, item_id, last.version))
        self._publish(ChangeKind.DELETE, last, origin)

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            error, self.fail_with = self.fail_with, None
            raise error

    def _publish(self, kind: ChangeKind, item: Item, origin: Optional[str]) -> None:
        if self.feed is not None:
            self.feed.publish(
                ChangeEvent(kind=kind, board_id=item.board_id, item_id=item.id, item=item, origin=origin)
            )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def thresholds() -> Thresholds:
    return Thresholds(to_discussion=5, to_production=10, to_backlog=5)


@pytest.fixture
def admin() -> str:
    return ADMIN


@pytest.fixture
def capabilities() -> StaticCapabilities:
    return StaticCapabilities([ADMIN])


@pytest.fixture
def store(thresholds, capabilities, clock) -> ItemStore:
    """An empty store for BOARD_ID with the default thresholds."""
    return ItemStore(BOARD_ID, thresholds=thresholds, capabilities=capabilities, clock=clock)


@pytest.fixture
def item(store) -> Item:
    """A freshly created item in the store."""
    return store.create("Dark mode", "alice")


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def repository(feed) -> InMemoryItemRepository:
    return InMemoryItemRepository(feed)


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_db_engine("sqlite://")
    init_database(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.close()
    engine.dispose()
