"""
SQLAlchemy persistence collaborator.

``SqlItemRepository`` implements the engine's ItemRepository contract:
point reads, board listings, inserts, whole-document replaces and deletes.
Replaces are compare-and-swap on ``version``: the stored row must hold
exactly ``item.version - 1``, otherwise the write is rejected with
VersionConflictError and nothing is changed. After each successful commit
the change is published on the configured ChangeFeed.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..engine.collaborators import ChangeEvent
from ..engine.enums import ChangeKind
from ..engine.errors import (
    BoardNotFoundError,
    InvalidOperationError,
    ItemNotFoundError,
    PersistenceError,
    VersionConflictError,
)
from ..engine.models import Item
from ..engine.primitives import Thresholds, generate_ulid
from ..feed import ChangeFeed
from .models import BoardModel, ItemModel

logger = logging.getLogger(__name__)


class BoardRepository:
    """Boards and their configuration."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        name: str,
        slug: str,
        thresholds: Optional[Thresholds] = None,
        admins: Iterable[str] = (),
        item_type: str = "idea",
    ) -> BoardModel:
        if self.get_by_slug(slug) is not None:
            raise InvalidOperationError(f"Board with slug '{slug}' already exists", code="DUPLICATE_SLUG")

        board = BoardModel(
            id=generate_ulid(),
            slug=slug,
            name=name,
            item_type=item_type,
            admins=[a for a in admins if a],
        )
        if thresholds is not None:
            board.threshold_to_discussion = thresholds.to_discussion
            board.threshold_to_production = thresholds.to_production
            board.threshold_to_backlog = thresholds.to_backlog

        try:
            self.db.add(board)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to create board '{slug}': {e}") from e
        self.db.refresh(board)
        logger.info(f"Created board {board.id} ({slug})")
        return board

    def get(self, board_id: str) -> Optional[BoardModel]:
        return self.db.query(BoardModel).filter(BoardModel.id == board_id).first()

    def require(self, board_id: str) -> BoardModel:
        board = self.get(board_id)
        if board is None:
            raise BoardNotFoundError(board_id)
        return board

    def get_by_slug(self, slug: str) -> Optional[BoardModel]:
        return self.db.query(BoardModel).filter(BoardModel.slug == slug).first()

    def list(self, limit: int = 100, offset: int = 0) -> List[BoardModel]:
        return (
            self.db.query(BoardModel)
            .order_by(desc(BoardModel.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )


class SqlItemRepository:
    """Whole-document item persistence with version compare-and-swap."""

    def __init__(self, db: Session, feed: Optional[ChangeFeed] = None):
        self.db = db
        self.feed = feed

    def get(self, item_id: str) -> Optional[Item]:
        row = self._row(item_id)
        return row.to_item() if row is not None else None

    def list_for_board(self, board_id: str) -> List[Item]:
        rows = (
            self.db.query(ItemModel)
            .filter(ItemModel.board_id == board_id)
            .order_by(desc(ItemModel.last_activity_at))
            .all()
        )
        return [row.to_item() for row in rows]

    def insert(self, item: Item, origin: Optional[str] = None) -> Item:
        if self.db.query(BoardModel.id).filter(BoardModel.id == item.board_id).first() is None:
            raise BoardNotFoundError(item.board_id)
        try:
            self.db.add(ItemModel.from_item(item))
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise InvalidOperationError(f"Item '{item.id}' already exists", code="DUPLICATE_ITEM") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to insert item '{item.id}': {e}") from e

        self._publish(ChangeKind.INSERT, item, origin)
        return item

    def replace(self, item: Item, origin: Optional[str] = None) -> Item:
        """Store ``item`` if the stored row is exactly one version behind it."""
        expected = item.version - 1
        values = ItemModel.columns_for(item)
        try:
            updated = (
                self.db.query(ItemModel)
                .filter(ItemModel.id == item.id, ItemModel.version == expected)
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                self.db.rollback()
                actual = self.db.query(ItemModel.version).filter(ItemModel.id == item.id).scalar()
                if actual is None:
                    raise ItemNotFoundError(item.id)
                logger.warning(f"Version conflict on item {item.id}: expected {expected}, found {actual}")
                raise VersionConflictError(item.id, expected, actual)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to store item '{item.id}': {e}") from e

        self.db.expire_all()
        self._publish(ChangeKind.UPDATE, item, origin)
        return item

    def delete(self, item_id: str, origin: Optional[str] = None) -> None:
        """Delete an item. Deleting an absent item is a no-op."""
        row = self._row(item_id)
        if row is None:
            return
        last = row.to_item()
        try:
            self.db.delete(row)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to delete item '{item_id}': {e}") from e

        self._publish(ChangeKind.DELETE, last, origin)

    def _row(self, item_id: str) -> Optional[ItemModel]:
        return self.db.query(ItemModel).filter(ItemModel.id == item_id).first()

    def _publish(self, kind: ChangeKind, item: Item, origin: Optional[str]) -> None:
        if self.feed is None:
            return
        self.feed.publish(
            ChangeEvent(kind=kind, board_id=item.board_id, item_id=item.id, item=item, origin=origin)
        )
