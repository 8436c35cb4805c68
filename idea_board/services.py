"""
Server-side service layer.

Each operation loads the current item from the database, applies it through
an ItemStore seeded with that snapshot, and writes the result back as a
whole document guarded by the version token. Concurrent writers therefore
cannot lose each other's updates: the second one gets VersionConflictError
and must re-read.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.models import BoardModel
from .db.repository import BoardRepository, SqlItemRepository
from .engine import history
from .engine.enums import Stage
from .engine.errors import ItemNotFoundError, PermissionDeniedError
from .engine.filters import ItemFilter
from .engine.models import Item
from .engine.primitives import Thresholds
from .engine.store import AttachmentInput, ItemStore, VoteResult
from .feed import ChangeFeed

logger = structlog.get_logger()


class BoardAdminCapabilities:
    """Admin capability from the board's admin list plus global admins."""

    def __init__(self, boards: BoardRepository, global_admins: Iterable[str] = ()):
        self.boards = boards
        self.global_admins = {a.lower() for a in global_admins}

    def is_admin(self, board_id: str, identity: str) -> bool:
        identity = (identity or "").strip().lower()
        if not identity:
            return False
        if identity in self.global_admins:
            return True
        board = self.boards.get(board_id)
        if board is None:
            return False
        return identity in {a.lower() for a in board.admin_list()}


class BoardService:
    """Board and item operations backed by SQLAlchemy."""

    def __init__(
        self,
        db: Session,
        feed: Optional[ChangeFeed] = None,
        settings: Optional[Settings] = None,
        origin: str = "api",
    ):
        self.settings = settings or get_settings()
        self.boards = BoardRepository(db)
        self.items = SqlItemRepository(db, feed)
        self.capabilities = BoardAdminCapabilities(
            self.boards, self.settings.admin_identity_list()
        )
        self.origin = origin

    # Boards

    def create_board(
        self,
        name: str,
        slug: str,
        thresholds: Optional[Thresholds] = None,
        admins: Iterable[str] = (),
        item_type: str = "idea",
    ) -> BoardModel:
        return self.boards.create(name, slug, thresholds=thresholds, admins=admins, item_type=item_type)

    def get_board(self, board_id: str) -> BoardModel:
        return self.boards.require(board_id)

    # Items

    def list_items(
        self,
        board_id: str,
        stage: Optional[Stage] = None,
        item_filter: Optional[ItemFilter] = None,
    ) -> List[Item]:
        """List a board's items in board order, optionally filtered."""
        self.boards.require(board_id)
        item_filter = item_filter or ItemFilter()
        if stage is not None:
            item_filter = item_filter.model_copy(update={"stage": stage})
        return item_filter.apply(self.items.list_for_board(board_id))

    def get_item(self, board_id: str, item_id: str) -> Item:
        item = self.items.get(item_id)
        if item is None or item.board_id != board_id:
            raise ItemNotFoundError(item_id)
        return item

    def create_item(
        self, board_id: str, title: str, creator: str, description: Optional[str] = None
    ) -> Item:
        store = self._store(self.boards.require(board_id))
        item = store.create(title, creator, description=description)
        self.items.insert(item, origin=self.origin)
        logger.info("item_created", board_id=board_id, item_id=item.id, creator=creator)
        return item

    def vote(
        self, board_id: str, item_id: str, voter_token: str, direction: int, actor: str
    ) -> VoteResult:
        results: List[VoteResult] = []

        def op(store: ItemStore) -> Item:
            result = store.vote(item_id, voter_token, direction, actor=actor)
            results.append(result)
            return result.item

        item = self._mutate(board_id, item_id, op)
        result = results[0]
        logger.info(
            "item_voted",
            board_id=board_id,
            item_id=item_id,
            delta=result.delta,
            kind=result.kind.value,
            score=item.score,
            stage=item.stage.value,
        )
        return result

    def move(
        self,
        board_id: str,
        item_id: str,
        target_stage: Stage,
        actor: str,
        reason: Optional[str] = None,
    ) -> Item:
        item = self._mutate(
            board_id, item_id, lambda s: s.move(item_id, target_stage, actor=actor, reason=reason)
        )
        logger.info("item_moved", board_id=board_id, item_id=item_id, stage=item.stage.value)
        return item

    def comment(
        self,
        board_id: str,
        item_id: str,
        author: str,
        text: str,
        attachments: Optional[Iterable[AttachmentInput]] = None,
        reply_to: Optional[str] = None,
    ) -> Item:
        return self._mutate(
            board_id,
            item_id,
            lambda s: s.comment(item_id, author, text, attachments=attachments, reply_to=reply_to),
        )

    def watch(self, board_id: str, item_id: str, identity: str) -> Item:
        return self._mutate(board_id, item_id, lambda s: s.watch(item_id, identity))

    def unwatch(self, board_id: str, item_id: str, identity: str) -> Item:
        return self._mutate(board_id, item_id, lambda s: s.unwatch(item_id, identity))

    def assign(self, board_id: str, item_id: str, assignee: str, actor: str) -> Item:
        return self._mutate(board_id, item_id, lambda s: s.assign(item_id, assignee, actor))

    def unassign(self, board_id: str, item_id: str, assignee: str, actor: str) -> Item:
        return self._mutate(board_id, item_id, lambda s: s.unassign(item_id, assignee, actor))

    def add_checklist_item(self, board_id: str, item_id: str, text: str, actor: str) -> Item:
        return self._mutate(board_id, item_id, lambda s: s.add_checklist_item(item_id, text, actor))

    def toggle_checklist_item(
        self, board_id: str, item_id: str, checklist_id: str, actor: str
    ) -> Item:
        return self._mutate(
            board_id, item_id, lambda s: s.toggle_checklist_item(item_id, checklist_id, actor)
        )

    def remove_checklist_item(
        self, board_id: str, item_id: str, checklist_id: str, actor: str
    ) -> Item:
        return self._mutate(
            board_id, item_id, lambda s: s.remove_checklist_item(item_id, checklist_id, actor)
        )

    def delete_item(self, board_id: str, item_id: str, actor: str) -> Item:
        """Delete an item. Deletion is a privileged operation."""
        item = self.get_item(board_id, item_id)
        if not self.capabilities.is_admin(board_id, actor):
            raise PermissionDeniedError("Only admins can delete items")
        self.items.delete(item_id, origin=self.origin)
        logger.info("item_deleted", board_id=board_id, item_id=item_id, actor=actor)
        return item

    def history(self, board_id: str, item_id: str) -> Tuple[Item, history.ReplayState]:
        """Return the item and the state its history replays to."""
        item = self.get_item(board_id, item_id)
        return item, history.replay(item.history)

    # Internals

    def _store(self, board: BoardModel, items: Iterable[Item] = ()) -> ItemStore:
        return ItemStore(
            board.id,
            thresholds=board.thresholds(),
            capabilities=self.capabilities,
            items=items,
            origin=self.origin,
        )

    def _mutate(self, board_id: str, item_id: str, op: Callable[[ItemStore], Item]) -> Item:
        board = self.boards.require(board_id)
        current = self.get_item(board_id, item_id)
        updated = op(self._store(board, [current]))
        if updated.version == current.version:
            # No-op (e.g. watching an already watched item)
            return updated
        return self.items.replace(updated, origin=self.origin)
