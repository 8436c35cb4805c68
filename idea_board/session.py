"""
Client-side board session.

A BoardSession is what one participant's client holds while a board is
open. It ties together:

1. an ItemStore with the board's items (the local projection),
2. an outbox drained by a single writer task, so optimistic local changes
   reach persistence in the order they were issued,
3. a change-feed subscription pumped through the ReconciliationLayer.

Local operations return immediately with the new snapshot; they never wait
for the write acknowledgment. A failed write is logged, kept in
``failed_writes`` and reported to ``on_write_error``. It is not rolled back
or retried here; that decision belongs to the caller.

When persistence rejects an update with a version conflict, every update
already queued for that item was built on the rejected snapshot. Those are
failed without being sent, and the item is reloaded from persistence so
later local changes start from the accepted state.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import structlog

from .engine.collaborators import CapabilityChecker, ChangeEvent, ItemRepository
from .engine.enums import ChangeKind, Stage
from .engine.errors import BoardError, PersistenceError, VersionConflictError
from .engine.filters import ItemFilter
from .engine.models import Item
from .engine.primitives import Thresholds, utc_now
from .engine.reconcile import ApplyResult, Draft, ReconciliationLayer
from .engine.store import ANONYMOUS_ACTOR, AttachmentInput, ItemStore, VoteResult
from .feed import ChangeFeed, Subscription

logger = structlog.get_logger()


@dataclass(frozen=True)
class WriteFailure:
    """A local change the persistence collaborator did not accept."""

    event: ChangeEvent
    error: BoardError


WriteErrorHandler = Callable[[WriteFailure], None]


class BoardSession:
    """Optimistic local view of one board, kept in sync with persistence."""

    def __init__(
        self,
        board_id: str,
        repository: ItemRepository,
        feed: ChangeFeed,
        thresholds: Optional[Thresholds] = None,
        capabilities: Optional[CapabilityChecker] = None,
        session_id: Optional[str] = None,
        on_write_error: Optional[WriteErrorHandler] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.board_id = board_id
        self.session_id = session_id or f"session-{uuid.uuid4().hex[:8]}"
        self.repository = repository
        self.feed = feed
        self.on_write_error = on_write_error

        self.store = ItemStore(
            board_id,
            thresholds=thresholds,
            capabilities=capabilities,
            clock=clock,
            origin=self.session_id,
        )
        self.reconciler = ReconciliationLayer(self.store)
        self.failed_writes: List[WriteFailure] = []

        self._outbox: asyncio.Queue[Tuple[int, ChangeEvent]] = asyncio.Queue()
        self._sequence = 0
        # item id -> last outbox sequence built on a rejected snapshot
        self._stale_through: Dict[str, int] = {}
        # items whose reload failed; updates wait for a pushed snapshot
        self._unsynced: Set[str] = set()
        self._subscription: Optional[Subscription] = None
        self._writer: Optional[asyncio.Task] = None
        self._pump: Optional[asyncio.Task] = None
        self.is_open = False
        self.logger = logger.bind(board_id=board_id, session_id=self.session_id)

        self._remove_listener = self.store.add_listener(self._schedule_write)

    # Lifecycle

    async def open(self) -> "BoardSession":
        """Subscribe to the board, load its items and start background tasks."""
        if self.is_open:
            return self
        # Subscribe before loading so no change falls between the two.
        self._subscription = self.feed.subscribe(self.board_id)
        items = await asyncio.to_thread(self.repository.list_for_board, self.board_id)
        for item in items:
            self.store.adopt(item)

        self._writer = asyncio.create_task(self._drain_outbox())
        self._pump = asyncio.create_task(self._pump_feed(self._subscription))
        self.is_open = True
        self.logger.info("session_opened", items=len(items))
        return self

    async def close(self, flush: bool = True) -> None:
        """Tear down the subscription and background tasks."""
        if not self.is_open:
            return
        if flush:
            await self.flush()

        if self._subscription is not None:
            self._subscription.close()
        for task in (self._pump, self._writer):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._remove_listener()
        self.is_open = False
        self.logger.info("session_closed", failed_writes=len(self.failed_writes))

    async def flush(self) -> None:
        """Wait until every queued local change has been written or failed."""
        await self._outbox.join()

    async def __aenter__(self) -> "BoardSession":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # Local operations (optimistic)

    def items(self, item_filter: Optional[ItemFilter] = None) -> List[Item]:
        return self.store.items(item_filter)

    def by_stage(self, item_filter: Optional[ItemFilter] = None) -> Dict[Stage, List[Item]]:
        return self.store.by_stage(item_filter)

    def get(self, item_id: str) -> Item:
        return self.store.get(item_id)

    def create(self, title: str, creator: str, description: Optional[str] = None) -> Item:
        return self.store.create(title, creator, description=description)

    def vote(
        self, item_id: str, voter_token: str, direction: int, actor: str = ANONYMOUS_ACTOR
    ) -> VoteResult:
        return self.store.vote(item_id, voter_token, direction, actor=actor)

    def move(
        self,
        item_id: str,
        target_stage: Stage,
        actor: str = ANONYMOUS_ACTOR,
        reason: Optional[str] = None,
    ) -> Item:
        return self.store.move(item_id, target_stage, actor=actor, reason=reason)

    def comment(
        self,
        item_id: str,
        author: str,
        text: str,
        attachments: Optional[Iterable[AttachmentInput]] = None,
        reply_to: Optional[str] = None,
    ) -> Item:
        item = self.store.comment(item_id, author, text, attachments=attachments, reply_to=reply_to)
        self.reconciler.clear_draft(item_id)
        return item

    def watch(self, item_id: str, identity: str) -> Item:
        return self.store.watch(item_id, identity)

    def unwatch(self, item_id: str, identity: str) -> Item:
        return self.store.unwatch(item_id, identity)

    def assign(self, item_id: str, assignee: str, actor: str = ANONYMOUS_ACTOR) -> Item:
        return self.store.assign(item_id, assignee, actor=actor)

    def unassign(self, item_id: str, assignee: str, actor: str = ANONYMOUS_ACTOR) -> Item:
        return self.store.unassign(item_id, assignee, actor=actor)

    def delete(self, item_id: str) -> Item:
        item = self.store.delete(item_id)
        self.reconciler.clear_draft(item_id)
        return item

    # Drafts

    def set_draft(self, item_id: str, text: str, reply_to: Optional[str] = None) -> Draft:
        self.store.get(item_id)
        return self.reconciler.set_draft(item_id, text, reply_to=reply_to)

    def draft(self, item_id: str) -> Optional[Draft]:
        return self.reconciler.draft(item_id)

    # Background work

    def _schedule_write(self, event: ChangeEvent) -> None:
        self._sequence += 1
        self._outbox.put_nowait((self._sequence, event))

    async def _drain_outbox(self) -> None:
        while True:
            sequence, event = await self._outbox.get()
            try:
                stale = self._stale_write_error(sequence, event)
                if stale is not None:
                    self._record_failure(event, stale)
                else:
                    await asyncio.to_thread(self._write, event)
            except VersionConflictError as e:
                self._record_failure(event, e)
                await self._resync(event.item_id)
            except BoardError as e:
                self._record_failure(event, e)
            except Exception as e:
                self._record_failure(event, PersistenceError(str(e)))
            finally:
                self._outbox.task_done()

    def _stale_write_error(
        self, sequence: int, event: ChangeEvent
    ) -> Optional[VersionConflictError]:
        """Return the error for an update built on a rejected snapshot, else None."""
        item_id = event.item_id
        if event.kind != ChangeKind.UPDATE:
            return None
        if item_id not in self._unsynced and sequence > self._stale_through.get(item_id, 0):
            return None
        current = self.store.find(item_id)
        return VersionConflictError(
            item_id,
            event.item.version - 1,
            current.version if current is not None else None,
        )

    async def _resync(self, item_id: str) -> None:
        """Replace the local snapshot of ``item_id`` with the stored one."""
        self._stale_through[item_id] = self._sequence
        try:
            current = await asyncio.to_thread(self.repository.get, item_id)
        except Exception as e:
            self._unsynced.add(item_id)
            self.logger.error("resync_failed", item_id=item_id, error=str(e))
            return

        # Anything queued while the reload was in flight was also built on
        # the rejected snapshot.
        self._stale_through[item_id] = self._sequence
        self._unsynced.discard(item_id)
        if current is None:
            self.store.evict(item_id)
            self.reconciler.clear_draft(item_id)
        elif not self.store.is_removed(item_id):
            self.store.adopt(current)
        self.logger.info(
            "item_resynced",
            item_id=item_id,
            version=current.version if current is not None else None,
        )

    def _write(self, event: ChangeEvent) -> None:
        if event.kind == ChangeKind.INSERT:
            self.repository.insert(event.item, origin=self.session_id)
        elif event.kind == ChangeKind.UPDATE:
            self.repository.replace(event.item, origin=self.session_id)
        elif event.kind == ChangeKind.DELETE:
            self.repository.delete(event.item_id, origin=self.session_id)

    def _record_failure(self, event: ChangeEvent, error: BoardError) -> None:
        failure = WriteFailure(event=event, error=error)
        self.failed_writes.append(failure)
        self.logger.error(
            "write_failed",
            item_id=event.item_id,
            kind=event.kind.value,
            code=error.code,
            error=error.message,
        )
        if self.on_write_error is not None:
            self.on_write_error(failure)

    async def _pump_feed(self, subscription: Subscription) -> None:
        async for event in subscription:
            if self._adopt_unsynced(event):
                continue
            result: ApplyResult = self.reconciler.apply(event)
            if result.changed:
                self.logger.debug(
                    "feed_event_applied",
                    item_id=event.item_id,
                    kind=event.kind.value,
                    action=result.action,
                )

    def _adopt_unsynced(self, event: ChangeEvent) -> bool:
        # The local snapshot of an unsynced item was rejected, so any stored
        # snapshot replaces it regardless of version.
        if event.item_id not in self._unsynced or event.kind == ChangeKind.DELETE:
            return False
        if event.item is None or self.store.is_removed(event.item_id):
            return False
        self.store.adopt(event.item)
        self._unsynced.discard(event.item_id)
        self._stale_through[event.item_id] = self._sequence
        self.logger.info("item_resynced", item_id=event.item_id, version=event.item.version)
        return True
