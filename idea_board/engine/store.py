"""
In-memory item store for one board.

The store composes the vote ledger, the stage transition rules and the
history log into atomic operations. Each operation:

1. loads the current snapshot (raising ItemNotFoundError if absent),
2. checks its preconditions before touching any state,
3. computes the complete new snapshot, history included,
4. installs it, bumps ``version`` and notifies listeners.

Listeners receive a ChangeEvent for every successful mutation; that is how
snapshots reach local view state and the persistence collaborator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError

from . import history
from .collaborators import CapabilityChecker, ChangeEvent, StaticCapabilities
from .enums import ChangeKind, ChecklistAction, Stage, VoteKind
from .errors import InvalidOperationError, ItemNotFoundError, PermissionDeniedError
from .filters import ItemFilter, board_order
from .ledger import apply_vote
from .models import (
    AssignedEntry,
    Attachment,
    BlockedEntry,
    ChecklistEntry,
    ChecklistItem,
    Comment,
    CommentedEntry,
    CreatedEntry,
    Item,
    MovedEntry,
    UnassignedEntry,
    UnblockedEntry,
    UnwatchedEntry,
    VotedEntry,
    WatchedEntry,
)
from .primitives import Thresholds, generate_ulid, utc_now
from .transitions import AutoTransition, next_stage

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
ANONYMOUS_ACTOR = "Anonymous"

Listener = Callable[[ChangeEvent], None]
AttachmentInput = Union[Attachment, Mapping[str, Any]]


@dataclass(frozen=True)
class VoteResult:
    """Outcome of ItemStore.vote()."""

    item: Item
    delta: int
    kind: VoteKind
    auto_transition: Optional[AutoTransition] = None


def _invalid(exc: ValidationError, code: str) -> InvalidOperationError:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()))
    message = first.get("msg", str(exc))
    return InvalidOperationError(f"{field}: {message}" if field else message, code=code)


def _excerpt(text: str, limit: int = 80) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


class ItemStore:
    """Authoritative in-memory representation of one board's items."""

    def __init__(
        self,
        board_id: str,
        thresholds: Optional[Thresholds] = None,
        capabilities: Optional[CapabilityChecker] = None,
        items: Iterable[Item] = (),
        clock: Callable[[], datetime] = utc_now,
        origin: Optional[str] = None,
    ):
        self.board_id = board_id
        self.thresholds = thresholds or Thresholds.from_settings()
        self.capabilities = capabilities or StaticCapabilities()
        self.clock = clock
        self.origin = origin
        self._items: Dict[str, Item] = {}
        self._removed: Set[str] = set()
        self._listeners: List[Listener] = []
        for item in items:
            self.adopt(item)

    # Listeners

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Listener failed for {event.kind.value} on item {event.item_id}: {e}")

    # Queries

    def get(self, item_id: str) -> Item:
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def find(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    def items(self, item_filter: Optional[ItemFilter] = None) -> List[Item]:
        """Return matching items, highest score first, then most recently active."""
        if item_filter is None:
            return board_order(self._items.values())
        return item_filter.apply(self._items.values())

    def by_stage(self, item_filter: Optional[ItemFilter] = None) -> Dict[Stage, List[Item]]:
        buckets: Dict[Stage, List[Item]] = {stage: [] for stage in Stage}
        for item in self.items(item_filter):
            buckets[item.stage].append(item)
        return buckets

    def is_removed(self, item_id: str) -> bool:
        return item_id in self._removed

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    # Reconciliation hooks (no listener notification)

    def adopt(self, item: Item) -> None:
        """Install a snapshot received from outside the store."""
        if item.board_id != self.board_id:
            raise InvalidOperationError(
                f"Item '{item.id}' belongs to board '{item.board_id}', not '{self.board_id}'",
                code="WRONG_BOARD",
            )
        self._items[item.id] = item

    def evict(self, item_id: str) -> Optional[Item]:
        """Drop an item removed elsewhere. Later snapshots for it are refused."""
        self._removed.add(item_id)
        return self._items.pop(item_id, None)

    # Mutations

    def create(
        self,
        title: str,
        creator: str,
        description: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> Item:
        """Create a new item in backlog with a single ``created`` entry."""
        now = self.clock()
        item_id = item_id or generate_ulid()
        if item_id in self._items or item_id in self._removed:
            raise InvalidOperationError(f"Item '{item_id}' already exists", code="DUPLICATE_ITEM")
        try:
            item = Item(
                id=item_id,
                board_id=self.board_id,
                title=(title or "").strip(),
                description=description,
                creator=creator,
                created_at=now,
                last_activity_at=now,
                history=(CreatedEntry(actor=creator, timestamp=now),),
            )
        except ValidationError as exc:
            raise _invalid(exc, "INVALID_ITEM") from exc

        return self._commit(item, ChangeKind.INSERT)

    def vote(
        self,
        item_id: str,
        voter_token: str,
        direction: int,
        actor: str = ANONYMOUS_ACTOR,
    ) -> VoteResult:
        """Cast, change or retract ``voter_token``'s vote.

        A vote that crosses a threshold appends two entries: ``voted`` by the
        actor, then ``moved`` by the system.
        """
        if direction not in (1, -1):
            raise InvalidOperationError(
                f"Vote direction must be +1 or -1, got {direction!r}", code="INVALID_DIRECTION"
            )
        if not voter_token or not voter_token.strip():
            raise InvalidOperationError("Voter token must not be blank", code="INVALID_VOTER")
        item = self.get(item_id)
        now = self.clock()

        outcome = apply_vote(item, voter_token, direction, now)
        updated = history.append(
            outcome.item,
            VotedEntry(
                actor=actor,
                timestamp=now,
                delta=outcome.delta,
                vote_kind=outcome.kind,
                detail=outcome.describe(),
            ),
        )

        decision = next_stage(updated.stage, updated.score, self.thresholds)
        transition = decision.auto_transition
        if transition is not None:
            updated = updated.model_copy(update={"stage": transition.to_stage, "blocked_reason": None})
            updated = history.append(
                updated,
                MovedEntry(
                    actor=SYSTEM_ACTOR,
                    timestamp=now,
                    from_stage=transition.from_stage,
                    to_stage=transition.to_stage,
                    auto=True,
                    detail=transition.reason,
                ),
            )
            logger.info(
                f"Item {item_id} auto-moved {transition.from_stage.value} -> "
                f"{transition.to_stage.value} at score {updated.score}"
            )

        committed = self._commit(updated, ChangeKind.UPDATE, previous=item)
        return VoteResult(
            item=committed,
            delta=outcome.delta,
            kind=outcome.kind,
            auto_transition=transition,
        )

    def move(
        self,
        item_id: str,
        target_stage: Union[Stage, str],
        actor: str = ANONYMOUS_ACTOR,
        reason: Optional[str] = None,
    ) -> Item:
        """Explicitly move an item to ``target_stage``.

        Moving to done requires the admin capability. Entering roadblock
        records ``reason`` (empty when not given) as the blocked reason;
        leaving roadblock clears it.
        """
        try:
            target = Stage(target_stage)
        except ValueError as exc:
            raise InvalidOperationError(f"Unknown stage '{target_stage}'", code="INVALID_STAGE") from exc

        item = self.get(item_id)
        if target == Stage.DONE and not self.capabilities.is_admin(self.board_id, actor):
            raise PermissionDeniedError("Only admins can move items to done")

        source = item.stage
        now = self.clock()

        if target == Stage.ROADBLOCK:
            blocked_reason: Optional[str] = reason or ""
            if source == Stage.ROADBLOCK and blocked_reason == item.blocked_reason:
                return item
            entry = BlockedEntry(
                actor=actor, timestamp=now, from_stage=source, reason=blocked_reason, detail=reason
            )
        elif target == source:
            return item
        elif source == Stage.ROADBLOCK:
            blocked_reason = None
            entry = UnblockedEntry(actor=actor, timestamp=now, to_stage=target, detail=reason)
        else:
            blocked_reason = None
            entry = MovedEntry(
                actor=actor, timestamp=now, from_stage=source, to_stage=target, detail=reason
            )

        updated = item.model_copy(
            update={"stage": target, "blocked_reason": blocked_reason, "last_activity_at": now}
        )
        updated = history.append(updated, entry)
        return self._commit(updated, ChangeKind.UPDATE, previous=item)

    def comment(
        self,
        item_id: str,
        author: str,
        text: str,
        attachments: Optional[Iterable[AttachmentInput]] = None,
        reply_to: Optional[str] = None,
    ) -> Item:
        """Append a comment. ``reply_to`` must name an existing comment."""
        item = self.get(item_id)
        text = (text or "").strip()
        if not text:
            raise InvalidOperationError("Comment text must not be blank", code="EMPTY_COMMENT")
        if reply_to is not None and item.comment_by_id(reply_to) is None:
            raise InvalidOperationError(
                f"Comment '{reply_to}' does not exist on item '{item_id}'",
                code="UNKNOWN_REPLY_TARGET",
            )

        now = self.clock()
        try:
            comment = Comment(
                author=author,
                text=text,
                attachments=tuple(
                    a if isinstance(a, Attachment) else Attachment.model_validate(a)
                    for a in (attachments or ())
                ),
                timestamp=now,
                reply_to=reply_to,
            )
        except ValidationError as exc:
            raise _invalid(exc, "INVALID_COMMENT") from exc

        updated = item.model_copy(
            update={"comments": item.comments + (comment,), "last_activity_at": now}
        )
        updated = history.append(
            updated,
            CommentedEntry(actor=author, timestamp=now, comment_id=comment.id, detail=_excerpt(text)),
        )
        return self._commit(updated, ChangeKind.UPDATE, previous=item)

    def watch(self, item_id: str, identity: str) -> Item:
        item = self.get(item_id)
        if identity in item.watchers:
            return item
        now = self.clock()
        updated = item.model_copy(
            update={"watchers": item.watchers + (identity,), "last_activity_at": now}
        )
        updated = history.append(updated, WatchedEntry(actor=identity, timestamp=now))
        return self._commit(updated, ChangeKind.UPDATE, previous=item)

    def unwatch(self, item_id: str, identity: str) -> Item:
        item = self.get(item_id)
        if identity not in item.watchers:
            return item
        now = self.clock()
        updated = item.model_copy(
            update={
                "watchers": tuple(w for w in item.watchers if w != identity),
                "last_activity_at": now,
            }
        )
        updated = history.append(updated, UnwatchedEntry(actor=identity, timestamp=now))
        return self._commit(updated, ChangeKind.UPDATE, previous=item)

    def assign(self, item_id: str, assignee: str, actor: str = ANONYMOUS_ACTOR) -> Item:
        """Add ``assignee`` to the item. Assigning twice is a no-op."""
        assignee = (assignee or "").strip()
        if not assignee:
            raise InvalidOperationError("Assignee must not be blank", code="INVALID_ASSIGNEE")
        item = self.get(item_id)
        if assignee in item.assignees:
            return item
        now = self.clock()
        updated = item.model_copy(
            update={"assignees": item.assignees + (assignee,), "last_activity_at": now}
        )
        updated = history.append(
            updated, AssignedEntry(actor=actor, timestamp=now, assignee=assignee)
        )
        return self._commit(updated, ChangeKind.UPDATE, previous=item)

    def unassign(self, item_id: str, assignee: str, actor: str = ANONYMOUS_ACTOR) -> Item:
        item = self.get(item_id)
        if assignee not in item.assignees:
            return item
        now = self.clock()
        updated = item.model_copy(
            update={
                "assignees": tuple(a for a in item.assignees if a != assignee),
                "last_activity_at": now,
            }
        )
        updated = history.append(
            updated, UnassignedEntry(actor=actor, timestamp=now, assignee=assignee)
        )
        return self._commit(updated, ChangeKind.UPDATE, previous=item)

    def add_checklist_item(self, item_id: str, text: str, actor: str = ANONYMOUS_ACTOR) -> Item:
        item = self.get(item_id)
        now = self.clock()
        try:
            entry = ChecklistItem(text=(text or "").strip(), created_at=now)
        except ValidationError as exc:
            raise _invalid(exc, "INVALID_CHECKLIST_ITEM") from exc
        updated = item.model_copy(
            update={"checklist": item.checklist + (entry,), "last_activity_at": now}
        )
        return self._record_checklist(item, updated, entry, ChecklistAction.ADDED, actor, now)

    def toggle_checklist_item(
        self, item_id: str, checklist_id: str, actor: str = ANONYMOUS_ACTOR
    ) -> Item:
        item = self.get(item_id)
        current = self._checklist_entry(item, checklist_id)
        now = self.clock()
        toggled = current.model_copy(update={"completed": not current.completed})
        updated = item.model_copy(
            update={
                "checklist": tuple(toggled if c.id == checklist_id else c for c in item.checklist),
                "last_activity_at": now,
            }
        )
        action = ChecklistAction.COMPLETED if toggled.completed else ChecklistAction.REOPENED
        return self._record_checklist(item, updated, toggled, action, actor, now)

    def remove_checklist_item(
        self, item_id: str, checklist_id: str, actor: str = ANONYMOUS_ACTOR
    ) -> Item:
        item = self.get(item_id)
        current = self._checklist_entry(item, checklist_id)
        now = self.clock()
        updated = item.model_copy(
            update={
                "checklist": tuple(c for c in item.checklist if c.id != checklist_id),
                "last_activity_at": now,
            }
        )
        return self._record_checklist(item, updated, current, ChecklistAction.REMOVED, actor, now)

    def delete(self, item_id: str) -> Item:
        """Remove an item. Privilege is enforced by the caller."""
        item = self.get(item_id)
        del self._items[item_id]
        self._removed.add(item_id)
        logger.info(f"Deleted item {item_id} from board {self.board_id}")
        self._emit(
            ChangeEvent(
                kind=ChangeKind.DELETE,
                board_id=self.board_id,
                item_id=item_id,
                item=item,
                origin=self.origin,
            )
        )
        return item

    # Internals

    def _checklist_entry(self, item: Item, checklist_id: str) -> ChecklistItem:
        entry = item.checklist_item(checklist_id)
        if entry is None:
            raise InvalidOperationError(
                f"Checklist item '{checklist_id}' not found on item '{item.id}'",
                code="CHECKLIST_ITEM_NOT_FOUND",
            )
        return entry

    def _record_checklist(
        self,
        previous: Item,
        updated: Item,
        entry: ChecklistItem,
        action: ChecklistAction,
        actor: str,
        now: datetime,
    ) -> Item:
        updated = history.append(
            updated,
            ChecklistEntry(
                actor=actor,
                timestamp=now,
                action=action,
                checklist_item_id=entry.id,
                detail=_excerpt(entry.text),
            ),
        )
        return self._commit(updated, ChangeKind.UPDATE, previous=previous)

    def _commit(self, item: Item, kind: ChangeKind, previous: Optional[Item] = None) -> Item:
        if previous is not None:
            item = item.model_copy(update={"version": previous.version + 1})
        self._items[item.id] = item
        logger.debug(f"{kind.value} item {item.id} v{item.version} stage={item.stage.value} score={item.score}")
        self._emit(
            ChangeEvent(
                kind=kind,
                board_id=self.board_id,
                item_id=item.id,
                item=item,
                origin=self.origin,
            )
        )
        return item
