"""
Reconciliation of change-feed pushes with local optimistic state.

The authoritative store serializes writes, so a pushed snapshot replaces the
local one whole (score, stage, voters, history, blocked reason and the rest).
The version token decides which snapshot is newer: a push older than the
local snapshot predates a local edit that is still in flight, and the local
snapshot is kept until that edit's own acknowledgment arrives.

Local editor state that was never submitted (comment drafts) lives beside the
store, not inside items, and is untouched by snapshot replacement.

Deletion is sticky: once an item is removed locally or remotely, late
updates for it are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .collaborators import ChangeEvent
from .enums import ChangeKind
from .models import Item
from .store import ItemStore

logger = logging.getLogger(__name__)


def merge(local: Item, remote: Item) -> Item:
    """Return the snapshot that should be held after a push.

    ``merge(x, x) == x`` for any item.
    """
    if remote.version >= local.version:
        return remote
    return local


@dataclass
class Draft:
    """Unsubmitted comment text for one item."""

    text: str = ""
    reply_to: Optional[str] = None


@dataclass
class ApplyResult:
    """What apply() did with an event."""

    event: ChangeEvent
    action: str
    item: Optional[Item] = None

    @property
    def changed(self) -> bool:
        return self.action in ("adopted", "replaced", "removed")


@dataclass
class ReconciliationLayer:
    """Feeds change-feed events into an ItemStore."""

    store: ItemStore
    drafts: Dict[str, Draft] = field(default_factory=dict)

    def apply(self, event: ChangeEvent) -> ApplyResult:
        if event.board_id != self.store.board_id:
            logger.debug(f"Ignoring event for board {event.board_id}")
            return ApplyResult(event, "ignored")

        if event.kind == ChangeKind.DELETE:
            removed = self.store.evict(event.item_id)
            self.drafts.pop(event.item_id, None)
            return ApplyResult(event, "removed" if removed else "absent", removed)

        if self.store.is_removed(event.item_id):
            logger.debug(f"Ignoring {event.kind.value} for removed item {event.item_id}")
            return ApplyResult(event, "ignored")

        remote = event.item
        if remote is None:
            logger.warning(f"{event.kind.value} event for {event.item_id} carried no snapshot")
            return ApplyResult(event, "ignored")

        local = self.store.find(event.item_id)
        if local is None:
            self.store.adopt(remote)
            return ApplyResult(event, "adopted", remote)

        merged = merge(local, remote)
        if merged is local:
            logger.debug(
                f"Kept local v{local.version} of {local.id} over stale push v{remote.version}"
            )
            return ApplyResult(event, "kept_local", local)

        self.store.adopt(merged)
        return ApplyResult(event, "replaced", merged)

    # Drafts

    def set_draft(self, item_id: str, text: str, reply_to: Optional[str] = None) -> Draft:
        draft = Draft(text=text, reply_to=reply_to)
        self.drafts[item_id] = draft
        return draft

    def draft(self, item_id: str) -> Optional[Draft]:
        return self.drafts.get(item_id)

    def clear_draft(self, item_id: str) -> None:
        self.drafts.pop(item_id, None)
