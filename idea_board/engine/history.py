"""
Append-only item history.

History is stored oldest first and is the source of truth for an item's
score and stage: replaying it from an empty item (score 0, backlog)
reproduces the cached fields. Timestamps are strictly increasing within one
item, so ``(timestamp, id)`` ordering always agrees with insertion order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional, Tuple

from .enums import Stage
from .errors import HistoryMismatchError
from .models import (
    BlockedEntry,
    HistoryEntry,
    Item,
    MovedEntry,
    UnblockedEntry,
    VotedEntry,
)

logger = logging.getLogger(__name__)

# Minimum spacing between consecutive entries of the same item.
TICK = timedelta(microseconds=1)


def append(item: Item, entry: HistoryEntry) -> Item:
    """Return ``item`` with ``entry`` appended to its history.

    If the entry's timestamp is not after the latest recorded one, it is
    restamped one tick later so the log stays monotonically ordered.
    """
    if item.history:
        last = item.history[-1].timestamp
        if entry.timestamp <= last:
            entry = entry.model_copy(update={"timestamp": last + TICK})
    return item.model_copy(update={"history": item.history + (entry,)})


def ordered(history: Iterable[HistoryEntry]) -> Tuple[HistoryEntry, ...]:
    """Return entries oldest first, ties broken by id."""
    return tuple(sorted(history, key=lambda e: (e.timestamp, e.id)))


def newest_first(history: Iterable[HistoryEntry]) -> Tuple[HistoryEntry, ...]:
    return tuple(reversed(ordered(history)))


@dataclass(frozen=True)
class ReplayState:
    score: int = 0
    stage: Stage = Stage.BACKLOG
    blocked_reason: Optional[str] = None


def replay(history: Iterable[HistoryEntry]) -> ReplayState:
    """Rebuild score, stage and blocked reason from a history sequence."""
    score = 0
    stage = Stage.BACKLOG
    blocked_reason: Optional[str] = None

    for entry in ordered(history):
        if isinstance(entry, VotedEntry):
            score += entry.delta
        elif isinstance(entry, BlockedEntry):
            stage = Stage.ROADBLOCK
            blocked_reason = entry.reason
        elif isinstance(entry, UnblockedEntry):
            stage = entry.to_stage
            blocked_reason = None
        elif isinstance(entry, MovedEntry):
            stage = entry.to_stage
            blocked_reason = None

    return ReplayState(score=score, stage=stage, blocked_reason=blocked_reason)


def verify(item: Item) -> ReplayState:
    """Check that an item's cached fields agree with its history.

    Raises:
        HistoryMismatchError: if score, stage or blocked reason disagree
    """
    state = replay(item.history)
    cached = ReplayState(score=item.score, stage=item.stage, blocked_reason=item.blocked_reason)
    if state != cached:
        logger.warning("History mismatch for item %s: replay=%s cached=%s", item.id, state, cached)
        raise HistoryMismatchError(
            f"Item '{item.id}' history replays to score={state.score} "
            f"stage={state.stage.value}, but item holds score={item.score} "
            f"stage={item.stage.value}"
        )
    return state
