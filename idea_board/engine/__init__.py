"""
Item lifecycle engine.

Owns item scores, workflow stages, the automatic promotion/demotion rules,
the append-only history and the reconciliation of change-feed pushes.
"""

from .collaborators import CapabilityChecker, ChangeEvent, ItemRepository, StaticCapabilities
from .enums import ChangeKind, ChecklistAction, HistoryType, Stage, VoteKind
from .errors import (
    BoardError,
    BoardNotFoundError,
    HistoryMismatchError,
    InvalidOperationError,
    ItemNotFoundError,
    PermissionDeniedError,
    PersistenceError,
    VersionConflictError,
)
from .history import ReplayState, newest_first, replay, verify
from .ledger import VoteOutcome, apply_vote
from .filters import ItemFilter, board_order
from .models import (
    AssignedEntry,
    Attachment,
    BlockedEntry,
    ChecklistEntry,
    ChecklistItem,
    Comment,
    CommentedEntry,
    CreatedEntry,
    HistoryEntry,
    Item,
    MovedEntry,
    UnassignedEntry,
    UnblockedEntry,
    UnwatchedEntry,
    VotedEntry,
    WatchedEntry,
)
from .primitives import Direction, Thresholds, generate_ulid, utc_now
from .reconcile import Draft, ReconciliationLayer, merge
from .store import ItemStore, VoteResult
from .transitions import AutoTransition, StageDecision, next_stage

__all__ = [
    # Enums
    "ChangeKind",
    "ChecklistAction",
    "HistoryType",
    "Stage",
    "VoteKind",
    # Errors
    "BoardError",
    "BoardNotFoundError",
    "HistoryMismatchError",
    "InvalidOperationError",
    "ItemNotFoundError",
    "PermissionDeniedError",
    "PersistenceError",
    "VersionConflictError",
    # Models
    "AssignedEntry",
    "Attachment",
    "BlockedEntry",
    "ChecklistEntry",
    "ChecklistItem",
    "Comment",
    "CommentedEntry",
    "CreatedEntry",
    "HistoryEntry",
    "Item",
    "MovedEntry",
    "UnassignedEntry",
    "UnblockedEntry",
    "UnwatchedEntry",
    "VotedEntry",
    "WatchedEntry",
    "Direction",
    "Thresholds",
    "generate_ulid",
    "utc_now",
    # Components
    "VoteOutcome",
    "apply_vote",
    "AutoTransition",
    "StageDecision",
    "next_stage",
    "ReplayState",
    "newest_first",
    "replay",
    "verify",
    "ItemStore",
    "VoteResult",
    "ItemFilter",
    "board_order",
    "Draft",
    "ReconciliationLayer",
    "merge",
    # Collaborators
    "CapabilityChecker",
    "ChangeEvent",
    "ItemRepository",
    "StaticCapabilities",
]
