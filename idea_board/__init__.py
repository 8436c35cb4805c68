"""
Idea Board

Collaborative voting board: items collect votes, move through workflow
stages automatically at score thresholds and keep an append-only history.
"""

import importlib.metadata

__version__ = importlib.metadata.version("idea-board")

from .engine import (
    BoardError,
    ChangeEvent,
    Item,
    ItemStore,
    ReconciliationLayer,
    Stage,
    Thresholds,
)
from .feed import ChangeFeed, Subscription
from .session import BoardSession

__all__ = [
    "BoardError",
    "BoardSession",
    "ChangeEvent",
    "ChangeFeed",
    "Item",
    "ItemStore",
    "ReconciliationLayer",
    "Stage",
    "Subscription",
    "Thresholds",
]
