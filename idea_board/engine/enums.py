"""
Canonical enums for the item lifecycle engine.

Stored and transmitted values are the lowercase string forms.
"""

from enum import Enum


class Stage(str, Enum):
    """Workflow stages an item can occupy."""

    BACKLOG = "backlog"
    DISCUSSION = "discussion"
    PRODUCTION = "production"
    REVIEW = "review"
    ROADBLOCK = "roadblock"
    DONE = "done"


class HistoryType(str, Enum):
    """Discriminator for history entries."""

    CREATED = "created"
    VOTED = "voted"
    MOVED = "moved"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    COMMENTED = "commented"
    WATCHED = "watched"
    UNWATCHED = "unwatched"
    CHECKLIST = "checklist"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"


class VoteKind(str, Enum):
    """What a single vote operation did to the voter's slot."""

    CAST = "cast"
    RETRACT = "retract"
    CHANGE = "change"


class ChangeKind(str, Enum):
    """Change-feed event kinds."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChecklistAction(str, Enum):
    """Checklist mutations recorded in history."""

    ADDED = "added"
    COMPLETED = "completed"
    REOPENED = "reopened"
    REMOVED = "removed"
