"""
Item, comment, checklist and history schemas.

Items are immutable snapshots. Every engine operation produces a new
snapshot; nothing mutates a snapshot in place.

Invariants (checked whenever a snapshot is validated):
- ``score`` equals the sum of ``voters`` values.
- ``blocked_reason`` is set if and only if ``stage`` is roadblock.
- ``history`` is never empty.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, constr, model_validator

from .enums import ChecklistAction, Stage, VoteKind
from .primitives import Direction, generate_ulid, utc_now


class _Entry(BaseModel):
    """Fields common to every history entry."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=generate_ulid, description="Entry ULID")
    actor: str = Field(..., description="Identity that caused the change")
    timestamp: datetime = Field(default_factory=utc_now)
    detail: Optional[str] = Field(None, description="Free-text detail")


class CreatedEntry(_Entry):
    type: Literal["created"] = "created"


class VotedEntry(_Entry):
    type: Literal["voted"] = "voted"
    delta: int = Field(..., description="Score change caused by the vote")
    vote_kind: VoteKind


class MovedEntry(_Entry):
    type: Literal["moved"] = "moved"
    from_stage: Stage
    to_stage: Stage
    auto: bool = Field(False, description="True when caused by a score threshold")


class BlockedEntry(_Entry):
    type: Literal["blocked"] = "blocked"
    from_stage: Stage
    reason: str = ""


class UnblockedEntry(_Entry):
    type: Literal["unblocked"] = "unblocked"
    to_stage: Stage


class CommentedEntry(_Entry):
    type: Literal["commented"] = "commented"
    comment_id: str


class WatchedEntry(_Entry):
    type: Literal["watched"] = "watched"


class UnwatchedEntry(_Entry):
    type: Literal["unwatched"] = "unwatched"


class ChecklistEntry(_Entry):
    type: Literal["checklist"] = "checklist"
    action: ChecklistAction
    checklist_item_id: str


class AssignedEntry(_Entry):
    type: Literal["assigned"] = "assigned"
    assignee: str


class UnassignedEntry(_Entry):
    type: Literal["unassigned"] = "unassigned"
    assignee: str


HistoryEntry = Annotated[
    Union[
        CreatedEntry,
        VotedEntry,
        MovedEntry,
        BlockedEntry,
        UnblockedEntry,
        CommentedEntry,
        WatchedEntry,
        UnwatchedEntry,
        ChecklistEntry,
        AssignedEntry,
        UnassignedEntry,
    ],
    Field(discriminator="type"),
]


class Attachment(BaseModel):
    """Reference to a file stored by the blob storage collaborator."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=generate_ulid)
    name: constr(min_length=1, max_length=512)
    size: int = Field(0, ge=0)
    media_type: str = "application/octet-stream"
    url: constr(min_length=1, max_length=2000)


class Comment(BaseModel):
    """A comment on an item. Replies reference their parent by id only."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=generate_ulid)
    author: str
    text: constr(min_length=1, max_length=16000)
    attachments: Tuple[Attachment, ...] = ()
    timestamp: datetime = Field(default_factory=utc_now)
    reply_to: Optional[str] = None


class ChecklistItem(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=generate_ulid)
    text: constr(min_length=1, max_length=1000)
    completed: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class Item(BaseModel):
    """A votable, stage-tracked unit of work on a board."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=generate_ulid)
    board_id: str
    title: constr(min_length=1, max_length=512)
    description: Optional[constr(max_length=16000)] = None
    creator: str

    score: int = 0
    stage: Stage = Stage.BACKLOG
    voters: Dict[str, Direction] = Field(default_factory=dict)
    blocked_reason: Optional[str] = None

    history: Tuple[HistoryEntry, ...]
    watchers: Tuple[str, ...] = ()
    comments: Tuple[Comment, ...] = ()
    checklist: Tuple[ChecklistItem, ...] = ()
    assignees: Tuple[str, ...] = ()

    created_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    version: int = Field(1, ge=1, description="Optimistic concurrency token")

    @model_validator(mode="after")
    def _check_invariants(self) -> "Item":
        if self.score != sum(self.voters.values()):
            raise ValueError(
                f"score {self.score} does not match sum of voters "
                f"{sum(self.voters.values())}"
            )
        if (self.blocked_reason is not None) != (self.stage == Stage.ROADBLOCK):
            raise ValueError("blocked_reason must be set exactly when stage is roadblock")
        if not self.history:
            raise ValueError("history must contain at least the creation entry")
        return self

    def vote_of(self, voter_token: str) -> Optional[int]:
        """Return the voter's current direction, or None."""
        return self.voters.get(voter_token)

    def comment_by_id(self, comment_id: str) -> Optional[Comment]:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def checklist_item(self, checklist_id: str) -> Optional[ChecklistItem]:
        for entry in self.checklist:
            if entry.id == checklist_id:
                return entry
        return None

    def checklist_progress(self) -> Tuple[int, int]:
        """Return ``(completed, total)`` checklist counts."""
        done = sum(1 for entry in self.checklist if entry.completed)
        return done, len(self.checklist)
