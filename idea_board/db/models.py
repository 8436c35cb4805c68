"""
SQLAlchemy models for the Idea Board.

Items are stored as whole documents: scalar columns for the fields queried
on (stage, score, activity) and JSON columns for voters, history, comments,
watchers, checklist and assignees. ``version`` is the optimistic concurrency
token compared on every replace.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from ..engine.enums import Stage
from ..engine.models import Item
from ..engine.primitives import Thresholds
from .base import Base

stage_enum = Enum(*[s.value for s in Stage], name="item_stage")


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; all stored datetimes are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BoardModel(Base):
    """A board: the owner of items and of their auto-move thresholds."""

    __tablename__ = "boards"

    id = Column(String(36), primary_key=True)
    slug = Column(String(128), nullable=False, unique=True, index=True)
    name = Column(String(256), nullable=False)
    item_type = Column(String(64), nullable=False, default="idea")

    # Null thresholds fall back to application settings
    threshold_to_discussion = Column(Integer, nullable=True)
    threshold_to_production = Column(Integer, nullable=True)
    threshold_to_backlog = Column(Integer, nullable=True)

    # Identities holding the admin capability on this board
    admins = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    def thresholds(self) -> Thresholds:
        defaults = Thresholds.from_settings()
        return Thresholds(
            to_discussion=self.threshold_to_discussion or defaults.to_discussion,
            to_production=self.threshold_to_production or defaults.to_production,
            to_backlog=self.threshold_to_backlog or defaults.to_backlog,
        )

    def admin_list(self) -> List[str]:
        return list(self.admins or [])

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "item_type": self.item_type,
            "thresholds": self.thresholds().model_dump(),
            "admins": self.admin_list(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ItemModel(Base):
    """Persisted item document."""

    __tablename__ = "items"

    id = Column(String(36), primary_key=True)
    board_id = Column(
        String(36), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title = Column(String(512), nullable=False)
    description = Column(Text, nullable=True)
    creator = Column(String(256), nullable=False)

    score = Column(Integer, nullable=False, default=0)
    stage = Column(stage_enum, nullable=False, default=Stage.BACKLOG.value, index=True)
    blocked_reason = Column(Text, nullable=True)

    voters = Column(JSON, nullable=False, default=dict)
    history = Column(JSON, nullable=False, default=list)
    watchers = Column(JSON, nullable=False, default=list)
    comments = Column(JSON, nullable=False, default=list)
    checklist = Column(JSON, nullable=False, default=list)
    assignees = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    last_activity_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_items_board_stage", "board_id", "stage"),
        Index("ix_items_board_activity", "board_id", "last_activity_at"),
    )

    @staticmethod
    def columns_for(item: Item) -> Dict[str, Any]:
        """Column values for a whole-document write of ``item``."""
        doc = item.model_dump(mode="json")
        return {
            "board_id": item.board_id,
            "title": item.title,
            "description": item.description,
            "creator": item.creator,
            "score": item.score,
            "stage": item.stage.value,
            "blocked_reason": item.blocked_reason,
            "voters": doc["voters"],
            "history": doc["history"],
            "watchers": doc["watchers"],
            "comments": doc["comments"],
            "checklist": doc["checklist"],
            "assignees": doc["assignees"],
            "created_at": item.created_at,
            "last_activity_at": item.last_activity_at,
            "version": item.version,
        }

    @classmethod
    def from_item(cls, item: Item) -> "ItemModel":
        return cls(id=item.id, **cls.columns_for(item))

    def to_item(self) -> Item:
        """Validate the stored document back into an Item snapshot."""
        return Item.model_validate(
            {
                "id": self.id,
                "board_id": self.board_id,
                "title": self.title,
                "description": self.description,
                "creator": self.creator,
                "score": self.score,
                "stage": self.stage,
                "blocked_reason": self.blocked_reason,
                "voters": self.voters or {},
                "history": self.history or [],
                "watchers": self.watchers or [],
                "comments": self.comments or [],
                "checklist": self.checklist or [],
                "assignees": self.assignees or [],
                "created_at": _aware(self.created_at),
                "last_activity_at": _aware(self.last_activity_at),
                "version": self.version,
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return self.to_item().model_dump(mode="json")
