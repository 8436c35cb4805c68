"""
Common primitives shared by the engine modules.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID

# A vote is either an upvote or a downvote.
Direction = Literal[1, -1]


def generate_ulid() -> str:
    """Generate a ULID for object IDs.

    ULIDs are lexicographically sortable and globally unique.
    """
    return str(ULID())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class Thresholds(BaseModel):
    """Board-configured score boundaries for automatic stage changes.

    ``to_backlog`` is a magnitude: an item is demoted once its score drops to
    ``-to_backlog`` or below.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    to_discussion: int = Field(5, ge=1, description="Backlog -> Discussion")
    to_production: int = Field(10, ge=1, description="Discussion -> Production")
    to_backlog: int = Field(5, ge=1, description="Any -> Backlog if score <= -X")

    @classmethod
    def from_settings(cls) -> "Thresholds":
        """Build the default thresholds from application settings."""
        from idea_board.config import settings

        return cls(
            to_discussion=settings.threshold_to_discussion,
            to_production=settings.threshold_to_production,
            to_backlog=settings.threshold_to_backlog,
        )
