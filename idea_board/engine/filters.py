"""
Board listing order and filters.

Within a stage, items are shown highest score first; ties go to the most
recently active item.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from .enums import Stage
from .models import Item


def board_order(items: Iterable[Item]) -> List[Item]:
    """Sort items by score, then by latest activity, both descending."""
    return sorted(items, key=lambda i: (i.score, i.last_activity_at), reverse=True)


class ItemFilter(BaseModel):
    """Criteria an item must meet to be listed. Unset fields match everything."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    stage: Optional[Stage] = None
    blocked: bool = False
    creator: Optional[str] = None
    assignee: Optional[str] = None
    text: Optional[str] = None

    def matches(self, item: Item) -> bool:
        if self.stage is not None and item.stage != self.stage:
            return False
        if self.blocked and item.stage != Stage.ROADBLOCK:
            return False
        if self.creator and item.creator != self.creator:
            return False
        if self.assignee and self.assignee not in item.assignees:
            return False
        query = (self.text or "").strip().lower()
        if query and query not in f"{item.title} {item.description or ''}".lower():
            return False
        return True

    def apply(self, items: Iterable[Item]) -> List[Item]:
        return board_order(i for i in items if self.matches(i))
