"""
Contracts the engine expects from its external collaborators.

The engine never talks to a database, a push channel or an auth provider
directly. It depends on these narrow interfaces instead:

- ItemRepository: whole-document persistence keyed by item id
- CapabilityChecker: the "is this identity an admin on this board" check
- ChangeEvent: the unit carried by the change feed
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from .enums import ChangeKind
from .models import Item
from .primitives import generate_ulid, utc_now


class ChangeEvent(BaseModel):
    """A change to one item on one board.

    ``item`` carries the full snapshot for insert and update events and the
    last known snapshot (if any) for delete events.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=generate_ulid)
    kind: ChangeKind
    board_id: str
    item_id: str
    item: Optional[Item] = None
    origin: Optional[str] = Field(None, description="Session that caused the change")
    emitted_at: datetime = Field(default_factory=utc_now)


@runtime_checkable
class ItemRepository(Protocol):
    """Persistence collaborator for items, scoped by board id."""

    def get(self, item_id: str) -> Optional[Item]: ...

    def list_for_board(self, board_id: str) -> List[Item]: ...

    def insert(self, item: Item, origin: Optional[str] = None) -> Item: ...

    def replace(self, item: Item, origin: Optional[str] = None) -> Item: ...

    def delete(self, item_id: str, origin: Optional[str] = None) -> None: ...


@runtime_checkable
class CapabilityChecker(Protocol):
    def is_admin(self, board_id: str, identity: str) -> bool: ...


class StaticCapabilities:
    """Capability checker backed by a fixed set of admin identities."""

    def __init__(self, admins: Iterable[str] = ()):
        self.admins = {a.strip().lower() for a in admins if a and a.strip()}

    def is_admin(self, board_id: str, identity: str) -> bool:
        return identity.strip().lower() in self.admins
