"""
Vote ledger.

Owns the per-item mapping of voter token to vote direction and the score
derived from it. This is the only code path that changes an item's score.

A voter holds at most one vote per item:
- no existing vote: the vote is cast
- same direction again: the vote is retracted
- opposite direction: the vote is changed (score moves by two)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .enums import VoteKind
from .models import Item
from .primitives import utc_now


@dataclass(frozen=True)
class VoteOutcome:
    """Result of applying one vote to an item."""

    item: Item
    delta: int
    kind: VoteKind
    previous: Optional[int] = None

    def describe(self) -> str:
        """Human-readable summary used as the history detail."""
        if self.kind == VoteKind.RETRACT:
            return "Removed vote"
        new = -self.previous if self.previous is not None else self.delta
        if self.kind == VoteKind.CHANGE:
            return f"Changed vote from {_signed(self.previous)} to {_signed(new)}"
        return _signed(self.delta)


def _signed(direction: Optional[int]) -> str:
    return "+1" if direction and direction > 0 else "-1"


def apply_vote(
    item: Item,
    voter_token: str,
    direction: int,
    now: Optional[datetime] = None,
) -> VoteOutcome:
    """Apply a vote by ``voter_token`` and return the updated item.

    Args:
        item: Current item snapshot
        voter_token: Opaque per-device/user token keying the vote slot
        direction: +1 or -1
        now: Operation time, defaults to the current UTC time

    Returns:
        VoteOutcome with the new snapshot, the score delta and what kind of
        change was made to the voter's slot.
    """
    if direction not in (1, -1):
        raise ValueError(f"direction must be +1 or -1, got {direction!r}")

    now = now or utc_now()
    voters = dict(item.voters)
    existing = voters.get(voter_token)

    if existing is None:
        voters[voter_token] = direction
        delta = direction
        kind = VoteKind.CAST
    elif existing == direction:
        del voters[voter_token]
        delta = -direction
        kind = VoteKind.RETRACT
    else:
        voters[voter_token] = direction
        delta = direction - existing
        kind = VoteKind.CHANGE

    updated = item.model_copy(
        update={
            "voters": voters,
            "score": item.score + delta,
            "last_activity_at": now,
        }
    )
    return VoteOutcome(item=updated, delta=delta, kind=kind, previous=existing)
