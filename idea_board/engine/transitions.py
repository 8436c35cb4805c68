"""
Stage transition rules.

A pure function of (current stage, score, thresholds). Rules are evaluated
in order and the first match wins:

1. score <= -to_backlog on any stage other than backlog -> backlog
2. backlog and score >= to_discussion -> discussion
3. discussion and score >= to_production -> production
4. otherwise the stage is unchanged

Promotions are single-step. Review, roadblock and done are only entered by
an explicit move, and an item is never promoted out of roadblock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .enums import Stage
from .primitives import Thresholds

AUTO_DEMOTE_REASON = "Auto demote by score"
AUTO_PROMOTE_REASON = "Auto promote by score"


@dataclass(frozen=True)
class AutoTransition:
    from_stage: Stage
    to_stage: Stage
    reason: str


@dataclass(frozen=True)
class StageDecision:
    stage: Stage
    auto_transition: Optional[AutoTransition] = None

    @property
    def changed(self) -> bool:
        return self.auto_transition is not None


def next_stage(current: Stage, score: int, thresholds: Thresholds) -> StageDecision:
    """Return the stage an item should occupy after a score change."""
    if score <= -thresholds.to_backlog and current != Stage.BACKLOG:
        return _auto(current, Stage.BACKLOG, AUTO_DEMOTE_REASON)
    if current == Stage.BACKLOG and score >= thresholds.to_discussion:
        return _auto(current, Stage.DISCUSSION, AUTO_PROMOTE_REASON)
    if current == Stage.DISCUSSION and score >= thresholds.to_production:
        return _auto(current, Stage.PRODUCTION, AUTO_PROMOTE_REASON)
    return StageDecision(stage=current)


def _auto(current: Stage, target: Stage, reason: str) -> StageDecision:
    return StageDecision(
        stage=target,
        auto_transition=AutoTransition(from_stage=current, to_stage=target, reason=reason),
    )
