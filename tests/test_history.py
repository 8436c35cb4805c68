"""
Tests for the append-only history log and replay.

Verifies:
- appended entries keep strictly increasing timestamps
- replaying history reproduces score, stage and blocked reason
- verify() detects cached fields that disagree with history
"""

from datetime import timedelta

import pytest

from idea_board.engine import history
from idea_board.engine.enums import Stage
from idea_board.engine.errors import HistoryMismatchError
from idea_board.engine.models import BlockedEntry, CreatedEntry, MovedEntry, VotedEntry


class TestAppend:
    def test_appends_at_the_end(self, item, clock):
        entry = CreatedEntry(actor="bob", timestamp=clock())
        updated = history.append(item, entry)

        assert len(updated.history) == 2
        assert updated.history[-1].id == entry.id
        assert item.history == updated.history[:1]

    def test_restamps_entry_not_after_last(self, item):
        last = item.history[-1].timestamp
        stale = CreatedEntry(actor="bob", timestamp=last - timedelta(minutes=5))

        updated = history.append(item, stale)

        assert updated.history[-1].timestamp == last + history.TICK

    def test_store_operations_keep_timestamps_increasing(self, store, item):
        # Same-instant operations are forced apart
        store.clock = lambda: item.created_at
        store.vote(item.id, "t1", 1)
        store.comment(item.id, "bob", "Nice")
        store.move(item.id, Stage.REVIEW, actor="bob")

        stamps = [e.timestamp for e in store.get(item.id).history]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)


class TestOrdering:
    def test_newest_first_reverses_order(self, store, item):
        store.vote(item.id, "t1", 1)
        store.watch(item.id, "bob")
        entries = store.get(item.id).history

        assert history.newest_first(entries) == tuple(reversed(history.ordered(entries)))
        assert history.newest_first(entries)[-1].type == "created"


class TestReplay:
    def test_fresh_item_replays_to_backlog(self, item):
        state = history.replay(item.history)

        assert state == history.ReplayState(score=0, stage=Stage.BACKLOG, blocked_reason=None)

    def test_replay_matches_cached_fields_after_mixed_operations(self, store, item):
        for n in range(5):
            store.vote(item.id, f"up-{n}", 1)
        store.move(item.id, Stage.ROADBLOCK, actor="bob", reason="Waiting on legal")
        store.move(item.id, Stage.REVIEW, actor="bob")
        store.vote(item.id, "up-0", 1)
        store.move(item.id, Stage.ROADBLOCK, actor="bob")
        for n in range(9):
            store.vote(item.id, f"down-{n}", -1)

        current = store.get(item.id)
        state = history.verify(current)

        assert state.score == current.score == -5
        assert state.stage == current.stage == Stage.BACKLOG
        assert state.blocked_reason is None

    def test_replay_keeps_roadblock_reason(self, store, item):
        store.move(item.id, Stage.ROADBLOCK, actor="bob", reason="Blocked by vendor")

        state = history.replay(store.get(item.id).history)

        assert state.stage == Stage.ROADBLOCK
        assert state.blocked_reason == "Blocked by vendor"

    def test_replay_ignores_non_state_entries(self, store, item):
        store.comment(item.id, "bob", "First")
        store.watch(item.id, "bob")
        checklist = store.add_checklist_item(item.id, "Write docs").checklist[0]
        store.toggle_checklist_item(item.id, checklist.id)
        store.assign(item.id, "carol", actor="bob")
        store.unassign(item.id, "carol", actor="bob")

        assert history.replay(store.get(item.id).history) == history.ReplayState()

    def test_moved_entry_clears_blocked_reason(self, clock):
        entries = [
            CreatedEntry(actor="alice", timestamp=clock()),
            BlockedEntry(actor="bob", timestamp=clock(), from_stage=Stage.BACKLOG, reason="Vendor"),
            MovedEntry(
                actor="system",
                timestamp=clock(),
                from_stage=Stage.ROADBLOCK,
                to_stage=Stage.BACKLOG,
                auto=True,
                detail="Score -5 reached backlog threshold",
            ),
        ]

        state = history.replay(entries)

        assert state.stage == Stage.BACKLOG
        assert state.blocked_reason is None

    def test_move_to_done_replays(self, store, item, admin):
        store.move(item.id, Stage.DONE, actor=admin)

        assert history.verify(store.get(item.id)).stage == Stage.DONE


class TestVerify:
    def test_detects_tampered_stage(self, item):
        tampered = item.model_copy(update={"stage": Stage.REVIEW})

        with pytest.raises(HistoryMismatchError) as exc_info:
            history.verify(tampered)
        assert exc_info.value.code == "HISTORY_MISMATCH"

    def test_detects_missing_vote_entry(self, store, item):
        voted = store.vote(item.id, "t1", 1).item
        without_vote = voted.model_copy(
            update={"history": tuple(e for e in voted.history if not isinstance(e, VotedEntry))}
        )

        with pytest.raises(HistoryMismatchError):
            history.verify(without_vote)
