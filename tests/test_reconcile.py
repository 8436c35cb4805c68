"""
Tests for reconciling change-feed pushes with local optimistic state.
"""

import pytest

from idea_board.engine.collaborators import ChangeEvent
from idea_board.engine.enums import ChangeKind, Stage
from idea_board.engine.reconcile import ReconciliationLayer, merge
from idea_board.engine.store import ItemStore


@pytest.fixture
def remote(store, thresholds, capabilities):
    """A second participant's store on the same board."""
    return ItemStore(store.board_id, thresholds=thresholds, capabilities=capabilities)


@pytest.fixture
def layer(store):
    return ReconciliationLayer(store)


def push(item, kind=ChangeKind.UPDATE):
    return ChangeEvent(kind=kind, board_id=item.board_id, item_id=item.id, item=item)


class TestMerge:
    def test_merge_with_itself_is_identity(self, item):
        assert merge(item, item) is item

    def test_newer_remote_wins(self, store, item):
        newer = store.vote(item.id, "t1", 1).item

        assert merge(item, newer) is newer

    def test_stale_remote_keeps_local(self, store, item):
        local = store.vote(item.id, "t1", 1).item

        assert merge(local, item) is local


class TestApply:
    def test_unknown_item_is_adopted(self, layer, remote):
        created = remote.create("From elsewhere", "bob")

        result = layer.apply(push(created, ChangeKind.INSERT))

        assert result.action == "adopted"
        assert layer.store.get(created.id) == created

    def test_remote_update_replaces_whole_snapshot(self, layer, store, item, remote):
        remote.adopt(item)
        for n in range(5):
            remote.vote(item.id, f"t{n}", 1)
        remote.comment(item.id, "bob", "Pushed comment")
        pushed = remote.get(item.id)

        result = layer.apply(push(pushed))

        assert result.action == "replaced"
        assert result.changed
        local = store.get(item.id)
        assert local == pushed
        assert local.stage == Stage.DISCUSSION
        assert local.history == pushed.history

    def test_stale_push_keeps_local_edit(self, layer, store, item):
        store.vote(item.id, "t1", 1)
        local = store.get(item.id)

        result = layer.apply(push(item))

        assert result.action == "kept_local"
        assert not result.changed
        assert store.get(item.id) is local

    def test_echo_of_own_write_is_accepted(self, layer, store, item):
        voted = store.vote(item.id, "t1", 1).item

        result = layer.apply(push(voted))

        assert result.action == "replaced"
        assert store.get(item.id) == voted

    def test_other_board_ignored(self, layer, item):
        foreign = item.model_copy(update={"board_id": "elsewhere", "version": 9})

        assert layer.apply(push(foreign)).action == "ignored"
        assert layer.store.get(item.id) == item

    def test_event_without_snapshot_ignored(self, layer, item):
        event = ChangeEvent(kind=ChangeKind.UPDATE, board_id=item.board_id, item_id=item.id)

        assert layer.apply(event).action == "ignored"


class TestDeletes:
    def test_remote_delete_removes_item(self, layer, store, item):
        result = layer.apply(push(item, ChangeKind.DELETE))

        assert result.action == "removed"
        assert item.id not in store

    def test_delete_is_sticky(self, layer, store, item, remote):
        remote.adopt(item)
        late = remote.vote(item.id, "t1", 1).item

        layer.apply(push(item, ChangeKind.DELETE))
        result = layer.apply(push(late))

        assert result.action == "ignored"
        assert item.id not in store

    def test_local_delete_ignores_late_update(self, layer, store, item, remote):
        remote.adopt(item)
        late = remote.vote(item.id, "t1", 1).item
        store.delete(item.id)

        assert layer.apply(push(late)).action == "ignored"
        assert item.id not in store

    def test_delete_of_absent_item(self, layer, remote):
        ghost = remote.create("Never seen", "bob")

        assert layer.apply(push(ghost, ChangeKind.DELETE)).action == "absent"


class TestDrafts:
    def test_draft_survives_remote_replacement(self, layer, item, remote):
        layer.set_draft(item.id, "Half-written thought")
        remote.adopt(item)
        pushed = remote.comment(item.id, "bob", "Someone else's comment")

        layer.apply(push(pushed))

        assert layer.draft(item.id).text == "Half-written thought"

    def test_draft_dropped_when_item_deleted(self, layer, item):
        layer.set_draft(item.id, "Never sent")

        layer.apply(push(item, ChangeKind.DELETE))

        assert layer.draft(item.id) is None

    def test_clear_draft(self, layer, item):
        layer.set_draft(item.id, "text", reply_to="c1")
        assert layer.draft(item.id).reply_to == "c1"

        layer.clear_draft(item.id)
        assert layer.draft(item.id) is None


class TestConvergence:
    def test_two_stores_converge_on_exchanged_pushes(self, store, item, remote):
        remote.adopt(item)
        local_layer = ReconciliationLayer(store)
        remote_layer = ReconciliationLayer(remote)
        to_remote = []
        to_local = []
        store.add_listener(to_remote.append)
        remote.add_listener(to_local.append)

        store.vote(item.id, "a", 1)
        for event in to_remote:
            remote_layer.apply(event)
        remote.vote(item.id, "b", 1)
        remote.move(item.id, Stage.REVIEW, actor="bob")
        for event in to_local:
            local_layer.apply(event)

        assert store.get(item.id) == remote.get(item.id)
        assert store.get(item.id).score == 2
