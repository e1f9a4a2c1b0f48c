"""
test_history.py - Unit Tests for structural diffs and history replay

Tests cover:
1. compare() operation kinds, ordering and paths
2. generate_history_entry() timestamps and notes
3. apply_diff() / replay_history() reconstruction
4. migrate_from_snapshots_to_diffs()
"""

import pytest

from txledger import (
    compare,
    apply_diff,
    generate_history_entry,
    replay_history,
    snapshot_from_tx_meta,
    migrate_from_snapshots_to_diffs,
    current_timestamp,
)


class TestCompare:
    """Tests for compare()."""

    def test_identical_inputs_produce_no_ops(self):
        state = {"id": 1, "tx_params": {"gasPrice": "0x1"}}
        assert compare(state, dict(state)) == []

    def test_nested_replace_uses_pointer_path(self):
        old = {"tx_params": {"gasPrice": "0x01"}}
        new = {"tx_params": {"gasPrice": "0x02"}}
        assert compare(old, new) == [
            {"op": "replace", "path": "/tx_params/gasPrice", "value": "0x02"},
        ]

    def test_add_and_remove(self):
        old = {"a": 1, "b": 2}
        new = {"b": 2, "c": 3}
        assert compare(old, new) == [
            {"op": "remove", "path": "/a"},
            {"op": "add", "path": "/c", "value": 3},
        ]

    def test_removals_come_before_additions(self):
        ops = compare({"x": 1}, {"y": 1, "z": 2})
        assert [op["op"] for op in ops] == ["remove", "add", "add"]

    def test_bool_to_int_is_a_change(self):
        assert compare({"flag": True}, {"flag": 1}) == [
            {"op": "replace", "path": "/flag", "value": 1},
        ]

    def test_equal_length_lists_diffed_by_index(self):
        assert compare({"l": [1, 2]}, {"l": [1, 3]}) == [
            {"op": "replace", "path": "/l/1", "value": 3},
        ]

    def test_list_length_change_replaces_whole_list(self):
        assert compare({"l": [1]}, {"l": [1, 2]}) == [
            {"op": "replace", "path": "/l", "value": [1, 2]},
        ]

    def test_path_tokens_are_escaped(self):
        ops = compare({}, {"a/b": 1, "c~d": 2})
        assert [op["path"] for op in ops] == ["/a~1b", "/c~0d"]

    def test_values_are_copied(self):
        new = {"err": {"message": "boom"}}
        ops = compare({}, new)
        new["err"]["message"] = "changed"
        assert ops[0]["value"] == {"message": "boom"}


class TestGenerateHistoryEntry:
    """Tests for generate_history_entry()."""

    def test_every_op_shares_one_timestamp(self):
        before = current_timestamp()
        entry = generate_history_entry({"a": 1, "b": 1}, {"a": 2, "b": 2})
        after = current_timestamp()
        stamps = {op["timestamp"] for op in entry}
        assert len(stamps) == 1
        assert before <= stamps.pop() <= after

    def test_note_on_first_op_only(self):
        entry = generate_history_entry({"a": 1, "b": 1}, {"a": 2, "b": 2}, note="why")
        assert entry[0]["note"] == "why"
        assert "note" not in entry[1]

    def test_no_change_no_entry(self):
        assert generate_history_entry({"a": 1}, {"a": 1}, note="nothing") == []


class TestReplay:
    """Tests for apply_diff() and replay_history()."""

    def test_apply_diff_does_not_mutate_input(self):
        state = {"a": {"b": 1}}
        result = apply_diff(state, [{"op": "replace", "path": "/a/b", "value": 2}])
        assert state == {"a": {"b": 1}}
        assert result == {"a": {"b": 2}}

    def test_apply_diff_restores_int_keys(self):
        state = {1: {"status": "unapproved"}}
        result = apply_diff(state, [{"op": "replace", "path": "/1/status", "value": "signed"}])
        assert result == {1: {"status": "signed"}}

    def test_apply_diff_unknown_op(self):
        with pytest.raises(ValueError):
            apply_diff({"a": 1}, [{"op": "move", "path": "/a"}])

    def test_replay_reconstructs_latest_version(self):
        v0 = {"id": 1, "status": "unapproved", "tx_params": {"gasPrice": "0x1"}}
        v1 = {"id": 1, "status": "approved", "tx_params": {"gasPrice": "0x1"}}
        v2 = {"id": 1, "status": "approved", "tx_params": {"gasPrice": "0x2"}, "hash": "0xabc"}
        history = [v0, generate_history_entry(v0, v1), generate_history_entry(v1, v2)]
        assert replay_history(history) == v2

    def test_replay_empty_history(self):
        with pytest.raises(ValueError):
            replay_history([])


class TestSnapshots:
    """Tests for snapshot helpers and migration."""

    def test_snapshot_strips_history_and_copies(self):
        tx = {"id": 1, "tx_params": {"from": "0x1"}, "history": [{}]}
        snapshot = snapshot_from_tx_meta(tx)
        assert snapshot == {"id": 1, "tx_params": {"from": "0x1"}}
        snapshot["tx_params"]["from"] = "0x2"
        assert tx["tx_params"]["from"] == "0x1"

    def test_migrate_snapshots_to_diffs(self):
        snapshots = [
            {"id": 1, "status": "unapproved"},
            {"id": 1, "status": "unapproved"},
            {"id": 1, "status": "approved"},
        ]
        migrated = migrate_from_snapshots_to_diffs(snapshots)
        assert len(migrated) == 2
        assert migrated[0] == snapshots[0]
        assert replay_history(migrated) == snapshots[-1]

    def test_migrate_empty(self):
        assert migrate_from_snapshots_to_diffs([]) == []
