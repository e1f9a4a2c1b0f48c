"""
test_store.py - Unit Tests for observable stores

Tests cover:
1. ObservableStore get/put/update and subscriptions
2. ComposableObservableStore structure and flattening
"""

import logging

from txledger import ObservableStore, ComposableObservableStore


class TestObservableStore:
    """Tests for ObservableStore."""

    def test_initial_state(self):
        assert ObservableStore({"a": 1}).get_state() == {"a": 1}
        assert ObservableStore().get_state() is None

    def test_update_state_merges_mappings(self):
        store = ObservableStore({"a": 1, "b": 1})
        store.update_state({"b": 2})
        assert store.get_state() == {"a": 1, "b": 2}

    def test_update_state_replaces_non_mappings(self):
        store = ObservableStore("old")
        store.update_state({"a": 1})
        assert store.get_state() == {"a": 1}

    def test_subscribers_see_every_write(self):
        store = ObservableStore({})
        seen = []
        store.subscribe(seen.append)
        store.put_state({"a": 1})
        store.update_state({"b": 2})
        assert seen == [{"a": 1}, {"a": 1, "b": 2}]

    def test_unsubscribe(self):
        store = ObservableStore({})
        seen = []
        unsubscribe = store.subscribe(seen.append)
        assert unsubscribe() is True
        store.put_state({"a": 1})
        assert seen == []
        assert store.unsubscribe(seen.append) is False

    def test_failing_subscriber_does_not_block_others(self, caplog):
        store = ObservableStore({})
        seen = []

        def broken(state):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(seen.append)
        with caplog.at_level(logging.ERROR, logger="txledger.store"):
            store.put_state({"a": 1})
        assert seen == [{"a": 1}]
        assert "failed" in caplog.text


class TestComposableObservableStore:
    """Tests for ComposableObservableStore."""

    def test_register_initial_state(self):
        store = ComposableObservableStore("state")
        assert store.get_state() == "state"

    def test_register_initial_structure(self):
        test_store = ObservableStore()
        store = ComposableObservableStore(None, {"TestStore": test_store})
        test_store.put_state("state")
        assert store.get_state() == {"TestStore": "state"}

    def test_update_structure(self):
        test_store = ObservableStore()
        store = ComposableObservableStore()
        store.update_structure({"TestStore": test_store})
        test_store.put_state("state")
        assert store.get_state() == {"TestStore": "state"}

    def test_update_structure_drops_old_children(self):
        old_store = ObservableStore()
        new_store = ObservableStore()
        store = ComposableObservableStore(None, {"Old": old_store})
        store.update_structure({"New": new_store})
        old_store.put_state("stale")
        assert store.get_state() is None
        assert list(store.config) == ["New"]

    def test_flattened_state(self):
        foo_store = ObservableStore({"foo": "foo"})
        bar_store = ObservableStore({"bar": "bar"})
        store = ComposableObservableStore(None, {"FooStore": foo_store, "BarStore": bar_store})
        assert store.get_flat_state() == {"foo": "foo", "bar": "bar"}
