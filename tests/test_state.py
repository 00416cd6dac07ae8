"""Tests for StateManager history and subscriptions."""

import pytest

from formrules.engine.exceptions import StateUpdateError
from formrules.engine.state import StateManager


class TestSetState:
    def test_partial_update_merges_top_level_keys(self):
        manager = StateManager({"a": 1, "b": {"x": 1, "y": 2}})
        manager.set_state({"b": {"x": 5}})
        assert manager.get_state() == {"a": 1, "b": {"x": 5}}

    def test_functional_updater_receives_previous_state(self):
        manager = StateManager({"count": 1})
        manager.set_state(lambda prev: {"count": prev["count"] + 1})
        assert manager.peek("count") == 2

    def test_updater_returning_none_is_a_no_op(self):
        manager = StateManager({"count": 1})
        manager.set_state(lambda prev: None)
        assert manager.history_size == 0

    def test_replace(self):
        manager = StateManager({"a": 1, "b": 2})
        manager.set_state({"c": 3}, replace=True)
        assert manager.get_state() == {"c": 3}

    def test_returned_state_is_a_copy(self):
        manager = StateManager({"items": [1]})
        snapshot = manager.get_state()
        snapshot["items"].append(2)
        assert manager.peek("items") == [1]

    def test_caller_mapping_is_copied(self):
        manager = StateManager()
        update = {"items": [1]}
        manager.set_state(update)
        update["items"].append(2)
        assert manager.peek("items") == [1]

    @pytest.mark.parametrize("bad", [lambda prev: [1, 2], lambda prev: "nope"])
    def test_malformed_updater_raises(self, bad):
        manager = StateManager({"a": 1})
        with pytest.raises(StateUpdateError, match="must be a mapping"):
            manager.set_state(bad)
        assert manager.get_state() == {"a": 1}
        assert manager.history_size == 0

    def test_history_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            StateManager(history_limit=0)


class TestHistory:
    def test_history_is_bounded(self):
        manager = StateManager({"n": 0})
        for n in range(1, 61):
            manager.set_state({"n": n})

        assert manager.history_size == 50
        for _ in range(50):
            assert manager.undo() is True
        assert manager.undo() is False
        assert manager.peek("n") == 10

    def test_undo_then_redo(self):
        manager = StateManager({"n": 0})
        manager.set_state({"n": 1})
        manager.set_state({"n": 2})

        assert manager.undo()
        assert manager.peek("n") == 1
        assert manager.redo()
        assert manager.peek("n") == 2
        assert manager.redo() is False

    def test_new_update_clears_redo(self):
        manager = StateManager({"n": 0})
        manager.set_state({"n": 1})
        manager.undo()
        assert manager.can_redo
        manager.set_state({"n": 5})
        assert not manager.can_redo
        assert manager.redo() is False

    def test_undo_on_fresh_manager(self):
        manager = StateManager({"n": 0})
        assert not manager.can_undo
        assert manager.undo() is False
        assert manager.get_state() == {"n": 0}

    def test_clear_history(self):
        manager = StateManager()
        manager.set_state({"n": 1})
        manager.clear_history()
        assert manager.undo() is False
        assert manager.peek("n") == 1


class TestSubscribers:
    def test_listener_receives_new_and_previous(self):
        manager = StateManager({"n": 0})
        calls = []
        manager.subscribe(lambda new, prev: calls.append((new["n"], prev["n"])))
        manager.set_state({"n": 1})
        manager.undo()
        assert calls == [(1, 0), (0, 1)]

    def test_unsubscribe(self):
        manager = StateManager()
        calls = []
        unsubscribe = manager.subscribe(lambda new, prev: calls.append(new))
        unsubscribe()
        unsubscribe()
        manager.set_state({"n": 1})
        assert calls == []

    def test_failing_listener_does_not_block_others(self):
        manager = StateManager()
        calls = []

        def broken(new, prev):
            raise RuntimeError("boom")

        manager.subscribe(broken)
        manager.subscribe(lambda new, prev: calls.append(new["n"]))
        manager.set_state({"n": 1})
        assert calls == [1]
        assert manager.peek("n") == 1

    def test_reentrant_update_from_listener_is_rejected(self):
        manager = StateManager({"n": 0})
        attempts = []

        def reenter(new, prev):
            try:
                manager.set_state({"n": 99})
            except StateUpdateError as e:
                attempts.append(e)

        manager.subscribe(reenter)
        manager.set_state({"n": 1})

        assert len(attempts) == 1
        assert manager.peek("n") == 1
        assert manager.history_size == 1

    def test_reentrant_update_from_updater_is_rejected(self):
        manager = StateManager({"n": 0})

        def updater(prev):
            manager.set_state({"n": 5})
            return {"n": 1}

        with pytest.raises(StateUpdateError):
            manager.set_state(updater)
        assert manager.peek("n") == 0

    def test_listener_copies_are_isolated(self):
        manager = StateManager({"items": []})
        manager.subscribe(lambda new, prev: new["items"].append("leak"))
        manager.set_state({"items": [1]})
        assert manager.peek("items") == [1]
