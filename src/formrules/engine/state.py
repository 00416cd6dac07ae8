"""
Form state ownership, change notification and undo/redo history.

StateManager is the only writer of form state. Updates are shallow per-key
merges: a partial update replaces whole top-level values, so nested
containers are swapped wholesale rather than merged. Every committed update
pushes the previous state onto a bounded history (oldest entries evicted
first) and clears the redo stack.
"""

import copy
import logging
from collections import deque
from collections.abc import Callable, Mapping
from typing import Any

from .exceptions import StateUpdateError

logger = logging.getLogger(__name__)

FormState = dict[str, Any]
Updater = Mapping[str, Any] | Callable[[FormState], Mapping[str, Any] | None]
Listener = Callable[[FormState, FormState], None]


class StateManager:
    """
    Owns one form's state.

    Example:
        manager = StateManager({"quantity": 0})
        unsubscribe = manager.subscribe(lambda new, prev: print(new))
        manager.set_state({"quantity": 5})
        manager.set_state(lambda prev: {"quantity": prev["quantity"] + 1})
        manager.undo()   # quantity back to 5
    """

    def __init__(self, initial_state: Mapping[str, Any] | None = None, history_limit: int = 50):
        if history_limit < 1:
            raise ValueError(f"history_limit must be >= 1, got {history_limit}")
        self._state: FormState = copy.deepcopy(dict(initial_state or {}))
        self._history: deque[FormState] = deque(maxlen=history_limit)
        self._redo: deque[FormState] = deque(maxlen=history_limit)
        self._listeners: list[Listener] = []
        self._updating = False
        self.history_limit = history_limit

    # =========================================================================
    # Reads
    # =========================================================================

    def get_state(self) -> FormState:
        """Deep copy of the current state; mutating it has no effect."""
        return copy.deepcopy(self._state)

    def peek(self, key: str, default: Any = None) -> Any:
        """Read one top-level value without copying the whole state."""
        return copy.deepcopy(self._state.get(key, default))

    @property
    def history_size(self) -> int:
        return len(self._history)

    @property
    def can_undo(self) -> bool:
        return bool(self._history)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    # =========================================================================
    # Writes
    # =========================================================================

    def set_state(self, updater: Updater, *, replace: bool = False) -> FormState:
        """
        Commit an update and notify subscribers.

        Args:
            updater: Partial mapping, or callable receiving a copy of the
                previous state and returning a partial mapping (None = no change)
            replace: Swap the whole state instead of merging

        Returns:
            Copy of the committed state

        Raises:
            StateUpdateError: Re-entrant call (from a listener or updater),
                or an updater that does not produce a mapping
        """
        if self._updating:
            logger.warning("Rejected re-entrant set_state call during an update")
            raise StateUpdateError("set_state called while another update is in progress")

        self._updating = True
        try:
            previous = self._state
            if callable(updater):
                partial = updater(copy.deepcopy(previous))
            else:
                partial = updater
            if partial is None:
                return self.get_state()
            if not isinstance(partial, Mapping):
                raise StateUpdateError(
                    f"State update must be a mapping, got {type(partial).__name__}"
                )

            partial = copy.deepcopy(dict(partial))
            new_state = partial if replace else {**previous, **partial}
            self._history.append(previous)
            self._redo.clear()
            self._state = new_state
            self._notify(new_state, previous)
            return self.get_state()
        finally:
            self._updating = False

    def undo(self) -> bool:
        """Restore the previous state; False when there is no history."""
        return self._restore(self._history, self._redo, "undo")

    def redo(self) -> bool:
        """Re-apply the last undone state; False when nothing was undone."""
        return self._restore(self._redo, self._history, "redo")

    def _restore(self, source: deque[FormState], target: deque[FormState], action: str) -> bool:
        if self._updating:
            logger.warning(f"Rejected re-entrant {action} during an update")
            raise StateUpdateError(f"{action} called while another update is in progress")
        if not source:
            return False

        self._updating = True
        try:
            previous = self._state
            target.append(previous)
            self._state = source.pop()
            self._notify(self._state, previous)
        finally:
            self._updating = False
        logger.debug(f"State {action}: {len(self._history)} undo / {len(self._redo)} redo left")
        return True

    def clear_history(self) -> None:
        self._history.clear()
        self._redo.clear()

    # =========================================================================
    # Subscribers
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with (new_state, previous_state) after each commit.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, new_state: FormState, previous: FormState) -> None:
        for listener in list(self._listeners):
            try:
                listener(copy.deepcopy(new_state), copy.deepcopy(previous))
            except Exception as e:
                logger.error(f"State listener {listener!r} failed: {e}", exc_info=True)

    def __repr__(self) -> str:
        return (
            f"StateManager(keys={len(self._state)}, undo={len(self._history)}, "
            f"redo={len(self._redo)})"
        )
