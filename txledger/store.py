"""
store.py - Observable state containers

ObservableStore is the store contract the ledger reads and writes through:
get_state(), put_state(), update_state() and subscribe(). Every write
notifies subscribers synchronously with the new state.

ComposableObservableStore aggregates several independently owned stores into
one observable tree keyed by store name, and can flatten the children into a
single mapping.
"""

from __future__ import annotations
import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


StateListener = Callable[[Any], Any]


class ObservableStore:
    """
    Holds one state value and notifies subscribers on every write.

    The store does not copy state: get_state() and every subscriber receive
    the live object. Treat it as read-only; a mutation made through it
    skips notification and whatever checks the owner applies on write.
    Owners that hand out state for modification must copy it themselves.
    """

    def __init__(self, initial_state: Any = None):
        self._state = initial_state
        self._subscribers: List[StateListener] = []
        self._lock = threading.RLock()

    def get_state(self) -> Any:
        """Return the current state (live, not a copy)."""
        return self._state

    def put_state(self, new_state: Any) -> None:
        """Replace the state and notify subscribers."""
        with self._lock:
            self._state = new_state
            subscribers = list(self._subscribers)
        self._notify(subscribers, new_state)

    def update_state(self, partial: Any) -> None:
        """
        Merge partial into the state and notify subscribers.

        Mappings are merged one level deep; any other value replaces the state.
        """
        with self._lock:
            if isinstance(self._state, Mapping) and isinstance(partial, Mapping):
                new_state = {**self._state, **partial}
            else:
                new_state = partial
            self.put_state(new_state)

    def subscribe(self, listener: StateListener) -> Callable[[], bool]:
        """
        Register listener for every future write.

        Returns:
            A callable that removes the registration
        """
        if not callable(listener):
            raise TypeError("Store listener must be callable")
        with self._lock:
            self._subscribers.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: StateListener) -> bool:
        """Remove listener. Returns True if it was registered."""
        with self._lock:
            if listener in self._subscribers:
                self._subscribers.remove(listener)
                return True
        return False

    def _notify(self, subscribers: List[StateListener], state: Any) -> None:
        for listener in subscribers:
            try:
                listener(state)
            except Exception:
                logger.exception("Store subscriber %r failed", listener)


class ComposableObservableStore(ObservableStore):
    """
    An ObservableStore whose state is assembled from named child stores.

    Example:
        txs = ObservableStore({"transactions": {}})
        prefs = ObservableStore({"currency": "usd"})
        root = ComposableObservableStore(config={"TxStore": txs, "PrefsStore": prefs})

        root.get_state()       # {"TxStore": {...}, "PrefsStore": {...}} after child writes
        root.get_flat_state()  # {"transactions": {}, "currency": "usd"}
    """

    def __init__(self, initial_state: Any = None, config: Optional[Mapping[str, ObservableStore]] = None):
        super().__init__(initial_state)
        self._config: Dict[str, ObservableStore] = {}
        self._child_unsubscribers: List[Callable[[], bool]] = []
        if config:
            self.update_structure(config)

    @property
    def config(self) -> Dict[str, ObservableStore]:
        return dict(self._config)

    def update_structure(self, config: Mapping[str, ObservableStore]) -> None:
        """
        Replace the set of child stores.

        Subscriptions to previous children are dropped. Each child write is
        reflected as update_state({name: child_state}).
        """
        with self._lock:
            for unsubscribe in self._child_unsubscribers:
                unsubscribe()
            self._child_unsubscribers = []
            self._config = dict(config)
            for name, store in self._config.items():
                self._child_unsubscribers.append(
                    store.subscribe(lambda state, _name=name: self.update_state({_name: state}))
                )

    def get_flat_state(self) -> Dict[str, Any]:
        """Merge every child's state into one mapping, in structure order."""
        flat: Dict[str, Any] = {}
        for store in self._config.values():
            state = store.get_state()
            if isinstance(state, Mapping):
                flat.update(state)
        return flat
