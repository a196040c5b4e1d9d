"""
Notification glue: observable streams and fire-once trigger observers.
"""

import logging
from typing import Any, Callable, List

from .store import AUTO_CONTROL_TRIGGER, StructureStore

logger = logging.getLogger(__name__)


class Signal:
    """A stream of values delivered to subscribers in subscription order."""

    def __init__(self, name: str = "signal"):
        self.name = name
        self._subscribers: List[Callable[[Any], None]] = []

    def subscribe(self, callback: Callable[[Any], None]) -> Callable[[], None]:
        """Register `callback`; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, value: Any) -> None:
        for callback in list(self._subscribers):
            callback(value)

    def __len__(self) -> int:
        return len(self._subscribers)


class TransitionObserver:
    """Calls `func` once, the first time the trigger of control `uri` changes."""

    def __init__(self, store: StructureStore, uri: str, func: Callable[[], None]):
        self.store = store
        self.uri = uri
        self.func = func
        self.fired = False
        store.add_value_observer(uri, AUTO_CONTROL_TRIGGER, self)

    def observed_value_changed(self, uri: str, name: str, value: float) -> None:
        if uri != self.uri or self.fired:
            return
        self.fired = True
        self.store.remove_value_observer(uri, AUTO_CONTROL_TRIGGER, self)
        self.func()
