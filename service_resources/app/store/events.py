"""
Minimal observable for store mutation events.
"""

from typing import Any, Callable, Dict, List, Optional


Listener = Callable[..., Any]


class EventEmitter:
    """Named-event emitter whose ``on`` returns an unsubscribe handle.

    Listeners run synchronously, in registration order, on the emitting
    call stack; events for one emitter are therefore delivered in the order
    they were emitted.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register ``callback`` for ``event`` and return its unsubscribe handle."""
        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event)
            if not listeners:
                return
            try:
                listeners.remove(callback)
            except ValueError:
                return
            if not listeners:
                del self._listeners[event]

        return unsubscribe

    def emit(self, event: str, *args: Any) -> None:
        # Copy so listeners may unsubscribe while being notified
        for callback in list(self._listeners.get(event, ())):
            callback(*args)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, ()))
        return sum(len(listeners) for listeners in self._listeners.values())
