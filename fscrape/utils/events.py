"""Minimal synchronous observer registry.

Listeners are called in registration order, on the caller's stack, so
notifications for one subject arrive in the order the state changes
happened. A failing listener is logged and never breaks the emitter.
"""

from collections import defaultdict
from typing import Any, Callable, DefaultDict, Hashable, List

import structlog

logger = structlog.get_logger()

Listener = Callable[..., Any]


class EventEmitter:
    def __init__(self) -> None:
        self._listeners: DefaultDict[Hashable, List[Listener]] = defaultdict(list)

    def on(self, event: Hashable, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event.

        Returns:
            A callable that removes the subscription
        """
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            self.off(event, listener)

        return unsubscribe

    def off(self, event: Hashable, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: Hashable, *args: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(*args)
            except Exception as e:
                logger.error(
                    "event_listener_failed",
                    event_name=str(getattr(event, "value", event)),
                    error=str(e),
                    exc_info=True,
                )

    def listener_count(self, event: Hashable) -> int:
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self) -> None:
        self._listeners.clear()
