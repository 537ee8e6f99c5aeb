"""Synchronous event emitter shared by client handles and the request facade.

Listeners run in registration order on the emitting thread. Listener
exceptions propagate to whoever emitted the event.
"""

from __future__ import annotations

from typing import Any, Callable

Listener = Callable[..., Any]


class EventEmitter:
    """Named-event dispatcher.

    Example:
        events = EventEmitter()
        events.on("response", lambda resp: print(resp.status_code))
        events.emit("response", resp)
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> None:
        """Call ``listener`` every time ``event`` is emitted."""
        if event not in self._listeners:
            self._listeners[event] = []
        self._listeners[event].append(listener)

    def once(self, event: str, listener: Listener) -> None:
        """Call ``listener`` the next time ``event`` is emitted, then drop it."""

        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener  # type: ignore[attr-defined]
        self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> None:
        """Remove one registration of ``listener``. Unknown listeners are ignored."""
        listeners = self._listeners.get(event, [])
        for index, registered in enumerate(listeners):
            # Bound methods compare equal, never identical
            if registered == listener or getattr(registered, "listener", None) == listener:
                del listeners[index]
                return

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """Dispatch ``event``. Returns False when nobody was listening."""
        # Copy so listeners may unsubscribe while being called
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            listener(*args)
        return bool(listeners)
