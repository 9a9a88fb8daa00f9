"""
Event subscription registry.

Listeners run synchronously, in registration order. A listener that raises
is logged and does not prevent the remaining listeners from running.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

# Event names
DEVICE_FOUND = "device-found"
DEVICE_LOST = "device-lost"
RECEIVER_STATUS = "receiver-status"
MEDIA_STATUS = "media-status"
STATE_CHANGED = "state-changed"
CONNECTION_CLOSED = "connection-closed"
ERROR = "error"

Listener = Callable[..., Any]


class EventBus:
    """
    Callback registry keyed by event name.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(DEVICE_FOUND, on_device)
        bus.emit(DEVICE_FOUND, device)
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for an event.

        Returns:
            Callable that removes this registration
        """
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.unsubscribe(event, listener)

    def unsubscribe(self, event: str, listener: Listener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        """Invoke every listener registered for event."""
        # Copy so listeners may unsubscribe while being called
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args)
            except Exception as e:
                logger.error(f"Listener error for event '{event}': {e}", exc_info=True)
