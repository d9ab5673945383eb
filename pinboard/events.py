"""
Event bridge: tells hosts about pin set changes after they are published.

The store emits pin_created, pin_removed, pin_touched, pins_reordered,
pin_evicted and dangling_pins. Subscribers use these to refresh views,
offer cleanup, or sync other tabs.
"""
import logging
from typing import Dict, Callable

logger = logging.getLogger(__name__)


class PinEventBridge:
    """Routes store notifications to subscriber callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        callbacks = self.subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. Callback errors never reach the caller."""
        for callback in list(self.subscribers.get(event_type, [])):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")
