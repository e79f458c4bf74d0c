"""
Client event bus.

Named events fan out to listeners in registration order. Listeners may be
plain callables or coroutine functions; one failing listener is logged and
never prevents the others from running.
"""

import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from avatar_chat.config.logging_config import get_logger

logger = get_logger(__name__)

Listener = Callable[[Any], Any]


class EventBus:
    """Registry of listeners keyed by event name"""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, callback: Listener) -> None:
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def clear_listeners(self, event: Optional[str] = None) -> None:
        """Remove the listeners of one event, or of every event."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    async def emit(self, event: str, data: Any = None) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                result = callback(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"❌ Listener for '{event}' failed: {e}", exc_info=True)
