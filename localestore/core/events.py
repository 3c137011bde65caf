"""
Typed pub/sub event bus with wildcard listeners and bounded history.
"""

import logging
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Union

from .types import StorageEvent, StorageEventType
from ..utils.storage_utils import current_timestamp

logger = logging.getLogger(__name__)

WILDCARD = "*"

EventListener = Callable[[StorageEvent], Any]


def _type_key(event_type: Union[StorageEventType, str]) -> str:
    return event_type.value if isinstance(event_type, StorageEventType) else str(event_type)


class EventBus:
    """Dispatch storage events to listeners and keep the most recent ones."""

    def __init__(self, max_history: int = 100, clock: Optional[Callable[[], int]] = None):
        self.max_history = max_history
        self._clock = clock or current_timestamp
        self._listeners: Dict[str, List[EventListener]] = {}
        self._history = deque(maxlen=max_history)

    def add_event_listener(self, event_type: Union[StorageEventType, str], listener: EventListener) -> None:
        key = _type_key(event_type)
        listeners = self._listeners.setdefault(key, [])
        if listener not in listeners:
            listeners.append(listener)

    def remove_event_listener(self, event_type: Union[StorageEventType, str], listener: EventListener) -> None:
        key = _type_key(event_type)
        listeners = self._listeners.get(key)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._listeners[key]

    def remove_all_listeners(self, event_type: Union[StorageEventType, str, None] = None) -> None:
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(_type_key(event_type), None)

    def create_event(
        self,
        event_type: Union[StorageEventType, str],
        source: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> StorageEvent:
        return StorageEvent(type=_type_key(event_type), timestamp=self._clock(), source=source, data=data)

    def emit(
        self,
        event_type: Union[StorageEventType, str],
        source: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> StorageEvent:
        event = self.create_event(event_type, source, data)
        self.emit_event(event)
        return event

    def emit_event(self, event: StorageEvent) -> None:
        """
        Record an event and notify listeners.

        Type-specific listeners run first, then wildcard listeners. A failing
        listener is logged and skipped; the remaining ones still run.
        """
        key = _type_key(event.type)
        self._history.appendleft(event)

        targets = list(self._listeners.get(key, []))
        if key != WILDCARD:
            targets.extend(self._listeners.get(WILDCARD, []))

        for listener in targets:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener {getattr(listener, '__name__', listener)!s} failed for {key}: {e}")

    def get_event_history(
        self,
        limit: Optional[int] = None,
        event_type: Union[StorageEventType, str, None] = None,
    ) -> List[StorageEvent]:
        """Recorded events, newest first."""
        events = list(self._history)
        if event_type is not None:
            key = _type_key(event_type)
            events = [event for event in events if event.type == key]
        if limit is not None:
            events = events[:limit]
        return events

    def clear_event_history(self) -> None:
        self._history.clear()

    def get_listener_stats(self) -> Dict[str, Any]:
        by_type = {key: len(listeners) for key, listeners in self._listeners.items()}
        return {
            "total_listeners": sum(by_type.values()),
            "listeners_by_type": by_type,
            "event_types": sorted(by_type),
            "history_size": len(self._history),
        }
