"""
reportsync EventDispatcher

Instance-scoped event dispatcher owned by one CacheCoordinator.

Each coordinator gets its own dispatcher, injected into the store, guard,
pipeline and invalidation coordinator. This keeps two coordinators (or two
tests) from seeing each other's events.

INVARIANT: Handler failures never break emission.
"""

from typing import Callable, Dict, List, Optional
import logging

from reportsync.kernel.events import CacheEvent, CacheEventType


logger = logging.getLogger("kernel.event_dispatcher")


EventHandler = Callable[[CacheEvent], None]


class EventDispatcher:
    """
    Instance-scoped dispatcher for cache events.

    Features:
    - Type-specific subscriptions
    - Wildcard subscriptions (receive all events)
    - Bounded event history for audit and tests

    Usage:
        dispatcher = EventDispatcher(session_id="alice")
        dispatcher.subscribe(CacheEventType.NOTICE_RAISED, show_toast)
        dispatcher.emit(NoticeEvent(message="Saved"))
    """

    def __init__(self, session_id: str = "", max_history: int = 200):
        self._session_id = session_id
        self._max_history = max_history
        self._handlers: Dict[CacheEventType, List[EventHandler]] = {}
        self._wildcard_handlers: List[EventHandler] = []
        self._history: List[CacheEvent] = []
        self._paused = False

        logger.debug(f"EventDispatcher created for session_id={session_id}")

    @property
    def session_id(self) -> str:
        return self._session_id

    def subscribe(self, event_type: CacheEventType, handler: EventHandler) -> bool:
        """Subscribe to one event type. Returns False if already subscribed."""
        handlers = self._handlers.setdefault(event_type, [])
        if handler in handlers:
            return False
        handlers.append(handler)
        logger.debug(f"Subscribed handler to {event_type.value}")
        return True

    def subscribe_all(self, handler: EventHandler) -> bool:
        """Subscribe to every event."""
        if handler in self._wildcard_handlers:
            return False
        self._wildcard_handlers.append(handler)
        return True

    def unsubscribe(self, event_type: CacheEventType, handler: EventHandler) -> bool:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def unsubscribe_all(self, handler: EventHandler) -> bool:
        if handler in self._wildcard_handlers:
            self._wildcard_handlers.remove(handler)
            return True
        return False

    def emit(self, event: CacheEvent) -> None:
        """
        Emit an event to all subscribers.

        The dispatcher's session id is stamped on events created without one.
        """
        if self._paused:
            logger.debug(f"Dispatcher paused, dropping: {event.event_type.value}")
            return

        if not event.session_id:
            event.session_id = self._session_id

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        logger.debug(f"Emitting {event.event_type.value} (epoch={event.epoch})")

        for handler in list(self._handlers.get(event.event_type, [])):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Handler failed for {event.event_type.value}: {e}")

        for handler in list(self._wildcard_handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Wildcard handler failed: {e}")

    def pause(self) -> None:
        """Pause event emission (events are dropped)."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    @property
    def is_paused(self) -> bool:
        return self._paused

    def get_history(
        self,
        limit: int = 50,
        event_type: Optional[CacheEventType] = None,
    ) -> List[CacheEvent]:
        """Recent events, optionally filtered by type."""
        history = self._history
        if event_type:
            history = [e for e in history if e.event_type == event_type]
        return history[-limit:]

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def handler_count(self) -> int:
        count = sum(len(handlers) for handlers in self._handlers.values())
        return count + len(self._wildcard_handlers)

    @property
    def event_count(self) -> int:
        return len(self._history)
