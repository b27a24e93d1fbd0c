"""
In-process publish/subscribe from event type name to handlers.
Constructed once at startup and passed by reference; no module-level instance.
"""
from typing import Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger

from errors import DeliveryPendingError
from .events import DomainEvent

HandlerFunc = Callable[[DomainEvent], Awaitable[None]]


class EventHandler:
    """Base class for handlers; plain async callables are accepted too"""

    async def handle(self, event: DomainEvent) -> None:
        raise NotImplementedError


Handler = Union[EventHandler, HandlerFunc]


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__name__", None) or type(handler).__name__


class EventHandlerRegistry:
    """Ordered handler lists keyed by event type name"""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def register(self, event_type: str, handler: Handler):
        """Append a handler for an event type name"""
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Registered handler {_handler_name(handler)} for {event_type}")

    def handlers_for(self, event_type: str) -> List[Handler]:
        return list(self._handlers.get(event_type, []))

    def clear(self):
        self._handlers.clear()

    async def publish(self, event: DomainEvent):
        """
        Run every handler registered for the event's runtime type, in order.

        Handler exceptions are logged and do not stop later handlers. A
        `DeliveryPendingError` is re-raised once all handlers have run, so the
        caller can leave the event claimable for another attempt.
        """
        event_type = event.event_type
        handlers = self._handlers.get(event_type)

        if not handlers:
            logger.debug(f"No handlers registered for event: {event_type}")
            return

        logger.info(f"Publishing event: {event_type} ({event.event_id})")
        pending: Optional[DeliveryPendingError] = None

        for handler in handlers:
            try:
                if isinstance(handler, EventHandler):
                    await handler.handle(event)
                else:
                    await handler(event)
            except DeliveryPendingError as e:
                logger.warning(f"Handler {_handler_name(handler)} left {event_type} {event.event_id} undelivered: {e}")
                if pending is None:
                    pending = e
            except Exception as e:
                logger.error(f"Error in handler {_handler_name(handler)} for {event_type} {event.event_id}: {e}")

        if pending is not None:
            raise pending
