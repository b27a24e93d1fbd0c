"""
Domain event base class and the discriminator -> class table used to rehydrate outbox rows
"""
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Type

from loguru import logger


class DomainEvent(ABC):
    """
    Immutable fact recorded in the outbox.

    Subclasses define `aggregate_id`, `to_payload()` and `from_payload()`.
    The payload must carry everything needed to replay the effect.
    """

    def __init__(self, event_id: Optional[str] = None, occurred_at: Optional[datetime] = None):
        self.event_id = event_id or str(uuid.uuid4())
        self.occurred_at = occurred_at or datetime.now()

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    @abstractmethod
    def aggregate_id(self) -> str:
        pass

    @abstractmethod
    def to_payload(self) -> Dict[str, Any]:
        pass

    @classmethod
    @abstractmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DomainEvent":
        pass

    def __repr__(self) -> str:
        return f"<{self.event_type} {self.event_id} aggregate={self.aggregate_id}>"


class EventTypeRegistry:
    """Maps the stored `event_type` discriminator back to an event class"""

    def __init__(self, event_classes: Iterable[Type[DomainEvent]] = ()):
        self._classes: Dict[str, Type[DomainEvent]] = {}
        for cls in event_classes:
            self.register(cls)

    def register(self, cls: Type[DomainEvent]):
        self._classes[cls.__name__] = cls

    def names(self):
        return list(self._classes.keys())

    def __contains__(self, event_type: str) -> bool:
        return event_type in self._classes

    def reconstruct(self, event_type: str, payload: Dict[str, Any]) -> Optional[DomainEvent]:
        """
        Rebuild a typed event.

        Returns None if `event_type` is not registered. Payload errors for a
        known type propagate so the row stays claimable.
        """
        cls = self._classes.get(event_type)
        if cls is None:
            return None
        event = cls.from_payload(payload)
        logger.debug(f"Reconstructed {event!r}")
        return event
