"""
Transactional outbox: durable delivery intents, claim/lease dispatching and in-process handlers
"""
from .events import DomainEvent, EventTypeRegistry
from .registry import EventHandler, EventHandlerRegistry
from .store import OutboxStore, ClaimStrategy, RowLockClaimStrategy, StatusFlipClaimStrategy
from .dispatcher import OutboxDispatcher, DispatcherStats

__all__ = [
    "DomainEvent",
    "EventTypeRegistry",
    "EventHandler",
    "EventHandlerRegistry",
    "OutboxStore",
    "ClaimStrategy",
    "RowLockClaimStrategy",
    "StatusFlipClaimStrategy",
    "OutboxDispatcher",
    "DispatcherStats",
]
