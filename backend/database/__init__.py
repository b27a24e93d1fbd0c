"""
Database module for ClipRelay
Provides SQLite/PostgreSQL persistence for the outbox, job queue and mappings
"""
from .models import (
    Base,
    OutboxEventModel,
    OutboxStatusEnum,
    QueueJobModel,
    QueueStatusEnum,
    UserMappingModel,
    SystemConfigModel,
    TrackedCreatorModel,
)
from .repository import MappingRepository, SystemConfigRepository, QueueRepository, TrackedCreatorRepository
from .connection import get_db, init_db, close_db, transaction, get_session_factory, is_row_locking_backend

__all__ = [
    "Base",
    "OutboxEventModel",
    "OutboxStatusEnum",
    "QueueJobModel",
    "QueueStatusEnum",
    "UserMappingModel",
    "SystemConfigModel",
    "TrackedCreatorModel",
    "MappingRepository",
    "SystemConfigRepository",
    "QueueRepository",
    "TrackedCreatorRepository",
    "get_db",
    "init_db",
    "close_db",
    "transaction",
    "get_session_factory",
    "is_row_locking_backend",
]
