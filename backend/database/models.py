"""
Database Models for ClipRelay
SQLAlchemy models for persistent storage
"""
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, JSON, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


class OutboxStatusEnum(str, enum.Enum):
    """Claim status, only consulted by backends without row locking"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"


class QueueStatusEnum(str, enum.Enum):
    """Job queue status; DONE and FAILED are terminal"""
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


class OutboxEventModel(Base):
    """Pending delivery intent, written in the same transaction as the state that produced it"""
    __tablename__ = "outbox_events"

    event_id = Column(String(36), primary_key=True)
    aggregate_id = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    payload = Column(JSON, nullable=False)

    status = Column(String(20), default=OutboxStatusEnum.PENDING.value, nullable=False)
    locked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    processed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_outbox_unprocessed", "processed_at", "created_at"),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response"""
        return {
            "event_id": self.event_id,
            "aggregate_id": self.aggregate_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "status": self.status,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


class QueueJobModel(Base):
    """Job for the simpler at-least-once delivery path"""
    __tablename__ = "message_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payload = Column(JSON, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default=QueueStatusEnum.PENDING.value, nullable=False, index=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in (QueueStatusEnum.DONE.value, QueueStatusEnum.FAILED.value)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response"""
        return {
            "id": self.id,
            "payload": self.payload,
            "attempts": self.attempts,
            "status": self.status,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class UserMappingModel(Base):
    """Creator -> destination channel mapping"""
    __tablename__ = "user_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), nullable=False, index=True)
    channel_id = Column(String(32), nullable=False)
    role_id = Column(String(32), nullable=True)  # Role to mention on delivery

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        UniqueConstraint("username", "channel_id", name="uq_mapping_username_channel"),
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response"""
        return {
            "username": self.username,
            "channel_id": self.channel_id,
            "role_id": self.role_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SystemConfigModel(Base):
    """Runtime-editable key/value configuration (engine selection etc.)"""
    __tablename__ = "system_config"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class TrackedCreatorModel(Base):
    """Creator polled by the watcher, with its new-post baseline"""
    __tablename__ = "tracked_creators"

    username = Column(String(50), primary_key=True)

    # Video tracking
    last_video_id = Column(String(100), nullable=True)
    last_video_published_at = Column(DateTime, nullable=True)

    # Scheduling
    check_interval = Column(Integer, default=15)  # minutes
    next_check_at = Column(DateTime, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)

    # Status
    enabled = Column(Boolean, default=True)
    error_count = Column(Integer, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response"""
        return {
            "username": self.username,
            "last_video_id": self.last_video_id,
            "last_video_published_at": self.last_video_published_at.isoformat() if self.last_video_published_at else None,
            "check_interval": self.check_interval,
            "next_check_at": self.next_check_at.isoformat() if self.next_check_at else None,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "enabled": self.enabled,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }
