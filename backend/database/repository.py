"""
Repository classes for database operations
Every repository works on a caller-supplied session so it joins the caller's transaction
"""
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any
from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from .models import (
    QueueJobModel,
    QueueStatusEnum,
    UserMappingModel,
    SystemConfigModel,
    TrackedCreatorModel,
)


class MappingRepository:
    """Repository for creator -> channel mappings"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_username(self, username: str) -> List[UserMappingModel]:
        """Get all mappings for a creator"""
        stmt = select(UserMappingModel).where(
            UserMappingModel.username == username
        ).order_by(UserMappingModel.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def save(
        self,
        username: str,
        channel_id: str,
        role_id: Optional[str] = None,
    ) -> UserMappingModel:
        """Create a mapping, or update the role of an existing one"""
        stmt = select(UserMappingModel).where(
            UserMappingModel.username == username,
            UserMappingModel.channel_id == channel_id,
        )
        result = await self.session.execute(stmt)
        mapping = result.scalar_one_or_none()

        now = datetime.now()
        if mapping:
            mapping.role_id = role_id
            mapping.updated_at = now
        else:
            mapping = UserMappingModel(
                username=username,
                channel_id=channel_id,
                role_id=role_id,
                created_at=now,
                updated_at=now,
            )
            self.session.add(mapping)

        await self.session.flush()
        logger.debug(f"Saved mapping @{username} -> {channel_id}")
        return mapping


class SystemConfigRepository:
    """Repository for runtime key/value configuration"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> Optional[str]:
        """Get config value by key"""
        stmt = select(SystemConfigModel).where(SystemConfigModel.key == key)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return row.value if row else None

    async def get_many(self, keys: List[str]) -> Dict[str, Optional[str]]:
        """Get several values at once; missing keys map to None"""
        stmt = select(SystemConfigModel).where(SystemConfigModel.key.in_(keys))
        result = await self.session.execute(stmt)
        found = {row.key: row.value for row in result.scalars().all()}
        return {key: found.get(key) for key in keys}

    async def set(self, key: str, value: Optional[str]) -> SystemConfigModel:
        """Set a config value (create or update)"""
        stmt = select(SystemConfigModel).where(SystemConfigModel.key == key)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()

        if row:
            row.value = value
            row.updated_at = datetime.now()
        else:
            row = SystemConfigModel(key=key, value=value)
            self.session.add(row)

        await self.session.flush()
        logger.debug(f"Set system config: {key}")
        return row


class QueueRepository:
    """Repository for the job queue"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, payload: Dict[str, Any]) -> QueueJobModel:
        """Insert a PENDING job"""
        job = QueueJobModel(
            payload=payload,
            attempts=0,
            status=QueueStatusEnum.PENDING.value,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
        self.session.add(job)
        await self.session.flush()
        logger.info(f"Enqueued job {job.id}")
        return job

    async def get(self, job_id: int) -> Optional[QueueJobModel]:
        stmt = select(QueueJobModel).where(QueueJobModel.id == job_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending(self, limit: int = 10) -> List[QueueJobModel]:
        """Oldest PENDING jobs first"""
        stmt = select(QueueJobModel).where(
            QueueJobModel.status == QueueStatusEnum.PENDING.value
        ).order_by(QueueJobModel.created_at.asc(), QueueJobModel.id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def increment_attempts(self, job_id: int) -> int:
        """Bump the attempt counter and return the new value"""
        await self.session.execute(
            update(QueueJobModel)
            .where(QueueJobModel.id == job_id)
            .values(attempts=QueueJobModel.attempts + 1, updated_at=datetime.now())
        )
        result = await self.session.execute(
            select(QueueJobModel.attempts).where(QueueJobModel.id == job_id)
        )
        return result.scalar_one()

    async def mark_done(self, job_id: int):
        await self._set_status(job_id, QueueStatusEnum.DONE.value, None)

    async def mark_failed(self, job_id: int, error: Optional[str] = None):
        await self._set_status(job_id, QueueStatusEnum.FAILED.value, error)

    async def record_error(self, job_id: int, error: str):
        """Keep the job PENDING but remember why the last attempt failed"""
        await self.session.execute(
            update(QueueJobModel)
            .where(QueueJobModel.id == job_id)
            .values(last_error=error, updated_at=datetime.now())
        )

    async def count_by_status(self) -> Dict[str, int]:
        stmt = select(QueueJobModel.status, func.count()).group_by(QueueJobModel.status)
        result = await self.session.execute(stmt)
        counts = {status.value: 0 for status in QueueStatusEnum}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def _set_status(self, job_id: int, status: str, error: Optional[str]):
        # Terminal rows are never touched again
        values: Dict[str, Any] = {"status": status, "updated_at": datetime.now()}
        if error is not None:
            values["last_error"] = error
        await self.session.execute(
            update(QueueJobModel)
            .where(
                QueueJobModel.id == job_id,
                QueueJobModel.status == QueueStatusEnum.PENDING.value,
            )
            .values(**values)
        )


class TrackedCreatorRepository:
    """Repository for creators polled by the watcher"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, username: str) -> Optional[TrackedCreatorModel]:
        stmt = select(TrackedCreatorModel).where(TrackedCreatorModel.username == username)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add(self, username: str, check_interval: int = 15) -> TrackedCreatorModel:
        """Start tracking a creator (no-op if already tracked)"""
        creator = await self.get(username)
        if creator:
            return creator

        creator = TrackedCreatorModel(
            username=username,
            check_interval=check_interval,
            enabled=True,
            error_count=0,
            created_at=datetime.now(),
            updated_at=datetime.now(),
        )
        self.session.add(creator)
        await self.session.flush()
        logger.info(f"Tracking creator @{username}")
        return creator

    async def get_all(self) -> List[TrackedCreatorModel]:
        stmt = select(TrackedCreatorModel).order_by(TrackedCreatorModel.username)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_due(self, now: Optional[datetime] = None) -> List[TrackedCreatorModel]:
        """Enabled creators whose next check time has passed (or was never set)"""
        now = now or datetime.now()
        stmt = select(TrackedCreatorModel).where(
            TrackedCreatorModel.enabled == True,  # noqa: E712
            or_(
                TrackedCreatorModel.next_check_at.is_(None),
                TrackedCreatorModel.next_check_at <= now,
            ),
        ).order_by(TrackedCreatorModel.username)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update(self, username: str, **kwargs) -> Optional[TrackedCreatorModel]:
        """Update creator fields; `last_error` set without `error_count` bumps the counter"""
        creator = await self.get(username)
        if not creator:
            return None

        if kwargs.get("last_error") and "error_count" not in kwargs:
            kwargs["error_count"] = (creator.error_count or 0) + 1

        kwargs["updated_at"] = datetime.now()
        for key, value in kwargs.items():
            if hasattr(creator, key):
                setattr(creator, key, value)

        await self.session.flush()
        return creator

    async def schedule_next(self, username: str, error: Optional[str] = None):
        """Record a finished check and schedule the next one"""
        creator = await self.get(username)
        if not creator:
            return

        now = datetime.now()
        updates: Dict[str, Any] = {
            "last_checked_at": now,
            "next_check_at": now + timedelta(minutes=creator.check_interval or 15),
        }
        if error:
            updates["last_error"] = error
        else:
            updates["error_count"] = 0
            updates["last_error"] = None
        await self.update(username, **updates)
