"""
Outbox store: durable record of pending delivery intents.

`save` joins the caller's transaction so the event commits or rolls back
together with the state change that produced it. `claim_batch` hands out
unprocessed rows so that no two concurrent transactions receive the same
event; how that is guaranteed depends on the backend:

* RowLockClaimStrategy   - SELECT ... FOR UPDATE SKIP LOCKED (PostgreSQL)
* StatusFlipClaimStrategy - atomic PENDING -> PROCESSING flip with a lock
                            timeout for crash recovery (SQLite)
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from database.connection import is_row_locking_backend
from database.models import OutboxEventModel, OutboxStatusEnum
from .events import DomainEvent

DEFAULT_LOCK_TIMEOUT = timedelta(minutes=5)

Clock = Callable[[], datetime]


class ClaimStrategy(ABC):
    """Backend-specific way of claiming unprocessed outbox rows"""

    name = "claim"

    @abstractmethod
    async def claim(self, session: AsyncSession, limit: int) -> List[OutboxEventModel]:
        pass


class RowLockClaimStrategy(ClaimStrategy):
    """
    Native row locking. Claimed rows stay locked until the caller's
    transaction ends; rows locked by another transaction are skipped.
    """

    name = "row-lock"

    def __init__(self, clock: Clock = datetime.now):
        self._clock = clock

    async def claim(self, session: AsyncSession, limit: int) -> List[OutboxEventModel]:
        stmt = (
            select(OutboxEventModel)
            .where(OutboxEventModel.processed_at.is_(None))
            .order_by(OutboxEventModel.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await session.execute(stmt)
        rows = list(result.scalars().all())

        now = self._clock()
        for row in rows:
            row.status = OutboxStatusEnum.PROCESSING.value
            row.locked_at = now
        if rows:
            await session.flush()
        return rows


class StatusFlipClaimStrategy(ClaimStrategy):
    """
    Application-level lease for backends without row locks.

    A single UPDATE flips PENDING rows (or PROCESSING rows whose lease is
    older than `lock_timeout`) to PROCESSING and returns their ids. Only
    safe for one dispatcher process per database.
    """

    name = "status-flip"

    def __init__(self, lock_timeout: timedelta = DEFAULT_LOCK_TIMEOUT, clock: Clock = datetime.now):
        self.lock_timeout = lock_timeout
        self._clock = clock

    def _claimable(self, cutoff: datetime):
        return and_(
            OutboxEventModel.processed_at.is_(None),
            or_(
                OutboxEventModel.status == OutboxStatusEnum.PENDING.value,
                and_(
                    OutboxEventModel.status == OutboxStatusEnum.PROCESSING.value,
                    OutboxEventModel.locked_at < cutoff,
                ),
            ),
        )

    async def claim(self, session: AsyncSession, limit: int) -> List[OutboxEventModel]:
        now = self._clock()
        cutoff = now - self.lock_timeout
        claimable = self._claimable(cutoff)

        candidates = (
            select(OutboxEventModel.event_id)
            .where(claimable)
            .order_by(OutboxEventModel.created_at.asc())
            .limit(limit)
        )
        stmt = (
            update(OutboxEventModel)
            .where(OutboxEventModel.event_id.in_(candidates), claimable)
            .values(status=OutboxStatusEnum.PROCESSING.value, locked_at=now)
            .returning(OutboxEventModel.event_id)
        )
        result = await session.execute(stmt, execution_options={"synchronize_session": False})
        claimed_ids = list(result.scalars().all())
        if not claimed_ids:
            return []

        rows = await session.execute(
            select(OutboxEventModel)
            .where(OutboxEventModel.event_id.in_(claimed_ids))
            .order_by(OutboxEventModel.created_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(rows.scalars().all())


class OutboxStore:
    """Persistence for outbox events; every call runs on the caller's session"""

    def __init__(self, claim_strategy: ClaimStrategy, clock: Clock = datetime.now):
        self.claim_strategy = claim_strategy
        self._clock = clock

    @classmethod
    def for_url(
        cls,
        database_url: str,
        lock_timeout: timedelta = DEFAULT_LOCK_TIMEOUT,
        clock: Clock = datetime.now,
    ) -> "OutboxStore":
        """Pick the claim strategy that matches the database backend"""
        if is_row_locking_backend(database_url):
            strategy: ClaimStrategy = RowLockClaimStrategy(clock=clock)
        else:
            strategy = StatusFlipClaimStrategy(lock_timeout=lock_timeout, clock=clock)
        logger.info(f"Outbox store using {strategy.name} claim strategy")
        return cls(strategy, clock=clock)

    async def save(self, event: DomainEvent, session: AsyncSession) -> OutboxEventModel:
        """
        Persist an event in the caller's transaction.
        Errors propagate so the surrounding transaction aborts.
        """
        record = OutboxEventModel(
            event_id=event.event_id,
            aggregate_id=event.aggregate_id,
            event_type=event.event_type,
            payload=event.to_payload(),
            status=OutboxStatusEnum.PENDING.value,
            created_at=event.occurred_at,
            processed_at=None,
        )
        session.add(record)
        await session.flush()
        logger.debug(f"Persisted outbox event {event.event_id} ({event.event_type})")
        return record

    async def claim_batch(self, limit: int, session: AsyncSession) -> List[OutboxEventModel]:
        """Claim up to `limit` unprocessed events, oldest first"""
        if limit <= 0:
            return []
        return await self.claim_strategy.claim(session, limit)

    async def mark_processed(self, event_ids: Sequence[str], session: AsyncSession) -> int:
        """Set processed_at on events that do not have it yet; returns rows changed"""
        if not event_ids:
            return 0

        result = await session.execute(
            update(OutboxEventModel)
            .where(
                OutboxEventModel.event_id.in_(list(event_ids)),
                OutboxEventModel.processed_at.is_(None),
            )
            .values(processed_at=self._clock()),
            execution_options={"synchronize_session": False},
        )
        return result.rowcount or 0

    async def get(self, event_id: str, session: AsyncSession) -> Optional[OutboxEventModel]:
        result = await session.execute(
            select(OutboxEventModel)
            .where(OutboxEventModel.event_id == event_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count_pending(self, session: AsyncSession) -> int:
        result = await session.execute(
            select(func.count()).select_from(OutboxEventModel).where(OutboxEventModel.processed_at.is_(None))
        )
        return result.scalar_one()
