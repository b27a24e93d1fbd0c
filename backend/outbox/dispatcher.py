"""
Outbox dispatcher: polls the outbox, publishes claimed events, marks successes processed.

Delivery is at-least-once. An event whose handlers signal failure stays
unprocessed and is picked up again on a later tick (immediately on
row-locking backends, after the lease expires on status-flip backends),
so handlers must be idempotent.
"""
from dataclasses import dataclass, asdict
from typing import List

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from database.connection import transaction
from utils.polling import PeriodicWorker
from .events import EventTypeRegistry
from .registry import EventHandlerRegistry
from .store import OutboxStore

UNKNOWN_POLICY_MARK_PROCESSED = "mark_processed"
UNKNOWN_POLICY_RETAIN = "retain"


@dataclass
class DispatcherStats:
    ticks: int = 0
    claimed: int = 0
    dispatched: int = 0
    failed: int = 0
    unknown_type: int = 0
    tick_errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class OutboxDispatcher(PeriodicWorker):
    """Single-flight polling loop over the outbox"""

    name = "Outbox dispatcher"

    def __init__(
        self,
        store: OutboxStore,
        handlers: EventHandlerRegistry,
        event_types: EventTypeRegistry,
        session_factory: async_sessionmaker,
        poll_interval: float = 2.0,
        batch_size: int = 10,
        unknown_event_policy: str = UNKNOWN_POLICY_MARK_PROCESSED,
    ):
        super().__init__(poll_interval)
        if unknown_event_policy not in (UNKNOWN_POLICY_MARK_PROCESSED, UNKNOWN_POLICY_RETAIN):
            raise ValueError(f"Unknown outbox policy for unrecognized events: {unknown_event_policy}")

        self.store = store
        self.handlers = handlers
        self.event_types = event_types
        self.session_factory = session_factory
        self.batch_size = batch_size
        self.unknown_event_policy = unknown_event_policy
        self.stats = DispatcherStats()

    async def _run_tick(self):
        self.stats.ticks += 1
        try:
            await self.dispatch_once()
        except Exception:
            self.stats.tick_errors += 1
            raise

    async def dispatch_once(self) -> List[str]:
        """
        Claim one batch, publish it and mark successes processed, all in one transaction.

        Returns:
            Ids marked processed in this pass
        """
        async with transaction(self.session_factory) as session:
            records = await self.store.claim_batch(self.batch_size, session)
            if not records:
                return []

            self.stats.claimed += len(records)
            logger.debug(f"Outbox: claimed {len(records)} pending events")

            processed_ids: List[str] = []
            for record in records:
                try:
                    event = self.event_types.reconstruct(record.event_type, record.payload)
                except Exception as e:
                    self.stats.failed += 1
                    logger.error(f"Failed to rebuild outbox event {record.event_id} ({record.event_type}): {e}")
                    continue

                if event is None:
                    self.stats.unknown_type += 1
                    if self.unknown_event_policy == UNKNOWN_POLICY_MARK_PROCESSED:
                        logger.warning(
                            f"UNKNOWN OUTBOX EVENT TYPE {record.event_type!r} for {record.event_id}: "
                            f"marking processed without delivery (known types: {self.event_types.names()})"
                        )
                        processed_ids.append(record.event_id)
                    else:
                        logger.warning(
                            f"UNKNOWN OUTBOX EVENT TYPE {record.event_type!r} for {record.event_id}: "
                            f"retained for a build that can handle it"
                        )
                    continue

                try:
                    await self.handlers.publish(event)
                except Exception as e:
                    self.stats.failed += 1
                    logger.error(f"Failed to dispatch event {record.event_id}, will retry: {e}")
                    continue

                processed_ids.append(record.event_id)
                self.stats.dispatched += 1

            if processed_ids:
                await self.store.mark_processed(processed_ids, session)
                logger.info(f"Outbox: marked {len(processed_ids)}/{len(records)} events processed")

            return processed_ids
