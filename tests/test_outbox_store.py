"""Tests for the outbox store.

The claim contract runs against every available backend: SQLite
(status-flip claiming) always, PostgreSQL (row locking) when
CLIPRELAY_TEST_POSTGRES_URL is set.
"""

import asyncio
import os
import tempfile
from datetime import datetime, timedelta

import pytest
from hypothesis import given, settings, strategies as st

from database.connection import create_engine_for_url, create_session_factory, create_tables, transaction
from database.models import OutboxStatusEnum
from outbox.store import OutboxStore, RowLockClaimStrategy, StatusFlipClaimStrategy

from conftest import FakeClock, PingEvent


def _events(n: int, start: datetime = datetime(2024, 1, 1)):
    return [PingEvent(f"t{i}", occurred_at=start + timedelta(seconds=i)) for i in range(n)]


async def _save_all(store, session_factory, events):
    async with transaction(session_factory) as session:
        for event in events:
            await store.save(event, session)


async def _claim(store, session_factory, limit, hold: float = 0.0):
    async with transaction(session_factory) as session:
        rows = await store.claim_batch(limit, session)
        ids = [row.event_id for row in rows]
        if hold:
            await asyncio.sleep(hold)
        return ids


class TestStrategySelection:
    def test_sqlite_uses_status_flip(self):
        store = OutboxStore.for_url("sqlite+aiosqlite:///x.db")
        assert isinstance(store.claim_strategy, StatusFlipClaimStrategy)

    def test_postgres_uses_row_locks(self):
        store = OutboxStore.for_url("postgresql+asyncpg://u:p@localhost/db")
        assert isinstance(store.claim_strategy, RowLockClaimStrategy)


# ---------------------------------------------------------------------------
# Shared claim contract
# ---------------------------------------------------------------------------

class TestOutboxContract:
    async def test_save_persists_pending_event(self, backend):
        url, session_factory = backend
        store = OutboxStore.for_url(url)
        event = PingEvent("creator#123")

        await _save_all(store, session_factory, [event])

        async with transaction(session_factory) as session:
            record = await store.get(event.event_id, session)
        assert record is not None
        assert record.event_type == "PingEvent"
        assert record.aggregate_id == "creator#123"
        assert record.status == OutboxStatusEnum.PENDING.value
        assert record.processed_at is None
        assert PingEvent.from_payload(record.payload).event_id == event.event_id

    async def test_rollback_discards_saved_event(self, backend):
        url, session_factory = backend
        store = OutboxStore.for_url(url)
        event = PingEvent()

        with pytest.raises(RuntimeError):
            async with transaction(session_factory) as session:
                await store.save(event, session)
                raise RuntimeError("a later statement failed")

        async with transaction(session_factory) as session:
            assert await store.get(event.event_id, session) is None
            assert await store.count_pending(session) == 0

    async def test_claim_returns_oldest_first_up_to_limit(self, backend):
        url, session_factory = backend
        store = OutboxStore.for_url(url)
        events = _events(5)
        await _save_all(store, session_factory, list(reversed(events)))

        claimed = await _claim(store, session_factory, 3)

        assert claimed == [e.event_id for e in events[:3]]

    async def test_claim_with_zero_limit(self, backend):
        url, session_factory = backend
        store = OutboxStore.for_url(url)
        await _save_all(store, session_factory, _events(2))

        assert await _claim(store, session_factory, 0) == []

    async def test_concurrent_claims_are_disjoint(self, backend):
        url, session_factory = backend
        store = OutboxStore.for_url(url)
        events = _events(6)
        await _save_all(store, session_factory, events)

        first, second = await asyncio.gather(
            _claim(store, session_factory, 4, hold=0.2),
            _claim(store, session_factory, 4, hold=0.2),
        )

        assert not set(first) & set(second)
        assert set(first) | set(second) == {e.event_id for e in events}

    async def test_mark_processed_is_idempotent(self, backend):
        url, session_factory = backend
        store = OutboxStore.for_url(url)
        event = PingEvent()
        await _save_all(store, session_factory, [event])

        async with transaction(session_factory) as session:
            assert await store.mark_processed([event.event_id], session) == 1
        async with transaction(session_factory) as session:
            first = (await store.get(event.event_id, session)).processed_at
            assert await store.mark_processed([event.event_id], session) == 0
            assert (await store.get(event.event_id, session)).processed_at == first
            assert await store.mark_processed([], session) == 0

    async def test_processed_events_are_never_claimed(self, backend):
        url, session_factory = backend
        clock = FakeClock()
        store = OutboxStore.for_url(url, clock=clock)
        event = PingEvent()
        await _save_all(store, session_factory, [event])

        async with transaction(session_factory) as session:
            await store.mark_processed([event.event_id], session)

        clock.advance(hours=1)
        assert await _claim(store, session_factory, 10) == []

    async def test_stale_claim_is_reclaimed_after_lock_timeout(self, backend):
        url, session_factory = backend
        clock = FakeClock()
        store = OutboxStore.for_url(url, lock_timeout=timedelta(minutes=5), clock=clock)
        event = PingEvent()
        await _save_all(store, session_factory, [event])

        assert await _claim(store, session_factory, 10) == [event.event_id]

        clock.advance(minutes=5, seconds=1)
        assert await _claim(store, session_factory, 10) == [event.event_id]


# ---------------------------------------------------------------------------
# Status-flip specifics
# ---------------------------------------------------------------------------

class TestStatusFlipClaims:
    async def test_claimed_event_is_not_reclaimed_before_timeout(self, session_factory, sqlite_url):
        clock = FakeClock()
        store = OutboxStore.for_url(sqlite_url, lock_timeout=timedelta(minutes=5), clock=clock)
        event = PingEvent()
        await _save_all(store, session_factory, [event])

        assert await _claim(store, session_factory, 10) == [event.event_id]

        clock.advance(minutes=4, seconds=59)
        assert await _claim(store, session_factory, 10) == []

        async with transaction(session_factory) as session:
            record = await store.get(event.event_id, session)
        assert record.status == OutboxStatusEnum.PROCESSING.value
        assert record.locked_at == clock.now - timedelta(minutes=4, seconds=59)

    @settings(max_examples=25, deadline=None)
    @given(
        n_events=st.integers(min_value=0, max_value=12),
        limits=st.lists(st.integers(min_value=1, max_value=5), min_size=1, max_size=6),
    )
    def test_claims_within_lease_never_overlap(self, n_events, limits):
        async def scenario():
            path = os.path.join(tempfile.mkdtemp(prefix="cliprelay-prop-"), "outbox.db")
            engine = create_engine_for_url(f"sqlite+aiosqlite:///{path}")
            await create_tables(engine)
            session_factory = create_session_factory(engine)
            store = OutboxStore(StatusFlipClaimStrategy(clock=FakeClock()))
            try:
                await _save_all(store, session_factory, _events(n_events))
                return [await _claim(store, session_factory, limit) for limit in limits]
            finally:
                await engine.dispose()

        batches = asyncio.run(scenario())
        claimed = [event_id for batch in batches for event_id in batch]

        assert len(claimed) == len(set(claimed))
        assert len(claimed) == min(n_events, sum(limits))
        for batch, limit in zip(batches, limits):
            assert len(batch) <= limit
