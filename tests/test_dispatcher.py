"""Tests for the outbox dispatcher."""

import asyncio
from datetime import timedelta

import pytest

from database.connection import transaction
from database.models import OutboxEventModel, OutboxStatusEnum
from errors import DeliveryPendingError
from outbox.dispatcher import OutboxDispatcher, UNKNOWN_POLICY_RETAIN
from outbox.events import EventTypeRegistry
from outbox.registry import EventHandlerRegistry
from outbox.store import OutboxStore

from conftest import PingEvent


class RecordingHandler:
    """Async callable handler that can be told to fail"""

    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.seen = []

    async def __call__(self, event):
        self.seen.append(event.event_id)
        if self.fail_with is not None:
            raise self.fail_with


@pytest.fixture
def store(sqlite_url, clock):
    return OutboxStore.for_url(sqlite_url, lock_timeout=timedelta(minutes=5), clock=clock)


def _dispatcher(store, session_factory, handler=None, **kwargs):
    handlers = EventHandlerRegistry()
    if handler is not None:
        handlers.register("PingEvent", handler)
    return OutboxDispatcher(
        store,
        handlers,
        EventTypeRegistry([PingEvent]),
        session_factory,
        **kwargs,
    )


async def _save(store, session_factory, event):
    async with transaction(session_factory) as session:
        await store.save(event, session)


async def _record(store, session_factory, event_id):
    async with transaction(session_factory) as session:
        return await store.get(event_id, session)


class TestDispatchOnce:
    async def test_successful_event_is_marked_processed(self, store, session_factory):
        handler = RecordingHandler()
        dispatcher = _dispatcher(store, session_factory, handler)
        event = PingEvent()
        await _save(store, session_factory, event)

        assert await dispatcher.dispatch_once() == [event.event_id]

        assert handler.seen == [event.event_id]
        assert (await _record(store, session_factory, event.event_id)).processed_at is not None
        assert dispatcher.stats.dispatched == 1
        assert dispatcher.stats.claimed == 1

    async def test_empty_outbox(self, store, session_factory):
        dispatcher = _dispatcher(store, session_factory, RecordingHandler())
        assert await dispatcher.dispatch_once() == []
        assert dispatcher.stats.claimed == 0

    async def test_pending_delivery_is_retried_after_lock_timeout(self, store, session_factory, clock):
        handler = RecordingHandler(fail_with=DeliveryPendingError("channel unreachable"))
        dispatcher = _dispatcher(store, session_factory, handler)
        event = PingEvent()
        await _save(store, session_factory, event)

        assert await dispatcher.dispatch_once() == []
        record = await _record(store, session_factory, event.event_id)
        assert record.processed_at is None
        assert record.status == OutboxStatusEnum.PROCESSING.value
        assert dispatcher.stats.failed == 1

        # still leased
        assert await dispatcher.dispatch_once() == []
        assert handler.seen == [event.event_id]

        handler.fail_with = None
        clock.advance(minutes=6)
        assert await dispatcher.dispatch_once() == [event.event_id]
        assert handler.seen == [event.event_id, event.event_id]

    async def test_ordinary_handler_error_does_not_block_processing(self, store, session_factory):
        dispatcher = _dispatcher(store, session_factory, RecordingHandler(fail_with=RuntimeError("bug")))
        event = PingEvent()
        await _save(store, session_factory, event)

        assert await dispatcher.dispatch_once() == [event.event_id]

    async def test_batch_mixes_successes_and_failures(self, store, session_factory):
        failing_target = "fails"

        async def handler(event):
            if event.target == failing_target:
                raise DeliveryPendingError("nope")

        dispatcher = _dispatcher(store, session_factory, handler)
        ok, bad = PingEvent("ok"), PingEvent(failing_target)
        await _save(store, session_factory, ok)
        await _save(store, session_factory, bad)

        assert await dispatcher.dispatch_once() == [ok.event_id]
        assert (await _record(store, session_factory, bad.event_id)).processed_at is None

    async def test_unreadable_payload_stays_unprocessed(self, store, session_factory):
        dispatcher = _dispatcher(store, session_factory, RecordingHandler())
        async with transaction(session_factory) as session:
            session.add(OutboxEventModel(
                event_id="broken",
                aggregate_id="x",
                event_type="PingEvent",
                payload={},
                status=OutboxStatusEnum.PENDING.value,
            ))

        assert await dispatcher.dispatch_once() == []
        assert dispatcher.stats.failed == 1
        assert (await _record(store, session_factory, "broken")).processed_at is None


class TestUnknownEventTypes:
    async def _save_unknown(self, session_factory):
        async with transaction(session_factory) as session:
            session.add(OutboxEventModel(
                event_id="mystery",
                aggregate_id="x",
                event_type="RemovedEvent",
                payload={"anything": True},
                status=OutboxStatusEnum.PENDING.value,
            ))

    async def test_marked_processed_by_default(self, store, session_factory):
        dispatcher = _dispatcher(store, session_factory, RecordingHandler())
        await self._save_unknown(session_factory)

        assert await dispatcher.dispatch_once() == ["mystery"]
        assert dispatcher.stats.unknown_type == 1
        assert dispatcher.stats.dispatched == 0

    async def test_retained_when_configured(self, store, session_factory):
        dispatcher = _dispatcher(
            store, session_factory, RecordingHandler(), unknown_event_policy=UNKNOWN_POLICY_RETAIN
        )
        await self._save_unknown(session_factory)

        assert await dispatcher.dispatch_once() == []
        assert dispatcher.stats.unknown_type == 1
        assert (await _record(store, session_factory, "mystery")).processed_at is None

    def test_invalid_policy_is_rejected(self, store, session_factory):
        with pytest.raises(ValueError):
            _dispatcher(store, session_factory, unknown_event_policy="drop")


class TestTicks:
    async def test_overlapping_tick_is_skipped(self, store, session_factory):
        release = asyncio.Event()
        entered = asyncio.Event()

        async def slow_handler(event):
            entered.set()
            await release.wait()

        dispatcher = _dispatcher(store, session_factory, slow_handler)
        await _save(store, session_factory, PingEvent())

        first = asyncio.create_task(dispatcher.tick())
        await entered.wait()
        assert dispatcher.is_busy
        assert await dispatcher.tick() is False

        release.set()
        assert await first is True
        assert not dispatcher.is_busy
        assert dispatcher.stats.ticks == 1

    async def test_failed_tick_is_counted_and_swallowed(self, session_factory):
        class BrokenStore(OutboxStore):
            async def claim_batch(self, limit, session):
                raise RuntimeError("database went away")

        dispatcher = _dispatcher(BrokenStore(claim_strategy=None), session_factory)

        assert await dispatcher.tick() is True
        assert dispatcher.stats.tick_errors == 1

    async def test_start_and_stop(self, store, session_factory):
        dispatcher = _dispatcher(store, session_factory, RecordingHandler(), poll_interval=0.01)
        event = PingEvent()
        await _save(store, session_factory, event)

        await dispatcher.start()
        for _ in range(100):
            if (await _record(store, session_factory, event.event_id)).processed_at is not None:
                break
            await asyncio.sleep(0.01)
        await dispatcher.stop()

        assert not dispatcher.is_running
        assert (await _record(store, session_factory, event.event_id)).processed_at is not None
