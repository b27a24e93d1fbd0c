"""Shared fixtures for the ClipRelay test suite."""

import os
import tempfile

# Settings are read at import time; keep test runs away from the user's data dir
os.environ.setdefault("CLIPRELAY_DATA_DIR", tempfile.mkdtemp(prefix="cliprelay-test-"))

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest

from database.connection import create_engine_for_url, create_session_factory, create_tables
from database.models import Base
from downloaders.base import BaseDownloadEngine, DownloadResult, VideoResult
from errors import DeliveryError, EngineError, MediaTooLargeError
from notifier.base import Attachment, OutboundMessage, SentMessage
from outbox.events import DomainEvent

POSTGRES_URL = os.environ.get("CLIPRELAY_TEST_POSTGRES_URL")

BACKENDS = ["sqlite"] + (["postgresql"] if POSTGRES_URL else [])


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def engine(sqlite_url):
    engine = create_engine_for_url(sqlite_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture(params=BACKENDS)
async def backend(request, sqlite_url):
    """(database_url, session_factory) for every available backend"""
    url = POSTGRES_URL if request.param == "postgresql" else sqlite_url
    engine = create_engine_for_url(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield url, create_session_factory(engine)
    await engine.dispose()


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class PingEvent(DomainEvent):
    """Minimal event for outbox tests"""

    def __init__(self, target: str = "t", **kwargs):
        super().__init__(**kwargs)
        self.target = target

    @property
    def aggregate_id(self) -> str:
        return self.target

    def to_payload(self) -> Dict[str, Any]:
        return {"event_id": self.event_id, "target": self.target}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PingEvent":
        return cls(payload["target"], event_id=payload["event_id"])


# ---------------------------------------------------------------------------
# Download engines
# ---------------------------------------------------------------------------

class StubEngine(BaseDownloadEngine):
    """Engine returning a canned result or raising a canned error"""

    def __init__(self, name: str, result: Optional[DownloadResult] = None,
                 error: Optional[BaseException] = None, platforms=()):
        self._name = name
        self.result = result or VideoResult(urls=(f"https://cdn.example/{name}.mp4",), author="creator")
        self.error = error
        self.platforms = tuple(platforms)
        self.calls: List[str] = []

    @property
    def name(self) -> str:
        return self._name

    async def download(self, url: str) -> DownloadResult:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.result


def failing_engine(name: str, message: str = "boom") -> StubEngine:
    return StubEngine(name, error=EngineError(name, message))


# ---------------------------------------------------------------------------
# Messaging platform
# ---------------------------------------------------------------------------

class FakeMessagingClient:
    """In-memory channel history implementing MessagingClient and ChannelProvisioner"""

    def __init__(self):
        self.channels: Dict[str, List[SentMessage]] = {}
        self.sent: List[tuple] = []
        self.created_channels: List[str] = []
        self.history_error: Optional[BaseException] = None
        self.send_errors: List[BaseException] = []
        self._next_id = 100000000000000000

    async def fetch_recent_messages(self, channel_id: str, limit: int) -> List[SentMessage]:
        if self.history_error is not None:
            raise self.history_error
        return list(reversed(self.channels.get(channel_id, [])))[:limit]

    async def send_message(self, channel_id: str, message: OutboundMessage) -> SentMessage:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self._next_id += 1
        sent = SentMessage(
            message_id=str(self._next_id),
            content=message.content,
            footers=[e.footer for e in message.embeds if e.footer],
        )
        self.channels.setdefault(channel_id, []).append(sent)
        self.sent.append((channel_id, message))
        return sent

    async def create_text_channel(self, name: str) -> str:
        self._next_id += 1
        self.created_channels.append(name)
        return str(self._next_id)


class RefusingProvisioner:
    async def create_text_channel(self, name: str) -> str:
        raise DeliveryError("missing permissions")


class FakeMediaFetcher:
    """MediaFetcher stand-in serving bytes from a dict"""

    def __init__(self, files: Optional[Dict[str, bytes]] = None, error: Optional[BaseException] = None):
        self.files = files or {}
        self.error = error
        self.requested: List[str] = []

    async def fetch(self, url: str, filename: str, max_bytes: Optional[int] = None):
        self.requested.append(url)
        if self.error is not None:
            raise self.error
        data = self.files.get(url, b"media")
        if max_bytes is not None and len(data) > max_bytes:
            raise MediaTooLargeError(url, len(data), max_bytes)
        return Attachment(filename=filename, data=data)

    async def close(self):
        pass


@pytest.fixture
def messaging() -> FakeMessagingClient:
    return FakeMessagingClient()
