"""
Shared test fixtures.

- In-memory SQLite engine shared across sessions (StaticPool)
- Deterministic MockClock
- FakeTransport returning canned HttpResponse objects
"""

from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from core.clock import MockClock
from exchange_clients.transport import HttpResponse
from storage.database import create_session_factory
from storage.models import Base
from verification.snapshot_store import VolumeSnapshotStore


START_TIME = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class FakeTransport:
    """Transport double: replays queued responses and records requests."""

    def __init__(self, responses: Optional[List[HttpResponse]] = None):
        self.responses = deque(responses or [])
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def queue(self, status: int = 200, body: str = "", headers: Optional[Dict[str, str]] = None) -> None:
        self.responses.append(HttpResponse(status=status, headers=headers or {}, text=body))

    async def request(self, method, url, headers=None, data=None, operation=None) -> HttpResponse:
        self.requests.append(
            {"method": method, "url": url, "headers": dict(headers or {}), "data": data, "operation": operation}
        )
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        return self.responses.popleft()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def clock():
    return MockClock(START_TIME)


@pytest.fixture
def snapshot_store(session_factory, clock):
    return VolumeSnapshotStore(session_factory, clock)


@pytest.fixture
def transport():
    return FakeTransport()
