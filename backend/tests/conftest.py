"""Pytest configuration and shared fixtures for the notification engine tests."""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pulsefeed.domain.notifications.models import DomainSnapshot, NotificationItem
from pulsefeed.domain.notifications.read_state import ReadStateStore
from pulsefeed.infra.db import models  # noqa: F401
from pulsefeed.infra.db.base import Base
from pulsefeed.infra.storage.read_state_slots import MemoryReadStateSlot

# 14:00 UTC on a Tuesday; every test clock starts here unless it says otherwise.
NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeSnapshotReader:
    """DomainSnapshotReaderProtocol with a settable snapshot, failure and gate."""

    def __init__(self, snapshot: Optional[DomainSnapshot] = None):
        self.snapshot = snapshot or DomainSnapshot()
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls = 0

    async def fetch_snapshot(self, user_id: str, now: datetime) -> DomainSnapshot:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.snapshot


class FakeGateway:
    """NotificationGatewayProtocol over an in-memory list."""

    def __init__(self, items: Optional[List[NotificationItem]] = None):
        self.items: Dict[str, NotificationItem] = {i.id: i for i in items or []}
        self.fail_fetch = False
        self.fail_writes = False
        self.fetch_gates: List[asyncio.Event] = []
        self.write_gate: Optional[asyncio.Event] = None
        self.mark_read_calls: List[str] = []
        self.mark_all_calls = 0

    async def fetch_recent(self, user_id: str) -> Optional[List[NotificationItem]]:
        snapshot = sorted(self.items.values(), key=lambda i: i.created_at, reverse=True)
        if self.fetch_gates:
            await self.fetch_gates.pop(0).wait()
        if self.fail_fetch:
            return None
        return snapshot

    async def mark_read(self, user_id: str, notification_id: str) -> Optional[bool]:
        self.mark_read_calls.append(notification_id)
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes:
            return None
        if notification_id not in self.items:
            return False
        self.items[notification_id] = self.items[notification_id].mark_read(NOW)
        return True

    async def mark_all_unread_read(self, user_id: str) -> bool:
        self.mark_all_calls += 1
        if self.fail_writes:
            return False
        for key, item in self.items.items():
            self.items[key] = item.mark_read(NOW)
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_slot():
    return MemoryReadStateSlot()


@pytest.fixture
def read_state(memory_slot, clock):
    return ReadStateStore(memory_slot, "user-1", clock=clock)


@pytest.fixture
def fake_reader():
    return FakeSnapshotReader()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
async def session_factory():
    """In-memory SQLite database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
