"""Tests for the notification feed routes (httpx ASGITransport, dependencies overridden)."""
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from conftest import NOW, FakeClock, FakeGateway

from pulsefeed.api.deps import (
    get_app_settings,
    get_clock,
    get_db_session_factory,
    get_notification_gateway,
    get_read_state_slot,
)
from pulsefeed.domain.common.types import to_epoch_ms
from pulsefeed.domain.notifications.models import NotificationCategory, NotificationItem
from pulsefeed.infra.db.models import AppointmentModel, ClientModel
from pulsefeed.infra.db.repositories.notification_repo import NotificationRepository
from pulsefeed.main import app
from pulsefeed.settings import Settings

FEED = "/v1/users/user-1/notifications"


@pytest.fixture
def test_settings():
    return Settings(
        api_v1_prefix="/v1",
        app_timezone="UTC",
        reminder_window_minutes=60,
        invoice_due_soon_days=3,
        read_state_backend="memory",
    )


@pytest.fixture
async def client(session_factory, memory_slot, test_settings):
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_read_state_slot] = lambda: memory_slot
    app.dependency_overrides[get_clock] = lambda: FakeClock()
    app.dependency_overrides[get_app_settings] = lambda: test_settings
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def seeded(session_factory):
    """One session in 30 minutes and one stored notification from 10 minutes ago."""
    async with session_factory() as session:
        session.add(ClientModel(id="c-dana", user_id="user-1", name="Dana"))
        session.add(AppointmentModel(
            id="S1", user_id="user-1", client_id="c-dana",
            scheduled_at=NOW + timedelta(minutes=30), status="scheduled",
        ))
        await session.commit()
        row = await NotificationRepository(session).create(
            "user-1", "system_update", "Welcome", "Thanks for joining", created_at=NOW - timedelta(minutes=10)
        )
    return row.id


async def test_feed_merges_derived_and_stored(client, seeded):
    response = await client.get(FEED)

    assert response.status_code == 200
    body = response.json()
    by_id = {n["id"]: n for n in body["notifications"]}
    assert set(by_id) == {"appt-reminder-S1", "appt-today-S1", seeded}
    assert body["unread_count"] == 3
    assert body["loading"] is False
    assert by_id["appt-reminder-S1"]["ephemeral"] is True
    assert by_id["appt-reminder-S1"]["href"] == "/appointments/S1"
    assert by_id[seeded]["ephemeral"] is False
    assert by_id[seeded]["created_at"] == to_epoch_ms(NOW - timedelta(minutes=10))
    assert by_id[seeded]["read_at"] is None


async def test_feed_for_user_without_data(client):
    response = await client.get("/v1/users/nobody/notifications")
    assert response.status_code == 200
    assert response.json() == {"notifications": [], "unread_count": 0, "loading": False}


async def test_dismiss_derived_item_hides_it(client, seeded, memory_slot):
    response = await client.post(f"{FEED}/appt-reminder-S1/dismiss")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "id": "appt-reminder-S1", "ephemeral": True}
    assert "appt-reminder-S1" in await memory_slot.get("pulsefeed:read-notifications:user-1")

    ids = [n["id"] for n in (await client.get(FEED)).json()["notifications"]]
    assert "appt-reminder-S1" not in ids
    assert "appt-today-S1" in ids


async def test_dismiss_stored_item_marks_it_read(client, seeded):
    response = await client.post(f"{FEED}/{seeded}/dismiss")

    assert response.status_code == 200
    assert response.json()["ephemeral"] is False

    body = (await client.get(FEED)).json()
    stored = next(n for n in body["notifications"] if n["id"] == seeded)
    assert stored["is_read"] is True
    assert stored["read_at"] == to_epoch_ms(NOW)
    assert body["unread_count"] == 2
    assert body["notifications"][-1]["id"] == seeded


async def test_dismiss_unknown_stored_item_is_404(client, seeded):
    response = await client.post(f"{FEED}/3f2c1d8e-0000-4000-8000-00000000dead/dismiss")
    assert response.status_code == 404


async def test_dismiss_with_database_down_is_503(client):
    engine = create_async_engine("sqlite+aiosqlite:////nonexistent-dir/pulsefeed/missing.db")
    app.dependency_overrides[get_db_session_factory] = lambda: async_sessionmaker(engine, class_=AsyncSession)

    response = await client.post(f"{FEED}/3f2c1d8e-0000-4000-8000-00000000beef/dismiss")

    assert response.status_code == 503
    await engine.dispose()


async def test_dismiss_is_scoped_to_user(client, seeded):
    response = await client.post(f"/v1/users/intruder/notifications/{seeded}/dismiss")
    assert response.status_code == 404


async def test_dismiss_all(client, seeded):
    response = await client.post(f"{FEED}/dismiss-all")

    assert response.status_code == 200
    assert response.json() == {"ok": True, "ephemeral": 2, "durable": 1}

    body = (await client.get(FEED)).json()
    assert [n["id"] for n in body["notifications"]] == [seeded]
    assert body["unread_count"] == 0


async def test_dismiss_all_reports_store_failure(client):
    gateway = FakeGateway([
        NotificationItem(
            id="9c7b6a5d-0000-4000-8000-000000000001",
            category=NotificationCategory.SYSTEM_UPDATE,
            title="t",
            message="m",
            created_at=NOW,
        )
    ])
    gateway.fail_writes = True
    app.dependency_overrides[get_notification_gateway] = lambda: gateway

    response = await client.post(f"{FEED}/dismiss-all")

    assert response.status_code == 503


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
