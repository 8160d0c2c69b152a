"""Tests for the polling controller."""
import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, FakeGateway

from pulsefeed.domain.notifications.controller import ControllerPhase, PollingController
from pulsefeed.domain.notifications.models import (
    DomainSnapshot,
    NotificationCategory,
    NotificationItem,
    ScheduledSession,
)

DURABLE_ID = "0b9f4a52-7d55-4f43-9a8e-2f1d0f0c9e11"


def _durable(id=DURABLE_ID, minutes_ago=10):
    return NotificationItem(
        id=id,
        category=NotificationCategory.SYSTEM_UPDATE,
        title="Your trial ends in 10 days",
        message="Upgrade now",
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


@pytest.fixture
def controller(fake_reader, fake_gateway, read_state, clock):
    fake_reader.snapshot = DomainSnapshot(
        sessions=(ScheduledSession("S1", NOW + timedelta(minutes=30), "scheduled", "Dana"),)
    )
    fake_gateway.items[DURABLE_ID] = _durable()
    return PollingController(
        "user-1",
        reader=fake_reader,
        gateway=fake_gateway,
        read_state=read_state,
        clock=clock,
        interval=timedelta(milliseconds=10),
    )


async def _until(predicate, timeout=2.0):
    async def _wait():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_wait(), timeout)


async def test_refresh_populates_feed(controller):
    assert controller.state.notifications == ()
    assert await controller.refresh()

    state = controller.state
    assert [i.id for i in state.notifications] == ["appt-reminder-S1", "appt-today-S1", DURABLE_ID]
    assert state.unread_count == 3
    assert state.loading is False
    assert controller.phase == ControllerPhase.IDLE


async def test_loading_while_fetching(controller, fake_reader):
    fake_reader.gate = asyncio.Event()
    task = asyncio.create_task(controller.refresh())
    await _until(lambda: fake_reader.calls == 1)

    assert controller.loading
    assert controller.phase == ControllerPhase.FETCHING

    fake_reader.gate.set()
    await task
    assert not controller.loading


async def test_dismissed_reminder_does_not_come_back(controller):
    await controller.refresh()

    await controller.dismiss("appt-reminder-S1")
    await controller.refresh()

    ids = [i.id for i in controller.notifications]
    assert "appt-reminder-S1" not in ids
    assert "appt-today-S1" in ids


async def test_dismiss_is_optimistic(controller, fake_gateway):
    await controller.refresh()

    task = controller.dismiss(DURABLE_ID)

    item = next(i for i in controller.notifications if i.id == DURABLE_ID)
    assert item.is_read
    assert item.read_at == NOW
    assert controller.unread_count == 2
    assert await task
    assert fake_gateway.mark_read_calls == [DURABLE_ID]


async def test_failed_durable_dismissal_reappears_after_refresh(controller, fake_gateway):
    await controller.refresh()
    fake_gateway.fail_writes = True

    assert not await controller.dismiss(DURABLE_ID)
    await controller.refresh()

    item = next(i for i in controller.notifications if i.id == DURABLE_ID)
    assert not item.is_read


async def test_dismiss_all(controller, fake_gateway, read_state):
    await controller.refresh()

    task = controller.dismiss_all()

    assert controller.unread_count == 0
    assert all(i.is_read for i in controller.notifications)
    result = await task
    assert (result.ephemeral, result.durable) == (2, 1)
    assert fake_gateway.mark_all_calls == 1
    assert set(read_state.dismissed_ids) == {"appt-reminder-S1", "appt-today-S1"}

    await controller.refresh()
    assert [i.id for i in controller.notifications] == [DURABLE_ID]
    assert controller.unread_count == 0


async def test_stale_refresh_is_discarded(controller, fake_gateway):
    """A refresh that started earlier but finished later does not overwrite the newer result."""
    slow_gate = asyncio.Event()
    fake_gateway.fetch_gates.append(slow_gate)
    slow = asyncio.create_task(controller.refresh())
    await _until(lambda: not fake_gateway.fetch_gates)

    newer = _durable("7a7d6b0c-1111-4c2e-9f00-000000000002", minutes_ago=1)
    fake_gateway.items[newer.id] = newer
    assert await controller.refresh()

    slow_gate.set()
    assert await slow is False
    assert newer.id in [i.id for i in controller.notifications]


async def test_refresh_started_before_dismissal_keeps_it_read(controller, fake_gateway):
    await controller.refresh()
    gate = asyncio.Event()
    fake_gateway.fetch_gates.append(gate)
    in_flight = asyncio.create_task(controller.refresh())
    await _until(lambda: not fake_gateway.fetch_gates)

    await controller.dismiss(DURABLE_ID)
    gate.set()
    assert await in_flight

    item = next(i for i in controller.notifications if i.id == DURABLE_ID)
    assert item.is_read
    assert controller.unread_count == 2


async def test_close_cancels_in_flight_refresh(controller, fake_reader):
    fake_reader.gate = asyncio.Event()
    in_flight = asyncio.create_task(controller.refresh())
    await _until(lambda: fake_reader.calls == 1)

    await controller.close()

    assert await in_flight is False
    assert controller.phase == ControllerPhase.CLOSED
    assert controller.notifications == []
    assert not await controller.refresh()


async def test_close_waits_for_pending_dismissals(controller, read_state):
    await controller.refresh()
    task = controller.dismiss("appt-today-S1")

    await controller.close()

    assert task.done()
    assert read_state.is_dismissed("appt-today-S1")


async def test_polling_refreshes_on_interval(controller, fake_reader):
    controller.start()
    await _until(lambda: fake_reader.calls >= 3)
    await controller.close()

    calls = fake_reader.calls
    await asyncio.sleep(0.05)
    assert fake_reader.calls == calls


async def test_start_after_close_is_rejected(controller):
    await controller.close()
    with pytest.raises(RuntimeError):
        controller.start()


async def test_context_manager_starts_and_closes(controller, fake_reader):
    async with controller as running:
        await _until(lambda: len(running.notifications) == 3)
    assert controller.closed


async def test_on_change_receives_state(fake_reader, fake_gateway, read_state, clock):
    states = []
    controller = PollingController(
        "user-1",
        reader=fake_reader,
        gateway=fake_gateway,
        read_state=read_state,
        clock=clock,
        on_change=states.append,
    )
    fake_gateway.items[DURABLE_ID] = _durable()

    await controller.refresh()
    await controller.dismiss(DURABLE_ID)

    assert states[0].loading is True
    assert [s.unread_count for s in states if not s.loading][-2:] == [1, 0]
    await controller.close()


async def test_failing_listener_does_not_break_refresh(fake_reader, fake_gateway, read_state, clock):
    def _boom(state):
        raise RuntimeError("listener bug")

    controller = PollingController(
        "user-1", reader=fake_reader, gateway=fake_gateway, read_state=read_state, clock=clock, on_change=_boom
    )
    fake_gateway.items[DURABLE_ID] = _durable()

    assert await controller.refresh()
    assert controller.unread_count == 1


async def test_reader_failure_keeps_polling(controller, fake_reader):
    fake_reader.error = ConnectionError("snapshot down")
    assert await controller.refresh()
    assert [i.id for i in controller.notifications] == [DURABLE_ID]

    fake_reader.error = None
    await controller.refresh()
    assert len(controller.notifications) == 3


def test_from_settings(fake_reader, fake_gateway, read_state):
    class _Settings:
        poll_interval_seconds = 12.5
        reminder_window_minutes = 30
        invoice_due_soon_days = 2
        source_limit = 20
        app_timezone = "UTC"

    controller = PollingController.from_settings(
        "user-1", _Settings(), reader=fake_reader, gateway=fake_gateway, read_state=read_state
    )
    assert controller.interval == timedelta(seconds=12.5)
    assert controller.generator.reminder_window == timedelta(minutes=30)


async def test_refresh_during_pending_dismissal_keeps_unread_first(fake_gateway, fake_reader, read_state, clock):
    newer = _durable("aaaaaaaa-0000-4000-8000-000000000001", minutes_ago=1)
    older = _durable("bbbbbbbb-0000-4000-8000-000000000002", minutes_ago=20)
    fake_gateway.items = {newer.id: newer, older.id: older}
    controller = PollingController(
        "user-1", reader=fake_reader, gateway=fake_gateway, read_state=read_state, clock=clock
    )
    await controller.refresh()
    assert [i.id for i in controller.notifications] == [newer.id, older.id]

    fake_gateway.write_gate = asyncio.Event()
    commit = controller.dismiss(newer.id)
    await _until(lambda: fake_gateway.mark_read_calls == [newer.id])
    assert [i.id for i in controller.notifications] == [older.id, newer.id]

    assert await controller.refresh()

    feed = controller.notifications
    assert [(i.id, i.is_read) for i in feed] == [(older.id, False), (newer.id, True)]
    assert controller.unread_count == 1

    fake_gateway.write_gate.set()
    assert await commit
    await controller.close()
