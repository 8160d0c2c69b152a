"""API dependencies."""
from datetime import datetime
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsefeed.domain.common.types import utcnow
from pulsefeed.domain.notifications.generator import DerivedNotificationGenerator
from pulsefeed.domain.notifications.read_state import ReadStateStore
from pulsefeed.domain.notifications.repositories import ReadStateSlotProtocol
from pulsefeed.infra.db.repositories.snapshot_repo import DomainSnapshotReader
from pulsefeed.infra.db.session import get_session_factory
from pulsefeed.infra.notifications.gateway import PersistedNotificationGateway
from pulsefeed.settings import Settings, get_settings


def get_app_settings() -> Settings:
    return get_settings()


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_read_state_slot(request: Request) -> ReadStateSlotProtocol:
    """Process-wide slot created in the app lifespan."""
    return request.app.state.read_state_slot


def get_snapshot_reader(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    settings: Settings = Depends(get_app_settings),
) -> DomainSnapshotReader:
    return DomainSnapshotReader(session_factory, source_limit=settings.source_limit)


def get_notification_gateway(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    settings: Settings = Depends(get_app_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> PersistedNotificationGateway:
    return PersistedNotificationGateway(
        session_factory, fetch_limit=settings.notification_fetch_limit, clock=clock
    )


def get_generator(settings: Settings = Depends(get_app_settings)) -> DerivedNotificationGenerator:
    return DerivedNotificationGenerator.from_settings(settings)


def get_read_state_store(
    user_id: str,
    slot: ReadStateSlotProtocol = Depends(get_read_state_slot),
    settings: Settings = Depends(get_app_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ReadStateStore:
    """Fresh store per request; it loads the user's record from the slot on first use."""
    return ReadStateStore.from_settings(slot, user_id, settings, clock=clock)
