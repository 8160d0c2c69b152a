"""Notification feed API routes."""
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from pulsefeed.api.deps import (
    get_clock,
    get_generator,
    get_notification_gateway,
    get_read_state_store,
    get_snapshot_reader,
)
from pulsefeed.domain.common.errors import NotFoundError
from pulsefeed.domain.common.types import to_epoch_ms
from pulsefeed.domain.notifications.aggregation import (
    commit_dismiss_all,
    commit_dismissal,
    run_aggregation_cycle,
)
from pulsefeed.domain.notifications.generator import DerivedNotificationGenerator
from pulsefeed.domain.notifications.merger import count_unread
from pulsefeed.domain.notifications.models import NotificationItem, is_ephemeral_id
from pulsefeed.domain.notifications.read_state import ReadStateStore
from pulsefeed.infra.db.repositories.snapshot_repo import DomainSnapshotReader
from pulsefeed.infra.notifications.gateway import PersistedNotificationGateway

router = APIRouter()


class NotificationResponse(BaseModel):
    """One feed entry."""
    id: str
    category: str
    title: str
    message: str
    related_record_id: Optional[str] = None
    related_record_type: Optional[str] = None
    href: Optional[str] = None
    is_read: bool
    ephemeral: bool
    created_at: int  # ms since epoch for client compatibility
    read_at: Optional[int] = None


class FeedResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int
    loading: bool = False


class DismissResponse(BaseModel):
    ok: bool
    id: str
    ephemeral: bool


class DismissAllResponse(BaseModel):
    ok: bool
    ephemeral: int
    durable: int


def _to_response(item: NotificationItem) -> NotificationResponse:
    return NotificationResponse(
        id=item.id,
        category=item.category.value,
        title=item.title,
        message=item.message,
        related_record_id=item.related_record_id,
        related_record_type=item.related_record_type,
        href=item.href,
        is_read=item.is_read,
        ephemeral=item.ephemeral,
        created_at=to_epoch_ms(item.created_at),
        read_at=to_epoch_ms(item.read_at) if item.read_at else None,
    )


@router.get("", response_model=FeedResponse)
async def get_feed(
    user_id: str,
    reader: DomainSnapshotReader = Depends(get_snapshot_reader),
    gateway: PersistedNotificationGateway = Depends(get_notification_gateway),
    read_state: ReadStateStore = Depends(get_read_state_store),
    generator: DerivedNotificationGenerator = Depends(get_generator),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Merged feed for a user: unread first, newest first within each group."""
    result = await run_aggregation_cycle(
        user_id,
        reader=reader,
        gateway=gateway,
        read_state=read_state,
        generator=generator,
        now=clock(),
    )
    return FeedResponse(
        notifications=[_to_response(item) for item in result.notifications],
        unread_count=count_unread(result.notifications),
        loading=False,
    )


@router.post("/dismiss-all", response_model=DismissAllResponse)
async def dismiss_all(
    user_id: str,
    reader: DomainSnapshotReader = Depends(get_snapshot_reader),
    gateway: PersistedNotificationGateway = Depends(get_notification_gateway),
    read_state: ReadStateStore = Depends(get_read_state_store),
    generator: DerivedNotificationGenerator = Depends(get_generator),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Dismiss every unread item of the current feed."""
    feed = await run_aggregation_cycle(
        user_id,
        reader=reader,
        gateway=gateway,
        read_state=read_state,
        generator=generator,
        now=clock(),
    )
    unread = [item for item in feed.notifications if not item.is_read]
    result = await commit_dismiss_all(user_id, unread, read_state=read_state, gateway=gateway)
    if not result.durable_ok:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not mark notifications read",
        )
    return DismissAllResponse(ok=True, ephemeral=result.ephemeral, durable=result.durable)


@router.post("/{notification_id}/dismiss", response_model=DismissResponse)
async def dismiss_notification(
    user_id: str,
    notification_id: str,
    gateway: PersistedNotificationGateway = Depends(get_notification_gateway),
    read_state: ReadStateStore = Depends(get_read_state_store),
):
    """Dismiss one item: derived ids go to the read-state store, stored ones are marked read."""
    ok = await commit_dismissal(user_id, notification_id, read_state=read_state, gateway=gateway)
    if ok is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not mark notification read",
        )
    if not ok:
        raise NotFoundError("Notification", notification_id)
    return DismissResponse(ok=True, id=notification_id, ephemeral=is_ephemeral_id(notification_id))
