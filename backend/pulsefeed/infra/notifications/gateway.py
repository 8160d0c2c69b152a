"""Persisted-notification gateway: durable notifications with failures reported, not raised."""
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pulsefeed.domain.common.types import ensure_aware, utcnow
from pulsefeed.domain.notifications.models import NotificationCategory, NotificationItem
from pulsefeed.infra.db.models.notification import NotificationModel
from pulsefeed.infra.db.repositories.notification_repo import NotificationRepository

logger = logging.getLogger(__name__)

# Store and network failures; anything else is a bug and propagates.
GATEWAY_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)

_CATEGORIES = {c.value: c for c in NotificationCategory}


def to_notification_item(model: NotificationModel) -> NotificationItem:
    """Map a stored row to a NotificationItem (unknown types become system_update)."""
    category = _CATEGORIES.get(model.type)
    if category is None:
        logger.warning(
            "[NOTIFICATIONS] Unknown notification type %r on %s, showing as %s",
            model.type, model.id, NotificationCategory.SYSTEM_UPDATE.value,
        )
        category = NotificationCategory.SYSTEM_UPDATE
    read_at = ensure_aware(model.read_at) if model.read_at else None
    return NotificationItem(
        id=model.id,
        category=category,
        title=model.title,
        message=model.message,
        created_at=ensure_aware(model.created_at),
        related_record_id=model.related_id,
        related_record_type=model.related_type,
        read_at=read_at,
        is_read=read_at is not None,
    )


class PersistedNotificationGateway:
    """NotificationGatewayProtocol over the relational store; one session per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        fetch_limit: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.fetch_limit = fetch_limit
        self._clock = clock

    async def fetch_recent(self, user_id: str) -> Optional[List[NotificationItem]]:
        try:
            async with self.session_factory() as session:
                rows = await NotificationRepository(session).list_recent(user_id, limit=self.fetch_limit)
        except GATEWAY_ERRORS as e:
            logger.warning("[NOTIFICATIONS] Fetching notifications failed for user %s: %s", user_id, e)
            return None
        return [to_notification_item(row) for row in rows]

    async def mark_read(self, user_id: str, notification_id: str) -> Optional[bool]:
        """True when marked, False when no such notification, None when the store failed."""
        try:
            async with self.session_factory() as session:
                return await NotificationRepository(session).mark_read(
                    notification_id, user_id, when=self._clock()
                )
        except GATEWAY_ERRORS as e:
            logger.warning(
                "[NOTIFICATIONS] Marking %s read failed for user %s: %s", notification_id, user_id, e
            )
            return None

    async def mark_all_unread_read(self, user_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                updated = await NotificationRepository(session).mark_all_unread_read(user_id, when=self._clock())
        except GATEWAY_ERRORS as e:
            logger.warning("[NOTIFICATIONS] Marking all read failed for user %s: %s", user_id, e)
            return False
        logger.info("[NOTIFICATIONS] Marked %d notifications read for user %s", updated, user_id)
        return True

