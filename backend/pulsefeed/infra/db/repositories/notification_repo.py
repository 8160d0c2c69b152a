"""Notification repository."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pulsefeed.domain.common.types import generate_id, utcnow
from pulsefeed.infra.db.models.notification import NotificationModel


class NotificationRepository:
    """Notification repository."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: str,
        type: str,
        title: str,
        message: str,
        related_id: Optional[str] = None,
        related_type: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> NotificationModel:
        """Create a notification."""
        model = NotificationModel(
            id=generate_id(),
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            related_id=related_id,
            related_type=related_type,
            read_at=None,
            created_at=created_at or utcnow(),
        )
        self.session.add(model)
        await self.session.commit()
        await self.session.refresh(model)
        return model

    async def list_recent(self, user_id: str, limit: int = 50) -> List[NotificationModel]:
        """List notifications for a user, newest first."""
        result = await self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.created_at.desc(), NotificationModel.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_unread(self, user_id: str) -> int:
        """Count unread notifications for a user."""
        result = await self.session.execute(
            select(func.count()).select_from(NotificationModel).where(
                NotificationModel.user_id == user_id,
                NotificationModel.read_at.is_(None),
            )
        )
        return result.scalar() or 0

    async def mark_read(self, notification_id: str, user_id: str, when: Optional[datetime] = None) -> bool:
        """Mark a notification as read (an existing read_at is kept). Returns True if found."""
        result = await self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.user_id == user_id,
            )
            .values(read_at=func.coalesce(NotificationModel.read_at, when or utcnow()))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount > 0

    async def mark_all_unread_read(self, user_id: str, when: Optional[datetime] = None) -> int:
        """Mark every unread notification of a user as read. Returns count updated."""
        result = await self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.user_id == user_id,
                NotificationModel.read_at.is_(None),
            )
            .values(read_at=when or utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def exists(
        self,
        user_id: str,
        type: str,
        *,
        title: Optional[str] = None,
        title_like: Optional[str] = None,
        related_type: Optional[str] = None,
        related_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> bool:
        """Whether a matching notification was already created (used by the daily jobs)."""
        q = select(NotificationModel.id).where(
            NotificationModel.user_id == user_id,
            NotificationModel.type == type,
        )
        if title is not None:
            q = q.where(NotificationModel.title == title)
        if title_like is not None:
            q = q.where(NotificationModel.title.ilike(title_like))
        if related_type is not None:
            q = q.where(NotificationModel.related_type == related_type)
        if related_id is not None:
            q = q.where(NotificationModel.related_id == related_id)
        if since is not None:
            q = q.where(NotificationModel.created_at >= since)
        result = await self.session.execute(q.limit(1))
        return result.first() is not None
