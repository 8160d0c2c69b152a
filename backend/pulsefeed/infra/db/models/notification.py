"""Notification database model."""
from sqlalchemy import Column, String, DateTime, Text, Index

from pulsefeed.domain.common.types import utcnow
from pulsefeed.infra.db.base import Base


class NotificationModel(Base):
    """Durable user notification (system updates, birthdays, anything a job or service stores)."""

    __tablename__ = "notifications"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)  # NotificationCategory value
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    related_id = Column(String, nullable=True)
    related_type = Column(String, nullable=True)  # appointment, invoice, client, subscription, ...
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_id_created_at", "user_id", "created_at"),
    )
