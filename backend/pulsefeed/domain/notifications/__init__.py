"""Notification feed domain (derived + durable notifications, read state, polling)."""
from pulsefeed.domain.notifications.models import (
    NotificationCategory,
    NotificationItem,
    EphemeralPrefix,
    ScheduledSession,
    OutstandingBill,
    DomainSnapshot,
    ReadStateRecord,
    FeedState,
    ephemeral_id,
    is_ephemeral_id,
)
from pulsefeed.domain.notifications.generator import DerivedNotificationGenerator
from pulsefeed.domain.notifications.merger import merge_feed, count_unread
from pulsefeed.domain.notifications.read_state import ReadStateStore
from pulsefeed.domain.notifications.controller import PollingController

__all__ = [
    "NotificationCategory",
    "NotificationItem",
    "EphemeralPrefix",
    "ScheduledSession",
    "OutstandingBill",
    "DomainSnapshot",
    "ReadStateRecord",
    "FeedState",
    "ephemeral_id",
    "is_ephemeral_id",
    "DerivedNotificationGenerator",
    "merge_feed",
    "count_unread",
    "ReadStateStore",
    "PollingController",
]
