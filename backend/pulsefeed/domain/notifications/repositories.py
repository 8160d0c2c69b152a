"""Notification feed collaborator protocols (for dependency injection)."""
from datetime import datetime
from typing import List, Optional, Protocol

from pulsefeed.domain.notifications.models import DomainSnapshot, NotificationItem


class DomainSnapshotReaderProtocol(Protocol):
    """Read-only access to the records derived notifications are computed from."""

    async def fetch_snapshot(self, user_id: str, now: datetime) -> DomainSnapshot:
        ...


class NotificationGatewayProtocol(Protocol):
    """Durable notifications. Failures come back as None / False, never as exceptions.

    mark_read tells a missing notification (False) apart from a store failure (None).
    """

    async def fetch_recent(self, user_id: str) -> Optional[List[NotificationItem]]:
        ...

    async def mark_read(self, user_id: str, notification_id: str) -> Optional[bool]:
        ...

    async def mark_all_unread_read(self, user_id: str) -> bool:
        ...


class ReadStateSlotProtocol(Protocol):
    """One durable key-value location per user holding the serialized read-state record.

    Implementations raise ReadStateStorageError on I/O problems and
    ReadStateQuotaExceeded when a write does not fit.
    """

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...
