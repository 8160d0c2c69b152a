"""Notification feed domain models."""
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class NotificationCategory(str, Enum):
    """Notification category enum."""
    APPOINTMENT_REMINDER = "appointment_reminder"
    APPOINTMENT_UPCOMING = "appointment_upcoming"
    INVOICE_DUE_SOON = "invoice_due_soon"
    INVOICE_OVERDUE = "invoice_overdue"
    CLIENT_BIRTHDAY = "client_birthday"
    WORKOUT_REMINDER = "workout_reminder"
    SYSTEM_UPDATE = "system_update"


class EphemeralPrefix(str, Enum):
    """Id prefixes of derived notifications: category + subtype, followed by the source record id."""
    APPOINTMENT_REMINDER = "appt-reminder-"
    APPOINTMENT_TODAY = "appt-today-"
    APPOINTMENT_TOMORROW = "appt-tomorrow-"
    INVOICE_OVERDUE = "invoice-overdue-"
    INVOICE_DUE = "invoice-due-"


# Durable ids are UUIDs, so nothing stored can start with these.
EPHEMERAL_NAMESPACES = ("appt-", "invoice-")

_HREF_PATHS = {
    "appointment": "/appointments/{id}",
    "invoice": "/invoices/{id}",
}


def ephemeral_id(prefix: EphemeralPrefix, source_id: str) -> str:
    """Deterministic id of a derived notification."""
    return f"{prefix.value}{source_id}"


def is_ephemeral_id(notification_id: str) -> bool:
    """True when the id belongs to a derived notification (read state lives locally)."""
    return notification_id.startswith(EPHEMERAL_NAMESPACES)


@dataclass(frozen=True)
class NotificationItem:
    """One entry of the notification feed."""
    id: str
    category: NotificationCategory
    title: str
    message: str
    created_at: datetime
    related_record_id: Optional[str] = None
    related_record_type: Optional[str] = None
    read_at: Optional[datetime] = None
    is_read: bool = False

    @property
    def ephemeral(self) -> bool:
        return is_ephemeral_id(self.id)

    @property
    def href(self) -> Optional[str]:
        """Deep link to the related record, if there is one."""
        if not self.related_record_id or not self.related_record_type:
            return None
        template = _HREF_PATHS.get(self.related_record_type)
        if template:
            return template.format(id=self.related_record_id)
        return f"/{self.related_record_type}s/{self.related_record_id}"

    def mark_read(self, when: datetime) -> "NotificationItem":
        """Copy of this item flagged as read at `when` (keeps an existing read_at)."""
        if self.is_read:
            return self
        return replace(self, is_read=True, read_at=self.read_at or when)


@dataclass(frozen=True)
class ScheduledSession:
    """Upcoming appointment as read from the store. Fields are None when the row is malformed."""
    id: Optional[str]
    scheduled_at: Optional[datetime]
    status: Optional[str]
    client_name: Optional[str] = None


@dataclass(frozen=True)
class OutstandingBill:
    """Sent or overdue invoice as read from the store."""
    id: Optional[str]
    due_date: Optional[date]
    status: Optional[str]
    amount: Optional[Decimal]
    client_name: Optional[str] = None


@dataclass(frozen=True)
class DomainSnapshot:
    """Everything the generator needs for one user at one point in time."""
    sessions: tuple[ScheduledSession, ...] = ()
    bills: tuple[OutstandingBill, ...] = ()


@dataclass
class ReadStateRecord:
    """Dismissed ephemeral ids (oldest first) and the time of the last write."""
    ids: list[str] = field(default_factory=list)
    last_updated: int = 0  # epoch millis

    def to_payload(self) -> dict:
        return {"ids": list(self.ids), "lastUpdated": self.last_updated}


@dataclass(frozen=True)
class FeedState:
    """What the interface layer renders."""
    notifications: tuple[NotificationItem, ...] = ()
    unread_count: int = 0
    loading: bool = False
