"""Derived notifications: alerts computed from upcoming sessions and outstanding bills.

Nothing here is stored. Every item gets an id built from the source record id and
the rule that produced it, so recomputing the feed from the same data yields the
same ids and a dismissed alert stays dismissed.
"""
import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from pulsefeed.domain.common.types import ensure_aware
from pulsefeed.domain.notifications.models import (
    DomainSnapshot,
    EphemeralPrefix,
    NotificationCategory,
    NotificationItem,
    OutstandingBill,
    ScheduledSession,
    ephemeral_id,
)

logger = logging.getLogger(__name__)

SESSION_STATUS_SCHEDULED = "scheduled"
BILL_STATUS_SENT = "sent"
BILL_STATUS_OVERDUE = "overdue"
BILL_STATUSES = (BILL_STATUS_SENT, BILL_STATUS_OVERDUE)

DEFAULT_CLIENT_NAME = "Client"


def format_clock(value: datetime) -> str:
    """'3:05 PM' style time of day."""
    return value.strftime("%I:%M %p").lstrip("0")


def format_days_until(days: int) -> str:
    if days == 0:
        return "today"
    if days == 1:
        return "1 day"
    return f"{days} days"


class DerivedNotificationGenerator:
    """Turns a domain snapshot into ephemeral notification items."""

    def __init__(
        self,
        *,
        reminder_window: timedelta = timedelta(hours=1),
        due_soon_days: int = 3,
        source_limit: int = 50,
        tz: Optional[tzinfo] = None,
    ):
        self.reminder_window = reminder_window
        self.due_soon_days = due_soon_days
        self.source_limit = source_limit
        self.tz = tz or ZoneInfo("UTC")

    @classmethod
    def from_settings(cls, settings) -> "DerivedNotificationGenerator":
        return cls(
            reminder_window=timedelta(minutes=settings.reminder_window_minutes),
            due_soon_days=settings.invoice_due_soon_days,
            source_limit=settings.source_limit,
            tz=ZoneInfo(settings.app_timezone),
        )

    def generate(self, snapshot: DomainSnapshot, now: datetime) -> List[NotificationItem]:
        """Session-derived items first, then bill-derived items, each in source order."""
        now = ensure_aware(now)
        items: List[NotificationItem] = []
        items.extend(self._from_sessions(snapshot.sessions[: self.source_limit], now))
        items.extend(self._from_bills(snapshot.bills[: self.source_limit], now))
        return items

    def _from_sessions(self, sessions: Iterable[ScheduledSession], now: datetime) -> Iterable[NotificationItem]:
        today = now.astimezone(self.tz).date()
        tomorrow = today + timedelta(days=1)

        for session in sessions:
            if (session.status or "").lower() != SESSION_STATUS_SCHEDULED:
                continue
            if not session.id or session.scheduled_at is None:
                logger.debug("[NOTIFICATIONS] Skipping malformed session record: %r", session)
                continue

            scheduled_at = ensure_aware(session.scheduled_at)
            local = scheduled_at.astimezone(self.tz)
            client_name = session.client_name or DEFAULT_CLIENT_NAME
            clock = format_clock(local)

            until = scheduled_at - now
            if timedelta(0) <= until <= self.reminder_window:
                yield self._session_item(
                    session.id,
                    EphemeralPrefix.APPOINTMENT_REMINDER,
                    NotificationCategory.APPOINTMENT_REMINDER,
                    "Appointment Reminder",
                    f"{client_name} - {clock}",
                    scheduled_at,
                )

            if local.date() == today:
                yield self._session_item(
                    session.id,
                    EphemeralPrefix.APPOINTMENT_TODAY,
                    NotificationCategory.APPOINTMENT_UPCOMING,
                    "Appointment Today",
                    f"{client_name} at {clock}",
                    scheduled_at,
                )
            elif local.date() == tomorrow:
                yield self._session_item(
                    session.id,
                    EphemeralPrefix.APPOINTMENT_TOMORROW,
                    NotificationCategory.APPOINTMENT_UPCOMING,
                    "Appointment Tomorrow",
                    f"{client_name} at {clock}",
                    scheduled_at,
                )

    def _from_bills(self, bills: Iterable[OutstandingBill], now: datetime) -> Iterable[NotificationItem]:
        today = now.astimezone(self.tz).date()

        for bill in bills:
            status = (bill.status or "").lower()
            if status not in BILL_STATUSES:
                continue
            if not bill.id or bill.due_date is None or bill.amount is None:
                logger.debug("[NOTIFICATIONS] Skipping malformed bill record: %r", bill)
                continue

            due_date = bill.due_date
            if isinstance(due_date, datetime):
                due_date = ensure_aware(due_date).astimezone(self.tz).date()
            days_until = (due_date - today).days
            client_name = bill.client_name or DEFAULT_CLIENT_NAME
            amount = f"${bill.amount:.2f}"

            if status == BILL_STATUS_OVERDUE or (status == BILL_STATUS_SENT and days_until < 0):
                yield self._bill_item(
                    bill.id,
                    EphemeralPrefix.INVOICE_OVERDUE,
                    NotificationCategory.INVOICE_OVERDUE,
                    "Overdue Invoice",
                    f"{client_name} - {amount}",
                    due_date,
                )
            elif status == BILL_STATUS_SENT and 0 <= days_until <= self.due_soon_days:
                yield self._bill_item(
                    bill.id,
                    EphemeralPrefix.INVOICE_DUE,
                    NotificationCategory.INVOICE_DUE_SOON,
                    "Invoice Due Soon",
                    f"{client_name} - {amount} ({format_days_until(days_until)})",
                    due_date,
                )

    @staticmethod
    def _session_item(source_id, prefix, category, title, message, scheduled_at) -> NotificationItem:
        return NotificationItem(
            id=ephemeral_id(prefix, source_id),
            category=category,
            title=title,
            message=message,
            created_at=scheduled_at,
            related_record_id=source_id,
            related_record_type="appointment",
        )

    def _bill_item(self, source_id, prefix, category, title, message, due_date: date) -> NotificationItem:
        return NotificationItem(
            id=ephemeral_id(prefix, source_id),
            category=category,
            title=title,
            message=message,
            created_at=datetime.combine(due_date, time.min, tzinfo=self.tz),
            related_record_id=source_id,
            related_record_type="invoice",
        )
