"""Merge derived and durable notifications into one feed."""
from typing import Iterable, List, Protocol

from pulsefeed.domain.notifications.models import NotificationItem


class DismissalLookup(Protocol):
    def is_dismissed(self, notification_id: str) -> bool:
        ...


def _sort_key(item: NotificationItem):
    return (item.is_read, -item.created_at.timestamp())


def sort_feed(items: Iterable[NotificationItem]) -> List[NotificationItem]:
    """Unread before read, newest first within each group (stable)."""
    return sorted(items, key=_sort_key)


def merge_feed(
    derived: Iterable[NotificationItem],
    durable: Iterable[NotificationItem],
    read_state: DismissalLookup,
) -> List[NotificationItem]:
    """
    Build the feed: dismissed derived items are dropped, derived items win id
    collisions, then unread sorts before read and newer before older.
    """
    merged: List[NotificationItem] = []
    seen: set[str] = set()

    for item in derived:
        if read_state.is_dismissed(item.id) or item.id in seen:
            continue
        merged.append(item)
        seen.add(item.id)

    for item in durable:
        if item.id in seen:
            continue
        merged.append(item)
        seen.add(item.id)

    return sort_feed(merged)


def count_unread(items: Iterable[NotificationItem]) -> int:
    return sum(1 for item in items if not item.is_read)
