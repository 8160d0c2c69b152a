"""One aggregation cycle (snapshot read + generate + fetch + merge) and dismissal routing.

Shared by the polling controller and the HTTP routes.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from pulsefeed.domain.notifications.generator import DerivedNotificationGenerator
from pulsefeed.domain.notifications.merger import merge_feed
from pulsefeed.domain.notifications.models import NotificationItem, is_ephemeral_id
from pulsefeed.domain.notifications.read_state import ReadStateStore
from pulsefeed.domain.notifications.repositories import (
    DomainSnapshotReaderProtocol,
    NotificationGatewayProtocol,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationResult:
    """Merged feed plus which populations made it into this cycle."""
    notifications: List[NotificationItem]
    derived_ok: bool
    durable_ok: bool


@dataclass(frozen=True)
class DismissAllResult:
    ephemeral: int
    durable: int
    durable_ok: bool


async def _derive(
    user_id: str,
    reader: DomainSnapshotReaderProtocol,
    generator: DerivedNotificationGenerator,
    now: datetime,
) -> tuple[List[NotificationItem], bool]:
    try:
        snapshot = await reader.fetch_snapshot(user_id, now)
    except Exception as e:
        logger.warning("[NOTIFICATIONS] Snapshot read failed for user %s, no derived items this cycle: %s", user_id, e)
        return [], False
    return generator.generate(snapshot, now), True


async def _ensure_loaded(read_state: ReadStateStore) -> None:
    if not read_state.loaded:
        await read_state.load()


async def run_aggregation_cycle(
    user_id: str,
    *,
    reader: DomainSnapshotReaderProtocol,
    gateway: NotificationGatewayProtocol,
    read_state: ReadStateStore,
    generator: DerivedNotificationGenerator,
    now: datetime,
) -> AggregationResult:
    """Fetch both populations concurrently and merge them."""
    (derived, derived_ok), durable, _ = await asyncio.gather(
        _derive(user_id, reader, generator, now),
        gateway.fetch_recent(user_id),
        _ensure_loaded(read_state),
    )
    durable_ok = durable is not None
    if not durable_ok:
        logger.info("[NOTIFICATIONS] Durable notifications unavailable for user %s this cycle", user_id)
        durable = []

    merged = merge_feed(derived, durable, read_state)
    logger.debug(
        "[NOTIFICATIONS] Aggregated %d items for user %s (%d derived, %d durable)",
        len(merged), user_id, len(derived), len(durable),
    )
    return AggregationResult(notifications=merged, derived_ok=derived_ok, durable_ok=durable_ok)


async def commit_dismissal(
    user_id: str,
    notification_id: str,
    *,
    read_state: ReadStateStore,
    gateway: NotificationGatewayProtocol,
) -> Optional[bool]:
    """Persist one dismissal in whichever backing owns the id's namespace.

    Returns False when a durable id matched nothing and None when its store failed.
    """
    if is_ephemeral_id(notification_id):
        await read_state.mark_dismissed(notification_id)
        return True
    ok = await gateway.mark_read(user_id, notification_id)
    if not ok:
        logger.warning("[NOTIFICATIONS] Could not mark notification %s read for user %s", notification_id, user_id)
    return ok


async def commit_dismiss_all(
    user_id: str,
    unread: Iterable[NotificationItem],
    *,
    read_state: ReadStateStore,
    gateway: NotificationGatewayProtocol,
) -> DismissAllResult:
    """Dismiss every given unread item: one read-state write, one bulk durable update."""
    ephemeral_ids: List[str] = []
    durable_count = 0
    for item in unread:
        if item.is_read:
            continue
        if is_ephemeral_id(item.id):
            ephemeral_ids.append(item.id)
        else:
            durable_count += 1

    if ephemeral_ids:
        await read_state.mark_all_dismissed(ephemeral_ids)

    durable_ok = True
    if durable_count:
        durable_ok = await gateway.mark_all_unread_read(user_id)
        if not durable_ok:
            logger.warning("[NOTIFICATIONS] Bulk mark-read failed for user %s", user_id)

    return DismissAllResult(ephemeral=len(ephemeral_ids), durable=durable_count, durable_ok=durable_ok)
