"""Polling controller: keeps one user's notification feed fresh for the interface layer.

The controller refreshes on a fixed interval and on demand. Refreshes may overlap;
each takes a sequence number when it starts and only a result newer than the last
applied one is kept, so a slow response never overwrites a newer feed.

Dismissals are optimistic: the in-memory feed changes immediately and the commit to
the read-state store or the database runs in the background. Until a refresh that
started after the commit finished has been applied, fetched results are overlaid
with the local dismissal so the item does not flicker back to unread.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

from pulsefeed.domain.common.types import utcnow
from pulsefeed.domain.notifications.aggregation import (
    AggregationResult,
    DismissAllResult,
    commit_dismiss_all,
    commit_dismissal,
    run_aggregation_cycle,
)
from pulsefeed.domain.notifications.generator import DerivedNotificationGenerator
from pulsefeed.domain.notifications.merger import count_unread, sort_feed
from pulsefeed.domain.notifications.models import FeedState, NotificationItem
from pulsefeed.domain.notifications.read_state import ReadStateStore
from pulsefeed.domain.notifications.repositories import (
    DomainSnapshotReaderProtocol,
    NotificationGatewayProtocol,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = timedelta(seconds=30)


class ControllerPhase(str, Enum):
    """Controller lifecycle phase."""
    IDLE = "idle"
    FETCHING = "fetching"
    CLOSED = "closed"


@dataclass
class _LocalRead:
    when: datetime
    done_seq: Optional[int] = None  # Latest started refresh when the commit finished


class PollingController:
    """Owns the refresh cadence and the in-memory feed for one user."""

    def __init__(
        self,
        user_id: str,
        *,
        reader: DomainSnapshotReaderProtocol,
        gateway: NotificationGatewayProtocol,
        read_state: ReadStateStore,
        generator: Optional[DerivedNotificationGenerator] = None,
        interval: timedelta = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
        on_change: Optional[Callable[[FeedState], None]] = None,
    ):
        self.user_id = user_id
        self.reader = reader
        self.gateway = gateway
        self.read_state = read_state
        self.generator = generator or DerivedNotificationGenerator()
        self.interval = interval
        self._clock = clock
        self._on_change = on_change

        self._items: List[NotificationItem] = []
        self._unread_count = 0
        self._local_reads: Dict[str, _LocalRead] = {}

        self._seq = 0
        self._applied_seq = 0
        self._inflight = 0
        self._closed = False
        self._poll_task: Optional[asyncio.Task] = None
        self._fetch_tasks: Set[asyncio.Task] = set()
        self._commit_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        user_id: str,
        settings,
        *,
        reader: DomainSnapshotReaderProtocol,
        gateway: NotificationGatewayProtocol,
        read_state: ReadStateStore,
        **kwargs,
    ) -> "PollingController":
        return cls(
            user_id,
            reader=reader,
            gateway=gateway,
            read_state=read_state,
            generator=DerivedNotificationGenerator.from_settings(settings),
            interval=timedelta(seconds=settings.poll_interval_seconds),
            **kwargs,
        )

    # -- state exposed to the interface layer ---------------------------------

    @property
    def state(self) -> FeedState:
        return FeedState(
            notifications=tuple(self._items),
            unread_count=self._unread_count,
            loading=self._inflight > 0,
        )

    @property
    def notifications(self) -> List[NotificationItem]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return self._unread_count

    @property
    def loading(self) -> bool:
        return self._inflight > 0

    @property
    def phase(self) -> ControllerPhase:
        if self._closed:
            return ControllerPhase.CLOSED
        return ControllerPhase.FETCHING if self._inflight else ControllerPhase.IDLE

    @property
    def closed(self) -> bool:
        return self._closed

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Start polling: one refresh right away, then one every interval."""
        if self._closed:
            raise RuntimeError("Cannot start a closed notification controller")
        if self._poll_task is None:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def close(self) -> None:
        """Stop the timer, cancel in-flight fetches and wait for pending dismissal commits."""
        if self._closed:
            return
        self._closed = True
        to_cancel = [t for t in [self._poll_task, *self._fetch_tasks] if t is not None]
        for task in to_cancel:
            task.cancel()
        if to_cancel:
            await asyncio.gather(*to_cancel, return_exceptions=True)
        self._poll_task = None
        if self._commit_tasks:
            await asyncio.gather(*list(self._commit_tasks), return_exceptions=True)
        logger.debug("[NOTIFICATIONS] Controller for user %s closed", self.user_id)

    async def __aenter__(self) -> "PollingController":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _poll_loop(self) -> None:
        interval = self.interval.total_seconds()
        while not self._closed:
            await self.refresh()
            await asyncio.sleep(interval)

    # -- operations ------------------------------------------------------------

    async def refresh(self) -> bool:
        """Run one aggregation cycle. Returns True if its result was applied."""
        if self._closed:
            return False

        self._seq += 1
        seq = self._seq
        self._inflight += 1
        self._notify()

        task = asyncio.create_task(
            run_aggregation_cycle(
                self.user_id,
                reader=self.reader,
                gateway=self.gateway,
                read_state=self.read_state,
                generator=self.generator,
                now=self._clock(),
            )
        )
        self._fetch_tasks.add(task)
        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if self._closed and current is not None and not current.cancelling():
                return False
            raise
        except Exception:
            logger.exception("[NOTIFICATIONS] Refresh %d failed for user %s", seq, self.user_id)
            return False
        finally:
            self._fetch_tasks.discard(task)
            self._inflight -= 1

        if self._closed:
            return False
        if seq <= self._applied_seq:
            logger.debug(
                "[NOTIFICATIONS] Discarding stale refresh %d (already applied %d) for user %s",
                seq, self._applied_seq, self.user_id,
            )
            self._notify()
            return False

        self._apply(seq, result)
        return True

    def dismiss(self, notification_id: str) -> asyncio.Task:
        """Mark one item read now; the returned task commits it to its backing."""
        if not self._closed:
            self._mark_local([notification_id])
        task = asyncio.create_task(self._commit_one(notification_id))
        self._track_commit(task)
        return task

    def dismiss_all(self) -> asyncio.Task:
        """Mark every unread item read now; the returned task commits them."""
        unread = [item for item in self._items if not item.is_read]
        if not self._closed:
            self._mark_local(item.id for item in unread)
            self._unread_count = 0
            self._notify()
        task = asyncio.create_task(self._commit_all(unread))
        self._track_commit(task)
        return task

    # -- internals -------------------------------------------------------------

    def _apply(self, seq: int, result: AggregationResult) -> None:
        self._applied_seq = seq
        for notification_id, local in list(self._local_reads.items()):
            if local.done_seq is not None and seq > local.done_seq:
                del self._local_reads[notification_id]

        items = []
        for item in result.notifications:
            local = self._local_reads.get(item.id)
            items.append(item.mark_read(local.when) if local else item)
        # Overlaid items may have turned read; unread stay first.
        self._items = items = sort_feed(items)
        self._unread_count = count_unread(items)
        self._notify()

    def _mark_local(self, notification_ids: Iterable[str]) -> None:
        now = self._clock()
        ids = set(notification_ids)
        for notification_id in ids:
            self._local_reads[notification_id] = _LocalRead(when=now)
        self._items = sort_feed(item.mark_read(now) if item.id in ids else item for item in self._items)
        self._unread_count = count_unread(self._items)
        self._notify()

    def _commit_finished(self, notification_ids: Iterable[str]) -> None:
        for notification_id in notification_ids:
            local = self._local_reads.get(notification_id)
            if local is not None:
                local.done_seq = self._seq

    async def _commit_one(self, notification_id: str) -> bool:
        try:
            return bool(await commit_dismissal(
                self.user_id, notification_id, read_state=self.read_state, gateway=self.gateway
            ))
        except Exception:
            logger.exception("[NOTIFICATIONS] Dismissal of %s failed for user %s", notification_id, self.user_id)
            return False
        finally:
            self._commit_finished([notification_id])

    async def _commit_all(self, unread: List[NotificationItem]) -> Optional[DismissAllResult]:
        try:
            return await commit_dismiss_all(
                self.user_id, unread, read_state=self.read_state, gateway=self.gateway
            )
        except Exception:
            logger.exception("[NOTIFICATIONS] Dismiss-all failed for user %s", self.user_id)
            return None
        finally:
            self._commit_finished(item.id for item in unread)

    def _track_commit(self, task: asyncio.Task) -> None:
        self._commit_tasks.add(task)
        task.add_done_callback(self._commit_tasks.discard)

    def _notify(self) -> None:
        if self._on_change is None or self._closed:
            return
        try:
            self._on_change(self.state)
        except Exception:
            logger.exception("[NOTIFICATIONS] on_change listener failed for user %s", self.user_id)
