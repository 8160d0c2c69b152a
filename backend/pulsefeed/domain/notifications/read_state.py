"""Read-state store: which derived (ephemeral) notifications the user has dismissed.

Derived notifications have no row in the database, so their dismissal is kept in a
per-user local slot instead. The record is bounded two ways:

* it is dropped entirely once it has not been written for `retention`;
* it keeps at most `max_ids` ids, discarding the oldest first.

If the slot reports that it is full, the record is cut down to `quota_fallback_ids`
and written once more. Unreadable data is treated as an empty record and the slot
is cleared. None of these conditions is raised to the caller.
"""
import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from pulsefeed.domain.common.errors import ReadStateQuotaExceeded, ReadStateStorageError
from pulsefeed.domain.common.types import to_epoch_ms, utcnow
from pulsefeed.domain.notifications.models import ReadStateRecord
from pulsefeed.domain.notifications.repositories import ReadStateSlotProtocol

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "pulsefeed:read-notifications"
DEFAULT_RETENTION = timedelta(days=30)
DEFAULT_MAX_IDS = 1000
DEFAULT_QUOTA_FALLBACK_IDS = 500


def read_state_key(user_id: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Slot key for one user's record."""
    return f"{prefix}:{user_id}"


class CorruptReadState(ValueError):
    """Stored value is not a valid read-state record."""


def parse_record(raw: str) -> ReadStateRecord:
    """Deserialize a stored record, raising CorruptReadState if the shape is wrong."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise CorruptReadState(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CorruptReadState(f"expected an object, got {type(data).__name__}")
    ids = data.get("ids")
    last_updated = data.get("lastUpdated")
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise CorruptReadState("ids must be a list of strings")
    if isinstance(last_updated, bool) or not isinstance(last_updated, (int, float)):
        raise CorruptReadState("lastUpdated must be epoch millis")
    # Duplicates can only come from outside writers; keep the most recent position.
    deduped = list(dict.fromkeys(reversed(ids)))
    deduped.reverse()
    return ReadStateRecord(ids=deduped, last_updated=int(last_updated))


class ReadStateStore:
    """Bounded, time-decayed set of dismissed ephemeral notification ids for one user."""

    def __init__(
        self,
        slot: ReadStateSlotProtocol,
        user_id: str,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        retention: timedelta = DEFAULT_RETENTION,
        max_ids: int = DEFAULT_MAX_IDS,
        quota_fallback_ids: int = DEFAULT_QUOTA_FALLBACK_IDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.slot = slot
        self.user_id = user_id
        self.key = read_state_key(user_id, key_prefix)
        self.retention = retention
        self.max_ids = max_ids
        self.quota_fallback_ids = min(quota_fallback_ids, max_ids)
        self._clock = clock
        self._record = ReadStateRecord()
        self._index: set[str] = set()
        self._lock = asyncio.Lock()
        self._loaded = False

    @classmethod
    def from_settings(cls, slot: ReadStateSlotProtocol, user_id: str, settings, **kwargs) -> "ReadStateStore":
        return cls(
            slot,
            user_id,
            key_prefix=settings.read_state_key_prefix,
            retention=timedelta(days=settings.read_state_retention_days),
            max_ids=settings.read_state_max_ids,
            quota_fallback_ids=settings.read_state_quota_fallback_ids,
            **kwargs,
        )

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def dismissed_ids(self) -> tuple[str, ...]:
        """Dismissed ids, oldest first."""
        return tuple(self._record.ids)

    @property
    def last_updated(self) -> int:
        return self._record.last_updated

    def is_dismissed(self, notification_id: str) -> bool:
        return notification_id in self._index

    async def load(self) -> None:
        """(Re)read the record from the slot, applying eviction."""
        async with self._lock:
            record = await self._read()
            self._apply(record if record is not None else ReadStateRecord())
            self._loaded = True

    async def mark_dismissed(self, notification_id: str) -> None:
        await self.mark_all_dismissed([notification_id])

    async def mark_all_dismissed(self, notification_ids: Iterable[str]) -> None:
        """Add ids as the most recent entries and persist, as one read-modify-write."""
        new_ids = [i for i in dict.fromkeys(notification_ids) if i]
        if not new_ids:
            return
        async with self._lock:
            stored = await self._read()
            base = stored if stored is not None else ReadStateRecord(
                ids=list(self._record.ids), last_updated=self._record.last_updated
            )
            ids = list(base.ids)
            if not self._is_stale(self._record):
                # Ids dismissed in this process that never reached the slot are kept as the oldest.
                known = set(ids)
                ids = [i for i in self._record.ids if i not in known] + ids

            incoming = set(new_ids)
            ids = [i for i in ids if i not in incoming]
            ids.extend(new_ids)
            record = ReadStateRecord(ids=self._trim(ids, self.max_ids), last_updated=self._now_ms())
            record = await self._save(record)
            self._apply(record)
            self._loaded = True

    def _now_ms(self) -> int:
        return to_epoch_ms(self._clock())

    @staticmethod
    def _trim(ids: list[str], limit: int) -> list[str]:
        return ids[-limit:] if len(ids) > limit else ids

    def _is_stale(self, record: ReadStateRecord) -> bool:
        return self._now_ms() - record.last_updated > self.retention.total_seconds() * 1000

    def _apply(self, record: ReadStateRecord) -> None:
        self._record = record
        self._index = set(record.ids)

    async def _read(self) -> Optional[ReadStateRecord]:
        """Stored record after eviction; None if the slot itself could not be read."""
        try:
            raw = await self.slot.get(self.key)
        except ReadStateStorageError as e:
            logger.warning("[READ-STATE] Could not read %s, using in-memory state: %s", self.key, e)
            return None
        if raw is None:
            return ReadStateRecord()

        try:
            record = parse_record(raw)
        except CorruptReadState as e:
            logger.warning("[READ-STATE] Discarding corrupt record %s: %s", self.key, e)
            await self._clear()
            return ReadStateRecord()

        if self._is_stale(record):
            logger.info(
                "[READ-STATE] Record %s is older than %s days, discarding %d ids",
                self.key, self.retention.days, len(record.ids),
            )
            await self._clear()
            return ReadStateRecord()

        if len(record.ids) > self.max_ids:
            logger.info("[READ-STATE] Trimming %s from %d to %d ids", self.key, len(record.ids), self.max_ids)
            record.ids = self._trim(record.ids, self.max_ids)
        return record

    async def _save(self, record: ReadStateRecord) -> ReadStateRecord:
        try:
            await self.slot.set(self.key, json.dumps(record.to_payload()))
            return record
        except ReadStateQuotaExceeded:
            logger.warning(
                "[READ-STATE] Storage full for %s, truncating to %d ids",
                self.key, self.quota_fallback_ids,
            )
        except ReadStateStorageError as e:
            logger.warning("[READ-STATE] Could not persist %s, keeping it in memory: %s", self.key, e)
            return record

        record = ReadStateRecord(
            ids=self._trim(record.ids, self.quota_fallback_ids),
            last_updated=record.last_updated,
        )
        try:
            await self.slot.set(self.key, json.dumps(record.to_payload()))
        except ReadStateStorageError as e:
            logger.error("[READ-STATE] Write failed again after truncation for %s: %s", self.key, e)
        return record

    async def _clear(self) -> None:
        try:
            await self.slot.delete(self.key)
        except ReadStateStorageError as e:
            logger.warning("[READ-STATE] Could not clear %s: %s", self.key, e)
