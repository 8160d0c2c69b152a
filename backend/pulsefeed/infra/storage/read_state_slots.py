"""Key-value slots that persist read-state records.

Each slot stores one serialized record per key and reports problems as
ReadStateStorageError / ReadStateQuotaExceeded so the store can recover.
"""
import asyncio
import errno
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import redis.asyncio as redis
from redis.exceptions import RedisError, ResponseError

from pulsefeed.domain.common.errors import ReadStateQuotaExceeded, ReadStateStorageError

logger = logging.getLogger(__name__)

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


def _check_size(key: str, value: str, max_bytes: int) -> None:
    if max_bytes and len(value.encode("utf-8")) > max_bytes:
        raise ReadStateQuotaExceeded(key, f"record of {len(value)} chars exceeds {max_bytes} bytes")


class MemoryReadStateSlot:
    """Process-local slot (embedding, tests)."""

    def __init__(self, max_bytes: int = 0):
        self.max_bytes = max_bytes
        self._data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        _check_size(key, value, self.max_bytes)
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileReadStateSlot:
    """One JSON file per key under `directory`; writes go through a temp file and os.replace."""

    def __init__(self, directory: str, max_bytes: int = 0):
        self.directory = Path(directory)
        self.max_bytes = max_bytes

    def path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        _check_size(key, value, self.max_bytes)
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    def _read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            # Undecodable bytes are corrupt data, not an I/O problem
            logger.warning("[READ-STATE] %s is not valid UTF-8: %s", path, e)
            return ""
        except OSError as e:
            raise ReadStateStorageError(key, f"read {path}: {e}") from e

    def _write(self, key: str, value: str) -> None:
        path = self.path_for(key)
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            if e.errno in _QUOTA_ERRNOS:
                raise ReadStateQuotaExceeded(key, f"write {path}: {e}") from e
            raise ReadStateStorageError(key, f"write {path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.debug("[READ-STATE] Could not remove temp file %s", tmp_name)

    def _remove(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise ReadStateStorageError(key, f"delete {path}: {e}") from e


class RedisReadStateSlot:
    """Slot backed by Redis string keys."""

    def __init__(self, client: redis.Redis, *, ttl_seconds: Optional[int] = None, max_bytes: int = 0):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.max_bytes = max_bytes

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisReadStateSlot":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise ReadStateStorageError(key, f"redis GET: {e}") from e

    async def set(self, key: str, value: str) -> None:
        _check_size(key, value, self.max_bytes)
        try:
            await self.client.set(key, value, ex=self.ttl_seconds)
        except ResponseError as e:
            if str(e).startswith("OOM"):
                raise ReadStateQuotaExceeded(key, f"redis SET: {e}") from e
            raise ReadStateStorageError(key, f"redis SET: {e}") from e
        except RedisError as e:
            raise ReadStateStorageError(key, f"redis SET: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise ReadStateStorageError(key, f"redis DEL: {e}") from e

    async def close(self) -> None:
        await self.client.aclose()


def build_read_state_slot(settings):
    """Slot for the configured read_state_backend."""
    backend = settings.read_state_backend
    if backend == "redis":
        logger.info("[READ-STATE] Using redis slot at %s", settings.redis_url)
        return RedisReadStateSlot.from_url(
            settings.redis_url,
            ttl_seconds=settings.read_state_retention_days * 86400,
            max_bytes=settings.read_state_max_bytes,
        )
    if backend == "file":
        logger.info("[READ-STATE] Using file slot under %s", settings.read_state_dir)
        return FileReadStateSlot(settings.read_state_dir, max_bytes=settings.read_state_max_bytes)
    if backend == "memory":
        logger.info("[READ-STATE] Using in-memory slot")
        return MemoryReadStateSlot(max_bytes=settings.read_state_max_bytes)
    raise ValueError(f"Unknown read_state_backend: {backend!r}")
