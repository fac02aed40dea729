from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from entityapi.logging import get_logger

logger = get_logger(__name__)


class LocalCache:
    """In-process TTL cache used when Redis is unavailable.

    Values are stored JSON-encoded so every read hands out a fresh copy.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def verify_connection(self) -> None:
        return None

    async def get_json(self, key: str) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            raw, expires_at = entry
            if expires_at is not None and expires_at <= now:
                self._entries.pop(key, None)
                return None
        return json.loads(raw)

    async def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        raw = json.dumps(value)
        with self._lock:
            self._entries[key] = (raw, expires_at)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def flush(self) -> int:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        return removed

    async def close(self) -> None:
        return None


class ResponseCache:
    """Best-effort key/value cache for object, list and embedding reads.

    A backend failure never fails the surrounding request: it is logged and
    the call behaves like a miss (reads) or a no-op (writes).
    """

    def __init__(self, backend: Any, *, default_ttl_seconds: int) -> None:
        self.backend = backend
        self.default_ttl_seconds = default_ttl_seconds

    async def get(self, key: str) -> Any:
        try:
            return await self.backend.get_json(key)
        except Exception as exc:
            logger.warning("response_cache_get_failed", key=key, error=str(exc))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        try:
            await self.backend.set_json(key, value, ttl)
        except Exception as exc:
            logger.warning("response_cache_set_failed", key=key, error=str(exc))

    async def delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except Exception as exc:
            logger.warning("response_cache_delete_failed", key=key, error=str(exc))

    async def flush(self) -> None:
        try:
            removed = await self.backend.flush()
            logger.info("response_cache_flushed", removed=removed)
        except Exception as exc:
            logger.warning("response_cache_flush_failed", error=str(exc))
