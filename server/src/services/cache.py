from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

from server.src.core.logging import get_logger

from ..config import Settings
from ..schemas import GeoLocation, QueryParams

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Immutable cached value together with its creation time (epoch seconds)."""

    payload: T
    timestamp: float


class TTLCache(Generic[T]):
    """Thread-safe key/value store whose entries expire after ``ttl_seconds``.

    Expired entries are evicted lazily when looked up. A disabled cache
    reports every key as absent and ignores writes.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.enabled = enabled
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._store: Dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> Optional[T]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() - entry.timestamp > self.ttl_seconds:
                del self._store[key]
                logger.debug("Evicted stale %s entry %s", self.name, key)
                return None
            return entry.payload

    def set(self, key: str, value: T) -> None:
        if not self.enabled:
            return
        entry = CacheEntry(payload=value, timestamp=self._clock())
        with self._lock:
            self._store[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class CacheService:
    """Process-wide caches shared by every request.

    Created once by the application factory and injected into the services
    that need it; lives until the application shuts down.
    """

    def __init__(self, settings: Settings, *, clock: Callable[[], float] = time.time) -> None:
        self.responses: TTLCache[object] = TTLCache(
            settings.cache_ttl_seconds,
            enabled=settings.cache_enabled,
            clock=clock,
            name="response",
        )
        self.geolocations: TTLCache[GeoLocation] = TTLCache(
            settings.geo_cache_ttl_seconds,
            clock=clock,
            name="geolocation",
        )

    def clear(self) -> None:
        self.responses.clear()
        self.geolocations.clear()


def response_cache_key(params: QueryParams) -> str:
    """Return the canonical response-cache key for validated query parameters.

    Parameters are serialized with sorted keys and compact separators so
    requests that differ only in parameter order or formatting share a key.
    """
    values = params.model_dump(by_alias=True, exclude_none=True)
    return "pnodes:" + json.dumps(values, sort_keys=True, separators=(",", ":"))
