from __future__ import annotations

import math
import re
from typing import Optional

from ..core.time import iso_from_unix
from ..schemas import EnrichedNodeRecord, GeoLocation, RawNodeRecord

ONLINE_WINDOW_MS = 5 * 60 * 1000
BYTES_PER_GIB = 1024 ** 3
BYTES_PER_MIB = 1024 ** 2
VERSION_PREFIX = re.compile(r"^0\.8\.0-trynet\.")
VERSION_DISPLAY_LENGTH = 20

ONLINE_BONUS = 30
PUBLIC_BONUS = 10
MAX_UPTIME_POINTS = 40
MAX_STORAGE_POINTS = 20


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round2(value: float) -> float:
    """Round to two decimals with halves rounded up."""
    return math.floor(value * 100 + 0.5) / 100


def is_online(last_seen_timestamp: float, now_ms: float) -> bool:
    return (now_ms - last_seen_timestamp * 1000) < ONLINE_WINDOW_MS


def version_display_name(version: str) -> str:
    return VERSION_PREFIX.sub("v", version, count=1)[:VERSION_DISPLAY_LENGTH]


def health_score(*, online: bool, public: bool, uptime_days: float, storage_usage_ratio: float) -> int:
    """Composite 0-100 score from liveness, visibility, uptime and free space.

    ``uptime_days`` may be fractional. Each term is clamped to ``[0, cap]``
    before summation and the rounded total is clamped to 100 again.
    """
    online_points = ONLINE_BONUS if online else 0
    public_points = PUBLIC_BONUS if public else 0
    uptime_points = max(0, min(MAX_UPTIME_POINTS, uptime_days))
    storage_points = max(0.0, min(MAX_STORAGE_POINTS, (1 - storage_usage_ratio) * MAX_STORAGE_POINTS))
    return min(100, round_half_up(online_points + public_points + uptime_points + storage_points))


def enrich(raw: RawNodeRecord, now_ms: float, location: Optional[GeoLocation] = None) -> EnrichedNodeRecord:
    """Derive the computed metrics for ``raw`` as of ``now_ms``."""
    online = is_online(raw.last_seen_timestamp, now_ms)
    uptime_days = raw.uptime // 86400

    return EnrichedNodeRecord(
        **raw.model_dump(),
        is_online=online,
        last_seen_date=iso_from_unix(raw.last_seen_timestamp),
        storage_utilization=f"{raw.storage_usage_percent * 100:.2f}%",
        uptime_hours=raw.uptime // 3600,
        uptime_days=uptime_days,
        storage_capacity_gb=round2(raw.storage_committed / BYTES_PER_GIB),
        storage_used_mb=round2(raw.storage_used / BYTES_PER_MIB),
        version_display_name=version_display_name(raw.version),
        health_score=health_score(
            online=online,
            public=raw.is_public,
            uptime_days=raw.uptime / 86400,
            storage_usage_ratio=raw.storage_usage_percent,
        ),
        location=location,
    )
