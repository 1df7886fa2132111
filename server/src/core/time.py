from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> float:
    """Return the current wall-clock time in milliseconds since the epoch."""
    return time.time() * 1000.0


def iso_from_unix(seconds: float) -> str:
    """Format a Unix timestamp as ISO-8601 UTC with millisecond precision."""
    value = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return iso_from_unix(time.time())
