from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List

from server.src.core.logging import get_logger

from ..config import Settings
from ..errors import UpstreamInvalidResponse, classify_failure
from ..schemas import RawNodeRecord
from .prpc import Err, PodsSource, parse_pods_payload

logger = get_logger(__name__)


class TelemetryFetcher:
    """Fetch the raw pNode list under a retry-with-backoff and timeout policy.

    Each attempt is bounded by ``timeout_seconds``. Between attempts the
    fetcher sleeps ``base_delay * 2 ** (attempt - 1)`` seconds. Results are
    all-or-nothing: either every record validates or the attempt fails.
    """

    def __init__(
        self,
        source: PodsSource,
        *,
        max_retries: int = 3,
        timeout_seconds: float = 30.0,
        base_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self.max_retries = max(1, max_retries)
        self.timeout_seconds = timeout_seconds
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, source: PodsSource) -> "TelemetryFetcher":
        return cls(
            source,
            max_retries=settings.max_retries,
            timeout_seconds=settings.fetch_timeout_seconds,
            base_delay_seconds=settings.retry_base_delay_seconds,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return self.base_delay_seconds * (2 ** (attempt - 1))

    async def _attempt(self) -> List[RawNodeRecord]:
        payload = await asyncio.wait_for(self._source.get_pods_with_stats(), timeout=self.timeout_seconds)
        result = parse_pods_payload(payload)
        if isinstance(result, Err):
            raise UpstreamInvalidResponse(f"Invalid response structure from pRPC service: {result.reason}")
        return result.records

    async def fetch(self) -> List[RawNodeRecord]:
        """Return the validated node list or raise the final typed failure.

        Failures that cannot be classified are re-raised unchanged once the
        retry budget is exhausted.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                records = await self._attempt()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                if attempt == self.max_retries:
                    logger.error(
                        "Upstream fetch failed after %d attempt(s): %s",
                        attempt,
                        str(exc) or exc.__class__.__name__,
                    )
                    typed = classify_failure(exc)
                    if typed is None or typed is exc:
                        raise
                    raise typed from exc

                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Upstream fetch attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt,
                    self.max_retries,
                    str(exc) or exc.__class__.__name__,
                    delay,
                )
                await self._sleep(delay)
                continue

            if attempt > 1:
                logger.info("Upstream fetch succeeded on attempt %d", attempt)
            return records

        # max_retries is at least 1, so the loop always returns or raises
        raise AssertionError("unreachable")
