from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from server.src.core.logging import get_logger

from ..core.time import now_ms, utc_now_iso
from ..errors import InternalError, TelemetryError
from ..schemas import (
    EnrichedNodeRecord,
    ErrorInfo,
    GeoLocation,
    NodesResponse,
    RawNodeRecord,
    ResponseMetadata,
)
from .cache import CacheService, response_cache_key
from .fetcher import TelemetryFetcher
from .geolocation import GeolocationEnricher, extract_ip
from .metrics import enrich, round2
from .query import process, validate_query_params

logger = get_logger(__name__)


@dataclass(frozen=True)
class NodeSummary:
    """Aggregate statistics over the full enriched node set."""

    total_nodes: int
    online_nodes: int
    avg_uptime: float

    @classmethod
    def from_records(cls, records: List[EnrichedNodeRecord]) -> "NodeSummary":
        total = len(records)
        online = sum(1 for record in records if record.is_online)
        avg = sum(record.uptime_days for record in records) / total if total else 0.0
        return cls(total_nodes=total, online_nodes=online, avg_uptime=round2(avg))


@dataclass(frozen=True)
class CachedResult:
    """Snapshot stored in the response cache: the processed page plus summary."""

    records: Tuple[EnrichedNodeRecord, ...]
    summary: NodeSummary


@dataclass(frozen=True)
class AggregationOutcome:
    status_code: int
    body: NodesResponse


class NodeAggregator:
    """Run one pNode listing request from validation to response envelope.

    Validate, look up the response cache, and on a miss fetch, enrich,
    geolocate, process and store. Failures are mapped onto the error taxonomy
    and never cached.
    """

    def __init__(
        self,
        fetcher: TelemetryFetcher,
        geolocator: GeolocationEnricher,
        cache: CacheService,
        *,
        debug: bool = False,
        clock_ms: Callable[[], float] = now_ms,
    ) -> None:
        self._fetcher = fetcher
        self._geolocator = geolocator
        self._cache = cache
        self._debug = debug
        self._clock_ms = clock_ms

    async def handle(self, query: Mapping[str, Any]) -> AggregationOutcome:
        started = time.perf_counter()
        try:
            return await self._handle(query)
        except TelemetryError as exc:
            return self._failure(exc, started)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error while aggregating pNode data")
            return self._failure(InternalError(str(exc) or "An unexpected error occurred"), started)

    async def _handle(self, query: Mapping[str, Any]) -> AggregationOutcome:
        started = time.perf_counter()
        params = validate_query_params(query)
        cache_key = response_cache_key(params)

        cached = self._cache.responses.get(cache_key)
        if isinstance(cached, CachedResult):
            logger.debug("Cache hit for %s", cache_key)
            return self._success(cached, cache_hit=True)

        raw_nodes = await self._fetcher.fetch()
        records = await self.enrich_nodes(raw_nodes)
        summary = NodeSummary.from_records(records)
        page = process(records, params)

        result = CachedResult(records=tuple(page), summary=summary)
        self._cache.responses.set(cache_key, result)

        logger.info(
            "pNode data fetched in %.0fms: %d node(s), %d online, %d returned",
            (time.perf_counter() - started) * 1000.0,
            summary.total_nodes,
            summary.online_nodes,
            len(page),
        )
        return self._success(result, cache_hit=False)

    async def enrich_nodes(self, raw_nodes: List[RawNodeRecord]) -> List[EnrichedNodeRecord]:
        """Compute metrics and attach resolved locations for every raw node."""
        ips: Dict[str, Optional[str]] = {}
        for node in raw_nodes:
            ips[node.address] = extract_ip(node.address)
        unique_ips = [ip for ip in dict.fromkeys(ips.values()) if ip]

        locations: Dict[str, GeoLocation] = {}
        if unique_ips:
            locations = await self._geolocator.resolve(unique_ips)

        now = self._clock_ms()
        enriched: List[EnrichedNodeRecord] = []
        for node in raw_nodes:
            ip = ips.get(node.address)
            enriched.append(enrich(node, now, locations.get(ip) if ip else None))
        return enriched

    def _success(self, result: CachedResult, *, cache_hit: bool) -> AggregationOutcome:
        data = list(result.records)
        body = NodesResponse(
            success=True,
            data=data,
            metadata=ResponseMetadata(
                count=len(data),
                timestamp=utc_now_iso(),
                cache_hit=cache_hit,
                total_nodes=result.summary.total_nodes,
                online_nodes=result.summary.online_nodes,
                avg_uptime=result.summary.avg_uptime,
            ),
        )
        return AggregationOutcome(status_code=200, body=body)

    def _failure(self, exc: TelemetryError, started: float) -> AggregationOutcome:
        processing_ms = round((time.perf_counter() - started) * 1000.0)
        if exc.status_code >= 500:
            logger.error("pNode API error %s after %dms: %s", exc.code, processing_ms, exc.message)
        else:
            logger.info("Rejected pNode query: %s", exc.message)

        details = None
        if self._debug:
            details = {"processingTime": processing_ms, "timestamp": utc_now_iso()}
        body = NodesResponse(
            success=False,
            error=ErrorInfo(code=exc.code, message=exc.message, details=details),
        )
        return AggregationOutcome(status_code=exc.status_code, body=body)
