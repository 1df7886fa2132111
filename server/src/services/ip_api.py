from __future__ import annotations

from typing import Any, Iterable, List, Optional

import httpx

from server.src.core.logging import get_logger

from ..config import Settings
from ..schemas import GeoResult
from .geolocation import is_valid_ipv4

logger = get_logger(__name__)

IP_API_FIELDS = "status,query,lat,lon,city,country,countryCode"


def _normalize_country_code(code: Any) -> Optional[str]:
    if not isinstance(code, str):
        return None
    return code.strip().upper() or None


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class IpApiGeolocator:
    """Resolve IPv4 addresses through the ip-api.com batch endpoint.

    Addresses are sent in batches of ``batch_size``. A failed batch is
    logged and skipped so the remaining batches still resolve.
    """

    def __init__(
        self,
        url: str = "http://ip-api.com/batch",
        *,
        batch_size: int = 100,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._batch_size = max(1, batch_size)
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> "IpApiGeolocator":
        return cls(
            settings.ip_api_url,
            batch_size=settings.ip_api_batch_size,
            client=client,
            timeout=settings.geolocation_timeout_seconds,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def normalize_ips(ips: Iterable[Any]) -> List[str]:
        """De-duplicate and keep only syntactically valid IPv4 strings, in order."""
        seen: dict[str, None] = {}
        for value in ips:
            if not isinstance(value, str):
                continue
            candidate = value.strip()
            if candidate and is_valid_ipv4(candidate):
                seen.setdefault(candidate, None)
        return list(seen)

    async def lookup(self, ips: Iterable[Any]) -> List[GeoResult]:
        targets = self.normalize_ips(ips)
        if not targets:
            return []

        client = await self._ensure_client()
        results: List[GeoResult] = []
        for start in range(0, len(targets), self._batch_size):
            batch = targets[start : start + self._batch_size]
            try:
                response = await client.post(self._url, params={"fields": IP_API_FIELDS}, json=batch)
                response.raise_for_status()
                items = response.json()
            except httpx.HTTPError as exc:
                logger.warning("ip-api batch request failed for %d address(es): %s", len(batch), exc)
                continue
            except ValueError:
                logger.warning("ip-api batch response was not valid JSON")
                continue

            if not isinstance(items, list):
                logger.warning("ip-api batch response was not a JSON array; skipping")
                continue

            for item in items:
                if not isinstance(item, dict) or item.get("status") != "success":
                    continue
                lat, lon = item.get("lat"), item.get("lon")
                if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
                    continue
                results.append(
                    GeoResult(
                        ip=str(item.get("query")),
                        lat=float(lat),
                        lon=float(lon),
                        city=_optional_str(item.get("city")),
                        country=_optional_str(item.get("country")),
                        country_code=_normalize_country_code(item.get("countryCode")),
                    )
                )

        logger.debug("ip-api resolved %d of %d address(es)", len(results), len(targets))
        return results
