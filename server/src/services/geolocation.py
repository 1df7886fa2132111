from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from server.src.core.logging import get_logger

from ..config import Settings
from ..schemas import GeoLocation, GeoResult
from .cache import TTLCache

logger = get_logger(__name__)

_IPV4_PATTERN = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")


def is_valid_ipv4(value: str) -> bool:
    if not _IPV4_PATTERN.match(value):
        return False
    return all(0 <= int(octet) <= 255 for octet in value.split("."))


def extract_ip(address: str) -> Optional[str]:
    """Return the IPv4 host of a ``host[:port]`` address, or None when invalid."""
    if not isinstance(address, str):
        return None
    host = address.split(":", 1)[0].strip()
    if is_valid_ipv4(host):
        return host
    return None


class GeolocationBackend(Protocol):
    async def lookup(self, ips: List[str]) -> List[Dict[str, Any]]:  # pragma: no cover - protocol
        ...


class GeolocationResolver:
    """HTTP client for the batch geolocation collaborator.

    Sends ``{"ips": [...]}`` and expects ``{"results": [{ip, lat, lon, ...}]}``.
    """

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> "GeolocationResolver":
        return cls(
            settings.resolved_geolocation_url,
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

    async def lookup(self, ips: List[str]) -> List[Dict[str, Any]]:
        client = await self._ensure_client()
        response = await client.post(self._url, json={"ips": ips})
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("geolocation response was not a JSON object")
        results = payload.get("results")
        if not isinstance(results, list):
            raise ValueError("geolocation response had no 'results' list")
        return results


class GeolocationEnricher:
    """Resolve addresses to locations, consulting the geolocation cache first.

    Resolution is best-effort: resolver failures are logged and only the
    cached subset is returned.
    """

    def __init__(self, backend: GeolocationBackend, cache: TTLCache[GeoLocation]) -> None:
        self._backend = backend
        self._cache = cache

    async def resolve(self, addresses: Iterable[str]) -> Dict[str, GeoLocation]:
        locations: Dict[str, GeoLocation] = {}
        uncached: List[str] = []
        for ip in dict.fromkeys(addresses):
            cached = self._cache.get(ip)
            if cached is not None:
                locations[ip] = cached
            else:
                uncached.append(ip)

        if not uncached:
            if locations:
                logger.debug("Geolocation: all %d address(es) served from cache", len(locations))
            return locations

        logger.debug("Geolocation: %d from cache, resolving %d address(es)", len(locations), len(uncached))

        try:
            results = await self._backend.lookup(uncached)
        except httpx.HTTPError as exc:
            logger.warning("Geolocation lookup failed: %s", exc)
            return locations
        except ValueError as exc:
            logger.warning("Geolocation lookup returned an invalid payload: %s", exc)
            return locations
        except Exception:  # noqa: BLE001
            logger.exception("Unexpected error during geolocation lookup")
            return locations

        resolved = 0
        for item in results:
            try:
                result = GeoResult.model_validate(item)
            except PydanticValidationError:
                logger.debug("Skipping malformed geolocation result: %r", item)
                continue
            location = GeoLocation(
                latitude=result.lat,
                longitude=result.lon,
                city=result.city,
                country=result.country,
                country_code=result.country_code,
            )
            locations[result.ip] = location
            self._cache.set(result.ip, location)
            resolved += 1

        logger.debug("Geolocation: resolved %d of %d uncached address(es)", resolved, len(uncached))
        return locations
