from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, HTTPException, Query, Request, status

from ...core.logging import get_logger
from ...schemas import GeolocateRequest, GeolocateResponse
from ...services.ip_api import IpApiGeolocator

router = APIRouter(prefix="/api/geolocate", tags=["geolocation"])
logger = get_logger(__name__)


def _get_ip_api(request: Request) -> IpApiGeolocator:
    svc = getattr(request.app.state, "ip_api", None)
    if isinstance(svc, IpApiGeolocator):
        return svc
    logger.error("IpApiGeolocator not configured on application state")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Geolocator unavailable")


async def _geolocate(service: IpApiGeolocator, ips: List[Any]) -> GeolocateResponse:
    # Always answer 200 so callers can continue without locations.
    try:
        results = await service.lookup(ips)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Geolocation lookup failed")
        return GeolocateResponse(results=[], error=str(exc) or "Geolocation failed")
    return GeolocateResponse(results=results)


def _dump(response: GeolocateResponse) -> dict:
    return response.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.post("", summary="Resolve a batch of IPv4 addresses")
async def geolocate_batch(payload: GeolocateRequest, request: Request) -> dict:
    """Resolve ``{"ips": [...]}`` to ``{"results": [{ip, lat, lon, city?, country?, countryCode?}]}``."""
    return _dump(await _geolocate(_get_ip_api(request), payload.ips))


@router.get("", summary="Resolve IPv4 addresses given as query parameters")
async def geolocate_query(request: Request, ips: List[str] = Query(default=[])) -> dict:
    """Accept ``?ips=1.1.1.1,8.8.8.8`` or repeated ``ips`` parameters."""
    values = [part.strip() for value in ips for part in value.split(",") if part.strip()]
    return _dump(await _geolocate(_get_ip_api(request), values))
