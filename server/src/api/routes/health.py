from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health", summary="Application health probe")
async def healthcheck(request: Request) -> dict[str, object]:
    """Readiness probe reporting cache occupancy alongside the status."""
    cache = getattr(request.app.state, "cache", None)
    payload: dict[str, object] = {"status": "ok"}
    if cache is not None:
        payload["cache"] = {
            "responses": len(cache.responses),
            "geolocations": len(cache.geolocations),
            "enabled": cache.responses.enabled,
        }
    return payload
