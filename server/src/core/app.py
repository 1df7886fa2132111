from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from server.src.core.logging import get_logger

from ..api.routes import geolocate, health, pnodes
from ..config import Settings
from ..services.aggregator import NodeAggregator
from ..services.cache import CacheService
from ..services.fetcher import TelemetryFetcher
from ..services.geolocation import GeolocationEnricher, GeolocationResolver
from ..services.ip_api import IpApiGeolocator
from ..services.prpc import PrpcClient

logger = get_logger(__name__)


class RequestFinishMiddleware(BaseHTTPMiddleware):
    """Log a one-line summary per request on the ``api.call`` logger at DEBUG."""

    async def dispatch(self, request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000.0

        access_logger = logging.getLogger("api.call")
        if access_logger.isEnabledFor(logging.DEBUG):
            client = request.client
            client_addr = client.host if client else "-"

            full_path = request.url.path or "/"
            if request.url.query:
                full_path = f"{full_path}?{request.url.query}"

            access_logger.debug(
                "Finished %s %s %s %s in %.3fms",
                client_addr,
                request.method,
                full_path,
                response.status_code,
                duration_ms,
            )
        return response


def create_app(settings: Settings | None = None) -> FastAPI:
    """Construct the FastAPI application with its services and lifespan hooks.

    Services are built eagerly and exposed on ``app.state`` so request
    handlers work even when lifespan hooks are bypassed (e.g. ASGI transport
    in tests). Outbound HTTP clients are created lazily and closed on
    shutdown.
    """
    settings = settings or Settings()

    cache = CacheService(settings)
    prpc_client = PrpcClient.from_settings(settings)
    resolver = GeolocationResolver.from_settings(settings)
    ip_api = IpApiGeolocator.from_settings(settings)
    aggregator = NodeAggregator(
        TelemetryFetcher.from_settings(settings, prpc_client),
        GeolocationEnricher(resolver, cache.geolocations),
        cache,
        debug=settings.debug,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Serving pNode telemetry from %s (cache %s, ttl=%ss)",
            settings.prpc_url,
            "enabled" if settings.cache_enabled else "disabled",
            settings.cache_ttl_seconds,
        )
        try:
            yield
        finally:
            await prpc_client.aclose()
            await resolver.aclose()
            await ip_api.aclose()
            cache.clear()
            logger.info("Stopped pNode telemetry service")

    app = FastAPI(
        title="pNode Telemetry",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.add_middleware(RequestFinishMiddleware)

    app.state.settings = settings
    app.state.cache = cache
    app.state.aggregator = aggregator
    app.state.ip_api = ip_api

    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health.router)
    app.include_router(pnodes.router)
    app.include_router(geolocate.router)

    return app
