from __future__ import annotations

import os
from typing import Any, Callable, Dict, List

import pytest

from server.src.config import Settings
from server.src.services.aggregator import NodeAggregator
from server.src.services.cache import CacheService
from server.src.services.fetcher import TelemetryFetcher
from server.src.services.geolocation import GeolocationEnricher

NOW_S = 1_700_000_000
NOW_MS = NOW_S * 1000.0


class FakePodsSource:
    """Upstream stand-in that replays a scripted sequence of outcomes.

    Each outcome is either a payload to return or an exception to raise;
    the last outcome repeats once the script is exhausted.
    """

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def get_pods_with_stats(self) -> Any:
        index = min(self.calls, len(self.outcomes) - 1)
        self.calls += 1
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeGeoBackend:
    def __init__(self, results: List[Dict[str, Any]] | None = None, error: BaseException | None = None) -> None:
        self.results = results or []
        self.error = error
        self.calls: List[List[str]] = []

    async def lookup(self, ips: List[str]) -> List[Dict[str, Any]]:
        self.calls.append(list(ips))
        if self.error is not None:
            raise self.error
        wanted = set(ips)
        return [item for item in self.results if item.get("ip") in wanted]


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer PNODES_* variables from leaking into Settings()."""
    for key in list(os.environ):
        if key.startswith("PNODES_"):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def settings() -> Settings:
    return Settings(retry_base_delay_seconds=0.0, fetch_timeout_ms=1000, cors_allow_origins=[])


@pytest.fixture
def make_pod() -> Callable[..., Dict[str, Any]]:
    counter = {"n": 0}

    def _make(online: bool = True, **overrides: Any) -> Dict[str, Any]:
        counter["n"] += 1
        n = counter["n"]
        pod = {
            "address": f"10.0.0.{n}:9001",
            "pubkey": f"Pubkey{n:03d}",
            "is_public": True,
            "last_seen_timestamp": NOW_S - 60 if online else NOW_S - 3600,
            "rpc_port": 6000,
            "storage_committed": 100 * 1024 ** 3,
            "storage_used": 512 * 1024 ** 2,
            "storage_usage_percent": 0.25,
            "uptime": 10 * 86400,
            "version": "0.8.0-trynet.20250101",
        }
        pod.update(overrides)
        return pod

    return _make


@pytest.fixture
def build_aggregator(settings: Settings) -> Callable[..., NodeAggregator]:
    """Return a factory wiring an aggregator around fake collaborators."""

    def _build(source: FakePodsSource, geo: FakeGeoBackend | None = None, **kwargs: Any) -> NodeAggregator:
        cfg = kwargs.pop("settings", settings)
        cache = kwargs.pop("cache", None) or CacheService(cfg)
        fetcher = TelemetryFetcher(
            source,
            max_retries=cfg.max_retries,
            timeout_seconds=cfg.fetch_timeout_seconds,
            base_delay_seconds=cfg.retry_base_delay_seconds,
            sleep=no_sleep,
        )
        enricher = GeolocationEnricher(geo or FakeGeoBackend(), cache.geolocations)
        return NodeAggregator(fetcher, enricher, cache, debug=cfg.debug, clock_ms=lambda: NOW_MS, **kwargs)

    return _build
