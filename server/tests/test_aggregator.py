from __future__ import annotations

import httpx
import pytest

from conftest import FakeGeoBackend, FakePodsSource
from server.src.config import Settings
from server.src.services.aggregator import NodeSummary
from server.src.services.cache import CacheService


def _body(outcome) -> dict:
    return outcome.body.to_json_dict()


@pytest.mark.asyncio
async def test_status_active_scenario(make_pod, build_aggregator) -> None:
    pods = [make_pod(online=True), make_pod(online=True), make_pod(online=True), make_pod(online=False), make_pod(online=False)]
    aggregator = build_aggregator(FakePodsSource({"pods": pods}))

    outcome = await aggregator.handle({"status": "active"})

    body = _body(outcome)
    assert outcome.status_code == 200
    assert body["success"] is True
    assert len(body["data"]) == 3
    assert body["metadata"]["count"] == 3
    assert body["metadata"]["totalNodes"] == 5
    assert body["metadata"]["onlineNodes"] == 3
    assert body["metadata"]["cacheHit"] is False


@pytest.mark.asyncio
async def test_pagination_scenario(make_pod, build_aggregator) -> None:
    pods = [make_pod(uptime=u * 86400) for u in (3, 1, 4, 0, 2)]
    aggregator = build_aggregator(FakePodsSource({"pods": pods}))

    outcome = await aggregator.handle({"limit": "2", "offset": "3", "sortBy": "uptime", "sortOrder": "asc"})

    body = _body(outcome)
    assert [n["uptimeDays"] for n in body["data"]] == [3, 4]
    assert body["metadata"]["totalNodes"] == 5
    assert body["metadata"]["avgUptime"] == 2.0


@pytest.mark.asyncio
async def test_second_identical_query_is_served_from_cache(make_pod, build_aggregator) -> None:
    source = FakePodsSource({"pods": [make_pod(), make_pod(online=False)]})
    aggregator = build_aggregator(source)

    first = _body(await aggregator.handle({"sortBy": "pubkey", "limit": "10"}))
    second = _body(await aggregator.handle({"limit": "10", "sortBy": "pubkey"}))

    assert source.calls == 1
    assert first["metadata"]["cacheHit"] is False
    assert second["metadata"]["cacheHit"] is True
    assert first["data"] == second["data"]
    assert second["metadata"]["totalNodes"] == 2
    assert second["metadata"]["onlineNodes"] == 1


@pytest.mark.asyncio
async def test_different_queries_use_different_cache_entries(make_pod, build_aggregator) -> None:
    source = FakePodsSource({"pods": [make_pod(), make_pod(online=False)]})
    aggregator = build_aggregator(source)

    await aggregator.handle({"status": "active"})
    body = _body(await aggregator.handle({"status": "all"}))

    assert source.calls == 2
    assert len(body["data"]) == 2


@pytest.mark.asyncio
async def test_cache_disabled_always_fetches(make_pod, build_aggregator) -> None:
    source = FakePodsSource({"pods": [make_pod()]})
    aggregator = build_aggregator(source, settings=Settings(cache_enabled=False, retry_base_delay_seconds=0.0))

    await aggregator.handle({})
    body = _body(await aggregator.handle({}))

    assert source.calls == 2
    assert body["metadata"]["cacheHit"] is False


@pytest.mark.asyncio
async def test_upstream_recovers_within_retry_budget(make_pod, build_aggregator) -> None:
    source = FakePodsSource(
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
        {"pods": [make_pod()]},
    )
    outcome = await build_aggregator(source).handle({})

    assert outcome.status_code == 200
    assert _body(outcome)["success"] is True
    assert source.calls == 3


@pytest.mark.asyncio
async def test_connection_refused_maps_to_503(make_pod, build_aggregator) -> None:
    source = FakePodsSource(ConnectionRefusedError("connect ECONNREFUSED 127.0.0.1:6000"))
    aggregator = build_aggregator(source)

    outcome = await aggregator.handle({})

    body = _body(outcome)
    assert outcome.status_code == 503
    assert body["success"] is False
    assert body["error"]["code"] == "CONNECTION_FAILED"
    assert "details" not in body["error"]
    assert "data" not in body
    assert source.calls == 3
    # failures are never cached
    assert len(aggregator._cache.responses) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "outcome_value,status,code",
    [
        (httpx.ReadTimeout("timed out"), 504, "TIMEOUT"),
        ({"pods": "garbage"}, 502, "INVALID_RESPONSE"),
        (RuntimeError("kaboom"), 500, "INTERNAL_ERROR"),
    ],
)
async def test_failure_taxonomy(build_aggregator, outcome_value, status, code) -> None:
    outcome = await build_aggregator(FakePodsSource(outcome_value)).handle({})
    assert outcome.status_code == status
    assert _body(outcome)["error"]["code"] == code


@pytest.mark.asyncio
async def test_validation_error_short_circuits_before_io(build_aggregator) -> None:
    source = FakePodsSource(AssertionError("must not fetch"))
    outcome = await build_aggregator(source).handle({"limit": "5000"})

    assert outcome.status_code == 400
    assert _body(outcome)["error"] == {
        "code": "VALIDATION_ERROR",
        "message": "Limit must be a number between 1 and 1000",
    }
    assert source.calls == 0


@pytest.mark.asyncio
async def test_debug_flag_adds_error_details(build_aggregator) -> None:
    settings = Settings(debug=True, retry_base_delay_seconds=0.0)
    outcome = await build_aggregator(FakePodsSource(ConnectionRefusedError()), settings=settings).handle({})

    details = _body(outcome)["error"]["details"]
    assert set(details) == {"processingTime", "timestamp"}
    assert details["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_unreachable_geolocation_keeps_records_without_location(make_pod, build_aggregator) -> None:
    geo = FakeGeoBackend(error=httpx.ConnectError("connection refused"))
    aggregator = build_aggregator(FakePodsSource({"pods": [make_pod(), make_pod()]}), geo)

    outcome = await aggregator.handle({})

    body = _body(outcome)
    assert outcome.status_code == 200
    assert len(body["data"]) == 2
    assert all("location" not in node for node in body["data"])


@pytest.mark.asyncio
async def test_locations_are_shared_per_host(make_pod, build_aggregator) -> None:
    pods = [
        make_pod(address="1.2.3.4:9001"),
        make_pod(address="1.2.3.4:9002"),
        make_pod(address="bad-host:9001"),
    ]
    geo = FakeGeoBackend(results=[{"ip": "1.2.3.4", "lat": 50.11, "lon": 8.68, "countryCode": "DE"}])
    cache = CacheService(Settings())
    aggregator = build_aggregator(FakePodsSource({"pods": pods}), geo, cache=cache)

    body = _body(await aggregator.handle({}))

    assert geo.calls == [["1.2.3.4"]]
    assert body["data"][0]["location"] == body["data"][1]["location"]
    assert body["data"][0]["location"]["coordinates"] == [8.68, 50.11]
    assert "location" not in body["data"][2]
    assert cache.geolocations.get("1.2.3.4") is not None


@pytest.mark.asyncio
async def test_geolocation_cache_survives_response_cache(make_pod, build_aggregator) -> None:
    geo = FakeGeoBackend(results=[{"ip": "1.2.3.4", "lat": 1.0, "lon": 2.0}])
    cache = CacheService(Settings())
    aggregator = build_aggregator(FakePodsSource({"pods": [make_pod(address="1.2.3.4:9001")]}), geo, cache=cache)

    await aggregator.handle({"limit": "1"})
    cache.responses.clear()
    await aggregator.handle({"limit": "1"})

    assert geo.calls == [["1.2.3.4"]]


@pytest.mark.asyncio
async def test_empty_node_list(build_aggregator) -> None:
    body = _body(await build_aggregator(FakePodsSource({"pods": []})).handle({}))
    assert body["data"] == []
    assert body["metadata"]["totalNodes"] == 0
    assert body["metadata"]["avgUptime"] == 0.0


def test_summary_of_empty_set() -> None:
    assert NodeSummary.from_records([]) == NodeSummary(total_nodes=0, online_nodes=0, avg_uptime=0.0)

@pytest.mark.asyncio
@pytest.mark.parametrize("error", [ValueError("bad coordinate"), OSError("disk full"), TimeoutError()])
async def test_errors_after_fetch_map_to_internal_error(make_pod, build_aggregator, monkeypatch, error) -> None:
    source = FakePodsSource({"pods": [make_pod()]})
    aggregator = build_aggregator(source)

    async def broken_enrich(raw_nodes):
        raise error

    monkeypatch.setattr(aggregator, "enrich_nodes", broken_enrich)
    outcome = await aggregator.handle({})

    assert outcome.status_code == 500
    assert _body(outcome)["error"]["code"] == "INTERNAL_ERROR"
    assert source.calls == 1
