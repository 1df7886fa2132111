from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import FakePodsSource
from server.src.errors import (
    UpstreamConnectionFailed,
    UpstreamInvalidResponse,
    UpstreamTimeout,
    classify_failure,
)
from server.src.services.fetcher import TelemetryFetcher


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class SlowSource:
    def __init__(self) -> None:
        self.calls = 0

    async def get_pods_with_stats(self):
        self.calls += 1
        await asyncio.sleep(10)
        return {"pods": []}


def _fetcher(source, sleep=None, **kwargs) -> TelemetryFetcher:
    return TelemetryFetcher(source, sleep=sleep or RecordingSleep(), **kwargs)


@pytest.mark.asyncio
async def test_fetch_returns_validated_records(make_pod) -> None:
    source = FakePodsSource({"pods": [make_pod(), make_pod(online=False)]})
    records = await _fetcher(source).fetch()
    assert len(records) == 2
    assert source.calls == 1


@pytest.mark.asyncio
async def test_fetch_recovers_after_two_failures(make_pod) -> None:
    sleep = RecordingSleep()
    source = FakePodsSource(
        ConnectionRefusedError("connect ECONNREFUSED"),
        httpx.ConnectError("connection refused"),
        {"pods": [make_pod()]},
    )

    records = await _fetcher(source, sleep, max_retries=3, base_delay_seconds=1.0).fetch()

    assert len(records) == 1
    assert source.calls == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_connection_failures_exhaust_retries() -> None:
    sleep = RecordingSleep()
    source = FakePodsSource(ConnectionRefusedError("connect ECONNREFUSED 127.0.0.1:6000"))

    with pytest.raises(UpstreamConnectionFailed):
        await _fetcher(source, sleep, max_retries=3, base_delay_seconds=0.5).fetch()

    assert source.calls == 3
    # no sleep after the final attempt
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_each_attempt_is_bounded_by_timeout() -> None:
    source = SlowSource()
    with pytest.raises(UpstreamTimeout):
        await _fetcher(source, max_retries=2, timeout_seconds=0.01).fetch()
    assert source.calls == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [None, [], {"nodes": []}, {"pods": "nope"}, {"pods": [{"address": "1.2.3.4:9001"}]}],
)
async def test_malformed_payload_is_invalid_response_and_retried(payload) -> None:
    source = FakePodsSource(payload)
    with pytest.raises(UpstreamInvalidResponse):
        await _fetcher(source, max_retries=3).fetch()
    assert source.calls == 3


@pytest.mark.asyncio
async def test_invalid_payload_then_valid_payload_succeeds(make_pod) -> None:
    source = FakePodsSource({"pods": None}, {"pods": [make_pod()]})
    records = await _fetcher(source).fetch()
    assert len(records) == 1


@pytest.mark.asyncio
async def test_unclassified_failure_is_reraised_unchanged() -> None:
    source = FakePodsSource(RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        await _fetcher(source, max_retries=2).fetch()
    assert source.calls == 2


def test_backoff_is_exponential() -> None:
    fetcher = _fetcher(FakePodsSource({"pods": []}), base_delay_seconds=1.0)
    assert [fetcher.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]


@pytest.mark.parametrize(
    "exc,expected",
    [
        (asyncio.TimeoutError(), UpstreamTimeout),
        (httpx.ReadTimeout("read timed out"), UpstreamTimeout),
        (httpx.ConnectError("refused"), UpstreamConnectionFailed),
        (ConnectionRefusedError(), UpstreamConnectionFailed),
        (ValueError("Expecting value"), UpstreamInvalidResponse),
        (RuntimeError("Request timeout"), UpstreamTimeout),
        (RuntimeError("connect ECONNREFUSED"), UpstreamConnectionFailed),
        (RuntimeError("Invalid response structure"), UpstreamInvalidResponse),
    ],
)
def test_classify_failure(exc, expected) -> None:
    assert isinstance(classify_failure(exc), expected)


def test_classify_failure_unknown_returns_none() -> None:
    assert classify_failure(RuntimeError("boom")) is None
