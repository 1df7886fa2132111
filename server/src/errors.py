from __future__ import annotations

import asyncio
from typing import Optional

import httpx


class TelemetryError(Exception):
    """Base class for failures surfaced to API callers.

    Every subclass carries a stable machine-readable ``code`` and the HTTP
    status the API answers with.
    """

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TelemetryError):
    """Caller-supplied query parameters are malformed. Never retried."""

    code = "VALIDATION_ERROR"
    status_code = 400


class UpstreamError(TelemetryError):
    """The upstream telemetry source could not provide a node list."""


class UpstreamTimeout(UpstreamError):
    code = "TIMEOUT"
    status_code = 504


class UpstreamConnectionFailed(UpstreamError):
    code = "CONNECTION_FAILED"
    status_code = 503


class UpstreamInvalidResponse(UpstreamError):
    code = "INVALID_RESPONSE"
    status_code = 502


class InternalError(TelemetryError):
    code = "INTERNAL_ERROR"
    status_code = 500


def _describe(exc: BaseException) -> str:
    message = str(exc)
    if message:
        return message
    return exc.__class__.__name__


def classify_failure(exc: BaseException) -> Optional[UpstreamError]:
    """Map an upstream failure onto the typed upstream taxonomy.

    The exception kind is inspected first; messages are only consulted for
    exceptions of unknown type (e.g. raised by a third-party client).
    Returns ``None`` when the failure cannot be classified.
    """
    if isinstance(exc, UpstreamError):
        return exc

    message = _describe(exc)

    # asyncio.TimeoutError is an OSError on recent interpreters; check it first.
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return UpstreamTimeout("Request timeout" if not str(exc) else f"Request timeout: {exc}")
    if isinstance(exc, httpx.HTTPStatusError):
        return UpstreamConnectionFailed(f"Upstream connection failed: {message}")
    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return UpstreamConnectionFailed(f"Upstream connection failed: {message}")
    if isinstance(exc, ValueError):
        return UpstreamInvalidResponse(f"Invalid response from upstream: {message}")

    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return UpstreamTimeout(message)
    if "connection" in lowered or "econnrefused" in lowered:
        return UpstreamConnectionFailed(message)
    if "invalid response" in lowered:
        return UpstreamInvalidResponse(message)
    return None
