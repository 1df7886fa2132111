from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from server.src.core.logging import get_logger

from ..config import Settings
from ..schemas import RawNodeRecord

logger = get_logger(__name__)


class PodsSource(Protocol):
    """Anything that can report the current pNode list."""

    async def get_pods_with_stats(self) -> Any:  # pragma: no cover - protocol
        ...


@dataclass(frozen=True)
class Ok:
    records: List[RawNodeRecord]


@dataclass(frozen=True)
class Err:
    reason: str


PodsParseResult = Union[Ok, Err]


def parse_pods_payload(payload: Any) -> PodsParseResult:
    """Structurally validate an upstream ``{"pods": [...]}`` payload.

    Every entry must be a well-formed node record; a single malformed entry
    rejects the whole payload.
    """
    if not isinstance(payload, dict):
        return Err(f"expected an object, got {type(payload).__name__}")
    pods = payload.get("pods")
    if not isinstance(pods, list):
        return Err("missing 'pods' list")

    records: List[RawNodeRecord] = []
    for index, item in enumerate(pods):
        try:
            records.append(RawNodeRecord.model_validate(item))
        except PydanticValidationError as exc:
            return Err(f"malformed pod at index {index}: {exc.error_count()} validation error(s)")
    return Ok(records)


class PrpcClient:
    """Minimal JSON-RPC client for a pNode's pRPC endpoint."""

    _ids = itertools.count(1)

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._url = url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> "PrpcClient":
        return cls(settings.prpc_url, client=client, timeout=settings.fetch_timeout_seconds)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def call(self, method: str, params: Optional[Any] = None) -> Any:
        """Invoke ``method`` and return the JSON-RPC ``result`` member.

        Transport failures propagate as httpx errors. A body that is not
        JSON, or a JSON-RPC error reply, raises ``ValueError``.
        """
        client = await self._ensure_client()
        request: dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": next(self._ids)}
        if params is not None:
            request["params"] = params

        response = await client.post(self._url, json=request)
        response.raise_for_status()
        body = response.json()

        if not isinstance(body, dict):
            raise ValueError("Invalid response: JSON-RPC reply was not an object")
        if body.get("error"):
            raise ValueError(f"Invalid response: pRPC error {body['error']}")
        return body.get("result")

    async def get_pods_with_stats(self) -> Any:
        logger.debug("Requesting get-pods-with-stats from %s", self._url)
        return await self.call("get-pods-with-stats")
