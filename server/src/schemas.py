from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

StatusFilter = Literal["online", "offline", "public", "private", "all", "active", "inactive"]
SortField = Literal[
    "address",
    "pubkey",
    "uptime",
    "storage_usage_percent",
    "storage_used",
    "storage_committed",
    "last_seen_timestamp",
    "version",
    "rpc_port",
    "is_public",
]
SortOrder = Literal["asc", "desc"]

# Upper bound keeps timestamps within what datetime can represent (year 9999).
MAX_UNIX_SECONDS = 253402300799


class RawNodeRecord(BaseModel):
    """A single pNode entry as reported by the upstream pRPC source."""

    address: str = Field(..., description="Gossip address in host[:port] form")
    pubkey: str = Field(..., description="Public key identifying the node")
    is_public: bool
    last_seen_timestamp: int = Field(..., ge=0, le=MAX_UNIX_SECONDS, description="Unix seconds")
    rpc_port: int
    storage_committed: int = Field(..., ge=0, description="Committed storage in bytes")
    storage_used: int = Field(..., ge=0, description="Used storage in bytes")
    storage_usage_percent: float = Field(..., description="Usage ratio between 0 and 1")
    uptime: int = Field(..., ge=0, description="Uptime in seconds")
    version: str

    model_config = ConfigDict(frozen=True, extra="ignore")


class GeoLocation(BaseModel):
    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = Field(default=None, alias="countryCode")

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def coordinates(self) -> List[float]:
        """Return ``[longitude, latitude]``, the order map renderers expect."""
        return [self.longitude, self.latitude]


class EnrichedNodeRecord(RawNodeRecord):
    """Raw record plus derived health, usage and location fields."""

    is_online: bool = Field(..., alias="isOnline")
    last_seen_date: str = Field(..., alias="lastSeenDate")
    storage_utilization: str = Field(..., alias="storageUtilization")
    uptime_hours: int = Field(..., alias="uptimeHours")
    uptime_days: int = Field(..., alias="uptimeDays")
    storage_capacity_gb: float = Field(..., alias="storageCapacityGB")
    storage_used_mb: float = Field(..., alias="storageUsedMB")
    version_display_name: str = Field(..., alias="versionDisplayName")
    health_score: int = Field(..., ge=0, le=100, alias="healthScore")
    location: Optional[GeoLocation] = None

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class QueryParams(BaseModel):
    """Validated query parameters for the pNode listing."""

    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    offset: Optional[int] = Field(default=None, ge=0)
    status: Optional[StatusFilter] = None
    sort_by: Optional[SortField] = Field(default=None, alias="sortBy")
    sort_order: Optional[SortOrder] = Field(default=None, alias="sortOrder")

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class ErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ResponseMetadata(BaseModel):
    count: int
    timestamp: str
    cache_hit: bool = Field(..., alias="cacheHit")
    total_nodes: Optional[int] = Field(default=None, alias="totalNodes")
    online_nodes: Optional[int] = Field(default=None, alias="onlineNodes")
    avg_uptime: Optional[float] = Field(default=None, alias="avgUptime")

    model_config = ConfigDict(populate_by_name=True)


class NodesResponse(BaseModel):
    """Envelope returned by the pNode listing endpoint."""

    success: bool
    data: Optional[List[EnrichedNodeRecord]] = None
    error: Optional[ErrorInfo] = None
    metadata: Optional[ResponseMetadata] = None

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GeolocateRequest(BaseModel):
    ips: List[Any] = Field(default_factory=list, description="IPv4 addresses to resolve")


class GeoResult(BaseModel):
    ip: str
    lat: float
    lon: float
    city: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = Field(default=None, alias="countryCode")

    model_config = ConfigDict(populate_by_name=True)


class GeolocateResponse(BaseModel):
    results: List[GeoResult] = Field(default_factory=list)
    error: Optional[str] = None
