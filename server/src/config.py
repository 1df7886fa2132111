from typing import List, Optional
import json

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration sourced from environment variables or overrides."""

    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_log_level: str = "info"

    # Response cache. Disabling it only affects the processed-response cache;
    # geolocation lookups are always cached.
    cache_enabled: bool = True
    cache_ttl_seconds: int = 60
    # Geography rarely changes, so resolved locations outlive responses.
    geo_cache_ttl_seconds: int = 24 * 60 * 60

    # Upstream pRPC source and the retry policy applied to it
    prpc_host: str = "127.0.0.1"
    prpc_port: int = 6000
    max_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    fetch_timeout_ms: int = 30_000

    # Geolocation collaborator. When unset, the service resolves through its
    # own /api/geolocate endpoint.
    geolocation_url: Optional[str] = None
    geolocation_timeout_seconds: float = 10.0
    ip_api_url: str = "http://ip-api.com/batch"
    ip_api_batch_size: int = 100

    # Include timing/timestamp details in error responses
    debug: bool = False

    # Accept either a raw string (from env like "a,b") or a list; the
    # validator below coerces into a List[str].
    cors_allow_origins: str | List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    model_config = SettingsConfigDict(
        env_prefix="PNODES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _coerce_origins(cls, value):
        """Allow comma or newline separated env strings for CORS origins."""
        if value in (None, ""):
            return []
        if isinstance(value, str):
            v = value.strip()
            if v.startswith("["):
                try:
                    decoded = json.loads(v)
                    if isinstance(decoded, (list, tuple)):
                        return [str(item).strip() for item in decoded if str(item).strip()]
                except ValueError:
                    # fall back to comma/newline splitting below
                    pass
            cleaned = value.replace("\n", ",")
            return [item.strip() for item in cleaned.split(",") if item.strip()]
        if isinstance(value, (tuple, set, list)):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @field_validator("max_retries")
    @classmethod
    def _check_retries(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_retries must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_cache_ttls(self) -> "Settings":
        if self.geo_cache_ttl_seconds <= self.cache_ttl_seconds:
            raise ValueError("geo_cache_ttl_seconds must be greater than cache_ttl_seconds")
        return self

    @property
    def fetch_timeout_seconds(self) -> float:
        return self.fetch_timeout_ms / 1000.0

    @property
    def prpc_url(self) -> str:
        """Return the JSON-RPC endpoint of the configured upstream pNode."""
        host = self.prpc_host.strip()
        if ":" in host and not host.startswith("["):
            # IPv6 literal
            host = f"[{host}]"
        return f"http://{host}:{self.prpc_port}/rpc"

    @property
    def resolved_geolocation_url(self) -> str:
        """Return the geolocation collaborator URL, defaulting to our own endpoint."""
        if self.geolocation_url:
            return self.geolocation_url
        host = self.api_host
        if host in ("0.0.0.0", "::", ""):
            host = "127.0.0.1"
        return f"http://{host}:{self.api_port}/api/geolocate"
