from __future__ import annotations

import argparse
import logging.config
import os
from typing import Any, Dict, List, Optional

import uvicorn

from server.src.core.logging import build_log_config, get_logger

from .config import Settings
from .core.app import create_app


logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="pNode telemetry aggregation service")
    parser.add_argument("--host", dest="host", help="API host binding override")
    parser.add_argument("--port", dest="port", type=int, help="API port binding override")
    parser.add_argument("--prpc-host", dest="prpc_host", help="Upstream pRPC host override")
    parser.add_argument("--prpc-port", dest="prpc_port", type=int, help="Upstream pRPC port override")
    parser.add_argument(
        "--no-cache",
        dest="no_cache",
        action="store_true",
        help="Disable the response cache (geolocation lookups stay cached).",
    )
    parser.add_argument("--debug", dest="debug", action="store_true", help="Include timing details in error responses")
    parser.add_argument(
        "--log-level", dest="log_level", help="Override the API log level (info, debug, ...)",
    )
    parser.add_argument(
        "--log",
        dest="log_overrides",
        action="append",
        default=[],
        help="Per-logger override in NAME:LEVEL form (repeatable). CLI overrides take precedence over PNODES_LOG_OVERRIDES.",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    base = Settings()
    overrides: Dict[str, Any] = {}

    if args.host:
        overrides["api_host"] = args.host
    if args.port:
        overrides["api_port"] = args.port
    if args.prpc_host:
        overrides["prpc_host"] = args.prpc_host
    if args.prpc_port:
        overrides["prpc_port"] = args.prpc_port
    if args.no_cache:
        overrides["cache_enabled"] = False
    if args.debug:
        overrides["debug"] = True
    if args.log_level:
        overrides["api_log_level"] = args.log_level

    if overrides:
        return base.model_copy(update=overrides)
    return base


def collect_log_overrides(args: argparse.Namespace) -> List[str]:
    """Return NAME:LEVEL overrides, environment first so CLI entries win."""
    # PNODES_LOG_OVERRIDES is a comma-separated list like: "services.fetcher:DEBUG,httpx:WARNING"
    env_overrides = os.getenv("PNODES_LOG_OVERRIDES", "")
    overrides = [p.strip() for p in env_overrides.split(",") if p.strip()]
    overrides.extend(args.log_overrides or [])
    return overrides


def main() -> None:
    args = parse_args()
    settings = build_settings(args)

    log_config = build_log_config(settings.api_log_level, collect_log_overrides(args))
    logging.config.dictConfig(log_config)

    logger.info(
        "Starting API on %s:%s aggregating pNodes from %s",
        settings.api_host,
        settings.api_port,
        settings.prpc_url,
    )

    app = create_app(settings)

    try:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.api_log_level,
            log_config=log_config,
        )
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")


if __name__ == "__main__":
    main()
