"""ASGI entry points for uvicorn: ``server.src.main:app`` or ``--factory server.src.main:build_app``."""

from __future__ import annotations

from fastapi import FastAPI

from .config import Settings
from .core.app import create_app


def build_app(settings: Settings | None = None) -> FastAPI:
    """Return a telemetry app configured from ``settings`` or the ``PNODES_*`` environment."""
    return create_app(settings or Settings())


app = build_app()
