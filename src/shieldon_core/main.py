# src/shieldon_core/main.py
"""ASGI application exposing the firewall as middleware."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from shieldon_core.api.captcha import CAPTCHA_PATH
from shieldon_core.api.captcha import router as captcha_router
from shieldon_core.api.middleware import FirewallMiddleware
from shieldon_core.core.config import FirewallConfig
from shieldon_core.core.settings import Settings, settings
from shieldon_core.services.firewall import Firewall
from shieldon_core.storage.factory import get_storage

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_firewall(app_settings: Settings | None = None) -> Firewall:
    """Wire a firewall from process settings and the JSON option tree."""
    app_settings = app_settings or settings
    config = FirewallConfig.load(app_settings.config_path)
    storage = get_storage(app_settings, channel_id=config.options.channel_id)
    return Firewall(config, storage)


def create_app(firewall: Firewall | None = None) -> FastAPI:
    """Create the FastAPI application guarded by ``firewall``."""
    firewall = firewall or build_firewall()

    app = FastAPI(
        title=settings.app_name,
        description="Behavioral-tracking web application firewall",
        version=VERSION,
        debug=settings.debug,
    )
    app.state.firewall = firewall

    app.add_middleware(
        FirewallMiddleware,
        firewall=firewall,
        exempt_paths=("/health", CAPTCHA_PATH),
    )
    app.include_router(captcha_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the service."""
        return {"name": settings.app_name, "version": VERSION}

    logger.info("Firewall ready (channel=%r)", firewall.config.options.channel_id)
    return app


app = create_app()
