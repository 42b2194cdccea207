"""Herald API application factory."""

from __future__ import annotations

from fastapi import FastAPI

from herald.config import get_settings
from herald.infra.logging_config import LoggingConfig, get_logger
from herald.routers import api_keys_router, security_router, system

logger = get_logger("main")


def create_app(testing: bool = False) -> FastAPI:
    """Build the FastAPI app. ``testing`` skips process-wide logging setup."""
    settings = get_settings()
    if not testing:
        LoggingConfig(settings.log_level)

    app = FastAPI(title=settings.app_name)
    app.include_router(system.router)
    app.include_router(api_keys_router.router)
    app.include_router(security_router.router)

    logger.info("%s started (environment=%s)", settings.app_name, settings.environment)
    return app
