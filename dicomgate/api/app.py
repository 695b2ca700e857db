"""
Main API application module for dicomgate.

This module creates and configures the FastAPI application with the gateway
router, middleware and exception handlers.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dicomgate.api.exception_handlers import setup_exception_handlers
from dicomgate.api.routers import gateway
from dicomgate.services.gateway.service import GatewayService
from dicomgate.settings import Settings, settings
from dicomgate.utils.logger import logger


def _log_unhandled(_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Event loop safety net: log errors nobody handled instead of losing them."""
    exception = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if exception is not None:
        logger.opt(exception=exception).error(f"Uncaught exception received: {message}")
    else:
        logger.error(message)


# noinspection PyTypeChecker
def create_app(
    app_settings: Settings | None = None,
    service: GatewayService | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        app_settings: Settings to build the gateway from (defaults to the global settings)
        service: Prebuilt gateway service, used instead of building one from settings

    Returns:
        Configured FastAPI application
    """
    config = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Application lifespan context manager.

        Initializes the cache store, starts the store listener and greets the archive.
        """
        asyncio.get_running_loop().set_exception_handler(_log_unhandled)

        gateway_service = service or GatewayService.from_settings(config)
        app.state.gateway = gateway_service
        await gateway_service.startup()
        logger.info(f"Gateway running on port: {config.port}")

        try:
            yield
        finally:
            await gateway_service.shutdown()
            logger.info("Application shutdown")

    app = FastAPI(
        title="dicomgate",
        description="DICOMweb gateway for DIMSE-only archives",
        version="0.1.0",
        debug=config.debug,
        lifespan=lifespan,
        root_path=config.root_url if config.root_url != "/" else "",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)

    app.include_router(gateway.router, tags=["Gateway"])

    return app
