"""
Exception handlers for converting domain exceptions to HTTP responses.

This module maps domain exceptions to appropriate HTTP status codes
and response formats for the API layer using FastAPI decorators.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request, status
from fastapi.responses import JSONResponse

from ..utils.logger import logger

if TYPE_CHECKING:
    from fastapi import FastAPI


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers using decorators.

    This function registers exception handlers for domain exceptions,
    converting them to appropriate HTTP responses.

    Args:
        app: FastAPI application instance
    """
    # Import domain exceptions inside function to avoid circular imports
    from ..exceptions.domain import (
        ArchiveError,
        ConfigError,
        MetadataAssemblyError,
        StorageError,
        ValidationError,
    )

    @app.exception_handler(ArchiveError)
    async def handle_archive_error(_: Request, exc: ArchiveError) -> JSONResponse:
        """Convert ArchiveError (including RetrievalError) to 502 response."""
        logger.error(f"Archive error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc) if str(exc) else "Archive request failed"},
        )

    @app.exception_handler(StorageError)
    async def handle_storage_error(_: Request, exc: StorageError) -> JSONResponse:
        """Convert StorageError to 500 response."""
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc) if str(exc) else "Error getting the file"},
        )

    @app.exception_handler(MetadataAssemblyError)
    async def handle_metadata_error(_: Request, exc: MetadataAssemblyError) -> JSONResponse:
        """Convert MetadataAssemblyError to 500 response."""
        logger.error(f"Metadata assembly failed: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc) if str(exc) else "No metadata found"},
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(_: Request, exc: ValidationError) -> JSONResponse:
        """Convert ValidationError to 422 response."""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc) if str(exc) else "Validation failed"},
        )

    @app.exception_handler(ConfigError)
    async def handle_config_error(_: Request, exc: ConfigError) -> JSONResponse:
        """Convert ConfigError to 503 response."""
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc) if str(exc) else "Service not configured"},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(_: Request, exc: Exception) -> JSONResponse:
        """Log any otherwise unhandled error and answer 500."""
        logger.opt(exception=exc).error("Uncaught exception received")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An internal server error occurred"},
        )
