"""Fixtures running the FastAPI application against the scripted archive."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from dicomgate.api.app import create_app
from dicomgate.services.gateway.service import GatewayService


@pytest_asyncio.fixture
async def app(gateway_service: GatewayService) -> AsyncGenerator[FastAPI]:
    """Application with its lifespan entered, serving the scripted gateway."""
    application = create_app(service=gateway_service)
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """HTTP client backed by ASGI transport."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
