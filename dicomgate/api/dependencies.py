"""
Common dependencies for dicomgate API endpoints.

The gateway service is created once per application in the lifespan handler
and stored on ``app.state``.
"""

from typing import Annotated

from fastapi import Depends, Request

from ..exceptions.domain import ConfigError
from ..services.gateway.service import GatewayService


def get_gateway_service(request: Request) -> GatewayService:
    """
    Get the application's gateway service.

    Args:
        request: FastAPI request object

    Returns:
        The GatewayService created at startup
    """
    service: GatewayService | None = getattr(request.app.state, "gateway", None)
    if service is None:
        raise ConfigError("Gateway service is not initialized")
    return service


GatewayServiceDep = Annotated[GatewayService, Depends(get_gateway_service)]
