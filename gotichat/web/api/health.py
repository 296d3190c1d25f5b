"""
Health check endpoints for gotichat monitoring.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from gotichat import __version__
from gotichat.gotify.errors import GotifyError
from gotichat.gotify.gateway import MessageGateway
from gotichat.web.api.dependencies import get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class ComponentStatus(BaseModel):
    status: str
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class HealthResponse(BaseModel):
    status: str
    components: Dict[str, ComponentStatus]
    version: str = __version__


@router.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "ok"}


@router.get("/health/ready", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
async def readiness_check(response: Response, gateway: MessageGateway = Depends(get_gateway)):
    """
    Check that the Gotify server answers its own health endpoint.
    Returns 503 Service Unavailable when it does not.
    """
    components = {}
    overall_status = "ok"

    try:
        gotify_health = await gateway.client.health()
        components["gotify"] = ComponentStatus(status="ok", details=gotify_health)
    except GotifyError as e:
        logger.error(f"Health check failed for gotify: {e.message}")
        components["gotify"] = ComponentStatus(status="error", message=e.message)
        overall_status = "error"

    components["request_cache"] = ComponentStatus(
        status="ok" if gateway.request_cache.running else "warning",
        details={"pending": len(gateway.request_cache)},
    )

    if overall_status != "ok":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(status=overall_status, components=components)
