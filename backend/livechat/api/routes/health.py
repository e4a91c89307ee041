"""
Health check API routes.
"""
from fastapi import APIRouter, Request
import logging

from ...config import settings
from ...models.protocol import utcnow
from ...models.schemas import HealthResponse
from ...utils.retry import circuit_state

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns:
        Routing state summary
    """
    engine = request.app.state.engine
    return HealthResponse(
        status="healthy",
        timestamp=utcnow(),
        version=settings.app_version,
        services={"routing": engine.stats()}
    )


@router.get("/ready", response_model=HealthResponse)
async def readiness_check(request: Request):
    """
    Readiness check for the routing engine and its collaborators.

    Returns:
        Detailed service health status
    """
    services = {}
    overall_status = "healthy"

    state = request.app.state
    if getattr(state, "engine", None) is not None:
        services["routing"] = "healthy"
    else:
        services["routing"] = "not_initialized"
        overall_status = "unhealthy"

    responder = getattr(state, "ai_responder", None)
    breaker = getattr(responder, "circuit_breaker", None)
    if responder is None:
        services["ai_responder"] = "not_initialized"
        overall_status = "unhealthy"
    elif breaker is not None and circuit_state(breaker) != "closed":
        services["ai_responder"] = f"circuit_{circuit_state(breaker)}"
        overall_status = "degraded"
    else:
        services["ai_responder"] = "healthy"

    if getattr(state, "intent_logger", None) is not None:
        services["intent_logger"] = "healthy"
    else:
        services["intent_logger"] = "not_initialized"

    return HealthResponse(
        status=overall_status,
        timestamp=utcnow(),
        version=settings.app_version,
        services=services
    )


@router.get("/live")
async def liveness_check():
    """
    Simple liveness check.

    Returns:
        Basic alive status
    """
    return {"status": "alive", "timestamp": utcnow().isoformat()}
