"""Health check endpoints.

Provides:
- Basic health check (GET /health)
- Detailed health check with configuration status (GET /health/detailed)
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.websocket.realtime_gateway import session_registry
from src.config import Settings, get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response."""

    status: str
    checks: dict[str, str]
    active_sessions: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint.

    Returns:
        Simple status indicating the API is running.
    """
    return HealthResponse(status="healthy")


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    settings: Settings = Depends(get_settings),
) -> DetailedHealthResponse:
    """Detailed health check including configuration status.

    External services are only checked for configuration, never called.
    """
    checks = {
        "openai": "configured" if settings.openai_api_key.get_secret_value() else "missing",
        "incident_service": "configured" if settings.incident_base_url else "missing",
    }

    active = session_registry.active_count
    at_capacity = active >= settings.max_concurrent_sessions
    checks["capacity"] = "full" if at_capacity else "ok"

    healthy = checks["openai"] == "configured" and checks["incident_service"] == "configured"
    status = "healthy" if healthy and not at_capacity else "degraded"

    return DetailedHealthResponse(
        status=status,
        checks=checks,
        active_sessions=active,
        version="0.1.0",
    )
