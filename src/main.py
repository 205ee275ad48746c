"""FastAPI application entry point.

Realtime voice relay between emergency callers and the upstream voice model.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import health, metrics
from src.api.websocket.realtime_gateway import realtime_endpoint, session_registry
from src.config import get_settings
from src.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup:
    - Initialize logging

    Shutdown:
    - Close active relay sessions
    """
    settings = get_settings()

    setup_logging(
        level=settings.log_level,
        enable_file=settings.is_production,
    )

    yield

    await session_registry.close_all()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Realtime Voice Relay",
        description="Caller audio relay for the incident voice assistant",
        version="0.1.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check routes
    app.include_router(health.router, tags=["Health"])

    # Metrics endpoint for Prometheus scraping
    app.include_router(metrics.router, tags=["Observability"])

    # Caller realtime audio
    @app.websocket("/ws/realtime")
    async def realtime_ws(websocket: WebSocket):
        """WebSocket endpoint for caller voice sessions (?incident_id=...)."""
        await realtime_endpoint(websocket)

    return app


# Application instance
app = create_app()
