"""
FastAPI application entry point.
Wires the routing engine, its collaborators and the HTTP/WebSocket surface.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import asyncio
import logging

from .config import Settings, settings as default_settings
from .api.routes import agents, analytics, health, intents
from .api.websocket import ConnectionManager, websocket_endpoint
from .routing import RoutingEngine
from .services.ai_responder import create_ai_responder
from .services.auth_service import AuthService
from .services.chat_history import ChatHistoryStore
from .services.intent_logger import create_intent_logger
from .utils.middleware import RateLimitMiddleware, RequestIDMiddleware, TimingMiddleware
from .utils.telemetry import setup_telemetry


def configure_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, mode='a'))

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


configure_logging(default_settings)

logger = logging.getLogger(__name__)


async def periodic_cleanup_task(app: FastAPI) -> None:
    """
    Background task that evicts sessions abandoned by their customer.
    """
    logger.info("Starting periodic cleanup task")

    interval = app.state.settings.session_sweep_interval_seconds
    shutdown_event: asyncio.Event = app.state.shutdown_event

    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass

        try:
            swept = await app.state.engine.sweep_idle_sessions()
            if swept:
                logger.info(f"Periodic cleanup: removed {swept} idle sessions")
            logger.debug(f"Routing stats: {app.state.engine.stats()}")
        except Exception as e:
            logger.error(f"Error in periodic cleanup task: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the routing engine and its collaborators on startup and release
    them on shutdown.
    """
    settings: Settings = app.state.settings

    # === STARTUP ===
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info("=" * 60)

    try:
        app.state.auth_service = AuthService(settings)
        logger.info("✓ Agent auth initialized")

        responder = create_ai_responder(settings)
        await responder.initialize()
        app.state.ai_responder = responder
        logger.info(f"✓ AI responder: {type(responder).__name__}")

        intent_logger = create_intent_logger(settings.intent_webhook_url, settings.intent_log_capacity)
        await intent_logger.initialize()
        app.state.intent_logger = intent_logger
        logger.info(f"✓ Intent logger: {type(intent_logger).__name__}")

        app.state.engine = RoutingEngine(
            settings=settings,
            responder=responder,
            intent_logger=intent_logger,
            chat_history=ChatHistoryStore(capacity=settings.chat_history_capacity),
        )
        app.state.connection_manager = ConnectionManager()
        logger.info("✓ Routing engine initialized")

        app.state.shutdown_event = asyncio.Event()
        cleanup_task = asyncio.create_task(periodic_cleanup_task(app))

        logger.info("=" * 60)
        logger.info("✓ Application started successfully")
        logger.info(f"Health check: http://{settings.api_host}:{settings.api_port}/health")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        raise

    yield  # === APPLICATION RUNS HERE ===

    # === SHUTDOWN ===
    logger.info("Shutting down application...")
    app.state.shutdown_event.set()

    try:
        await asyncio.wait_for(cleanup_task, timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Cleanup task did not complete in time, cancelling...")
        cleanup_task.cancel()

    await app.state.connection_manager.close_all()
    await app.state.engine.shutdown()

    for name in ("ai_responder", "intent_logger"):
        try:
            await getattr(app.state, name).cleanup()
        except Exception as e:
            logger.error(f"Error during {name} cleanup: {e}")

    logger.info("✓ Application shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration, the environment-loaded settings by default
    """
    settings = settings or default_settings

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Customer support chat routing between an AI assistant and human agents",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time", "X-RateLimit-Limit"],
    )

    # Applied in reverse order of registration
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware)

    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            calls=settings.rate_limit_requests,
            period=settings.rate_limit_period
        )

    if settings.enable_telemetry:
        setup_telemetry(app)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(agents.router, prefix=f"{settings.api_prefix}/agent", tags=["Agents"])
    app.include_router(analytics.router, tags=["Analytics"])
    app.include_router(intents.router, prefix=f"{settings.api_prefix}/intents", tags=["Analytics"])

    app.add_api_websocket_route("/ws", websocket_endpoint, name="websocket")

    @app.get("/", tags=["Root"])
    async def root(request: Request) -> Dict[str, Any]:
        """API information and routing status."""
        engine = getattr(request.app.state, "engine", None)
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "status": "operational",
            "endpoints": {
                "health": "/health",
                "metrics": "/metrics" if settings.enable_telemetry else "disabled",
                "websocket": "/ws",
                "api": settings.api_prefix
            },
            "routing": engine.stats() if engine else {},
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions gracefully."""
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}",
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if settings.debug else "An unexpected error occurred"
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "livechat.main:app",
        host=default_settings.api_host,
        port=default_settings.api_port,
        log_level="debug" if default_settings.debug else "info",
        access_log=True
    )
