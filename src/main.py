"""Kokoro Live - FastAPI Application Entry Point.

Real-time voice companion: one live Gemini voice session with microphone
capture, gapless playback with barge-in, transcripts and a spoken greeting.
The HTTP/WebSocket surface is the control plane the UI talks to.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src import __version__
from src.api.routes import health
from src.api.routes import session
from src.config.settings import get_settings
from src.exceptions import KokoroError
from src.observability.logging import configure_logging, get_logger
from src.observability.metrics import set_build_info
from src.orchestrator.orchestrator import create_orchestrator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown of components.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info(
        "kokoro_starting",
        version=__version__,
        environment=settings.environment,
        port=settings.api_port,
        transport=settings.voice_transport,
        audio_backend=settings.audio_backend,
    )

    try:
        if settings.metrics_enabled:
            set_build_info(__version__, settings.environment)

        orchestrator = create_orchestrator(settings)
        session.set_orchestrator(orchestrator)

        health.set_component_health("transport", True)
        health.set_component_health("audio", True)
        health.set_component_health(
            "greeting", settings.greeting_enabled
        )
        health.set_ready(True)
        logger.info("kokoro_ready", components=health.get_component_health())

    except Exception as e:
        logger.error("kokoro_startup_failed", error=str(e))
        raise

    yield  # Application runs here

    logger.info("kokoro_shutting_down")
    health.set_ready(False)

    await orchestrator.aclose()
    session.set_orchestrator(None)

    logger.info("kokoro_shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Kokoro Live",
        description="Real-time voice companion session orchestrator",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment != "production" else None,
        redoc_url="/redoc" if settings.environment != "production" else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(session.router)

    @app.exception_handler(KokoroError)
    async def kokoro_exception_handler(request: Request, exc: KokoroError) -> JSONResponse:
        logger.warning(
            "request_failed",
            path=request.url.path,
            method=request.method,
            error=exc.message,
        )
        return JSONResponse(
            status_code=400 if exc.recoverable else 503,
            content=exc.to_dict(),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower().replace("warn", "warning"),
        reload=settings.environment == "development",
    )
