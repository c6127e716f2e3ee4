"""
Main FastAPI application entry point.

This module sets up the FastAPI app with all routes, exception handlers and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry

from .api import healthz_router, metrics_router, run_router
from .config import Settings, get_settings
from .core.exceptions import LogRelayException
from .core.health import get_health_checker
from .core.metrics import MetricsCollector
from .core.relay_service import get_relay_service


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    # aiohttp access chatter is not useful at INFO
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_lifespan_handler(settings: Settings) -> Any:
    """Create a lifespan handler with access to settings."""
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        FastAPI lifespan context manager.

        Handles startup and shutdown of the relay service.
        """
        logger = structlog.get_logger(__name__)
        logger.info("Starting LogRelay service", version=app.version, log_level=settings.log_level)

        metrics_collector = MetricsCollector(registry=CollectorRegistry())
        app.state.metrics = metrics_collector

        relay_service = get_relay_service(metrics_collector)
        app.state.relay_service = relay_service
        await relay_service.start()

        app.state.health_checker = get_health_checker(relay_service)

        try:
            logger.info("LogRelay service started successfully")
            yield
        finally:
            logger.info("Shutting down LogRelay service")
            await relay_service.stop()
            logger.info("LogRelay service shutdown complete")

    return lifespan


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function ensures all configuration is applied
    whether running via uvicorn CLI or direct execution.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="LogRelay",
        description="Management API logs → webhook relay",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=create_lifespan_handler(settings),
    )

    app.add_exception_handler(LogRelayException, logrelay_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(run_router, tags=["run"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(healthz_router, tags=["health"])

    return app


async def logrelay_exception_handler(request: Request, exc: LogRelayException) -> JSONResponse:
    """Handle LogRelay exceptions: missing settings, stage failures, checkpoint errors."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "LogRelay exception occurred",
        error=str(exc),
        error_code=exc.error_code,
        status_code=exc.status_code,
        path=request.url.path,
        method=request.method,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": str(exc),
            "details": exc.details,
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = structlog.get_logger(__name__)
    logger.error(
        "Unexpected exception occurred",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "logrelay.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
