"""
Webhook Relay - Main FastAPI Application

Ingestion API for the webhook relay:
- Admission gate (credential, content type, per-account rate limit)
- Durable event queue with in-process worker pool
- Health, queue administration and metrics endpoints
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import FastAPI

from .api.endpoints.health import router as health_router
from .api.endpoints.incoming import router as incoming_router
from .api.endpoints.queue import router as queue_router
from .container import RelayContainer, build_container
from .core.config import Settings, get_settings
from .core.correlation import CorrelationIdMiddleware
from .core.logging import configure_logging

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[RelayContainer] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use; defaults to ``get_settings()``
        container: Pre-built container; built during startup when omitted
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting webhook relay",
            version=settings.OTEL_SERVICE_VERSION,
            environment=settings.ENVIRONMENT,
        )

        owns_container = container is None
        try:
            app.state.container = container or await build_container(settings)
        except Exception:
            logger.exception("Failed to initialize application")
            raise

        if settings.RUN_WORKERS_IN_PROCESS:
            await app.state.container.start_workers()

        yield

        logger.info("Shutting down webhook relay")
        try:
            if owns_container:
                await app.state.container.close()
            else:
                await app.state.container.worker_pool.stop()
        except Exception as e:
            logger.error("Error during application shutdown", error=str(e))
        finally:
            app.state.container = None

    configure_logging(settings)

    app = FastAPI(
        title="Webhook Relay API",
        description="Multi-tenant webhook ingestion and fan-out delivery",
        version=settings.OTEL_SERVICE_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    # Add correlation ID middleware for request tracking
    app.add_middleware(CorrelationIdMiddleware)

    app.include_router(health_router)
    app.include_router(queue_router)
    app.include_router(incoming_router)
    # Ingestion is also served under the /api prefix
    app.include_router(incoming_router, prefix="/api")

    app.state.startup_time = datetime.now(timezone.utc)
    app.state.container = None

    @app.get("/")
    async def root():
        return {
            "service": settings.OTEL_SERVICE_NAME,
            "version": settings.OTEL_SERVICE_VERSION,
            "ingest": "/server/incoming_data",
        }

    return app


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "webhook_relay.main:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_config=None,
    )


if __name__ == "__main__":
    main()
