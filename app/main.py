"""
Service entrypoint: health endpoints plus the service container lifecycle.

Session routes are mounted by the surrounding API gateway; this app only
exposes what operations needs to know the process is healthy.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import Settings, get_settings
from app.container import ServiceContainer
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.routes import health

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, container: ServiceContainer | None = None) -> FastAPI:
    settings = settings or get_settings()
    container = container or ServiceContainer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown with proper resource management."""
        logger.info("Application starting", environment=settings.environment, debug=settings.debug)
        await container.start(create_schema=settings.environment == "development")
        try:
            yield
        finally:
            logger.info("Application shutting down")
            await container.stop()

    app = FastAPI(
        title="Private Sessions",
        description="Session and key lifecycle for private content",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container
    app.include_router(health.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.info(
            "HTTP request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
        )
        return response

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
