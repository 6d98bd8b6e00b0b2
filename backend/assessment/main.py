"""
University Assessment Engine - FastAPI Application
Main application entry point with middleware and route configuration
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assessment.api.v1 import api_router
from assessment.core.config import settings
from assessment.core.database import async_session_maker, init_db
from assessment.services.attempts import AttemptService

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


async def run_abandon_sweep() -> int:
    """One sweep in its own transaction."""
    async with async_session_maker() as session:
        abandoned = await AttemptService(session).abandon_expired()
        await session.commit()
    return abandoned


async def sweep_periodically(interval_seconds: int) -> None:
    """Abandon expired attempts every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await run_abandon_sweep()
        except Exception:
            logger.exception("Abandonment sweep failed, retrying next interval")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    configure_logging()

    await init_db()
    logger.info("[Startup] Database tables initialized")

    sweeper = None
    if settings.ABANDON_SWEEP_INTERVAL_SECONDS > 0:
        sweeper = asyncio.create_task(sweep_periodically(settings.ABANDON_SWEEP_INTERVAL_SECONDS))
        logger.info(
            f"[Startup] Abandonment sweep every {settings.ABANDON_SWEEP_INTERVAL_SECONDS}s"
        )

    yield

    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Test authoring, timed attempts and reconciled scoring for university courses",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @app.get(f"{settings.API_V1_PREFIX}/health", tags=["Health"])
    async def api_v1_health_check():
        """API V1 Health check."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "assessment.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
