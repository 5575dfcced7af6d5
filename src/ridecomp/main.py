"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from ridecomp.competition.router import router as competition_router
from ridecomp.config import get_settings
from ridecomp.database import close_db, init_db
from ridecomp.health.router import router as health_router
from ridecomp.middleware import setup_middleware
from ridecomp.notifications.router import router as notifications_router
from ridecomp.redis_client import close_redis, init_redis

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    logger.info("startup", environment=settings.environment, version=settings.app_version)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RideComp API",
        description="Income competitions between ride-hailing drivers",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(competition_router)
    app.include_router(notifications_router)

    return app


app = create_app()
