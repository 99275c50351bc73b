"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from arena.commands.router import router as commands_router
from arena.config import get_settings
from arena.contests.router import router as contests_router
from arena.database import close_db, create_all, get_session_factory, init_db
from arena.fairplay.router import router as fairplay_router
from arena.health.router import router as health_router
from arena.middleware import setup_middleware
from arena.redis_client import close_redis, get_redis, init_redis
from arena.services import build_services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await create_all()
    await init_redis(settings.redis_url)

    app.state.services = build_services(settings, get_session_factory(), get_redis())

    yield

    await app.state.services.close()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Arena Contest Engine",
        description="Contest lifecycle, ranking and fair-play detection",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(contests_router)
    app.include_router(fairplay_router)
    app.include_router(commands_router)

    return app


app = create_app()
