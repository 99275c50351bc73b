"""arq jobs for the contest engine.

Runs as a separate process. Each job takes the shared ``Services``
container from the worker context and reports through the same command
interface the HTTP API uses.
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis

from arena.commands.dispatcher import CommandType
from arena.config import get_settings
from arena.database import close_db, create_all, get_session_factory, init_db
from arena.middleware.logging import setup_logging
from arena.services import Services, build_services

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the database, Redis publisher and services."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    await create_all()
    redis_client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    ctx["publisher"] = redis_client
    ctx["services"] = build_services(settings, get_session_factory(), redis_client)
    logger.info("Contest worker started (env=%s)", settings.environment)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    services: Services | None = ctx.get("services")
    if services:
        await services.close()

    redis_client: aioredis.Redis | None = ctx.get("publisher")
    if redis_client:
        await redis_client.aclose()

    await close_db()
    logger.info("Contest worker shut down")


async def create_contest(ctx: dict, payload: dict[str, Any]) -> dict[str, Any]:  # type: ignore[type-arg]
    services: Services = ctx["services"]
    result = await services.commands.dispatch({"type": CommandType.CREATE_CONTEST.value, "payload": payload})
    return result.model_dump(mode="json")


async def update_leaderboard(ctx: dict, contest_id: int | None = None) -> dict[str, Any]:  # type: ignore[type-arg]
    """Recompute one contest's boards, or every active contest's."""
    services: Services = ctx["services"]
    payload = {"contest_id": contest_id} if contest_id is not None else {}
    result = await services.commands.dispatch({"type": CommandType.UPDATE_LEADERBOARD.value, "payload": payload})
    if not result.success:
        logger.warning("Leaderboard update failed: %s", result.error)
    return result.model_dump(mode="json")


async def check_fair_play(ctx: dict, contest_id: int) -> dict[str, Any]:  # type: ignore[type-arg]
    services: Services = ctx["services"]
    result = await services.commands.dispatch(
        {"type": CommandType.CHECK_FAIR_PLAY.value, "payload": {"contestId": contest_id}}
    )
    return result.model_dump(mode="json")


async def archive_contests(ctx: dict) -> int:  # type: ignore[type-arg]
    """Daily task to archive completed contests past the retention window."""
    services: Services = ctx["services"]
    archived = await services.lifecycle.archive_completed(services.settings.archive_after_days)
    if archived:
        logger.info("Archived %d contests", len(archived))
    return len(archived)
