"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.config import Settings, get_settings
from arena.database import build_engine, close_db, create_all, get_session_factory, init_db
from arena.db.base import Base
from arena.services import Services, build_services

# Midday UTC so the night-time lane stays quiet unless a test wants it.
BASE_TIME = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def contest_payload(**overrides: Any) -> dict[str, Any]:
    """A valid CREATE_CONTEST payload: 1000 USD over ranks 1, 2 and 3-5."""
    payload: dict[str, Any] = {
        "name": "Weekly Showdown",
        "description": "Test contest",
        "type": "weekly",
        "start_at": BASE_TIME.isoformat(),
        "end_at": (BASE_TIME + timedelta(days=7)).isoformat(),
        "rules": [{"id": "win", "type": "result", "points": 10}],
        "prize_pool": {
            "total_value": 1000,
            "currency": "USD",
            "distribution": [
                {"rank": 1, "value": 500},
                {"rank": 2, "value": 300},
                {"rank": "3-5", "value": 200.01},
            ],
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """A fresh sqlite file per test; each session gets its own connection."""
    return f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}"


@pytest.fixture
def settings(database_url: str) -> Settings:
    return Settings(
        database_url=database_url,
        log_format="console",
        store_max_attempts=3,
        store_backoff_base_seconds=0,
        store_backoff_max_seconds=0,
        store_timeout_seconds=5,
        leaderboard_debounce_seconds=0.01,
    )


@pytest.fixture
def redis() -> AsyncMock:
    """Stand-in pub/sub client; assertions inspect ``publish`` calls."""
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest_asyncio.fixture
async def session_factory(database_url: str) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = build_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: AsyncMock,
) -> AsyncGenerator[Services, None]:
    svc = build_services(settings, session_factory, redis)
    yield svc
    await svc.close()


async def make_active_contest(
    services: Services,
    scores: list[float],
    fair_play: list[float] | None = None,
    **overrides: Any,
) -> tuple[int, list[int]]:
    """Create a contest, register one participant per score and start it."""
    contest = await services.lifecycle.create_contest(contest_payload(**overrides))
    await services.lifecycle.transition(contest.id, "registration")

    ids = []
    for i, _ in enumerate(scores):
        p = await services.lifecycle.register_participant(contest.id, {"user_id": f"user-{i}"})
        ids.append(p.id)
    await services.lifecycle.transition(contest.id, "active")

    for pid, score in zip(ids, scores):
        if score:
            await services.lifecycle.record_score(pid, score)
    if fair_play is not None:
        for pid, fp in zip(ids, fair_play):
            if fp < 100:
                await services.store.adjust_fair_play(pid, fp - 100)
    return contest.id, ids


@pytest_asyncio.fixture
async def client(
    database_url: str, redis: AsyncMock, monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the app over a fresh sqlite file."""
    monkeypatch.setenv("ARENA_DATABASE_URL", database_url)
    monkeypatch.setenv("ARENA_LEADERBOARD_DEBOUNCE_SECONDS", "0.01")
    monkeypatch.setenv("ARENA_STORE_BACKOFF_BASE_SECONDS", "0")
    get_settings.cache_clear()

    from arena.main import create_app

    app = create_app()
    settings = get_settings()
    await init_db(settings.database_url)
    await create_all()
    app.state.services = build_services(settings, get_session_factory(), redis)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await app.state.services.close()
    await close_db()
    get_settings.cache_clear()
