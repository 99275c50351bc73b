"""Wiring of the engine components.

One ``Services`` container is built per process (API lifespan or arq
worker startup) and shared by every request or job in that process.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.commands.dispatcher import CommandDispatcher
from arena.config import Settings
from arena.contests.leaderboard import LeaderboardEngine
from arena.contests.lifecycle import ContestLifecycleManager
from arena.contests.worker import WorkerPool
from arena.fairplay.cache import HistoryCache
from arena.fairplay.detector import FairPlayDetector
from arena.health.monitor import HealthMonitor
from arena.metrics import MetricsAccumulator
from arena.notifications import Notifier
from arena.retry import RetryPolicy
from arena.store import ContestStore


@dataclass
class Services:
    settings: Settings
    metrics: MetricsAccumulator
    store: ContestStore
    notifier: Notifier
    leaderboards: LeaderboardEngine
    lifecycle: ContestLifecycleManager
    detector: FairPlayDetector
    workers: WorkerPool
    commands: CommandDispatcher
    health: HealthMonitor

    async def close(self) -> None:
        await self.workers.stop_all()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: object | None,
) -> Services:
    metrics = MetricsAccumulator()
    store = ContestStore(session_factory, RetryPolicy.from_settings(settings, metrics))
    notifier = Notifier(redis, settings.notifications_channel)
    cache = HistoryCache(settings.history_cache_ttl_seconds, settings.history_cache_max_entries)

    leaderboards = LeaderboardEngine(store, metrics, settings.leaderboard_bucket_width)
    lifecycle = ContestLifecycleManager(store, leaderboards, notifier, metrics)
    detector = FairPlayDetector(store, cache, notifier, metrics, autoban=settings.fairplay_autoban)
    workers = WorkerPool(leaderboards, detector, metrics, settings.leaderboard_debounce_seconds)
    commands = CommandDispatcher(lifecycle, leaderboards, detector, store)
    health = HealthMonitor(store, metrics, cache, workers, settings)

    return Services(
        settings=settings,
        metrics=metrics,
        store=store,
        notifier=notifier,
        leaderboards=leaderboards,
        lifecycle=lifecycle,
        detector=detector,
        workers=workers,
        commands=commands,
        health=health,
    )
