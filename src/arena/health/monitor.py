"""Component health and metrics reporting.

Each component reports ``{"status": healthy|degraded|unhealthy, "details"}``.
A component is degraded when its error rate exceeds the configured
threshold or queued work has waited longer than the staleness window;
the store is unhealthy when it cannot be reached.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from arena.config import Settings
from arena.contests.worker import WorkerPool
from arena.errors import StoreError
from arena.fairplay.cache import HistoryCache
from arena.fairplay.detector import LANES
from arena.metrics import MetricsAccumulator
from arena.store import ContestStore

logger = logging.getLogger(__name__)

_RANK = {"healthy": 0, "degraded": 1, "unhealthy": 2}


def worst(statuses: list[str]) -> str:
    return max(statuses, key=lambda s: _RANK[s], default="healthy")


class HealthMonitor:
    """Aggregates component health from the store, metrics and worker pool."""

    def __init__(
        self,
        store: ContestStore,
        metrics: MetricsAccumulator,
        cache: HistoryCache,
        workers: WorkerPool,
        settings: Settings,
    ) -> None:
        self.store = store
        self.metrics = metrics
        self.cache = cache
        self.workers = workers
        self.error_threshold = settings.health_error_rate_threshold
        self.staleness = settings.health_staleness_seconds

    async def _store_status(self) -> dict[str, Any]:
        started = time.monotonic()
        try:
            await self.store.ping()
            counts = await self.store.count_contests_by_status()
        except StoreError as exc:
            logger.error("Store health check failed: %s", exc)
            return {"status": "unhealthy", "details": {"error": str(exc)}}
        return {
            "status": "healthy",
            "details": {
                "latency": round(time.monotonic() - started, 4),
                "active_contests": counts.get("active", 0),
            },
        }

    def _rate_status(self, rate: float, stale: bool = False) -> str:
        if rate > self.error_threshold or stale:
            return "degraded"
        return "healthy"

    def _leaderboard_status(self, now: float) -> dict[str, Any]:
        pending_age = self.metrics.oldest_pending_age(now)
        rate = self.metrics.error_rate("leaderboard")
        return {
            "status": self._rate_status(rate, pending_age > self.staleness),
            "details": {
                "queue_size": self.workers.queue_size(),
                "workers": len(self.workers.workers),
                "oldest_pending_age": round(pending_age, 3),
                "error_rate": round(rate, 4),
                "rejected": self.metrics.rejected.get("leaderboard", 0) + self.metrics.rejected.get("score", 0),
            },
        }

    def _fairplay_status(self) -> dict[str, Any]:
        lane_ops = sum(self.metrics.operations[f"lane:{lane}"] for lane in LANES)
        lane_errors = sum(self.metrics.errors[f"lane:{lane}"] for lane in LANES)
        rate = lane_errors / lane_ops if lane_ops else 0.0
        return {
            "status": self._rate_status(rate),
            "details": {
                "checks": self.metrics.operations["fairplay"],
                "cache_size": len(self.cache),
                "detection_latency": round(self.metrics.average_latency("fairplay"), 4),
                "violations": dict(self.metrics.violations),
                "error_rate": round(rate, 4),
            },
        }

    async def check(self) -> dict[str, Any]:
        now = time.time()
        components = {
            "store": await self._store_status(),
            "leaderboard": self._leaderboard_status(now),
            "fairplay": self._fairplay_status(),
        }
        overall = worst([c["status"] for c in components.values()])
        return {"status": overall, "components": components}

    async def contest_metrics(self) -> dict[str, Any]:
        """Engine-wide metrics export."""
        counts = await self.store.count_contests_by_status()
        summary = await self.store.fair_play_summary()
        return {
            "contests_active": counts.get("active", 0),
            "contests_completed": counts.get("completed", 0),
            "prize_value_distributed": summary["prize_value_distributed"],
            "fair_play_checks": self.metrics.operations["fairplay"],
            "violations_detected": summary["violations"],
            "appeal_rate": summary["appeal_rate"],
            "average_fair_play_score": summary["average_fair_play_score"],
            "error_rate": round(self.metrics.error_rate(), 4),
            "counters": self.metrics.export(),
        }
