"""Leaderboard engine: deterministic ranking with trend and stats.

Ranking order: score DESC, fair-play score DESC, achievement count DESC,
then registration order (participant id) ASC. Ranks are dense 1..N.
Leaderboards are recomputed from the latest committed participant rows
and written back as a single replace; there is no incremental patching.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import weakref
from collections import defaultdict
from collections.abc import Iterable, Sequence
from typing import Any

from arena.contests.schemas import LeaderboardEntry, LeaderboardSnapshot, LeaderboardStats, Trend
from arena.errors import ContestClosed
from arena.metrics import MetricsAccumulator
from arena.store import TERMINAL_STATUSES, ContestStore

logger = logging.getLogger(__name__)

RANKED_STATUSES = ("active", "completed")


def sort_key(p: Any) -> tuple[float, float, int, int]:
    return (
        -float(p.score),
        -float(p.fair_play_score),
        -len(p.achievements or []),
        int(p.id),
    )


def compute_trend(previous_rank: int | None, rank: int) -> Trend:
    """Compare against the previous computed rank (lower is better)."""
    if previous_rank is None or previous_rank == rank:
        return "stable"
    return "up" if rank < previous_rank else "down"


def rank_participants(
    participants: Iterable[Any],
    previous_ranks: dict[int, int] | None = None,
) -> list[LeaderboardEntry]:
    """Rank participants deterministically.

    Input objects need ``id``, ``user_id``, ``score``, ``fair_play_score``
    and ``achievements`` attributes (ORM rows work as-is).
    """
    previous_ranks = previous_ranks or {}
    ordered = sorted(participants, key=sort_key)

    entries = []
    for idx, p in enumerate(ordered):
        rank = idx + 1
        entries.append(
            LeaderboardEntry(
                rank=rank,
                participant_id=p.id,
                user_id=p.user_id,
                score=float(p.score),
                fair_play_score=float(p.fair_play_score),
                trend=compute_trend(previous_ranks.get(p.id), rank),
                achievements=list(p.achievements or []),
            )
        )
    return entries


def compute_stats(scores: Sequence[float], bucket_width: int = 10) -> LeaderboardStats:
    """Aggregate stats; an empty board yields zeros and an empty histogram."""
    if not scores:
        return LeaderboardStats()

    distribution: dict[int, int] = defaultdict(int)
    for score in scores:
        bucket = int(math.floor(score / bucket_width) * bucket_width)
        distribution[bucket] += 1

    return LeaderboardStats(
        total_participants=len(scores),
        average_score=sum(scores) / len(scores),
        highest_score=max(scores),
        lowest_score=min(scores),
        score_distribution=dict(sorted(distribution.items())),
    )


class LeaderboardEngine:
    """Single writer per contest over the store's leaderboard rows."""

    def __init__(
        self,
        store: ContestStore,
        metrics: MetricsAccumulator,
        bucket_width: int = 10,
    ) -> None:
        self.store = store
        self.metrics = metrics
        self.bucket_width = bucket_width
        # Entries vanish once no coroutine holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, contest_id: int) -> asyncio.Lock:
        lock = self._locks.get(contest_id)
        if lock is None:
            lock = self._locks[contest_id] = asyncio.Lock()
        return lock

    async def recompute(
        self,
        contest_id: int,
        scope: str = "global",
        scope_key: str = "",
        cancel: asyncio.Event | None = None,
    ) -> LeaderboardSnapshot | None:
        """Recompute one scope. Returns None when cancelled before the write."""
        async with self.lock_for(contest_id):
            return await self.recompute_locked(contest_id, scope, scope_key, cancel)

    async def recompute_all(
        self, contest_id: int, cancel: asyncio.Event | None = None
    ) -> list[LeaderboardSnapshot]:
        """Recompute the global board plus every regional and division board."""
        async with self.lock_for(contest_id):
            participants = await self.store.list_participants(contest_id, statuses=RANKED_STATUSES)
            scopes = [("global", "")]
            scopes += [("regional", r) for r in sorted({p.region for p in participants if p.region})]
            scopes += [("division", d) for d in sorted({p.division for p in participants if p.division})]

            snapshots = []
            for scope, key in scopes:
                snapshot = await self.recompute_locked(contest_id, scope, key, cancel)
                if snapshot is None:
                    break
                snapshots.append(snapshot)
            return snapshots

    async def recompute_locked(
        self,
        contest_id: int,
        scope: str = "global",
        scope_key: str = "",
        cancel: asyncio.Event | None = None,
        final: bool = False,
    ) -> LeaderboardSnapshot | None:
        """Recompute while the caller already holds ``lock_for(contest_id)``.

        ``final`` is reserved for finalization, which writes the board one
        last time after the contest is marked completed.
        """
        started = time.monotonic()
        contest = await self.store.get_contest(contest_id)
        if contest.status in TERMINAL_STATUSES and not final:
            self.metrics.record_rejected("leaderboard")
            raise ContestClosed(f"Contest {contest_id} is {contest.status}; leaderboard is frozen")

        filters: dict[str, str] = {}
        if scope == "regional":
            filters["region"] = scope_key
        elif scope == "division":
            filters["division"] = scope_key
        participants = await self.store.list_participants(contest_id, statuses=RANKED_STATUSES, **filters)

        current = await self.store.get_leaderboard(contest_id, scope, scope_key)
        previous_ranks = {e["participant_id"]: e["rank"] for e in current.entries} if current else {}

        entries: list[dict[str, Any]] = []
        for entry in rank_participants(participants, previous_ranks):
            if cancel is not None and cancel.is_set():
                logger.info("Leaderboard recompute cancelled for contest %d (%s)", contest_id, scope)
                return None
            entries.append(entry.model_dump(mode="json"))

        stats = compute_stats([float(p.score) for p in participants], self.bucket_width)
        if cancel is not None and cancel.is_set():
            return None

        version = await self.store.replace_leaderboard(
            contest_id, scope, scope_key, entries, stats.model_dump(mode="json")
        )
        self.metrics.record_success("leaderboard", time.monotonic() - started)
        logger.info(
            "Leaderboard %s/%s for contest %d replaced: %d entries (v%d)",
            scope, scope_key or "-", contest_id, len(entries), version,
        )
        return LeaderboardSnapshot(
            contest_id=contest_id,
            scope=scope,
            scope_key=scope_key,
            entries=entries,
            stats=stats,
            version=version,
        )

    async def latest(self, contest_id: int, scope: str = "global", scope_key: str = "") -> LeaderboardSnapshot:
        """Last committed snapshot, or an empty board if none was written yet."""
        row = await self.store.get_leaderboard(contest_id, scope, scope_key)
        if row is None:
            return LeaderboardSnapshot(contest_id=contest_id, scope=scope, scope_key=scope_key)
        return LeaderboardSnapshot(
            contest_id=contest_id,
            scope=scope,
            scope_key=scope_key,
            entries=row.entries,
            stats=row.stats,
            version=row.version,
            updated_at=row.updated_at,
        )
