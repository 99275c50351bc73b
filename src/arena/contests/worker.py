"""Per-contest change worker.

Every contest gets one worker consuming typed change events from an
asyncio queue. Score changes only mark the contest dirty; after a short
debounce the worker drains whatever queued up meanwhile and recomputes
the leaderboards once from the latest committed state. Activity and bet
events trigger a fair-play check for that participant first.

Once the contest reaches a terminal status the worker refuses further
score, activity and bet events, stops its task and leaves the pool.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Union

from arena.contests.leaderboard import LeaderboardEngine
from arena.errors import ArenaError, ContestClosed
from arena.fairplay.detector import FairPlayDetector
from arena.metrics import MetricsAccumulator
from arena.store import TERMINAL_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreChanged:
    contest_id: int
    participant_id: int
    score: float


@dataclass(frozen=True)
class ActivityRecorded:
    contest_id: int
    participant_id: int


@dataclass(frozen=True)
class BetRecorded:
    contest_id: int
    participant_id: int


@dataclass(frozen=True)
class StatusChanged:
    contest_id: int
    status: str


ChangeEvent = Union[ScoreChanged, ActivityRecorded, BetRecorded, StatusChanged]


class ContestWorker:
    """Single consumer of one contest's change events."""

    def __init__(
        self,
        contest_id: int,
        leaderboards: LeaderboardEngine,
        detector: FairPlayDetector,
        metrics: MetricsAccumulator,
        debounce: float = 0.5,
        on_closed: Callable[[ContestWorker], None] | None = None,
    ) -> None:
        self.contest_id = contest_id
        self.leaderboards = leaderboards
        self.detector = detector
        self.metrics = metrics
        self.debounce = debounce
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self.cancel = asyncio.Event()
        self.closed = False
        self.on_closed = on_closed
        self._task: asyncio.Task[None] | None = None

    @property
    def pending_key(self) -> str:
        return f"contest:{self.contest_id}"

    def submit(self, event: ChangeEvent) -> None:
        if self.closed:
            if isinstance(event, StatusChanged):
                return
            self.metrics.record_rejected("score" if isinstance(event, ScoreChanged) else "fairplay")
            raise ContestClosed(f"Contest {self.contest_id} is closed")
        self.metrics.mark_pending(self.pending_key)
        self.queue.put_nowait(event)

    def start(self) -> None:
        if self.closed:
            return
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"contest-worker-{self.contest_id}")

    async def stop(self) -> None:
        self.cancel.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def drain(self) -> None:
        """Wait until every submitted event has been processed."""
        await self.queue.join()

    async def run(self) -> None:
        while not self.closed:
            first = await self.queue.get()
            batch = [first]
            try:
                if self.debounce > 0:
                    await asyncio.sleep(self.debounce)
                while True:
                    try:
                        batch.append(self.queue.get_nowait())
                    except asyncio.QueueEmpty:
                        break
                await self.process(batch)
            except asyncio.CancelledError:
                raise
            except Exception:
                self.metrics.record_error("worker")
                logger.exception("Contest worker %d failed on a batch of %d", self.contest_id, len(batch))
            finally:
                for _ in batch:
                    self.queue.task_done()
                if self.queue.empty():
                    self.metrics.clear_pending(self.pending_key)
        self._shut_down()

    def _shut_down(self) -> None:
        """Drop whatever queued up behind the closing batch and leave the pool."""
        dropped = 0
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.queue.task_done()
            dropped += 1
        self.metrics.clear_pending(self.pending_key)
        logger.info("Contest %d closed; worker stopped, %d queued events dropped", self.contest_id, dropped)
        if self.on_closed is not None:
            self.on_closed(self)

    async def process(self, batch: list[ChangeEvent]) -> None:
        dirty = False
        suspects: set[int] = set()

        for event in batch:
            if isinstance(event, StatusChanged):
                if event.status in TERMINAL_STATUSES:
                    self.closed = True
                else:
                    dirty = True
            elif isinstance(event, ScoreChanged):
                dirty = True
            else:
                suspects.add(event.participant_id)

        for participant_id in sorted(suspects):
            if self.cancel.is_set():
                return
            try:
                found = await self.detector.check_participant(participant_id)
            except ContestClosed:
                self.closed = True
                return
            except ArenaError as exc:
                logger.warning("Fair-play check for participant %d failed: %s", participant_id, exc)
                continue
            if found:
                dirty = True

        if not dirty or self.closed or self.cancel.is_set():
            return
        try:
            await self.leaderboards.recompute_all(self.contest_id, cancel=self.cancel)
        except ContestClosed:
            self.closed = True


class WorkerPool:
    """Routes change events to the worker owning their contest."""

    def __init__(
        self,
        leaderboards: LeaderboardEngine,
        detector: FairPlayDetector,
        metrics: MetricsAccumulator,
        debounce: float = 0.5,
    ) -> None:
        self.leaderboards = leaderboards
        self.detector = detector
        self.metrics = metrics
        self.debounce = debounce
        self.workers: dict[int, ContestWorker] = {}

    def worker_for(self, contest_id: int) -> ContestWorker:
        worker = self.workers.get(contest_id)
        if worker is None:
            worker = ContestWorker(
                contest_id, self.leaderboards, self.detector, self.metrics, self.debounce, on_closed=self._evict
            )
            self.workers[contest_id] = worker
        worker.start()
        return worker

    def _evict(self, worker: ContestWorker) -> None:
        if self.workers.get(worker.contest_id) is worker:
            del self.workers[worker.contest_id]

    def submit(self, event: ChangeEvent) -> None:
        self.worker_for(event.contest_id).submit(event)

    def queue_size(self) -> int:
        return sum(w.queue.qsize() for w in self.workers.values())

    async def drain(self) -> None:
        for worker in list(self.workers.values()):
            await worker.drain()

    async def stop_all(self) -> None:
        for worker in list(self.workers.values()):
            await worker.stop()
        self.workers.clear()
