"""Contest lifecycle: state machine, registration, scoring and finalization.

State progression: draft -> registration -> active -> completed
paused, cancelled and under_review can be entered from any non-terminal
state. A paused or under-review contest resumes to the status it left, or
moves on to that status's forward successor. completed and cancelled are
terminal.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import pydantic
import structlog

from arena.contests.leaderboard import RANKED_STATUSES, LeaderboardEngine, rank_participants
from arena.contests.prizes import payout, prize_for, validate_prize_pool
from arena.contests.schemas import ContestCreate, ParticipantCreate, PrizePool
from arena.db.models import Contest, Participant
from arena.errors import ContestClosed, InvalidTransition, ValidationError
from arena.metrics import MetricsAccumulator
from arena.notifications import Notifier
from arena.store import TERMINAL_STATUSES, ContestStore

logger = structlog.get_logger()

FORWARD: dict[str, str] = {
    "draft": "registration",
    "registration": "active",
    "active": "completed",
}
INTERRUPTS = frozenset({"paused", "cancelled", "under_review"})
HOLDING = frozenset({"paused", "under_review"})
REGISTRATION_OPEN = frozenset({"draft", "registration"})


def validate_transition(current: str, target: str, previous: str | None = None) -> None:
    """Validate a status change. Raises InvalidTransition if forbidden."""
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(f"Invalid transition: {current} is terminal")
    if current == target:
        raise InvalidTransition(f"Invalid transition: contest is already {current}")
    if target in INTERRUPTS:
        return

    if current in HOLDING:
        if previous is None:
            raise InvalidTransition(f"Invalid transition: {current} has no status to resume")
        allowed = {previous}
        if previous in FORWARD:
            allowed.add(FORWARD[previous])
    else:
        allowed = {FORWARD[current]} if current in FORWARD else set()

    if target not in allowed:
        valid = sorted((allowed | INTERRUPTS) - {current})
        raise InvalidTransition(
            f"Invalid transition: {current} -> {target}. Valid transitions: {valid}"
        )


def build_contest_metrics(
    contest: Contest,
    participants: list[Participant],
    ranked: list[Participant],
    payouts: list[dict[str, Any]],
) -> dict[str, Any]:
    """Aggregate snapshot stored on the contest at completion."""
    scores = [float(p.score) for p in ranked]
    statuses: dict[str, int] = {}
    for p in participants:
        statuses[p.status] = statuses.get(p.status, 0) + 1
    pool = contest.prize_pool
    sponsorship = sum(s.get("value", 0) for s in pool.get("sponsorships", []))

    return {
        "participation": {
            "registered": len(participants),
            "ranked": len(ranked),
            "by_status": statuses,
        },
        "engagement": {
            "average_achievements": (
                sum(len(p.achievements or []) for p in ranked) / len(ranked) if ranked else 0.0
            ),
            "scoring_participants": sum(1 for s in scores if s > 0),
        },
        "performance": {
            "average_score": sum(scores) / len(scores) if scores else 0.0,
            "highest_score": max(scores) if scores else 0.0,
            "lowest_score": min(scores) if scores else 0.0,
            "average_fair_play": (
                sum(float(p.fair_play_score) for p in ranked) / len(ranked) if ranked else 0.0
            ),
        },
        "financial": {
            "prize_pool": pool.get("total_value", 0),
            "currency": pool.get("currency", "USD"),
            "sponsorship": sponsorship,
            "distributed": round(sum(p["amount"] for p in payouts), 2),
            "winners": len(payouts),
        },
    }


class ContestLifecycleManager:
    """Drives contests through their statuses and applies entry actions."""

    def __init__(
        self,
        store: ContestStore,
        leaderboards: LeaderboardEngine,
        notifier: Notifier,
        metrics: MetricsAccumulator,
    ) -> None:
        self.store = store
        self.leaderboards = leaderboards
        self.notifier = notifier
        self.metrics = metrics

    async def create_contest(self, payload: ContestCreate | dict[str, Any]) -> Contest:
        """Validate and persist a new draft contest."""
        if not isinstance(payload, ContestCreate):
            try:
                payload = ContestCreate.model_validate(payload)
            except pydantic.ValidationError as exc:
                raise ValidationError(str(exc)) from exc
        validate_prize_pool(payload.prize_pool)

        values = payload.model_dump(mode="json")
        values["start_at"] = payload.start_at
        values["end_at"] = payload.end_at
        contest = await self.store.create_contest(values)

        await self.store.add_event(
            contest.id, "contest_created", {"name": contest.name, "type": contest.type},
            correlation_id=uuid.uuid4().hex,
        )
        logger.info("contest_created", contest_id=contest.id, type=contest.type)
        return contest

    async def register_participant(
        self, contest_id: int, payload: ParticipantCreate | dict[str, Any]
    ) -> Participant:
        if not isinstance(payload, ParticipantCreate):
            try:
                payload = ParticipantCreate.model_validate(payload)
            except pydantic.ValidationError as exc:
                raise ValidationError(str(exc)) from exc

        contest = await self.store.get_contest(contest_id)
        if contest.status in TERMINAL_STATUSES:
            raise ContestClosed(f"Contest {contest_id} is {contest.status}")
        if contest.status not in REGISTRATION_OPEN:
            raise InvalidTransition(f"Contest {contest_id} is not open for registration ({contest.status})")

        participant = await self.store.add_participant(contest_id, payload.model_dump())
        await self.store.add_event(
            contest_id, "participant_registered", {"user_id": participant.user_id},
            participant_id=participant.id,
        )
        logger.info("participant_registered", contest_id=contest_id, participant_id=participant.id)
        return participant

    async def record_score(self, participant_id: int, delta: float) -> float:
        """Atomically add ``delta`` to a participant's score."""
        try:
            score = await self.store.increment_score(participant_id, delta)
        except ContestClosed:
            self.metrics.record_rejected("score")
            logger.warning("score_rejected", participant_id=participant_id, delta=delta)
            raise
        self.metrics.record_success("score")
        return score

    async def transition(self, contest_id: int, target: str) -> Contest:
        """Move a contest to ``target`` and run the entry actions."""
        contest = await self.store.get_contest(contest_id)
        validate_transition(contest.status, target, contest.previous_status)

        if target == "completed":
            return await self.finalize(contest_id)

        previous: str | None = None
        if target in HOLDING:
            previous = contest.previous_status if contest.status in HOLDING else contest.status

        correlation_id = uuid.uuid4().hex
        updated = await self.store.set_contest_status(contest_id, contest.status, target, previous)
        details: dict[str, Any] = {"from": contest.status, "to": target}

        if target == "active":
            details["activated"] = await self.store.activate_registered(contest_id)
            await self.store.add_event(contest_id, "contest_started", {}, correlation_id=correlation_id)

        await self.store.add_event(
            contest_id, "status_changed", details,
            severity="warn" if target in INTERRUPTS else "info",
            correlation_id=correlation_id,
        )
        logger.info("contest_status_changed", contest_id=contest_id, **details)
        return updated

    async def start(self, contest_id: int) -> Contest:
        return await self.transition(contest_id, "active")

    async def finalize(self, contest_id: int) -> Contest:
        """Rank, pay out and close a contest.

        Runs under the contest's leaderboard lock so no recompute can
        interleave; once the completed status is committed further score
        changes and recomputes are refused.
        """
        correlation_id = uuid.uuid4().hex
        async with self.leaderboards.lock_for(contest_id):
            contest = await self.store.get_contest(contest_id)
            validate_transition(contest.status, "completed", contest.previous_status)
            pool = PrizePool.model_validate(contest.prize_pool)

            everyone = await self.store.list_participants(contest_id)
            ranked = [p for p in everyone if p.status in RANKED_STATUSES]
            entries = rank_participants(ranked)

            ranks = {e.participant_id: e.rank for e in entries}
            payouts: list[dict[str, Any]] = []
            for entry in entries:
                amount = payout(entry.rank, pool.distribution)
                if amount <= 0:
                    continue
                prize = prize_for(entry.rank, pool.distribution)
                payouts.append(
                    {
                        "participant_id": entry.participant_id,
                        "rank": entry.rank,
                        "amount": amount,
                        "currency": pool.currency,
                        "prize_type": prize.type if prize else "cash",
                    }
                )

            snapshot = build_contest_metrics(contest, everyone, ranked, payouts)
            updated = await self.store.finalize_contest(
                contest_id, contest.status, ranks, payouts, snapshot
            )
            await self.leaderboards.recompute_locked(contest_id, final=True)

        distributed = sum(p["amount"] for p in payouts)
        self.metrics.prize_value_distributed += distributed
        self.metrics.record_success("finalize")

        for p in payouts:
            await self.store.add_event(
                contest_id, "prize_distributed",
                {"rank": p["rank"], "amount": p["amount"], "currency": p["currency"]},
                participant_id=p["participant_id"], correlation_id=correlation_id,
            )
        await self.store.add_event(
            contest_id, "contest_completed",
            {"ranked": len(entries), "distributed": round(distributed, 2)},
            correlation_id=correlation_id,
        )
        await self.notifier.contest_completed(contest_id, payouts)
        logger.info(
            "contest_finalized",
            contest_id=contest_id,
            ranked=len(entries),
            payouts=len(payouts),
            distributed=round(distributed, 2),
        )
        return updated

    async def archive_completed(self, older_than_days: int = 30) -> list[int]:
        """Archive completed contests whose end is older than the window."""
        before = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        archived = await self.store.archive_contests(before)
        for contest_id in archived:
            await self.store.add_event(contest_id, "contest_archived", {"before": before.isoformat()})
        if archived:
            logger.info("contests_archived", count=len(archived))
        return archived
