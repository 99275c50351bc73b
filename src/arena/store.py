"""Contest store: the only module that talks to the database.

Every public call opens its own session, commits before returning and is
wrapped by the shared ``RetryPolicy``. Writes are either a whole-row
replace (leaderboards) or a single atomic UPDATE (scores, fair-play
deductions) so concurrent callers never lose an increment.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, func, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arena.db.models import (
    ActivityRecord,
    BetRecord,
    Contest,
    ContestEvent,
    FairPlayViolation,
    Leaderboard,
    Participant,
    ParticipantResource,
    PayoutRecord,
)
from arena.errors import ContestClosed, InvalidTransition, NotFound, ValidationError
from arena.retry import RetryPolicy

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "cancelled")
MAX_FAIR_PLAY = 100.0


class ContestStore:
    """Repository over an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], retry: RetryPolicy) -> None:
        self._sessions = session_factory
        self.retry = retry

    # ------------------------------------------------------------------
    # Contests
    # ------------------------------------------------------------------

    async def create_contest(self, values: dict[str, Any]) -> Contest:
        async def op() -> Contest:
            now = datetime.now(timezone.utc)
            async with self._sessions() as db:
                contest = Contest(status="draft", created_at=now, updated_at=now, **values)
                db.add(contest)
                await db.commit()
                await db.refresh(contest)
                return contest

        return await self.retry.run(op, "create_contest")

    async def get_contest(self, contest_id: int) -> Contest:
        async def op() -> Contest:
            async with self._sessions() as db:
                contest = await db.get(Contest, contest_id)
                if contest is None:
                    raise NotFound(f"Contest {contest_id} not found")
                return contest

        return await self.retry.run(op, "get_contest")

    async def list_contests(self, statuses: Iterable[str] | None = None) -> list[Contest]:
        wanted = list(statuses) if statuses is not None else None

        async def op() -> list[Contest]:
            async with self._sessions() as db:
                stmt = select(Contest).order_by(Contest.id)
                if wanted is not None:
                    stmt = stmt.where(Contest.status.in_(wanted))
                result = await db.execute(stmt)
                return list(result.scalars())

        return await self.retry.run(op, "list_contests")

    async def count_contests_by_status(self) -> dict[str, int]:
        async def op() -> dict[str, int]:
            async with self._sessions() as db:
                result = await db.execute(
                    select(Contest.status, func.count(Contest.id)).group_by(Contest.status)
                )
                return {row[0]: row[1] for row in result.all()}

        return await self.retry.run(op, "count_contests_by_status")

    async def set_contest_status(
        self, contest_id: int, expected: str, target: str, previous: str | None
    ) -> Contest:
        """Compare-and-set the contest status; a concurrent change wins."""

        async def op() -> Contest:
            now = datetime.now(timezone.utc)
            async with self._sessions() as db:
                result = await db.execute(
                    update(Contest)
                    .where(Contest.id == contest_id, Contest.status == expected)
                    .values(status=target, previous_status=previous, updated_at=now)
                )
                if result.rowcount == 0:
                    await db.rollback()
                    raise InvalidTransition(
                        f"Contest {contest_id} is no longer {expected}; refusing {target}"
                    )
                await db.commit()
                contest = await db.get(Contest, contest_id)
                assert contest is not None
                return contest

        return await self.retry.run(op, "set_contest_status")

    async def archive_contests(self, before: datetime) -> list[int]:
        async def op() -> list[int]:
            now = datetime.now(timezone.utc)
            async with self._sessions() as db:
                result = await db.execute(
                    select(Contest.id).where(
                        Contest.status == "completed",
                        Contest.archived_at.is_(None),
                        Contest.end_at < before,
                    )
                )
                ids = [row[0] for row in result.all()]
                if ids:
                    await db.execute(update(Contest).where(Contest.id.in_(ids)).values(archived_at=now))
                    await db.execute(
                        update(Participant).where(Participant.contest_id.in_(ids)).values(archived_at=now)
                    )
                    await db.commit()
                return ids

        return await self.retry.run(op, "archive_contests")

    async def finalize_contest(
        self,
        contest_id: int,
        expected: str,
        ranks: dict[int, int],
        payouts: list[dict[str, Any]],
        metrics: dict[str, Any],
    ) -> Contest:
        """Write final ranks, payouts, metrics and the completed status in one transaction."""

        async def op() -> Contest:
            now = datetime.now(timezone.utc)
            async with self._sessions() as db:
                result = await db.execute(
                    update(Contest)
                    .where(Contest.id == contest_id, Contest.status == expected)
                    .values(
                        status="completed",
                        previous_status=None,
                        metrics=metrics,
                        completed_at=now,
                        updated_at=now,
                    )
                )
                if result.rowcount == 0:
                    await db.rollback()
                    raise InvalidTransition(f"Contest {contest_id} changed status during finalization")
                for participant_id, rank in ranks.items():
                    await db.execute(
                        update(Participant)
                        .where(Participant.id == participant_id)
                        .values(rank=rank, status="completed")
                    )
                for payout in payouts:
                    db.add(PayoutRecord(contest_id=contest_id, created_at=now, **payout))
                await db.commit()
                contest = await db.get(Contest, contest_id)
                assert contest is not None
                return contest

        return await self.retry.run(op, "finalize_contest")

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def add_participant(self, contest_id: int, values: dict[str, Any]) -> Participant:
        async def op() -> Participant:
            async with self._sessions() as db:
                participant = Participant(
                    contest_id=contest_id,
                    registered_at=datetime.now(timezone.utc),
                    **values,
                )
                db.add(participant)
                try:
                    await db.commit()
                except IntegrityError as exc:
                    await db.rollback()
                    raise ValidationError(
                        f"User {values.get('user_id')} is already registered for contest {contest_id}"
                    ) from exc
                await db.refresh(participant)
                return participant

        return await self.retry.run(op, "add_participant")

    async def get_participant(self, participant_id: int) -> Participant:
        async def op() -> Participant:
            async with self._sessions() as db:
                participant = await db.get(Participant, participant_id)
                if participant is None:
                    raise NotFound(f"Participant {participant_id} not found")
                return participant

        return await self.retry.run(op, "get_participant")

    async def list_participants(
        self,
        contest_id: int,
        statuses: Iterable[str] | None = None,
        region: str | None = None,
        division: str | None = None,
    ) -> list[Participant]:
        """Participants ordered by score desc, then registration order."""
        wanted = list(statuses) if statuses is not None else None

        async def op() -> list[Participant]:
            async with self._sessions() as db:
                stmt = (
                    select(Participant)
                    .where(Participant.contest_id == contest_id)
                    .order_by(Participant.score.desc(), Participant.id)
                )
                if wanted is not None:
                    stmt = stmt.where(Participant.status.in_(wanted))
                if region is not None:
                    stmt = stmt.where(Participant.region == region)
                if division is not None:
                    stmt = stmt.where(Participant.division == division)
                result = await db.execute(stmt)
                return list(result.scalars())

        return await self.retry.run(op, "list_participants")

    async def activate_registered(self, contest_id: int) -> int:
        async def op() -> int:
            async with self._sessions() as db:
                result = await db.execute(
                    update(Participant)
                    .where(Participant.contest_id == contest_id, Participant.status == "registered")
                    .values(status="active")
                )
                await db.commit()
                return result.rowcount

        return await self.retry.run(op, "activate_registered")

    async def increment_score(self, participant_id: int, delta: float) -> float:
        """Atomically add ``delta``; refused once the contest is closed."""

        async def op() -> float:
            async with self._sessions() as db:
                open_contests = select(Contest.id).where(Contest.status.not_in(TERMINAL_STATUSES))
                result = await db.execute(
                    update(Participant)
                    .where(Participant.id == participant_id, Participant.contest_id.in_(open_contests))
                    .values(score=Participant.score + delta)
                )
                if result.rowcount == 0:
                    await db.rollback()
                    if await db.get(Participant, participant_id) is None:
                        raise NotFound(f"Participant {participant_id} not found")
                    raise ContestClosed(f"Contest of participant {participant_id} is closed")
                await db.commit()
                score = await db.scalar(select(Participant.score).where(Participant.id == participant_id))
                return float(score)

        return await self.retry.run(op, "increment_score")

    async def set_participant_status(self, participant_id: int, status: str) -> None:
        async def op() -> None:
            async with self._sessions() as db:
                await db.execute(
                    update(Participant).where(Participant.id == participant_id).values(status=status)
                )
                await db.commit()

        await self.retry.run(op, "set_participant_status")

    async def adjust_fair_play(self, participant_id: int, delta: float) -> float:
        async def op() -> float:
            async with self._sessions() as db:
                score = await _adjust_fair_play(db, participant_id, delta)
                await db.commit()
                return score

        return await self.retry.run(op, "adjust_fair_play")

    # ------------------------------------------------------------------
    # Leaderboards
    # ------------------------------------------------------------------

    async def get_leaderboard(self, contest_id: int, scope: str = "global", scope_key: str = "") -> Leaderboard | None:
        async def op() -> Leaderboard | None:
            async with self._sessions() as db:
                result = await db.execute(
                    select(Leaderboard).where(
                        Leaderboard.contest_id == contest_id,
                        Leaderboard.scope == scope,
                        Leaderboard.scope_key == scope_key,
                    )
                )
                return result.scalar_one_or_none()

        return await self.retry.run(op, "get_leaderboard")

    async def replace_leaderboard(
        self,
        contest_id: int,
        scope: str,
        scope_key: str,
        entries: list[dict[str, Any]],
        stats: dict[str, Any],
    ) -> int:
        """Replace the entry list in one statement and return the new version."""

        async def op() -> int:
            now = datetime.now(timezone.utc)
            async with self._sessions() as db:
                where = (
                    Leaderboard.contest_id == contest_id,
                    Leaderboard.scope == scope,
                    Leaderboard.scope_key == scope_key,
                )
                result = await db.execute(
                    update(Leaderboard)
                    .where(*where)
                    .values(entries=entries, stats=stats, version=Leaderboard.version + 1, updated_at=now)
                )
                if result.rowcount == 0:
                    db.add(
                        Leaderboard(
                            contest_id=contest_id,
                            scope=scope,
                            scope_key=scope_key,
                            entries=entries,
                            stats=stats,
                            version=1,
                            updated_at=now,
                        )
                    )
                await db.commit()
                version = await db.scalar(select(Leaderboard.version).where(*where))
                return int(version)

        return await self.retry.run(op, "replace_leaderboard")

    # ------------------------------------------------------------------
    # Activity, bets and resources
    # ------------------------------------------------------------------

    async def add_activity(self, values: dict[str, Any]) -> ActivityRecord:
        async def op() -> ActivityRecord:
            async with self._sessions() as db:
                record = ActivityRecord(**values)
                db.add(record)
                await db.commit()
                await db.refresh(record)
                return record

        return await self.retry.run(op, "add_activity")

    async def add_bet(self, values: dict[str, Any]) -> BetRecord:
        async def op() -> BetRecord:
            async with self._sessions() as db:
                record = BetRecord(**values)
                db.add(record)
                await db.commit()
                await db.refresh(record)
                return record

        return await self.retry.run(op, "add_bet")

    async def add_resource(self, participant_id: int, resource_type: str, resource_id: str) -> None:
        async def op() -> None:
            async with self._sessions() as db:
                db.add(
                    ParticipantResource(
                        participant_id=participant_id,
                        resource_type=resource_type,
                        resource_id=resource_id,
                    )
                )
                try:
                    await db.commit()
                except IntegrityError:
                    # already known for this participant
                    await db.rollback()

        await self.retry.run(op, "add_resource")

    async def recent_activity(self, participant_id: int, limit: int = 100) -> list[ActivityRecord]:
        """Most recent activity, returned oldest first."""

        async def op() -> list[ActivityRecord]:
            async with self._sessions() as db:
                result = await db.execute(
                    select(ActivityRecord)
                    .where(ActivityRecord.participant_id == participant_id)
                    .order_by(ActivityRecord.occurred_at.desc(), ActivityRecord.id.desc())
                    .limit(limit)
                )
                return list(reversed(result.scalars().all()))

        return await self.retry.run(op, "recent_activity")

    async def participants_on_ips(
        self, contest_id: int, ips: Iterable[str], exclude: int
    ) -> list[int]:
        wanted = sorted(set(ips))

        async def op() -> list[int]:
            if not wanted:
                return []
            async with self._sessions() as db:
                result = await db.execute(
                    select(ActivityRecord.participant_id)
                    .where(
                        ActivityRecord.contest_id == contest_id,
                        ActivityRecord.ip_address.in_(wanted),
                        ActivityRecord.participant_id != exclude,
                    )
                    .distinct()
                    .order_by(ActivityRecord.participant_id)
                )
                return [row[0] for row in result.all()]

        return await self.retry.run(op, "participants_on_ips")

    async def resources_for(self, participant_ids: Iterable[int]) -> dict[int, set[str]]:
        wanted = sorted(set(participant_ids))

        async def op() -> dict[int, set[str]]:
            found: dict[int, set[str]] = {pid: set() for pid in wanted}
            if not wanted:
                return found
            async with self._sessions() as db:
                result = await db.execute(
                    select(
                        ParticipantResource.participant_id,
                        ParticipantResource.resource_type,
                        ParticipantResource.resource_id,
                    ).where(ParticipantResource.participant_id.in_(wanted))
                )
                for pid, rtype, rid in result.all():
                    found[pid].add(f"{rtype}:{rid}")
            return found

        return await self.retry.run(op, "resources_for")

    async def recent_bets(self, participant_id: int, limit: int = 100) -> list[BetRecord]:
        """Most recent bets, returned oldest first."""

        async def op() -> list[BetRecord]:
            async with self._sessions() as db:
                result = await db.execute(
                    select(BetRecord)
                    .where(BetRecord.participant_id == participant_id)
                    .order_by(BetRecord.placed_at.desc(), BetRecord.id.desc())
                    .limit(limit)
                )
                return list(reversed(result.scalars().all()))

        return await self.retry.run(op, "recent_bets")

    async def bets_on_events(
        self, contest_id: int, event_ids: Iterable[str], exclude: int
    ) -> list[BetRecord]:
        wanted = sorted(set(event_ids))

        async def op() -> list[BetRecord]:
            if not wanted:
                return []
            async with self._sessions() as db:
                result = await db.execute(
                    select(BetRecord)
                    .where(
                        BetRecord.contest_id == contest_id,
                        BetRecord.event_id.in_(wanted),
                        BetRecord.participant_id != exclude,
                    )
                    .order_by(BetRecord.placed_at, BetRecord.id)
                )
                return list(result.scalars())

        return await self.retry.run(op, "bets_on_events")

    # ------------------------------------------------------------------
    # Violations
    # ------------------------------------------------------------------

    async def record_violation(self, values: dict[str, Any], deduction: float) -> tuple[FairPlayViolation, float] | None:
        """Insert a violation and apply its deduction atomically.

        Returns None when a violation with the same ``dedup_key`` exists;
        in that case nothing is deducted. Raises ContestClosed once the contest
        is over. ``points_removed`` records what the clamp at zero actually
        took, which is what an appeal gives back.
        """

        async def op() -> tuple[FairPlayViolation, float] | None:
            async with self._sessions() as db:
                status = await db.scalar(select(Contest.status).where(Contest.id == values["contest_id"]))
                if status in TERMINAL_STATUSES:
                    raise ContestClosed(f"Contest {values['contest_id']} is {status}")
                existing = await db.scalar(
                    select(FairPlayViolation.id).where(FairPlayViolation.dedup_key == values["dedup_key"])
                )
                if existing is not None:
                    return None
                violation = FairPlayViolation(deduction=deduction, **values)
                db.add(violation)
                try:
                    await db.flush()
                except IntegrityError:
                    await db.rollback()
                    return None
                before = await db.scalar(
                    select(Participant.fair_play_score)
                    .where(Participant.id == values["participant_id"])
                    .with_for_update()
                )
                score = await _adjust_fair_play(db, values["participant_id"], -deduction)
                violation.points_removed = float(before or 0.0) - score
                await db.commit()
                await db.refresh(violation)
                return violation, score

        return await self.retry.run(op, "record_violation")

    async def get_violation(self, violation_id: int) -> FairPlayViolation:
        async def op() -> FairPlayViolation:
            async with self._sessions() as db:
                violation = await db.get(FairPlayViolation, violation_id)
                if violation is None:
                    raise NotFound(f"Violation {violation_id} not found")
                return violation

        return await self.retry.run(op, "get_violation")

    async def list_violations(
        self, contest_id: int | None = None, participant_id: int | None = None
    ) -> list[FairPlayViolation]:
        async def op() -> list[FairPlayViolation]:
            async with self._sessions() as db:
                stmt = select(FairPlayViolation).order_by(FairPlayViolation.id)
                if contest_id is not None:
                    stmt = stmt.where(FairPlayViolation.contest_id == contest_id)
                if participant_id is not None:
                    stmt = stmt.where(FairPlayViolation.participant_id == participant_id)
                result = await db.execute(stmt)
                return list(result.scalars())

        return await self.retry.run(op, "list_violations")

    async def close_violation(
        self, violation_id: int, status: str, restore: bool = False
    ) -> FairPlayViolation:
        """Move a pending violation to a terminal status.

        With ``restore`` the violation must carry an appeal, and the points it
        actually removed are added back in the same transaction.
        """

        async def op() -> FairPlayViolation:
            now = datetime.now(timezone.utc)
            async with self._sessions() as db:
                stmt = update(FairPlayViolation).where(
                    FairPlayViolation.id == violation_id, FairPlayViolation.status == "pending"
                )
                if restore:
                    stmt = stmt.where(FairPlayViolation.appeal_requested.is_(True))
                result = await db.execute(stmt.values(status=status, resolved_at=now))
                if result.rowcount == 0:
                    await db.rollback()
                    if await db.get(FairPlayViolation, violation_id) is None:
                        raise NotFound(f"Violation {violation_id} not found")
                    if restore:
                        raise InvalidTransition(f"Violation {violation_id} has no open appeal")
                    raise InvalidTransition(f"Violation {violation_id} is already closed")
                violation = await db.get(FairPlayViolation, violation_id)
                assert violation is not None
                if restore and violation.points_removed > 0:
                    await _adjust_fair_play(db, violation.participant_id, violation.points_removed)
                await db.commit()
                await db.refresh(violation)
                return violation

        return await self.retry.run(op, "close_violation")

    async def flag_appeal(self, violation_id: int) -> FairPlayViolation:
        async def op() -> FairPlayViolation:
            async with self._sessions() as db:
                result = await db.execute(
                    update(FairPlayViolation)
                    .where(FairPlayViolation.id == violation_id, FairPlayViolation.status == "pending")
                    .values(appeal_requested=True)
                )
                if result.rowcount == 0:
                    await db.rollback()
                    if await db.get(FairPlayViolation, violation_id) is None:
                        raise NotFound(f"Violation {violation_id} not found")
                    raise InvalidTransition(f"Violation {violation_id} can no longer be appealed")
                await db.commit()
                violation = await db.get(FairPlayViolation, violation_id)
                assert violation is not None
                return violation

        return await self.retry.run(op, "flag_appeal")

    # ------------------------------------------------------------------
    # Payouts, events, aggregates
    # ------------------------------------------------------------------

    async def list_payouts(self, contest_id: int) -> list[PayoutRecord]:
        async def op() -> list[PayoutRecord]:
            async with self._sessions() as db:
                result = await db.execute(
                    select(PayoutRecord).where(PayoutRecord.contest_id == contest_id).order_by(PayoutRecord.rank)
                )
                return list(result.scalars())

        return await self.retry.run(op, "list_payouts")

    async def add_event(
        self,
        contest_id: int,
        event_type: str,
        details: dict[str, Any] | None = None,
        participant_id: int | None = None,
        severity: str = "info",
        correlation_id: str | None = None,
    ) -> None:
        async def op() -> None:
            async with self._sessions() as db:
                db.add(
                    ContestEvent(
                        contest_id=contest_id,
                        participant_id=participant_id,
                        type=event_type,
                        severity=severity,
                        details=details or {},
                        correlation_id=correlation_id,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                await db.commit()

        await self.retry.run(op, "add_event")

    async def list_events(self, contest_id: int) -> list[ContestEvent]:
        async def op() -> list[ContestEvent]:
            async with self._sessions() as db:
                result = await db.execute(
                    select(ContestEvent).where(ContestEvent.contest_id == contest_id).order_by(ContestEvent.id)
                )
                return list(result.scalars())

        return await self.retry.run(op, "list_events")

    async def fair_play_summary(self) -> dict[str, float]:
        async def op() -> dict[str, float]:
            async with self._sessions() as db:
                avg_score = await db.scalar(select(func.avg(Participant.fair_play_score)))
                total = await db.scalar(select(func.count(FairPlayViolation.id)))
                appealed = await db.scalar(
                    select(func.count(FairPlayViolation.id)).where(FairPlayViolation.appeal_requested.is_(True))
                )
                paid = await db.scalar(select(func.sum(PayoutRecord.amount)))
                return {
                    "average_fair_play_score": round(float(avg_score or 0.0), 2),
                    "violations": int(total or 0),
                    "appeal_rate": round((appealed or 0) / total, 4) if total else 0.0,
                    "prize_value_distributed": round(float(paid or 0.0), 2),
                }

        return await self.retry.run(op, "fair_play_summary")

    async def ping(self) -> None:
        async def op() -> None:
            async with self._sessions() as db:
                await db.execute(text("SELECT 1"))

        await self.retry.run(op, "ping")


async def _adjust_fair_play(db: AsyncSession, participant_id: int, delta: float) -> float:
    """Add ``delta`` to the fair-play score clamped to [0, 100] in one UPDATE."""
    adjusted = Participant.fair_play_score + delta
    await db.execute(
        update(Participant)
        .where(Participant.id == participant_id)
        .values(
            fair_play_score=case(
                (adjusted < 0, 0.0),
                (adjusted > MAX_FAIR_PLAY, MAX_FAIR_PLAY),
                else_=adjusted,
            )
        )
    )
    score = await db.scalar(select(Participant.fair_play_score).where(Participant.id == participant_id))
    if score is None:
        raise NotFound(f"Participant {participant_id} not found")
    return float(score)
