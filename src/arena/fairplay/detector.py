"""Fair-play detector: ingest history, run the lanes, persist findings.

The four lanes run concurrently per participant. A failing lane is
logged and counted as a ``DetectionError`` without hiding the findings of
the others. Findings are persisted under a per-participant lock; each
carries a dedup key so a re-run over the same evidence deducts nothing.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
import weakref
from datetime import datetime, timezone
from typing import Any

import pydantic
import structlog

from arena.db.models import ActivityRecord, BetRecord, Participant
from arena.errors import ContestClosed, DetectionError, InvalidTransition, ValidationError
from arena.fairplay.cache import HistoryCache
from arena.fairplay.lanes import (
    check_betting_patterns,
    check_collusion,
    check_multiple_accounts,
    check_time_anomalies,
)
from arena.fairplay.patterns import epoch_ms
from arena.fairplay.schemas import ActivityIn, BetIn, LaneFinding, ResourceIn, ViolationRead
from arena.fairplay.scoring import ACTION_STATUSES, action_for, deduction_for
from arena.metrics import MetricsAccumulator
from arena.notifications import Notifier
from arena.store import TERMINAL_STATUSES, ContestStore

logger = structlog.get_logger()

HISTORY_LIMIT = 100
LANES = ("multiple_accounts", "betting_patterns", "collusion", "time_anomalies")
CHECKED_STATUSES = ("registered", "active", "suspended")


def dedup_key(finding: LaneFinding) -> str:
    """Stable identity of a finding: same evidence window, same key."""
    raw = "|".join(
        [
            str(finding.participant_id),
            finding.rule,
            str(finding.counterparty_id or "-"),
            str(int(epoch_ms(finding.window_start))),
            str(int(epoch_ms(finding.window_end))),
            str(finding.record_count),
        ]
    )
    return hashlib.sha256(raw.encode()).hexdigest()


def _parse(model: type[pydantic.BaseModel], payload: Any) -> Any:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(str(exc)) from exc


class FairPlayDetector:
    """Runs the fair-play lanes and applies their consequences."""

    def __init__(
        self,
        store: ContestStore,
        cache: HistoryCache,
        notifier: Notifier,
        metrics: MetricsAccumulator,
        autoban: bool = False,
    ) -> None:
        self.store = store
        self.cache = cache
        self.notifier = notifier
        self.metrics = metrics
        self.autoban = autoban
        # Entries vanish once no coroutine holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock_for(self, participant_id: int) -> asyncio.Lock:
        lock = self._locks.get(participant_id)
        if lock is None:
            lock = self._locks[participant_id] = asyncio.Lock()
        return lock

    async def _ensure_open(self, contest_id: int) -> None:
        """Fair play is frozen together with the contest."""
        contest = await self.store.get_contest(contest_id)
        if contest.status in TERMINAL_STATUSES:
            self.metrics.record_rejected("fairplay")
            raise ContestClosed(f"Contest {contest_id} is {contest.status}")

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    async def ingest_activity(self, payload: ActivityIn | dict[str, Any]) -> ActivityRecord:
        record = _parse(ActivityIn, payload)
        participant = await self.store.get_participant(record.participant_id)
        await self._ensure_open(participant.contest_id)
        stored = await self.store.add_activity(
            {"contest_id": participant.contest_id, **record.model_dump()}
        )
        self.cache.invalidate(participant.id)
        return stored

    async def ingest_bet(self, payload: BetIn | dict[str, Any]) -> BetRecord:
        bet = _parse(BetIn, payload)
        participant = await self.store.get_participant(bet.participant_id)
        await self._ensure_open(participant.contest_id)
        stored = await self.store.add_bet({"contest_id": participant.contest_id, **bet.model_dump()})
        self.cache.invalidate(participant.id)
        return stored

    async def register_resource(self, payload: ResourceIn | dict[str, Any]) -> None:
        resource = _parse(ResourceIn, payload)
        await self.store.add_resource(resource.participant_id, resource.resource_type, resource.resource_id)

    async def history(self, participant_id: int) -> list[ActivityRecord]:
        cached = self.cache.get(participant_id)
        if cached is not None:
            return cached
        generation = self.cache.generation()
        records = await self.store.recent_activity(participant_id, HISTORY_LIMIT)
        self.cache.put(participant_id, records, generation)
        return records

    # ------------------------------------------------------------------
    # Lanes
    # ------------------------------------------------------------------

    async def _multiple_accounts(self, participant: Participant) -> list[LaneFinding]:
        history = await self.history(participant.id)
        ips = {r.ip_address for r in history if r.ip_address}
        related_ids = await self.store.participants_on_ips(participant.contest_id, ips, exclude=participant.id)
        if not related_ids:
            return []
        related = {pid: await self.history(pid) for pid in related_ids}
        resources = await self.store.resources_for([participant.id, *related_ids])
        return check_multiple_accounts(participant, history, related, resources)

    async def _betting_patterns(self, participant: Participant) -> list[LaneFinding]:
        return check_betting_patterns(participant, await self.history(participant.id))

    async def _collusion(self, participant: Participant) -> list[LaneFinding]:
        bets = await self.store.recent_bets(participant.id, HISTORY_LIMIT)
        if not bets:
            return []
        related = await self.store.bets_on_events(
            participant.contest_id, {b.event_id for b in bets}, exclude=participant.id
        )
        return check_collusion(participant, bets, related)

    async def _time_anomalies(self, participant: Participant) -> list[LaneFinding]:
        return check_time_anomalies(participant, await self.history(participant.id))

    async def run_lanes(self, participant: Participant) -> tuple[list[LaneFinding], list[DetectionError]]:
        """Run every lane concurrently; failures are isolated per lane."""
        lanes = {
            "multiple_accounts": self._multiple_accounts,
            "betting_patterns": self._betting_patterns,
            "collusion": self._collusion,
            "time_anomalies": self._time_anomalies,
        }
        results = await asyncio.gather(
            *(lane(participant) for lane in lanes.values()),
            return_exceptions=True,
        )

        findings: list[LaneFinding] = []
        errors: list[DetectionError] = []
        for name, result in zip(lanes, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                error = DetectionError(name, str(result))
                errors.append(error)
                self.metrics.record_error(f"lane:{name}")
                logger.error(
                    "fairplay_lane_failed",
                    lane=name,
                    participant_id=participant.id,
                    error=str(result),
                    exc_info=result,
                )
                continue
            self.metrics.record_success(f"lane:{name}")
            findings.extend(result)
        return findings, errors

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    async def check_participant(self, participant_id: int) -> list[ViolationRead]:
        """Run all lanes for one participant and persist new findings."""
        started = time.monotonic()
        async with self.lock_for(participant_id):
            participant = await self.store.get_participant(participant_id)
            await self._ensure_open(participant.contest_id)
            findings, _errors = await self.run_lanes(participant)

            violations = []
            for finding in findings:
                violation = await self._persist(participant, finding)
                if violation is not None:
                    violations.append(violation)

        self.metrics.record_success("fairplay", time.monotonic() - started)
        return violations

    async def check_contest(self, contest_id: int, cancel: asyncio.Event | None = None) -> dict[str, Any]:
        """Check every participant of a contest; stops early when cancelled."""
        await self._ensure_open(contest_id)
        participants = await self.store.list_participants(contest_id, statuses=CHECKED_STATUSES)

        checked = 0
        violations: list[ViolationRead] = []
        for participant in participants:
            if cancel is not None and cancel.is_set():
                logger.info("fairplay_check_cancelled", contest_id=contest_id, checked=checked)
                break
            violations.extend(await self.check_participant(participant.id))
            checked += 1

        logger.info(
            "fairplay_contest_checked",
            contest_id=contest_id,
            checked=checked,
            violations=len(violations),
        )
        return {
            "contest_id": contest_id,
            "participants_checked": checked,
            "violations": [v.model_dump(mode="json") for v in violations],
        }

    async def _persist(self, participant: Participant, finding: LaneFinding) -> ViolationRead | None:
        action = action_for(finding.severity)
        deduction = deduction_for(finding.severity)
        values = {
            "contest_id": finding.contest_id,
            "participant_id": finding.participant_id,
            "rule": finding.rule,
            "severity": finding.severity,
            "confidence": finding.confidence,
            "evidence": finding.evidence.model_dump(mode="json"),
            "action": action,
            "status": "pending",
            "dedup_key": dedup_key(finding),
            "detected_at": datetime.now(timezone.utc),
        }
        recorded = await self.store.record_violation(values, deduction)
        if recorded is None:
            logger.debug("fairplay_duplicate_finding", participant_id=participant.id, rule=finding.rule)
            return None

        row, new_score = recorded
        violation = ViolationRead.model_validate(row)
        self.metrics.record_violation(finding.severity)

        if self.autoban and action in ACTION_STATUSES:
            await self.store.set_participant_status(participant.id, ACTION_STATUSES[action])

        await self.store.add_event(
            finding.contest_id,
            "violation_detected",
            {"violation_id": violation.id, "rule": finding.rule, "severity": finding.severity},
            participant_id=participant.id,
            severity="error" if finding.severity in ("high", "critical") else "warn",
        )
        await self.notifier.violation_detected(violation.model_dump(mode="json"))
        logger.warning(
            "fairplay_violation",
            participant_id=participant.id,
            rule=finding.rule,
            severity=finding.severity,
            confidence=round(finding.confidence, 3),
            fair_play_score=new_score,
        )
        return violation

    # ------------------------------------------------------------------
    # Appeals
    # ------------------------------------------------------------------

    async def appeal(self, violation_id: int) -> ViolationRead:
        row = await self.store.flag_appeal(violation_id)
        self.metrics.appeals += 1
        await self.store.add_event(
            row.contest_id, "appeal_submitted", {"violation_id": violation_id},
            participant_id=row.participant_id,
        )
        return ViolationRead.model_validate(row)

    async def resolve_appeal(self, violation_id: int, granted: bool) -> ViolationRead:
        """Close an appealed violation; a granted appeal gives back the points it removed."""
        current = await self.store.get_violation(violation_id)
        if not current.appeal_requested:
            raise InvalidTransition(f"Violation {violation_id} has no appeal to decide")
        async with self.lock_for(current.participant_id):
            if granted:
                row = await self.store.close_violation(violation_id, "appealed", restore=True)
                if self.autoban and current.action in ACTION_STATUSES:
                    await self.store.set_participant_status(current.participant_id, "active")
            else:
                row = await self.store.close_violation(violation_id, "resolved")
        await self.store.add_event(
            row.contest_id, "appeal_resolved", {"violation_id": violation_id, "granted": granted},
            participant_id=row.participant_id,
        )
        return ViolationRead.model_validate(row)

    async def resolve(self, violation_id: int) -> ViolationRead:
        row = await self.store.close_violation(violation_id, "resolved")
        return ViolationRead.model_validate(row)

    async def list_violations(self, contest_id: int) -> list[ViolationRead]:
        return [ViolationRead.model_validate(v) for v in await self.store.list_violations(contest_id=contest_id)]

