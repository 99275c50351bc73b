"""Fair-play detector end to end: ingest, lanes, persistence and appeals."""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import pytest

from arena.errors import ContestClosed, InvalidTransition, NotFound, ValidationError
from arena.services import build_services
from tests.conftest import BASE_TIME, make_active_contest

pytestmark = pytest.mark.asyncio


async def place_bets(services, pid: int, count: int = 10, gap: float = 5.0, amount: float = 25.0, offset: int = 0):
    for i in range(count):
        await services.detector.ingest_activity(
            {
                "participant_id": pid,
                "type": "bet_placed",
                "value": amount,
                "occurred_at": BASE_TIME + timedelta(seconds=(offset + i) * gap),
            }
        )


async def log_in(services, pid: int, ip: str, seconds: float):
    await services.detector.ingest_activity(
        {
            "participant_id": pid,
            "type": "login",
            "ip_address": ip,
            "occurred_at": BASE_TIME + timedelta(seconds=seconds),
        }
    )


class TestIngest:
    async def test_unknown_participant(self, services):
        with pytest.raises(NotFound):
            await services.detector.ingest_activity({"participant_id": 999, "type": "login"})

    async def test_invalid_bet(self, services):
        _, [pid] = await make_active_contest(services, [0])
        with pytest.raises(ValidationError):
            await services.detector.ingest_bet({"participant_id": pid, "event_id": "e1", "outcome": "win", "amount": 0})

    async def test_ingest_invalidates_history_cache(self, services):
        _, [pid] = await make_active_contest(services, [0])
        await log_in(services, pid, "10.0.0.1", 0)
        assert len(await services.detector.history(pid)) == 1
        await log_in(services, pid, "10.0.0.1", 60)
        assert len(await services.detector.history(pid)) == 2

    async def test_history_read_during_ingest_is_not_cached(self, services, monkeypatch):
        _, [pid] = await make_active_contest(services, [0])
        await log_in(services, pid, "10.0.0.1", 0)

        read_done = asyncio.Event()
        resume = asyncio.Event()
        original = services.store.recent_activity

        async def paused_read(participant_id, limit=100):
            rows = await original(participant_id, limit)
            read_done.set()
            await resume.wait()
            return rows

        monkeypatch.setattr(services.store, "recent_activity", paused_read)
        reader = asyncio.create_task(services.detector.history(pid))
        await read_done.wait()
        await log_in(services, pid, "10.0.0.1", 60)
        resume.set()
        assert len(await reader) == 1

        assert len(await services.detector.history(pid)) == 2


class TestBettingViolation:
    async def test_identical_bets_deduct_twenty(self, services, redis):
        contest_id, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)

        [violation] = await services.detector.check_participant(pid)
        assert violation.rule == "betting_patterns"
        assert violation.severity == "high"
        assert violation.action == "suspend"
        assert violation.status == "pending"
        assert violation.deduction == 20
        assert violation.evidence.lane == "betting_patterns"
        assert (await services.store.get_participant(pid)).fair_play_score == 80

        messages = [json.loads(c.args[1]) for c in redis.publish.await_args_list]
        assert "violation_detected" in [m["event"] for m in messages]
        events = [e.type for e in await services.store.list_events(contest_id)]
        assert "violation_detected" in events

    async def test_rerun_over_same_evidence_deducts_nothing(self, services):
        _, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)
        assert len(await services.detector.check_participant(pid)) == 1
        assert await services.detector.check_participant(pid) == []
        assert (await services.store.get_participant(pid)).fair_play_score == 80
        assert len(await services.store.list_violations(participant_id=pid)) == 1

    async def test_concurrent_checks_record_once(self, services):
        _, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)
        results = await asyncio.gather(*(services.detector.check_participant(pid) for _ in range(3)))
        assert sum(len(r) for r in results) == 1
        assert (await services.store.get_participant(pid)).fair_play_score == 80

    async def test_new_evidence_counts_again(self, services):
        _, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)
        await services.detector.check_participant(pid)
        await place_bets(services, pid, count=1, offset=10)
        assert len(await services.detector.check_participant(pid)) == 1
        assert (await services.store.get_participant(pid)).fair_play_score == 60

    async def test_score_floors_at_zero(self, services):
        _, [pid] = await make_active_contest(services, [0], fair_play=[10])
        await place_bets(services, pid, gap=0.5)
        [violation] = await services.detector.check_participant(pid)
        assert violation.severity == "critical"
        assert (await services.store.get_participant(pid)).fair_play_score == 0


class TestMultipleAccounts:
    async def test_one_shared_ip_among_several_is_not_flagged(self, services):
        _, [p1, p2] = await make_active_contest(services, [0, 0])
        await log_in(services, p1, "10.0.0.1", 0)
        await log_in(services, p1, "10.0.0.2", 60)
        await log_in(services, p2, "10.0.0.1", 30)
        await log_in(services, p2, "10.0.0.3", 90)

        assert await services.detector.check_participant(p1) == []

    async def test_linked_accounts_flagged(self, services):
        _, [p1, p2] = await make_active_contest(services, [0, 0])
        for i in range(5):
            await log_in(services, p1, "10.0.0.1", i * 60)
            await log_in(services, p2, "10.0.0.1", i * 60 + 30)
        for pid in (p1, p2):
            await services.detector.register_resource(
                {"participant_id": pid, "resource_type": "device", "resource_id": "dev-42"}
            )

        [violation] = await services.detector.check_participant(p1)
        assert violation.rule == "multiple_accounts"
        assert violation.severity == "critical"
        assert violation.evidence.related_participant_id == p2
        assert violation.evidence.shared_resources == ["device:dev-42"]

    async def test_other_contests_ignored(self, services):
        _, [p1] = await make_active_contest(services, [0])
        _, [p2] = await make_active_contest(services, [0])
        for i in range(5):
            await log_in(services, p1, "10.0.0.1", i * 60)
            await log_in(services, p2, "10.0.0.1", i * 60 + 30)
        assert await services.detector.check_participant(p1) == []


class TestCollusion:
    async def test_mirrored_bets_flagged(self, services):
        _, [p1, p2] = await make_active_contest(services, [0, 0])
        for i, profit in enumerate([10, -4, 7, -9, 3, 12]):
            placed = BASE_TIME + timedelta(minutes=i * 10)
            await services.detector.ingest_bet(
                {"participant_id": p1, "event_id": f"match-{i}", "outcome": "home",
                 "amount": 10, "profit": profit, "placed_at": placed}
            )
            await services.detector.ingest_bet(
                {"participant_id": p2, "event_id": f"match-{i}", "outcome": "away",
                 "amount": 10, "profit": -profit, "placed_at": placed + timedelta(seconds=4)}
            )

        [violation] = await services.detector.check_participant(p1)
        assert violation.rule == "collusion"
        assert violation.severity == "critical"
        assert violation.evidence.frequent_counterparties[0].participant_id == p2


class TestLaneIsolation:
    async def test_failing_lane_does_not_hide_others(self, services, monkeypatch):
        _, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)

        async def broken(participant):
            raise RuntimeError("history backend unavailable")

        monkeypatch.setattr(services.detector, "_collusion", broken)
        [violation] = await services.detector.check_participant(pid)
        assert violation.rule == "betting_patterns"
        assert services.metrics.errors["lane:collusion"] == 1

    async def test_lane_errors_reported(self, services, monkeypatch):
        _, [pid] = await make_active_contest(services, [0])
        participant = await services.store.get_participant(pid)

        async def broken(participant):
            raise RuntimeError("boom")

        monkeypatch.setattr(services.detector, "_time_anomalies", broken)
        findings, errors = await services.detector.run_lanes(participant)
        assert findings == []
        assert [e.lane for e in errors] == ["time_anomalies"]


class TestContestCheck:
    async def test_checks_every_participant(self, services):
        contest_id, [p1, p2] = await make_active_contest(services, [0, 0])
        await place_bets(services, p1)
        report = await services.detector.check_contest(contest_id)
        assert report["participants_checked"] == 2
        assert [v["participant_id"] for v in report["violations"]] == [p1]

    async def test_cancelled_before_start(self, services):
        contest_id, _ = await make_active_contest(services, [0, 0])
        cancel = asyncio.Event()
        cancel.set()
        report = await services.detector.check_contest(contest_id, cancel=cancel)
        assert report["participants_checked"] == 0

    async def test_unknown_contest(self, services):
        with pytest.raises(NotFound):
            await services.detector.check_contest(404)


class TestAutoEnforcement:
    async def test_autoban_applies_action(self, settings, session_factory, redis):
        enforcing = build_services(settings.model_copy(update={"fairplay_autoban": True}), session_factory, redis)
        try:
            _, [pid] = await make_active_contest(enforcing, [0])
            await place_bets(enforcing, pid, gap=0.5)
            [violation] = await enforcing.detector.check_participant(pid)
            assert violation.action == "disqualify"
            assert (await enforcing.store.get_participant(pid)).status == "disqualified"
        finally:
            await enforcing.close()

    async def test_no_status_change_by_default(self, services):
        _, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid, gap=0.5)
        await services.detector.check_participant(pid)
        assert (await services.store.get_participant(pid)).status == "active"


class TestAppeals:
    async def _violation(self, services):
        _, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)
        [violation] = await services.detector.check_participant(pid)
        return pid, violation

    async def test_granted_appeal_restores_points(self, services):
        pid, violation = await self._violation(services)
        appealed = await services.detector.appeal(violation.id)
        assert appealed.appeal_requested is True
        assert services.metrics.appeals == 1

        decided = await services.detector.resolve_appeal(violation.id, granted=True)
        assert decided.status == "appealed"
        assert decided.resolved_at is not None
        assert (await services.store.get_participant(pid)).fair_play_score == 100

    async def test_denied_appeal_keeps_deduction(self, services):
        pid, violation = await self._violation(services)
        await services.detector.appeal(violation.id)
        decided = await services.detector.resolve_appeal(violation.id, granted=False)
        assert decided.status == "resolved"
        assert (await services.store.get_participant(pid)).fair_play_score == 80

    async def test_closed_violation_is_final(self, services):
        _, violation = await self._violation(services)
        await services.detector.resolve(violation.id)
        with pytest.raises(InvalidTransition):
            await services.detector.appeal(violation.id)
        with pytest.raises(InvalidTransition):
            await services.detector.resolve_appeal(violation.id, granted=True)

    async def test_unknown_violation(self, services):
        with pytest.raises(NotFound):
            await services.detector.appeal(12345)

    async def test_granted_appeal_restores_only_what_was_removed(self, services):
        _, [pid] = await make_active_contest(services, [0], fair_play=[30])
        await place_bets(services, pid, gap=0.5)
        [violation] = await services.detector.check_participant(pid)
        assert violation.deduction == 40
        assert violation.points_removed == 30
        assert (await services.store.get_participant(pid)).fair_play_score == 0

        await services.detector.appeal(violation.id)
        await services.detector.resolve_appeal(violation.id, granted=True)
        assert (await services.store.get_participant(pid)).fair_play_score == 30

    async def test_decision_requires_an_appeal(self, services):
        pid, violation = await self._violation(services)
        with pytest.raises(InvalidTransition):
            await services.detector.resolve_appeal(violation.id, granted=True)
        with pytest.raises(InvalidTransition):
            await services.store.close_violation(violation.id, "appealed", restore=True)
        assert (await services.store.get_participant(pid)).fair_play_score == 80
        assert (await services.store.get_violation(violation.id)).status == "pending"


class TestCompletedContest:
    async def test_late_activity_is_refused(self, services):
        contest_id, [pid] = await make_active_contest(services, [0])
        await services.lifecycle.transition(contest_id, "completed")

        with pytest.raises(ContestClosed):
            await place_bets(services, pid)
        with pytest.raises(ContestClosed):
            await services.detector.ingest_bet({"participant_id": pid, "event_id": "e1", "outcome": "win", "amount": 5})
        assert services.metrics.rejected["fairplay"] == 2
        assert await services.detector.history(pid) == []

    async def test_check_after_completion_changes_nothing(self, services):
        contest_id, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)
        await services.lifecycle.transition(contest_id, "completed")

        with pytest.raises(ContestClosed):
            await services.detector.check_participant(pid)
        with pytest.raises(ContestClosed):
            await services.detector.check_contest(contest_id)
        assert (await services.store.get_participant(pid)).fair_play_score == 100
        assert await services.store.list_violations(participant_id=pid) == []

    async def test_completion_during_a_check_blocks_the_deduction(self, services, monkeypatch):
        contest_id, [pid] = await make_active_contest(services, [0])
        await place_bets(services, pid)
        run_lanes = services.detector.run_lanes

        async def completes_midway(participant):
            result = await run_lanes(participant)
            await services.lifecycle.transition(contest_id, "completed")
            return result

        monkeypatch.setattr(services.detector, "run_lanes", completes_midway)
        with pytest.raises(ContestClosed):
            await services.detector.check_participant(pid)
        assert (await services.store.get_participant(pid)).fair_play_score == 100
        assert await services.store.list_violations(participant_id=pid) == []
