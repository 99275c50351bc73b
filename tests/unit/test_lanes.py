"""Fair-play lanes over in-memory history records."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from arena.fairplay.lanes import (
    check_betting_patterns,
    check_collusion,
    check_multiple_accounts,
    check_time_anomalies,
)
from arena.fairplay.patterns import analyze_patterns, behavior_similarity, pearson, rapid_sequences

NOON = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
NIGHT = datetime(2026, 3, 2, 2, 0, tzinfo=timezone.utc)

SUBJECT = SimpleNamespace(id=1, contest_id=10)


def activity(seconds: float, type: str = "bet_placed", value: float | None = 25.0, ip: str | None = None,
             start: datetime = NOON):
    return SimpleNamespace(
        type=type,
        value=value,
        ip_address=ip,
        occurred_at=start + timedelta(seconds=seconds),
    )


def bet(participant_id: int, event_id: str, outcome: str, seconds: float, profit: float):
    return SimpleNamespace(
        participant_id=participant_id,
        event_id=event_id,
        outcome=outcome,
        amount=10.0,
        profit=profit,
        placed_at=NOON + timedelta(seconds=seconds),
    )


class TestBettingPatterns:
    """Machine-like regularity in bet_placed activity."""

    def test_needs_ten_bets(self):
        history = [activity(i * 5) for i in range(9)]
        assert check_betting_patterns(SUBJECT, history) == []

    def test_identical_bets_flagged_high(self):
        history = [activity(i * 5) for i in range(10)]
        [finding] = check_betting_patterns(SUBJECT, history)
        assert finding.rule == "betting_patterns"
        assert finding.confidence == pytest.approx(2 / 3)
        assert finding.severity == "high"
        assert finding.evidence.consistent_timing is True
        assert finding.evidence.consistent_sizes is True
        assert finding.evidence.rapid_sequences == 0
        assert finding.record_count == 10

    def test_rapid_identical_bets_flagged_critical(self):
        history = [activity(i * 0.5) for i in range(10)]
        [finding] = check_betting_patterns(SUBJECT, history)
        assert finding.severity == "critical"
        assert finding.evidence.rapid_sequences == 1

    def test_irregular_bets_not_reported(self):
        offsets = [0, 3, 40, 45, 160, 170, 400, 402, 900, 1500]
        sizes = [5, 80, 12, 150, 33, 7, 260, 18, 95, 41]
        history = [activity(t, value=v) for t, v in zip(offsets, sizes)]
        assert check_betting_patterns(SUBJECT, history) == []

    def test_other_activity_types_ignored(self):
        history = [activity(i * 5, type="login") for i in range(20)]
        assert check_betting_patterns(SUBJECT, history) == []


class TestTimeAnomalies:
    """Night-time share, reaction latency and timing precision."""

    def test_empty_history(self):
        assert check_time_anomalies(SUBJECT, []) == []

    def test_night_activity_with_inhuman_reactions(self):
        history = [activity(i * 60, type="bet_response", value=40, start=NIGHT) for i in range(6)]
        [finding] = check_time_anomalies(SUBJECT, history)
        assert finding.severity == "high"
        assert finding.evidence.unusual_hour_share == 1.0
        assert finding.evidence.inhuman_reactions == 6
        assert finding.evidence.hour_distribution[2] == 6

    def test_single_factor_not_reported(self):
        history = [activity(i * 60, type="login", value=None, start=NIGHT) for i in range(6)]
        assert check_time_anomalies(SUBJECT, history) == []

    def test_perfect_timing_counts_as_factor(self):
        history = [activity(i * 0.01, start=NIGHT) for i in range(4)]
        [finding] = check_time_anomalies(SUBJECT, history)
        assert finding.evidence.perfect_timing_spread_ms is not None
        assert finding.evidence.perfect_timing_spread_ms < 50
        assert finding.confidence == pytest.approx(2 / 3)

    def test_human_daytime_activity_clean(self):
        history = [activity(i * 37, type="bet_response", value=850) for i in range(10)]
        assert check_time_anomalies(SUBJECT, history) == []


class TestMultipleAccounts:
    """IP overlap gate and the three indicators."""

    def test_partial_ip_overlap_not_reported(self):
        mine = [activity(0, "login", None, ip="10.0.0.1"), activity(60, "login", None, ip="10.0.0.2")]
        theirs = [activity(30, "login", None, ip="10.0.0.1"), activity(90, "login", None, ip="10.0.0.3")]
        assert check_multiple_accounts(SUBJECT, mine, {2: theirs}, {}) == []

    def test_interleaved_similar_accounts_with_shared_device(self):
        mine = [activity(i * 60, "bet_placed", 25, ip="10.0.0.1") for i in range(5)]
        theirs = [activity(i * 60 + 30, "bet_placed", 25, ip="10.0.0.1") for i in range(5)]
        resources = {1: {"device:abc"}, 2: {"device:abc"}}

        [finding] = check_multiple_accounts(SUBJECT, mine, {2: theirs}, resources)
        assert finding.severity == "critical"
        assert finding.counterparty_id == 2
        assert finding.evidence.ip_overlap == 1.0
        assert finding.evidence.alternating_activity is True
        assert finding.evidence.similar_behavior is True
        assert finding.evidence.shared_resources == ["device:abc"]
        assert finding.record_count == 10

    def test_no_ips_no_check(self):
        mine = [activity(0, "login", None)]
        assert check_multiple_accounts(SUBJECT, mine, {2: mine}, {}) == []


class TestCollusion:
    """Opposite-side betting, counterparties and profit correlation."""

    def test_no_counterpart_bets(self):
        mine = [bet(1, f"e{i}", "win", i * 100, 5) for i in range(6)]
        assert check_collusion(SUBJECT, mine, []) == []

    def test_mirrored_counterparty(self):
        profits = [10, -4, 7, -9, 3, 12]
        mine = [bet(1, f"e{i}", "win", i * 100, p) for i, p in enumerate(profits)]
        theirs = [bet(2, f"e{i}", "lose", i * 100 + 5, -p) for i, p in enumerate(profits)]

        [finding] = check_collusion(SUBJECT, mine, theirs)
        assert finding.severity == "critical"
        assert finding.counterparty_id == 2
        evidence = finding.evidence
        assert evidence.complementary_count == 6
        assert evidence.frequent_counterparties[0].participant_id == 2
        assert evidence.profit_correlations[0].correlation == pytest.approx(-1.0)

    def test_same_side_far_apart_not_complementary(self):
        mine = [bet(1, f"e{i}", "win", i * 100, 1) for i in range(6)]
        theirs = [bet(2, f"e{i}", "win", i * 100 + 3600, 1) for i in range(6)]
        # recurring counterparty only; constant profits give no correlation
        assert check_collusion(SUBJECT, mine, theirs) == []

    def test_few_profit_samples_ignored(self):
        mine = [bet(1, f"e{i}", "over", i * 100, p) for i, p in enumerate([1, 2, 3])]
        theirs = [bet(2, f"e{i}", "under", i * 100 + 1, p) for i, p in enumerate([1, 2, 3])]
        [finding] = check_collusion(SUBJECT, mine, theirs)
        assert finding.evidence.profit_correlations == []
        assert finding.confidence == pytest.approx(2 / 3)


class TestPatternHelpers:
    def test_similarity_zero_for_unseen_types(self):
        mine = analyze_patterns([activity(0, "login", None)])
        theirs = analyze_patterns([activity(0, "bet_placed", 10)])
        assert behavior_similarity(mine, theirs) == 0.0

    def test_similarity_one_for_identical_histories(self):
        history = [activity(i, "bet_placed", 10 + i) for i in range(5)]
        assert behavior_similarity(analyze_patterns(history), analyze_patterns(history)) == pytest.approx(1.0)

    def test_pearson_constant_series(self):
        assert pearson([1, 1, 1], [1, 2, 3]) == 0.0

    def test_rapid_sequences_split_on_gap(self):
        assert rapid_sequences([0, 100, 200, 5000, 5100], 1000) == [[0, 1, 2], [3, 4]]
