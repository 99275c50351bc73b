"""Prize pool validation and per-rank payout tests."""

from __future__ import annotations

import pytest

from arena.contests.prizes import parse_rank_spec, payout, prize_for, validate_prize_pool
from arena.contests.schemas import PrizePool
from arena.errors import ValidationError


def _pool(distribution, total=1000, **extra) -> PrizePool:
    return PrizePool.model_validate({"total_value": total, "distribution": distribution, **extra})


STANDARD = [
    {"rank": 1, "value": 500},
    {"rank": 2, "value": 300},
    {"rank": "3-5", "value": 200.01},
]


class TestParseRankSpec:
    """Single ranks and inclusive ranges."""

    def test_integer_rank(self):
        assert parse_rank_spec(1) == (1, 1)

    def test_string_rank(self):
        assert parse_rank_spec("7") == (7, 7)

    def test_range(self):
        assert parse_rank_spec("4-10") == (4, 10)

    @pytest.mark.parametrize("spec", [0, "0", "5-3", "abc", "1-x", True])
    def test_invalid_specs_rejected(self, spec):
        with pytest.raises(ValidationError):
            parse_rank_spec(spec)


class TestValidatePrizePool:
    """Sum and coverage checks run before a contest is stored."""

    def test_standard_pool_within_tolerance(self):
        # 500 + 300 + 200.01 is one cent over the pool
        validate_prize_pool(_pool(STANDARD))

    def test_sum_mismatch_rejected(self):
        with pytest.raises(ValidationError, match="totals"):
            validate_prize_pool(_pool([{"rank": 1, "value": 500}, {"rank": 2, "value": 300}]))

    def test_gap_rejected(self):
        with pytest.raises(ValidationError, match="rank 2"):
            validate_prize_pool(_pool([{"rank": 1, "value": 700}, {"rank": "3-5", "value": 300}]))

    def test_overlap_rejected(self):
        with pytest.raises(ValidationError, match="more than once"):
            validate_prize_pool(_pool([{"rank": 1, "value": 500}, {"rank": "1-3", "value": 500}]))

    def test_must_start_at_rank_one(self):
        with pytest.raises(ValidationError, match="rank 1"):
            validate_prize_pool(_pool([{"rank": "2-3", "value": 1000}]))

    def test_sponsorship_adds_to_funding(self):
        pool = _pool(
            [{"rank": 1, "value": 800}, {"rank": 2, "value": 300}],
            sponsorships=[{"sponsor": "Acme", "value": 100}],
        )
        validate_prize_pool(pool)

    def test_special_prizes_count_as_allocated(self):
        pool = _pool(
            [{"rank": 1, "value": 900}],
            special_prizes=[{"name": "Longest streak", "value": 100}],
        )
        validate_prize_pool(pool)


class TestPayout:
    """Amount owed per rank."""

    def test_single_ranks(self):
        pool = _pool(STANDARD)
        assert payout(1, pool.distribution) == 500
        assert payout(2, pool.distribution) == 300

    def test_range_split_evenly(self):
        pool = _pool(STANDARD)
        for rank in (3, 4, 5):
            assert payout(rank, pool.distribution) == pytest.approx(66.67)

    def test_uncovered_rank_pays_nothing(self):
        pool = _pool(STANDARD)
        assert payout(6, pool.distribution) == 0.0
        assert prize_for(6, pool.distribution) is None

    def test_prize_type_carried(self):
        pool = _pool([{"rank": 1, "value": 1000, "type": "credit"}])
        entry = prize_for(1, pool.distribution)
        assert entry is not None
        assert entry.type == "credit"
