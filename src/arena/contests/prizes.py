"""Prize pool validation and per-rank payout.

A distribution entry covers either a single rank (``1`` or ``"1"``) or an
inclusive range (``"4-10"``). An entry's value is the total for the ranks
it covers; a range pays that value split evenly per rank. Validation runs
once, before a contest is persisted; ``payout`` trusts its input.
"""

from __future__ import annotations

from collections.abc import Sequence

from arena.contests.schemas import PrizeEntry, PrizePool
from arena.errors import ValidationError

SUM_TOLERANCE = 1e-2


def parse_rank_spec(rank: int | str) -> tuple[int, int]:
    """Return the inclusive ``(start, end)`` ranks covered by a rank spec."""
    if isinstance(rank, bool):
        raise ValidationError(f"Invalid rank spec: {rank!r}")
    if isinstance(rank, int):
        start = end = rank
    else:
        text = rank.strip()
        try:
            if "-" in text:
                head, tail = text.split("-", 1)
                start, end = int(head), int(tail)
            else:
                start = end = int(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid rank spec: {rank!r}") from exc
    if start < 1 or end < start:
        raise ValidationError(f"Invalid rank range: {rank!r}")
    return start, end


def validate_prize_pool(pool: PrizePool) -> None:
    """Check the sum and coverage invariants. Raises ValidationError."""
    allocated = sum(e.value for e in pool.distribution) + sum(s.value for s in pool.special_prizes)
    funded = pool.total_value + sum(s.value for s in pool.sponsorships)
    if abs(allocated - funded) > SUM_TOLERANCE + 1e-9:
        raise ValidationError(
            f"Prize distribution totals {allocated:.2f} but the pool holds {funded:.2f}"
        )

    ranges = sorted(parse_rank_spec(e.rank) for e in pool.distribution)
    expected = 1
    for start, end in ranges:
        if start > expected:
            raise ValidationError(f"Prize distribution has no entry for rank {expected}")
        if start < expected:
            raise ValidationError(f"Prize distribution covers rank {start} more than once")
        expected = end + 1


def prize_for(rank: int, distribution: Sequence[PrizeEntry]) -> PrizeEntry | None:
    """First distribution entry covering ``rank``, if any."""
    for entry in distribution:
        start, end = parse_rank_spec(entry.rank)
        if start <= rank <= end:
            return entry
    return None


def payout(rank: int, distribution: Sequence[PrizeEntry]) -> float:
    """Amount owed to ``rank``; 0 when no entry covers it."""
    entry = prize_for(rank, distribution)
    if entry is None:
        return 0.0
    start, end = parse_rank_spec(entry.rank)
    return round(entry.value / (end - start + 1), 2)
