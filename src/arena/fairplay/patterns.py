"""Behaviour patterns and the small statistics the lanes share.

Timestamps are handled as epoch milliseconds. Stored datetimes may come
back naive (SQLite); they are always UTC.
"""

from __future__ import annotations

import math
import statistics
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class BehaviorPattern:
    """All events of one type in a participant's history."""

    type: str
    frequency: float
    timestamps: list[float] = field(default_factory=list)
    values: list[float] = field(default_factory=list)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def epoch_ms(dt: datetime) -> float:
    return ensure_utc(dt).timestamp() * 1000.0


def analyze_patterns(history: Sequence[Any]) -> list[BehaviorPattern]:
    """Group activity records by type; ``frequency`` is the type's share of the history."""
    groups: dict[str, list[Any]] = defaultdict(list)
    for record in history:
        groups[record.type].append(record)

    total = len(history) or 1
    patterns = []
    for event_type, records in groups.items():
        patterns.append(
            BehaviorPattern(
                type=event_type,
                frequency=len(records) / total,
                timestamps=sorted(epoch_ms(r.occurred_at) for r in records),
                values=[float(r.value) for r in records if r.value is not None],
            )
        )
    return patterns


def spread(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def gaps(timestamps: Sequence[float]) -> list[float]:
    ordered = sorted(timestamps)
    return [b - a for a, b in zip(ordered, ordered[1:])]


def histogram(values: Iterable[float], width: int = 10) -> dict[int, int]:
    buckets: dict[int, int] = defaultdict(int)
    for value in values:
        buckets[int(math.floor(value / width) * width)] += 1
    return dict(buckets)


def cosine(a: dict[int, int], b: dict[int, int]) -> float:
    keys = set(a) | set(b)
    dot = sum(a.get(k, 0) * b.get(k, 0) for k in keys)
    norm = math.sqrt(sum(v * v for v in a.values())) * math.sqrt(sum(v * v for v in b.values()))
    return dot / norm if norm else 0.0


def pearson(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation of paired samples; 0 when either side is constant."""
    n = min(len(x), len(y))
    if n < 2:
        return 0.0
    x, y = x[:n], y[:n]
    mx, my = statistics.fmean(x), statistics.fmean(y)
    num = sum((a - mx) * (b - my) for a, b in zip(x, y))
    den = math.sqrt(sum((a - mx) ** 2 for a in x) * sum((b - my) ** 2 for b in y))
    return num / den if den else 0.0


def rapid_sequences(timestamps: Sequence[float], threshold_ms: float) -> list[list[int]]:
    """Runs of consecutive events closer together than ``threshold_ms``."""
    ordered = sorted(timestamps)
    sequences: list[list[int]] = []
    current: list[int] = []
    for i in range(1, len(ordered)):
        if ordered[i] - ordered[i - 1] < threshold_ms:
            if not current:
                current.append(i - 1)
            current.append(i)
        elif current:
            sequences.append(current)
            current = []
    if current:
        sequences.append(current)
    return sequences


def alternation_counts(first: Sequence[float], second: Sequence[float]) -> tuple[int, int]:
    """Merge two timelines and count (switches, stays) between owners."""
    merged = sorted([(t, 0) for t in first] + [(t, 1) for t in second])
    switches = stays = 0
    for (_, prev_owner), (_, owner) in zip(merged, merged[1:]):
        if owner == prev_owner:
            stays += 1
        else:
            switches += 1
    return switches, stays


def behavior_similarity(mine: Sequence[BehaviorPattern], theirs: Sequence[BehaviorPattern], width: int = 10) -> float:
    """Average per-type similarity of two pattern sets.

    A type the other account never produced scores 0; otherwise the score
    is the mean of frequency closeness and value-histogram cosine.
    """
    if not mine:
        return 0.0
    by_type = {p.type: p for p in theirs}
    scores = []
    for p in mine:
        other = by_type.get(p.type)
        if other is None:
            scores.append(0.0)
            continue
        frequency = 1 - abs(p.frequency - other.frequency)
        if p.values or other.values:
            values = cosine(histogram(p.values, width), histogram(other.values, width))
        else:
            values = 1.0
        scores.append((frequency + values) / 2)
    return sum(scores) / len(scores)
