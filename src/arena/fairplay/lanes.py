"""The four fair-play lanes as pure functions over loaded history.

Each lane scores three factors and returns findings only when the
confidence clears the report threshold. Loading data and persisting
findings is the detector's job.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

from arena.fairplay.patterns import (
    alternation_counts,
    analyze_patterns,
    behavior_similarity,
    ensure_utc,
    epoch_ms,
    gaps,
    pearson,
    rapid_sequences,
    spread,
)
from arena.fairplay.schemas import (
    BettingPatternEvidence,
    CollusionEvidence,
    CounterpartyShare,
    LaneFinding,
    MultiAccountEvidence,
    ProfitCorrelation,
    TimeAnomalyEvidence,
)
from arena.fairplay.scoring import classify_severity, confidence_from, is_reportable

# Multiple accounts
IP_OVERLAP_THRESHOLD = 0.8
SIMILARITY_THRESHOLD = 0.8

# Betting patterns
MIN_BETS = 10
TIMING_SPREAD_MS = 1000.0
SIZE_SPREAD_RATIO = 0.1
RAPID_GAP_MS = 1000.0

# Collusion
COMPLEMENT_WINDOW_MS = 60_000.0
COMPLEMENTARY_SHARE = 0.3
COUNTERPARTY_SHARE = 0.2
MIN_PROFIT_SAMPLES = 5
PROFIT_CORRELATION = 0.7
COMPLEMENTS: dict[str, str] = {
    "win": "lose",
    "lose": "win",
    "over": "under",
    "under": "over",
    "buy": "sell",
    "sell": "buy",
    "home": "away",
    "away": "home",
}

# Time anomalies
UNUSUAL_HOURS = range(1, 5)  # 01:00-04:59 UTC
UNUSUAL_HOUR_SHARE = 0.3
INHUMAN_REACTION_MS = 100.0
INHUMAN_REACTION_SHARE = 0.5
PERFECT_TIMING_MS = 50.0


def _window(stamps: Sequence[datetime]) -> tuple[datetime, datetime]:
    if not stamps:
        now = datetime.now(timezone.utc)
        return now, now
    ordered = sorted(ensure_utc(s) for s in stamps)
    return ordered[0], ordered[-1]


def check_multiple_accounts(
    participant: Any,
    history: Sequence[Any],
    related_histories: dict[int, Sequence[Any]],
    resources: dict[int, set[str]],
) -> list[LaneFinding]:
    """Compare the participant against every account seen on its IPs."""
    my_ips = {r.ip_address for r in history if r.ip_address}
    if not my_ips:
        return []
    my_patterns = analyze_patterns(history)
    my_resources = resources.get(participant.id, set())

    findings = []
    for related_id, related in sorted(related_histories.items()):
        their_ips = {r.ip_address for r in related if r.ip_address}
        if not their_ips:
            continue
        shared = my_ips & their_ips
        overlap = len(shared) / max(len(my_ips), len(their_ips))
        if overlap <= IP_OVERLAP_THRESHOLD:
            continue

        their_patterns = analyze_patterns(related)
        switches, stays = alternation_counts(
            [epoch_ms(r.occurred_at) for r in history],
            [epoch_ms(r.occurred_at) for r in related],
        )
        alternating = switches > stays * 2
        similarity = behavior_similarity(my_patterns, their_patterns)
        similar = similarity > SIMILARITY_THRESHOLD
        shared_resources = sorted(my_resources & resources.get(related_id, set()))
        sharing = bool(shared_resources)

        confidence = confidence_from(sum([alternating, similar, sharing]))
        if not is_reportable(confidence):
            continue

        start, end = _window([r.occurred_at for r in history] + [r.occurred_at for r in related])
        findings.append(
            LaneFinding(
                rule="multiple_accounts",
                participant_id=participant.id,
                contest_id=participant.contest_id,
                confidence=confidence,
                severity=classify_severity(confidence),
                counterparty_id=related_id,
                window_start=start,
                window_end=end,
                record_count=len(history) + len(related),
                evidence=MultiAccountEvidence(
                    related_participant_id=related_id,
                    ip_overlap=round(overlap, 4),
                    shared_ips=sorted(shared),
                    alternating_activity=alternating,
                    similar_behavior=similar,
                    behavior_similarity=round(similarity, 4),
                    resource_sharing=sharing,
                    shared_resources=shared_resources,
                ),
            )
        )
    return findings


def check_betting_patterns(participant: Any, history: Sequence[Any]) -> list[LaneFinding]:
    """Look for machine-like regularity in ``bet_placed`` activity."""
    bets = sorted((r for r in history if r.type == "bet_placed"), key=lambda r: ensure_utc(r.occurred_at))
    if len(bets) < MIN_BETS:
        return []

    stamps = [epoch_ms(r.occurred_at) for r in bets]
    timing_spread = spread(gaps(stamps))
    consistent_timing = timing_spread < TIMING_SPREAD_MS

    sizes = [float(r.value) for r in bets if r.value is not None]
    average = sum(sizes) / len(sizes) if sizes else 0.0
    size_spread = spread(sizes)
    consistent_sizes = bool(sizes) and size_spread < average * SIZE_SPREAD_RATIO

    rapid = rapid_sequences(stamps, RAPID_GAP_MS)

    confidence = confidence_from(sum([consistent_timing, consistent_sizes, bool(rapid)]))
    if not is_reportable(confidence):
        return []

    start, end = _window([r.occurred_at for r in bets])
    return [
        LaneFinding(
            rule="betting_patterns",
            participant_id=participant.id,
            contest_id=participant.contest_id,
            confidence=confidence,
            severity=classify_severity(confidence),
            window_start=start,
            window_end=end,
            record_count=len(bets),
            evidence=BettingPatternEvidence(
                bet_count=len(bets),
                consistent_timing=consistent_timing,
                timing_spread_ms=round(timing_spread, 3),
                consistent_sizes=consistent_sizes,
                size_spread=round(size_spread, 4),
                average_size=round(average, 4),
                rapid_sequences=len(rapid),
            ),
        )
    ]


def check_collusion(participant: Any, bets: Sequence[Any], related_bets: Sequence[Any]) -> list[LaneFinding]:
    """Opposite-side betting, recurring counterparties and correlated profits."""
    if not bets or not related_bets:
        return []

    by_event: dict[str, list[Any]] = defaultdict(list)
    for rb in related_bets:
        by_event[rb.event_id].append(rb)

    complementary = 0
    counterparty_bets: Counter[int] = Counter()
    profit_pairs: dict[int, tuple[list[float], list[float]]] = defaultdict(lambda: ([], []))

    for bet in bets:
        placed = epoch_ms(bet.placed_at)
        opposite = COMPLEMENTS.get(bet.outcome)
        others = by_event.get(bet.event_id, [])
        if opposite and any(
            rb.outcome == opposite and abs(epoch_ms(rb.placed_at) - placed) < COMPLEMENT_WINDOW_MS
            for rb in others
        ):
            complementary += 1

        closest: dict[int, Any] = {}
        for rb in others:
            current = closest.get(rb.participant_id)
            if current is None or abs(epoch_ms(rb.placed_at) - placed) < abs(epoch_ms(current.placed_at) - placed):
                closest[rb.participant_id] = rb
        for other_id, rb in closest.items():
            counterparty_bets[other_id] += 1
            mine, theirs = profit_pairs[other_id]
            mine.append(float(bet.profit))
            theirs.append(float(rb.profit))

    total = len(bets)
    complementary_share = complementary / total
    complementary_flag = complementary_share > COMPLEMENTARY_SHARE

    frequent = [
        CounterpartyShare(participant_id=pid, bets=count, share=round(count / total, 4))
        for pid, count in sorted(counterparty_bets.items())
        if count / total > COUNTERPARTY_SHARE
    ]

    correlations = []
    for pid, (mine, theirs) in sorted(profit_pairs.items()):
        if len(mine) < MIN_PROFIT_SAMPLES:
            continue
        r = pearson(mine, theirs)
        if abs(r) > PROFIT_CORRELATION:
            correlations.append(ProfitCorrelation(participant_id=pid, samples=len(mine), correlation=round(r, 4)))

    confidence = confidence_from(sum([complementary_flag, bool(frequent), bool(correlations)]))
    if not is_reportable(confidence):
        return []

    top = max(frequent, key=lambda c: (c.share, -c.participant_id)) if frequent else None
    start, end = _window([b.placed_at for b in bets])
    return [
        LaneFinding(
            rule="collusion",
            participant_id=participant.id,
            contest_id=participant.contest_id,
            confidence=confidence,
            severity=classify_severity(confidence),
            counterparty_id=top.participant_id if top else None,
            window_start=start,
            window_end=end,
            record_count=total,
            evidence=CollusionEvidence(
                bet_count=total,
                complementary_count=complementary,
                complementary_share=round(complementary_share, 4),
                frequent_counterparties=frequent,
                profit_correlations=correlations,
            ),
        )
    ]


def check_time_anomalies(participant: Any, history: Sequence[Any]) -> list[LaneFinding]:
    """Night-time activity, inhuman reaction latency and metronome timing."""
    if not history:
        return []

    hours = [0] * 24
    for record in history:
        hours[ensure_utc(record.occurred_at).hour] += 1
    unusual_share = sum(hours[h] for h in UNUSUAL_HOURS) / len(history)
    unusual = unusual_share > UNUSUAL_HOUR_SHARE

    reactions = [float(r.value) for r in history if r.type == "bet_response" and r.value is not None]
    fast = [t for t in reactions if t < INHUMAN_REACTION_MS]
    inhuman = bool(reactions) and len(fast) / len(reactions) >= INHUMAN_REACTION_SHARE

    placed = [epoch_ms(r.occurred_at) for r in history if r.type == "bet_placed"]
    timing_spread = spread(placed) if len(placed) >= 2 else None
    perfect = timing_spread is not None and timing_spread < PERFECT_TIMING_MS

    confidence = confidence_from(sum([unusual, inhuman, perfect]))
    if not is_reportable(confidence):
        return []

    start, end = _window([r.occurred_at for r in history])
    return [
        LaneFinding(
            rule="time_anomalies",
            participant_id=participant.id,
            contest_id=participant.contest_id,
            confidence=confidence,
            severity=classify_severity(confidence),
            window_start=start,
            window_end=end,
            record_count=len(history),
            evidence=TimeAnomalyEvidence(
                activity_count=len(history),
                unusual_hour_share=round(unusual_share, 4),
                hour_distribution=hours,
                reaction_count=len(reactions),
                inhuman_reactions=len(fast),
                average_reaction_ms=round(sum(fast) / len(fast), 3) if fast else None,
                perfect_timing_spread_ms=round(timing_spread, 3) if timing_spread is not None else None,
            ),
        )
    ]
