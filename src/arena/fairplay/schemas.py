"""Pydantic models for fair-play input records, evidence and violations.

Evidence is a closed union discriminated by ``lane``; each lane carries
its own typed payload instead of a free-form dict.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

Rule = Literal["multiple_accounts", "betting_patterns", "collusion", "time_anomalies"]
Severity = Literal["low", "medium", "high", "critical"]
Action = Literal["warn", "suspend", "disqualify"]
ViolationStatus = Literal["pending", "resolved", "appealed"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Inputs ──


class ActivityIn(BaseModel):
    participant_id: int
    type: str = Field(min_length=1, max_length=32)
    value: float | None = None
    ip_address: str | None = None
    occurred_at: datetime = Field(default_factory=_now)


class BetIn(BaseModel):
    participant_id: int
    event_id: str = Field(min_length=1, max_length=64)
    outcome: str = Field(min_length=1, max_length=16)
    amount: float = Field(gt=0)
    profit: float = 0.0
    placed_at: datetime = Field(default_factory=_now)


class ResourceIn(BaseModel):
    participant_id: int
    resource_type: Literal["device", "payment", "fingerprint"]
    resource_id: str = Field(min_length=1, max_length=128)


# ── Evidence ──


class MultiAccountEvidence(BaseModel):
    lane: Literal["multiple_accounts"] = "multiple_accounts"
    related_participant_id: int
    ip_overlap: float
    shared_ips: list[str]
    alternating_activity: bool
    similar_behavior: bool
    behavior_similarity: float
    resource_sharing: bool
    shared_resources: list[str] = Field(default_factory=list)


class BettingPatternEvidence(BaseModel):
    lane: Literal["betting_patterns"] = "betting_patterns"
    bet_count: int
    consistent_timing: bool
    timing_spread_ms: float
    consistent_sizes: bool
    size_spread: float
    average_size: float
    rapid_sequences: int


class CounterpartyShare(BaseModel):
    participant_id: int
    bets: int
    share: float


class ProfitCorrelation(BaseModel):
    participant_id: int
    samples: int
    correlation: float


class CollusionEvidence(BaseModel):
    lane: Literal["collusion"] = "collusion"
    bet_count: int
    complementary_count: int
    complementary_share: float
    frequent_counterparties: list[CounterpartyShare] = Field(default_factory=list)
    profit_correlations: list[ProfitCorrelation] = Field(default_factory=list)


class TimeAnomalyEvidence(BaseModel):
    lane: Literal["time_anomalies"] = "time_anomalies"
    activity_count: int
    unusual_hour_share: float
    hour_distribution: list[int]
    reaction_count: int
    inhuman_reactions: int
    average_reaction_ms: float | None = None
    perfect_timing_spread_ms: float | None = None


Evidence = Annotated[
    Union[MultiAccountEvidence, BettingPatternEvidence, CollusionEvidence, TimeAnomalyEvidence],
    Field(discriminator="lane"),
]


# ── Lane output and persisted violations ──


class LaneFinding(BaseModel):
    """What a lane reports before severity is turned into an action."""

    rule: Rule
    participant_id: int
    contest_id: int
    confidence: float
    severity: Severity
    counterparty_id: int | None = None
    window_start: datetime
    window_end: datetime
    record_count: int
    evidence: Evidence


class ViolationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contest_id: int
    participant_id: int
    rule: Rule
    severity: Severity
    confidence: float
    evidence: Evidence
    action: Action
    status: ViolationStatus
    deduction: float
    points_removed: float = 0.0
    appeal_requested: bool = False
    detected_at: datetime | None = None
    resolved_at: datetime | None = None
