"""Pydantic models for contests, prize pools and leaderboards."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

ContestType = Literal["daily", "weekly", "monthly", "season", "tournament", "special"]
ContestStatus = Literal[
    "draft", "registration", "active", "paused", "completed", "cancelled", "under_review"
]
ParticipantStatus = Literal["registered", "active", "suspended", "disqualified", "completed"]
PrizeType = Literal["cash", "credit", "item", "custom"]
SpecialPrizeType = Literal["bonus", "achievement", "milestone"]
Trend = Literal["up", "down", "stable"]
Scope = Literal["global", "regional", "division"]


# ── Contest configuration ──


class ScoringRule(BaseModel):
    id: str
    type: str
    points: float
    conditions: dict[str, Any] = Field(default_factory=dict)
    bonuses: list[dict[str, Any]] = Field(default_factory=list)
    penalties: list[dict[str, Any]] = Field(default_factory=list)


class PrizeEntry(BaseModel):
    rank: int | str
    value: float = Field(gt=0)
    type: PrizeType = "cash"


class SpecialPrize(BaseModel):
    name: str
    value: float = Field(gt=0)
    type: SpecialPrizeType = "bonus"


class Sponsorship(BaseModel):
    sponsor: str
    value: float = Field(ge=0)
    type: str = "cash"


class PrizePool(BaseModel):
    total_value: float = Field(gt=0)
    currency: str = "USD"
    distribution: list[PrizeEntry] = Field(min_length=1)
    special_prizes: list[SpecialPrize] = Field(default_factory=list)
    sponsorships: list[Sponsorship] = Field(default_factory=list)


class ContestCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str = ""
    type: ContestType
    start_at: datetime
    end_at: datetime
    rules: list[ScoringRule] = Field(default_factory=list)
    prize_pool: PrizePool

    @model_validator(mode="after")
    def _check_window(self) -> ContestCreate:
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class ParticipantCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    region: str | None = None
    division: str | None = None
    achievements: list[str] = Field(default_factory=list)


class StatusChange(BaseModel):
    status: ContestStatus


# ── Read models ──


class ContestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    type: str
    status: str
    previous_status: str | None = None
    start_at: datetime
    end_at: datetime
    rules: list[dict[str, Any]]
    prize_pool: dict[str, Any]
    metrics: dict[str, Any] | None = None
    completed_at: datetime | None = None
    archived_at: datetime | None = None


class ParticipantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contest_id: int
    user_id: str
    status: str
    score: float
    rank: int | None = None
    fair_play_score: float
    achievements: list[str]
    region: str | None = None
    division: str | None = None


class LeaderboardEntry(BaseModel):
    rank: int
    participant_id: int
    user_id: str
    score: float
    fair_play_score: float
    trend: Trend = "stable"
    achievements: list[str] = Field(default_factory=list)


class LeaderboardStats(BaseModel):
    total_participants: int = 0
    average_score: float = 0.0
    highest_score: float = 0.0
    lowest_score: float = 0.0
    score_distribution: dict[int, int] = Field(default_factory=dict)


class LeaderboardSnapshot(BaseModel):
    contest_id: int
    scope: Scope = "global"
    scope_key: str = ""
    entries: list[LeaderboardEntry] = Field(default_factory=list)
    stats: LeaderboardStats = Field(default_factory=LeaderboardStats)
    version: int = 0
    updated_at: datetime | None = None


class Payout(BaseModel):
    participant_id: int
    rank: int
    amount: float
    currency: str
    prize_type: str
