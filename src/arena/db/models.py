"""ORM models for contests, rankings and fair-play history.

Column types stay portable (JSON rather than JSONB, Integer keys) so the
same schema runs on PostgreSQL in production and SQLite in tests.
Participant ids are assigned in registration order and double as the
final ranking tie-break.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from arena.db.base import Base


# ---------------------------------------------------------------------------
# Contests
# ---------------------------------------------------------------------------


class Contest(Base):
    """A contest and its configuration."""

    __tablename__ = "contests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    previous_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rules: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    prize_pool: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    metrics: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    participants: Mapped[list[Participant]] = relationship(
        "Participant", back_populates="contest", cascade="all, delete-orphan"
    )


class Participant(Base):
    """A user's entry in one contest."""

    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("contest_id", "user_id", name="participants_contest_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="registered")
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fair_play_score: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    achievements: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    region: Mapped[str | None] = mapped_column(String(32), nullable=True)
    division: Mapped[str | None] = mapped_column(String(32), nullable=True)
    registered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    contest: Mapped[Contest] = relationship("Contest", back_populates="participants")


class Leaderboard(Base):
    """Latest committed ranking for one contest scope. Replaced whole."""

    __tablename__ = "leaderboards"
    __table_args__ = (
        UniqueConstraint("contest_id", "scope", "scope_key", name="leaderboards_scope_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False
    )
    scope: Mapped[str] = mapped_column(String(16), nullable=False, default="global")
    scope_key: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    entries: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    stats: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PayoutRecord(Base):
    """Prize owed to a participant after finalization."""

    __tablename__ = "payout_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    prize_type: Mapped[str] = mapped_column(String(16), nullable=False, default="cash")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ContestEvent(Base):
    """Append-only audit trail of contest activity."""

    __tablename__ = "contest_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    participant_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(8), nullable=False, default="info")
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Fair play
# ---------------------------------------------------------------------------


class ActivityRecord(Base):
    """Append-only activity history used by the fair-play lanes."""

    __tablename__ = "activity_records"
    __table_args__ = (
        Index("ix_activity_participant_time", "participant_id", "occurred_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[float | None] = mapped_column(Float, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True, index=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class BetRecord(Base):
    """Append-only bet history used by the collusion lane."""

    __tablename__ = "bet_records"
    __table_args__ = (
        Index("ix_bets_participant_time", "participant_id", "placed_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    profit: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ParticipantResource(Base):
    """Device, payment method or fingerprint seen for a participant."""

    __tablename__ = "participant_resources"
    __table_args__ = (
        UniqueConstraint(
            "participant_id", "resource_type", "resource_id", name="participant_resources_key"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False
    )
    resource_type: Mapped[str] = mapped_column(String(16), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)


class FairPlayViolation(Base):
    """A confirmed fair-play finding and the deduction it caused."""

    __tablename__ = "fair_play_violations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    participant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rule: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    evidence: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    deduction: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    points_removed: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    dedup_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    appeal_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    detected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
