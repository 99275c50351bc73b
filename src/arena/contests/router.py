"""Contest endpoints: creation, registration, status, scores and leaderboards."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from arena.contests.schemas import (
    ContestCreate,
    ContestRead,
    LeaderboardSnapshot,
    ParticipantCreate,
    ParticipantRead,
    Payout,
    Scope,
    StatusChange,
)
from arena.contests.worker import ScoreChanged, StatusChanged
from arena.dependencies import get_services
from arena.services import Services

router = APIRouter(tags=["Contests"])


class ScoreDelta(BaseModel):
    delta: float


class ScoreResponse(BaseModel):
    participant_id: int
    score: float


@router.post("/contests", response_model=ContestRead, status_code=201)
async def create_contest(
    body: ContestCreate,
    services: Services = Depends(get_services),  # noqa: B008
) -> ContestRead:
    contest = await services.lifecycle.create_contest(body)
    return ContestRead.model_validate(contest)


@router.get("/contests/{contest_id}", response_model=ContestRead)
async def get_contest(
    contest_id: int,
    services: Services = Depends(get_services),  # noqa: B008
) -> ContestRead:
    return ContestRead.model_validate(await services.store.get_contest(contest_id))


@router.post("/contests/{contest_id}/participants", response_model=ParticipantRead, status_code=201)
async def register_participant(
    contest_id: int,
    body: ParticipantCreate,
    services: Services = Depends(get_services),  # noqa: B008
) -> ParticipantRead:
    participant = await services.lifecycle.register_participant(contest_id, body)
    return ParticipantRead.model_validate(participant)


@router.get("/contests/{contest_id}/participants", response_model=list[ParticipantRead])
async def list_participants(
    contest_id: int,
    services: Services = Depends(get_services),  # noqa: B008
) -> list[ParticipantRead]:
    rows = await services.store.list_participants(contest_id)
    return [ParticipantRead.model_validate(p) for p in rows]


@router.post("/contests/{contest_id}/status", response_model=ContestRead)
async def change_status(
    contest_id: int,
    body: StatusChange,
    services: Services = Depends(get_services),  # noqa: B008
) -> ContestRead:
    contest = await services.lifecycle.transition(contest_id, body.status)
    services.workers.submit(StatusChanged(contest_id=contest_id, status=contest.status))
    return ContestRead.model_validate(contest)


@router.post("/participants/{participant_id}/score", response_model=ScoreResponse)
async def add_score(
    participant_id: int,
    body: ScoreDelta,
    services: Services = Depends(get_services),  # noqa: B008
) -> ScoreResponse:
    participant = await services.store.get_participant(participant_id)
    score = await services.lifecycle.record_score(participant_id, body.delta)
    services.workers.submit(
        ScoreChanged(contest_id=participant.contest_id, participant_id=participant_id, score=score)
    )
    return ScoreResponse(participant_id=participant_id, score=score)


@router.get("/contests/{contest_id}/leaderboard", response_model=LeaderboardSnapshot)
async def get_leaderboard(
    contest_id: int,
    scope: Scope = Query("global"),
    key: str = Query(""),
    services: Services = Depends(get_services),  # noqa: B008
) -> LeaderboardSnapshot:
    await services.store.get_contest(contest_id)
    return await services.leaderboards.latest(contest_id, scope, key)


@router.get("/contests/{contest_id}/payouts", response_model=list[Payout])
async def list_payouts(
    contest_id: int,
    services: Services = Depends(get_services),  # noqa: B008
) -> list[Payout]:
    rows = await services.store.list_payouts(contest_id)
    return [
        Payout(
            participant_id=r.participant_id,
            rank=r.rank,
            amount=r.amount,
            currency=r.currency,
            prize_type=r.prize_type,
        )
        for r in rows
    ]
