"""Fair-play endpoints: activity ingest, violations and appeals."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from arena.contests.worker import ActivityRecorded, BetRecorded
from arena.dependencies import get_services
from arena.fairplay.schemas import ActivityIn, BetIn, ResourceIn, ViolationRead
from arena.services import Services

router = APIRouter(prefix="/fairplay", tags=["Fair play"])


class Accepted(BaseModel):
    id: int
    contest_id: int


class AppealDecision(BaseModel):
    granted: bool


@router.post("/activity", response_model=Accepted, status_code=202)
async def record_activity(
    body: ActivityIn,
    services: Services = Depends(get_services),  # noqa: B008
) -> Accepted:
    record = await services.detector.ingest_activity(body)
    services.workers.submit(ActivityRecorded(contest_id=record.contest_id, participant_id=record.participant_id))
    return Accepted(id=record.id, contest_id=record.contest_id)


@router.post("/bets", response_model=Accepted, status_code=202)
async def record_bet(
    body: BetIn,
    services: Services = Depends(get_services),  # noqa: B008
) -> Accepted:
    record = await services.detector.ingest_bet(body)
    services.workers.submit(BetRecorded(contest_id=record.contest_id, participant_id=record.participant_id))
    return Accepted(id=record.id, contest_id=record.contest_id)


@router.post("/resources", status_code=204)
async def register_resource(
    body: ResourceIn,
    services: Services = Depends(get_services),  # noqa: B008
) -> None:
    await services.detector.register_resource(body)


@router.get("/contests/{contest_id}/violations", response_model=list[ViolationRead])
async def list_violations(
    contest_id: int,
    services: Services = Depends(get_services),  # noqa: B008
) -> list[ViolationRead]:
    return await services.detector.list_violations(contest_id)


@router.post("/participants/{participant_id}/check", response_model=list[ViolationRead])
async def check_participant(
    participant_id: int,
    services: Services = Depends(get_services),  # noqa: B008
) -> list[ViolationRead]:
    return await services.detector.check_participant(participant_id)


@router.post("/violations/{violation_id}/appeal", response_model=ViolationRead)
async def appeal(
    violation_id: int,
    services: Services = Depends(get_services),  # noqa: B008
) -> ViolationRead:
    return await services.detector.appeal(violation_id)


@router.post("/violations/{violation_id}/decision", response_model=ViolationRead)
async def decide_appeal(
    violation_id: int,
    body: AppealDecision,
    services: Services = Depends(get_services),  # noqa: B008
) -> ViolationRead:
    return await services.detector.resolve_appeal(violation_id, body.granted)


@router.post("/violations/{violation_id}/resolve", response_model=ViolationRead)
async def resolve(
    violation_id: int,
    services: Services = Depends(get_services),  # noqa: B008
) -> ViolationRead:
    return await services.detector.resolve(violation_id)
