"""Command interface: CREATE_CONTEST, UPDATE_LEADERBOARD, CHECK_FAIR_PLAY.

Every command returns a ``CommandResult``; engine errors become a failed
result instead of propagating to the caller.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import pydantic
import structlog
from pydantic import AliasChoices, BaseModel, Field

from arena.contests.leaderboard import LeaderboardEngine
from arena.contests.lifecycle import ContestLifecycleManager
from arena.contests.schemas import ContestRead
from arena.errors import ArenaError, ValidationError
from arena.fairplay.detector import FairPlayDetector
from arena.store import ContestStore

logger = structlog.get_logger()


class CommandType(str, Enum):
    CREATE_CONTEST = "CREATE_CONTEST"
    UPDATE_LEADERBOARD = "UPDATE_LEADERBOARD"
    CHECK_FAIR_PLAY = "CHECK_FAIR_PLAY"


class Command(BaseModel):
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


class CommandResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None


class ContestRef(BaseModel):
    contest_id: int | None = Field(
        default=None, validation_alias=AliasChoices("contest_id", "contestId")
    )


class CommandDispatcher:
    """Maps command types onto engine operations."""

    def __init__(
        self,
        lifecycle: ContestLifecycleManager,
        leaderboards: LeaderboardEngine,
        detector: FairPlayDetector,
        store: ContestStore,
    ) -> None:
        self.lifecycle = lifecycle
        self.leaderboards = leaderboards
        self.detector = detector
        self.store = store

    async def dispatch(self, command: Command | dict[str, Any]) -> CommandResult:
        try:
            if not isinstance(command, Command):
                command = Command.model_validate(command)
            kind = CommandType(command.type)
        except (pydantic.ValidationError, ValueError):
            return CommandResult(success=False, error=f"Unknown command: {getattr(command, 'type', command)!r}")

        handlers = {
            CommandType.CREATE_CONTEST: self._create_contest,
            CommandType.UPDATE_LEADERBOARD: self._update_leaderboard,
            CommandType.CHECK_FAIR_PLAY: self._check_fair_play,
        }
        try:
            data = await handlers[kind](command.payload)
        except (ArenaError, pydantic.ValidationError) as exc:
            logger.warning("command_failed", command=kind.value, error=str(exc))
            return CommandResult(success=False, error=str(exc))
        logger.info("command_completed", command=kind.value)
        return CommandResult(success=True, data=data)

    async def _create_contest(self, payload: dict[str, Any]) -> dict[str, Any]:
        contest = await self.lifecycle.create_contest(payload)
        return ContestRead.model_validate(contest).model_dump(mode="json")

    async def _update_leaderboard(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Recompute one contest, or every active contest when none is named."""
        ref = ContestRef.model_validate(payload)
        if ref.contest_id is not None:
            snapshots = await self.leaderboards.recompute_all(ref.contest_id)
            return {"updated": {str(ref.contest_id): [s.version for s in snapshots]}, "failed": {}}

        updated: dict[str, list[int]] = {}
        failed: dict[str, str] = {}
        for contest in await self.store.list_contests(statuses=["active"]):
            try:
                snapshots = await self.leaderboards.recompute_all(contest.id)
            except ArenaError as exc:
                failed[str(contest.id)] = str(exc)
                continue
            updated[str(contest.id)] = [s.version for s in snapshots]
        return {"updated": updated, "failed": failed}

    async def _check_fair_play(self, payload: dict[str, Any]) -> dict[str, Any]:
        ref = ContestRef.model_validate(payload)
        if ref.contest_id is None:
            raise ValidationError("CHECK_FAIR_PLAY requires contestId")
        return await self.detector.check_contest(ref.contest_id)
