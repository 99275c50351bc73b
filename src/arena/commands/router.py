"""POST /commands: the command interface over HTTP."""

from fastapi import APIRouter, Depends

from arena.commands.dispatcher import Command, CommandResult
from arena.dependencies import get_services
from arena.services import Services

router = APIRouter(tags=["Commands"])


@router.post("/commands", response_model=CommandResult)
async def run_command(
    body: Command,
    services: Services = Depends(get_services),  # noqa: B008
) -> CommandResult:
    """Commands always answer 200; failures are reported in the result."""
    return await services.commands.dispatch(body)
