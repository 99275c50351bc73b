"""FastAPI dependencies."""

from fastapi import Request

from arena.services import Services


def get_services(request: Request) -> Services:
    """The process-wide service container built in the app lifespan."""
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        msg = "Services not initialized. Start the app through its lifespan."
        raise RuntimeError(msg)
    return services
