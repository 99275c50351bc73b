"""Engine error taxonomy.

Every error the engine raises on purpose derives from ``ArenaError`` so
callers (HTTP handlers, the command dispatcher, arq jobs) can map them to
a result without catching unrelated exceptions.
"""

from __future__ import annotations


class ArenaError(Exception):
    """Base class for engine errors."""


class ValidationError(ArenaError):
    """Malformed or inconsistent input. Nothing was persisted."""


class NotFound(ArenaError):
    """A referenced contest, participant or violation does not exist."""


class StoreError(ArenaError):
    """Transient store failure (timeout, connection loss). Retryable."""


class InvalidTransition(ArenaError):
    """A status change that the lifecycle rules forbid. Never retried."""


class ContestClosed(InvalidTransition):
    """Write attempted against a contest that is already completed or cancelled."""


class DetectionError(ArenaError):
    """A single fair-play lane failed. The remaining lanes still report."""

    def __init__(self, lane: str, message: str) -> None:
        super().__init__(f"{lane}: {message}")
        self.lane = lane
