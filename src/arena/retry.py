"""Single retry policy for every store call.

Transient failures (driver errors, timeouts) are mapped to ``StoreError``
and retried with bounded exponential backoff. Engine errors such as
``InvalidTransition`` or ``ValidationError`` pass straight through.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from arena.config import Settings
from arena.errors import StoreError
from arena.metrics import MetricsAccumulator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Timeout plus bounded exponential backoff around store operations."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base: float = 0.1,
        backoff_max: float = 2.0,
        timeout: float = 5.0,
        metrics: MetricsAccumulator | None = None,
    ) -> None:
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.timeout = timeout
        self.metrics = metrics

    @classmethod
    def from_settings(cls, settings: Settings, metrics: MetricsAccumulator | None = None) -> RetryPolicy:
        return cls(
            max_attempts=settings.store_max_attempts,
            backoff_base=settings.store_backoff_base_seconds,
            backoff_max=settings.store_backoff_max_seconds,
            timeout=settings.store_timeout_seconds,
            metrics=metrics,
        )

    async def _attempt(self, op: Callable[[], Awaitable[T]], name: str) -> T:
        try:
            return await asyncio.wait_for(op(), timeout=self.timeout)
        except TimeoutError as exc:
            raise StoreError(f"{name} timed out after {self.timeout}s") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{name} failed: {exc}") from exc

    async def run(self, op: Callable[[], Awaitable[T]], name: str = "store") -> T:
        """Run ``op`` (a zero-arg coroutine factory) under the policy."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception_type(StoreError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._attempt(op, name)
        except StoreError:
            if self.metrics is not None:
                self.metrics.record_error("store")
            raise
        raise AssertionError("unreachable")  # pragma: no cover
