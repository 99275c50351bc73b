"""Publish confirmed violations and contest completions over Redis pub/sub.

Delivery (chat, email, dashboards) happens elsewhere; this module only
hands a JSON record to whoever subscribes to the notifications channel.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


class Notifier:
    """Fire-and-forget publisher. Failures are logged and never raised."""

    def __init__(self, redis: object | None, channel: str = "arena:notifications") -> None:
        self.redis = redis
        self.channel = channel

    async def publish(self, event: str, data: dict[str, Any]) -> bool:
        if self.redis is None:
            return False

        payload = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }
        try:
            await self.redis.publish(self.channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
        except Exception:
            logger.warning("Failed to publish %s on %s", event, self.channel, exc_info=True)
            return False
        return True

    async def violation_detected(self, violation: dict[str, Any]) -> bool:
        return await self.publish("violation_detected", violation)

    async def contest_completed(self, contest_id: int, payouts: list[dict[str, Any]]) -> bool:
        return await self.publish(
            "contest_completed",
            {"contest_id": contest_id, "payouts": payouts},
        )
