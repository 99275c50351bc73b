"""Explicit metrics accumulator.

One instance is created per service container and handed to every
component that reports; there is no module-level state.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

_MAX_LATENCY_SAMPLES = 500


@dataclass
class MetricsAccumulator:
    """Counters, latency samples and freshness markers for the engine."""

    operations: Counter[str] = field(default_factory=Counter)
    errors: Counter[str] = field(default_factory=Counter)
    rejected: Counter[str] = field(default_factory=Counter)
    violations: Counter[str] = field(default_factory=Counter)
    latencies: dict[str, deque[float]] = field(default_factory=dict)
    last_success_at: dict[str, float] = field(default_factory=dict)
    pending_since: dict[str, float] = field(default_factory=dict)
    prize_value_distributed: float = 0.0
    appeals: int = 0

    def record_success(self, component: str, latency: float | None = None) -> None:
        self.operations[component] += 1
        self.last_success_at[component] = time.time()
        if latency is not None:
            samples = self.latencies.setdefault(component, deque(maxlen=_MAX_LATENCY_SAMPLES))
            samples.append(latency)

    def record_error(self, component: str) -> None:
        self.operations[component] += 1
        self.errors[component] += 1

    def record_rejected(self, component: str) -> None:
        self.rejected[component] += 1

    def record_violation(self, severity: str) -> None:
        self.violations[severity] += 1

    def mark_pending(self, key: str) -> None:
        """Remember when work for ``key`` was first queued (kept until cleared)."""
        self.pending_since.setdefault(key, time.time())

    def clear_pending(self, key: str) -> None:
        self.pending_since.pop(key, None)

    def error_rate(self, component: str | None = None) -> float:
        if component is None:
            total = sum(self.operations.values())
            failed = sum(self.errors.values())
        else:
            total = self.operations[component]
            failed = self.errors[component]
        return failed / total if total else 0.0

    def average_latency(self, component: str) -> float:
        samples = self.latencies.get(component)
        if not samples:
            return 0.0
        return sum(samples) / len(samples)

    def oldest_pending_age(self, now: float | None = None) -> float:
        if not self.pending_since:
            return 0.0
        now = now if now is not None else time.time()
        return now - min(self.pending_since.values())

    def reset(self) -> None:
        self.operations.clear()
        self.errors.clear()
        self.rejected.clear()
        self.violations.clear()
        self.latencies.clear()
        self.last_success_at.clear()
        self.pending_since.clear()
        self.prize_value_distributed = 0.0
        self.appeals = 0

    def export(self) -> dict[str, Any]:
        """Plain-dict snapshot for health reports and the metrics command."""
        return {
            "operations": dict(self.operations),
            "errors": dict(self.errors),
            "rejected": dict(self.rejected),
            "violations": dict(self.violations),
            "error_rate": round(self.error_rate(), 4),
            "avg_latency": {name: round(self.average_latency(name), 6) for name in self.latencies},
            "prize_value_distributed": round(self.prize_value_distributed, 2),
            "appeals": self.appeals,
            "oldest_pending_age": round(self.oldest_pending_age(), 3),
        }
