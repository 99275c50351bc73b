"""Confidence, severity, deduction and action tables shared by every lane.

Every lane scores three factors; confidence is the satisfied share.

    confidence > 0.8 -> critical
    confidence > 0.6 -> high
    confidence > 0.4 -> medium
    otherwise        -> low

Only findings above 0.4 are reported.
"""

from __future__ import annotations

REPORT_THRESHOLD = 0.4
FACTORS_PER_LANE = 3

SEVERITY_DEDUCTIONS: dict[str, float] = {
    "low": 5.0,
    "medium": 10.0,
    "high": 20.0,
    "critical": 40.0,
}

SEVERITY_ACTIONS: dict[str, str] = {
    "low": "warn",
    "medium": "warn",
    "high": "suspend",
    "critical": "disqualify",
}

# Participant status applied for an action when auto-enforcement is on.
ACTION_STATUSES: dict[str, str] = {
    "suspend": "suspended",
    "disqualify": "disqualified",
}


def confidence_from(factors: int, total: int = FACTORS_PER_LANE) -> float:
    return factors / total if total else 0.0


def classify_severity(confidence: float) -> str:
    if confidence > 0.8:
        return "critical"
    if confidence > 0.6:
        return "high"
    if confidence > 0.4:
        return "medium"
    return "low"


def is_reportable(confidence: float) -> bool:
    return confidence > REPORT_THRESHOLD


def deduction_for(severity: str) -> float:
    return SEVERITY_DEDUCTIONS.get(severity, SEVERITY_DEDUCTIONS["low"])


def action_for(severity: str) -> str:
    return SEVERITY_ACTIONS.get(severity, "warn")


def apply_deduction(current: float, deduction: float) -> float:
    """New fair-play score after a deduction, floored at 0."""
    return max(0.0, current - deduction)
