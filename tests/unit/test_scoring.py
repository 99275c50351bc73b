"""Confidence, severity and deduction tables."""

from __future__ import annotations

import pytest

from arena.fairplay.scoring import (
    action_for,
    apply_deduction,
    classify_severity,
    confidence_from,
    deduction_for,
    is_reportable,
)


class TestSeverity:
    @pytest.mark.parametrize(
        "confidence,severity",
        [(1.0, "critical"), (0.81, "critical"), (0.8, "high"), (2 / 3, "high"),
         (0.6, "medium"), (0.41, "medium"), (0.4, "low"), (1 / 3, "low"), (0.0, "low")],
    )
    def test_bands(self, confidence, severity):
        assert classify_severity(confidence) == severity

    def test_only_above_threshold_reported(self):
        assert is_reportable(2 / 3)
        assert not is_reportable(0.4)
        assert not is_reportable(1 / 3)

    def test_confidence_is_satisfied_share(self):
        assert confidence_from(0) == 0.0
        assert confidence_from(2) == pytest.approx(2 / 3)
        assert confidence_from(3) == 1.0


class TestConsequences:
    @pytest.mark.parametrize(
        "severity,deduction,action",
        [("low", 5, "warn"), ("medium", 10, "warn"), ("high", 20, "suspend"), ("critical", 40, "disqualify")],
    )
    def test_tables(self, severity, deduction, action):
        assert deduction_for(severity) == deduction
        assert action_for(severity) == action

    def test_deduction_floors_at_zero(self):
        assert apply_deduction(30, 40) == 0.0
        assert apply_deduction(100, 20) == 80.0
