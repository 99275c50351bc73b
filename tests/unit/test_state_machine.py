"""Contest status transition rules."""

from __future__ import annotations

import pytest

from arena.contests.lifecycle import validate_transition
from arena.errors import InvalidTransition


class TestForwardProgression:
    @pytest.mark.parametrize(
        "current,target",
        [("draft", "registration"), ("registration", "active"), ("active", "completed")],
    )
    def test_forward_steps_allowed(self, current, target):
        validate_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [("draft", "active"), ("draft", "completed"), ("registration", "completed"), ("active", "draft")],
    )
    def test_skips_and_reversals_rejected(self, current, target):
        with pytest.raises(InvalidTransition, match="Valid transitions"):
            validate_transition(current, target)

    def test_same_status_rejected(self):
        with pytest.raises(InvalidTransition, match="already"):
            validate_transition("active", "active")


class TestInterrupts:
    """paused, cancelled and under_review from any non-terminal status."""

    @pytest.mark.parametrize("current", ["draft", "registration", "active"])
    @pytest.mark.parametrize("target", ["paused", "cancelled", "under_review"])
    def test_interrupts_allowed(self, current, target):
        validate_transition(current, target)

    def test_cancel_while_paused(self):
        validate_transition("paused", "cancelled", previous="active")

    def test_review_while_paused(self):
        validate_transition("paused", "under_review", previous="active")


class TestResume:
    """A holding status resumes to the status it left or its successor."""

    def test_resume_to_previous(self):
        validate_transition("paused", "active", previous="active")

    def test_resume_to_successor(self):
        validate_transition("under_review", "completed", previous="active")

    def test_resume_elsewhere_rejected(self):
        with pytest.raises(InvalidTransition):
            validate_transition("paused", "draft", previous="active")

    def test_resume_without_previous_rejected(self):
        with pytest.raises(InvalidTransition, match="no status to resume"):
            validate_transition("paused", "active")


class TestTerminal:
    @pytest.mark.parametrize("current", ["completed", "cancelled"])
    @pytest.mark.parametrize("target", ["draft", "active", "paused", "cancelled"])
    def test_terminal_statuses_are_final(self, current, target):
        with pytest.raises(InvalidTransition, match="terminal"):
            validate_transition(current, target)
