"""
Tests for the escalation table and overdue stage evaluation.
"""

import pytest
from datetime import timedelta

from dispute_engine.core import (
    Consequence,
    DeadlineEvaluator,
    EscalationPolicy,
    GraceWindows,
)
from dispute_engine.schemas import OverdueStatus, Urgency

from conftest import START


class TestEscalationPolicy:

    @pytest.fixture
    def policy(self):
        return EscalationPolicy()

    def test_first_rejection_warns_and_retries(self, policy):
        decision = policy.decide(0)
        assert decision.consequence == Consequence.WARNING
        assert decision.grants_retry
        assert decision.retry_deadline_days == 7

    def test_second_rejection_suspends(self, policy):
        decision = policy.decide(1)
        assert decision.consequence == Consequence.SUSPENSION
        assert decision.new_max_reached
        assert decision.suspension_days == 15

    @pytest.mark.parametrize("count", [2, 3, 10])
    def test_later_rejections_ban(self, policy, count):
        decision = policy.decide(count)
        assert decision.consequence == Consequence.BAN
        assert not decision.grants_retry

    def test_negative_count_rejected(self, policy):
        with pytest.raises(ValueError):
            policy.decide(-1)

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValueError):
            EscalationPolicy(suspension_threshold=2, ban_threshold=1)

    def test_ban_must_land_before_attempts_run_out(self):
        with pytest.raises(ValueError):
            EscalationPolicy(max_attempts=2, ban_threshold=2)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DISPUTE_ENGINE_SUSPENSION_DAYS", "30")
        monkeypatch.setenv("DISPUTE_ENGINE_RETRY_DEADLINE_DAYS", "5")
        policy = EscalationPolicy.from_env()
        assert policy.suspension_days == 30
        assert policy.retry_deadline_days == 5
        assert policy.max_attempts == 3


class TestDeadlineEvaluator:

    @pytest.fixture
    def evaluator(self):
        return DeadlineEvaluator()

    def test_not_overdue_before_deadline(self, evaluator):
        deadline = START + timedelta(days=1)
        result = evaluator.evaluate(deadline, START)
        assert result.overdue_status == OverdueStatus.NOT_OVERDUE
        assert result.days_overdue == 0
        assert result.effective_deadline == deadline
        assert result.can_still_submit

    def test_exactly_at_deadline_is_not_overdue(self, evaluator):
        assert evaluator.evaluate(START, START).overdue_status == OverdueStatus.NOT_OVERDUE

    def test_four_days_late_first_evaluation(self, evaluator):
        """Never evaluated before: one step only, to FIRST_WARNING."""
        deadline = START - timedelta(days=4)
        result = evaluator.evaluate(deadline, START, OverdueStatus.NOT_OVERDUE)

        assert result.overdue_status == OverdueStatus.FIRST_WARNING
        assert result.days_overdue == 4
        assert result.effective_deadline == deadline + timedelta(days=3)
        assert result.can_still_submit

    def test_days_overdue_rounds_up(self, evaluator):
        deadline = START - timedelta(hours=1)
        assert evaluator.evaluate(deadline, START).days_overdue == 1

    def test_stages_advance_one_at_a_time(self, evaluator):
        deadline = START - timedelta(days=10)

        stage = OverdueStatus.NOT_OVERDUE
        seen = []
        for _ in range(4):
            stage = evaluator.evaluate(deadline, START, stage).overdue_status
            seen.append(stage)

        assert seen == [
            OverdueStatus.FIRST_WARNING,
            OverdueStatus.SUSPENDED,
            OverdueStatus.BANNED,
            OverdueStatus.BANNED,
        ]

    def test_suspended_within_second_grace(self, evaluator):
        deadline = START - timedelta(days=4)
        result = evaluator.evaluate(deadline, START, OverdueStatus.FIRST_WARNING)
        assert result.overdue_status == OverdueStatus.SUSPENDED
        assert result.effective_deadline == deadline + timedelta(days=5)
        assert result.can_still_submit

    def test_first_warning_holds_inside_first_grace(self, evaluator):
        deadline = START - timedelta(days=2)
        result = evaluator.evaluate(deadline, START, OverdueStatus.FIRST_WARNING)
        assert result.overdue_status == OverdueStatus.FIRST_WARNING

    def test_banned_closes_submission(self, evaluator):
        deadline = START - timedelta(days=6)
        result = evaluator.evaluate(deadline, START, OverdueStatus.SUSPENDED)
        assert result.overdue_status == OverdueStatus.BANNED
        assert not result.can_still_submit

    def test_never_moves_backwards(self, evaluator):
        """A deadline pushed later does not undo a stage already reached."""
        deadline = START + timedelta(days=7)
        result = evaluator.evaluate(deadline, START, OverdueStatus.SUSPENDED)
        assert result.overdue_status == OverdueStatus.SUSPENDED

    def test_custom_windows(self):
        evaluator = DeadlineEvaluator(GraceWindows(first_grace_days=1, second_grace_days=1))
        deadline = START - timedelta(days=2)
        result = evaluator.evaluate(deadline, START, OverdueStatus.FIRST_WARNING)
        assert result.overdue_status == OverdueStatus.SUSPENDED

    def test_windows_must_be_positive(self):
        with pytest.raises(ValueError):
            GraceWindows(first_grace_days=0)


class TestUrgency:

    @pytest.mark.parametrize("hours_left,expected", [
        (100, Urgency.NORMAL),
        (72, Urgency.NORMAL),
        (71, Urgency.WARNING),
        (23, Urgency.URGENT),
        (-1, Urgency.CRITICAL),
    ])
    def test_buckets(self, hours_left, expected):
        effective = START + timedelta(hours=hours_left)
        assert DeadlineEvaluator.urgency(effective, START) == expected

    def test_overdue_stage_is_critical(self):
        effective = START + timedelta(days=2)
        assert DeadlineEvaluator.urgency(
            effective, START, OverdueStatus.FIRST_WARNING
        ) == Urgency.CRITICAL
