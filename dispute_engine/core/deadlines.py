"""
Deadline Evaluator

Pure function from (deadline, now, prior overdue stage) to the current
overdue stage and grace window. Computed on read; nothing here touches
the store.

STAGES (one step per evaluation, never backwards):
    NOT_OVERDUE    now <= deadline
    FIRST_WARNING  deadline crossed; grace until deadline + 3 days
    SUSPENDED      first grace exhausted; grace until deadline + 5 days
    BANNED         second grace exhausted; submission closed for good

Grace windows are counted from the cycle's deadline, never from the
moment a stage was observed.
"""

import math
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

from ..schemas import OverdueStatus, Urgency

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class GraceWindows:
    """Length of each one-time grace window, in days."""
    first_grace_days: int = 3
    second_grace_days: int = 2

    def __post_init__(self):
        if self.first_grace_days <= 0 or self.second_grace_days <= 0:
            raise ValueError("Grace windows must be positive")

    @classmethod
    def from_env(cls) -> "GraceWindows":
        """Load configuration from environment variables."""
        return cls(
            first_grace_days=int(os.environ.get("DISPUTE_ENGINE_FIRST_GRACE_DAYS", "3")),
            second_grace_days=int(os.environ.get("DISPUTE_ENGINE_SECOND_GRACE_DAYS", "2")),
        )


@dataclass(frozen=True)
class OverdueAssessment:
    overdue_status: OverdueStatus
    days_overdue: int
    effective_deadline: datetime
    can_still_submit: bool


class DeadlineEvaluator:
    """Evaluates overdue stages. Stateless apart from its grace windows."""

    def __init__(self, windows: GraceWindows | None = None):
        self.windows = windows or GraceWindows()

    def first_grace_end(self, deadline: datetime) -> datetime:
        return deadline + timedelta(days=self.windows.first_grace_days)

    def second_grace_end(self, deadline: datetime) -> datetime:
        return self.first_grace_end(deadline) + timedelta(days=self.windows.second_grace_days)

    @staticmethod
    def days_overdue(deadline: datetime, now: datetime) -> int:
        """ceil((now - deadline) / 1 day), 0 when not past the deadline."""
        if now <= deadline:
            return 0
        return math.ceil((now - deadline).total_seconds() / SECONDS_PER_DAY)

    def evaluate(
        self,
        deadline: datetime,
        now: datetime,
        prior: OverdueStatus = OverdueStatus.NOT_OVERDUE,
    ) -> OverdueAssessment:
        stage = prior

        if stage == OverdueStatus.NOT_OVERDUE and now > deadline:
            stage = OverdueStatus.FIRST_WARNING
        elif stage == OverdueStatus.FIRST_WARNING and now > self.first_grace_end(deadline):
            stage = OverdueStatus.SUSPENDED
        elif stage == OverdueStatus.SUSPENDED and now > self.second_grace_end(deadline):
            stage = OverdueStatus.BANNED

        return OverdueAssessment(
            overdue_status=stage,
            days_overdue=self.days_overdue(deadline, now),
            effective_deadline=self.effective_deadline(deadline, stage),
            can_still_submit=stage != OverdueStatus.BANNED,
        )

    def effective_deadline(self, deadline: datetime, stage: OverdueStatus) -> datetime:
        """The deadline a party is actually held to at a given stage."""
        if stage == OverdueStatus.NOT_OVERDUE:
            return deadline
        if stage == OverdueStatus.FIRST_WARNING:
            return self.first_grace_end(deadline)
        return self.second_grace_end(deadline)

    @staticmethod
    def urgency(
        effective_deadline: datetime,
        now: datetime,
        stage: OverdueStatus = OverdueStatus.NOT_OVERDUE,
    ) -> Urgency:
        """Bucket the time left before the effective deadline."""
        if stage != OverdueStatus.NOT_OVERDUE or now > effective_deadline:
            return Urgency.CRITICAL
        remaining = effective_deadline - now
        if remaining < timedelta(hours=24):
            return Urgency.URGENT
        if remaining < timedelta(hours=72):
            return Urgency.WARNING
        return Urgency.NORMAL
