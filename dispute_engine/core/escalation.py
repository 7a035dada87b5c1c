"""
Escalation Policy

Maps how many times a compliance has already been rejected to what the
next rejection costs the responsible party. Pure: no clock, no store.

    rejections before this one | consequence
    ---------------------------+---------------------------------------
    0                          | warning, one more attempt
    1                          | 15-day account suspension, terminal
    >= 2                       | permanent ban, terminal

Consequences are irreversible. Lifting a suspension or ban is an
administrative override that lives outside this engine.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Consequence(str, Enum):
    WARNING = "warning"
    SUSPENSION = "suspension"
    BAN = "ban"


@dataclass(frozen=True)
class EscalationDecision:
    """What a single rejection does."""
    consequence: Consequence
    new_max_reached: bool                 # No further attempt is possible
    suspension_days: Optional[int] = None
    retry_deadline_days: Optional[int] = None

    @property
    def grants_retry(self) -> bool:
        return not self.new_max_reached


@dataclass(frozen=True)
class EscalationPolicy:
    """
    The escalation table, as configuration.

    suspension_threshold / ban_threshold are rejection counts *before*
    the rejection being decided.
    """
    max_attempts: int = 3
    suspension_threshold: int = 1
    ban_threshold: int = 2
    suspension_days: int = 15
    retry_deadline_days: int = 7

    def __post_init__(self):
        if not 0 < self.suspension_threshold <= self.ban_threshold:
            raise ValueError("Escalation thresholds must satisfy 0 < suspension <= ban")
        # Every retry consumes an attempt; the ban must land before attempts run out.
        if self.ban_threshold >= self.max_attempts:
            raise ValueError(
                f"ban_threshold ({self.ban_threshold}) must be below "
                f"max_attempts ({self.max_attempts})"
            )
        if self.suspension_days <= 0 or self.retry_deadline_days <= 0:
            raise ValueError("Escalation durations must be positive")

    @classmethod
    def from_env(cls) -> "EscalationPolicy":
        """Load configuration from environment variables."""
        return cls(
            max_attempts=int(os.environ.get("DISPUTE_ENGINE_MAX_ATTEMPTS", "3")),
            suspension_threshold=int(os.environ.get("DISPUTE_ENGINE_SUSPENSION_THRESHOLD", "1")),
            ban_threshold=int(os.environ.get("DISPUTE_ENGINE_BAN_THRESHOLD", "2")),
            suspension_days=int(os.environ.get("DISPUTE_ENGINE_SUSPENSION_DAYS", "15")),
            retry_deadline_days=int(os.environ.get("DISPUTE_ENGINE_RETRY_DEADLINE_DAYS", "7")),
        )

    def decide(self, rejection_count: int) -> EscalationDecision:
        """Consequence of rejecting a compliance rejected rejection_count times already."""
        if rejection_count < 0:
            raise ValueError("rejection_count cannot be negative")

        if rejection_count >= self.ban_threshold:
            return EscalationDecision(consequence=Consequence.BAN, new_max_reached=True)

        if rejection_count >= self.suspension_threshold:
            return EscalationDecision(
                consequence=Consequence.SUSPENSION,
                new_max_reached=True,
                suspension_days=self.suspension_days,
            )

        return EscalationDecision(
            consequence=Consequence.WARNING,
            new_max_reached=False,
            retry_deadline_days=self.retry_deadline_days,
        )
