"""
Resolution Coordinator

Tells the moderator whether a claim with compliances is ready for its
final verdict, and builds the compliances a verdict imposes. Advisory:
nothing here resolves a claim on its own.

A compliance is *settled* when it can never change again: approved,
rejected with no attempt left, or escalated.
"""

from collections import Counter
from datetime import datetime
from typing import Optional, Sequence

from ..schemas import (
    Actor,
    Claim,
    Compliance,
    ComplianceSpec,
    EntityType,
    EventType,
    PendingEvent,
    SettlementSummary,
)
from .compliance_machine import ComplianceStateMachine
from .errors import ValidationError
from .event_log import make_event

MAX_COMPLIANCES_PER_RESOLUTION = 10


def is_settled(compliance: Compliance) -> bool:
    return compliance.is_terminal


class ResolutionCoordinator:

    def __init__(self, compliance_machine: Optional[ComplianceStateMachine] = None):
        self.compliance_machine = compliance_machine or ComplianceStateMachine()

    def can_resolve(self, claim: Claim, compliances: Sequence[Compliance]) -> bool:
        """True when the claim is open and every compliance under it is settled."""
        if claim.is_terminal:
            return False
        return all(is_settled(c) for c in compliances)

    def settlement_summary(self, compliances: Sequence[Compliance]) -> SettlementSummary:
        settled = sum(1 for c in compliances if is_settled(c))
        by_status = Counter(c.display_status.value for c in compliances)
        return SettlementSummary(
            total=len(compliances),
            settled=settled,
            outstanding=len(compliances) - settled,
            by_status=dict(by_status),
        )

    def impose(
        self,
        claim: Claim,
        specs: Sequence[ComplianceSpec],
        actor: Actor,
        now: datetime,
    ) -> tuple[list[Compliance], list[PendingEvent]]:
        if len(specs) > MAX_COMPLIANCES_PER_RESOLUTION:
            raise ValidationError(
                f"At most {MAX_COMPLIANCES_PER_RESOLUTION} compliances per resolution"
            )

        compliances, events = [], []
        for spec in specs:
            compliance, event = self.compliance_machine.impose(claim, spec, actor, now)
            compliances.append(compliance)
            events.append(event)
        return compliances, events

    def readiness_event(
        self,
        claim: Claim,
        before: Sequence[Compliance],
        after: Sequence[Compliance],
        actor_id: str,
        now: datetime,
    ) -> Optional[PendingEvent]:
        """CLAIM_READY_FOR_RESOLUTION when the last outstanding compliance just settled."""
        if not before or claim.is_terminal:
            return None
        if self.can_resolve(claim, before) or not self.can_resolve(claim, after):
            return None

        summary = self.settlement_summary(after)
        return make_event(
            event_type=EventType.CLAIM_READY_FOR_RESOLUTION,
            entity_type=EntityType.CLAIM,
            entity_id=claim.id,
            claim_id=claim.id,
            actor_id=actor_id,
            occurred_at=now,
            payload={
                "assigned_moderator_id": claim.assigned_moderator_id,
                "by_status": summary.by_status,
            },
        )
