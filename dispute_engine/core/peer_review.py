"""
Peer Review Gate

The counterpart of the responsible party may approve of or object to a
submission before the moderator decides. Advisory only: the compliance
status never changes here. A second peer review on the same submission
overwrites the first.
"""

from datetime import datetime
from typing import Optional

from ..schemas import (
    Actor,
    Claim,
    Compliance,
    ComplianceStatus,
    EventType,
    PeerReviewRecord,
    PendingEvent,
)
from .compliance_machine import check_not_terminal, compliance_event
from .errors import InvalidStateTransition, Unauthorized, ValidationError
from .validation import optional_text, require_text

OBJECTION_MIN, REASON_MAX = 20, 500


class PeerReviewGate:

    def guard(self, compliance: Compliance, claim: Claim, actor: Actor) -> None:
        check_not_terminal(compliance, claim)
        if actor.is_staff:
            raise Unauthorized("Peer review is reserved to the counterpart; staff use review_compliance")
        if actor.user_id != claim.counterpart_of(compliance.responsible_user_id):
            raise Unauthorized("Only the counterpart of the responsible party can peer review")
        if compliance.status != ComplianceStatus.SUBMITTED:
            raise InvalidStateTransition(
                f"Peer review requires a submitted compliance (status: {compliance.status.value})"
            )

    def review(
        self,
        compliance: Compliance,
        claim: Claim,
        actor: Actor,
        approved: bool,
        now: datetime,
        reason: Optional[str] = None,
    ) -> tuple[Compliance, PendingEvent]:
        self.guard(compliance, claim, actor)

        if approved:
            text = optional_text(reason, "reason", REASON_MAX)
        else:
            text = require_text(reason, "reason", OBJECTION_MIN, REASON_MAX)

        record = PeerReviewRecord(
            approved=approved,
            reason=text,
            reviewed_by=actor.user_id,
            reviewed_at=now,
        )
        history = list(compliance.submissions)
        if history:
            history[-1] = history[-1].model_copy(update={"peer_review": record})

        updated = compliance.model_copy(update={
            "peer_approved": approved,
            "peer_review_reason": text,
            "peer_reviewed_at": now,
            "submissions": history,
            "updated_at": now,
        })
        return updated, compliance_event(
            updated, EventType.COMPLIANCE_PEER_REVIEWED, actor.user_id, now,
            approved=approved,
            overwrote_previous=compliance.peer_reviewed_at is not None,
        )
