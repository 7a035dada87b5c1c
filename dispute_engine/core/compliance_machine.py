"""
Compliance State Machine

    pending --submit_evidence--> submitted
    submitted --review(approve)--> approved
    submitted --review(reject)--> pending    (warning, new attempt)
                              +-> rejected   (suspension or ban, terminal)
    pending --deadline exhausted--> escalated (ban, terminal)

Overdue stages are overlays on ``pending`` computed by the
DeadlineEvaluator. apply_deadline() persists a stage change and emits
the events that go with it; BANNED is the only stage that changes the
persisted status.

Once ban_triggered is set nothing on the compliance changes again.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from ..schemas import (
    Actor,
    Claim,
    Compliance,
    ComplianceSpec,
    ComplianceStatus,
    EntityType,
    EvidenceFile,
    EventType,
    ModeratorReviewRecord,
    OverdueStatus,
    PendingEvent,
    ReviewDecision,
    Submission,
)
from .deadlines import DeadlineEvaluator
from .errors import InvalidStateTransition, TerminalStateViolation, Unauthorized, ValidationError
from .escalation import Consequence, EscalationPolicy
from .event_log import make_event
from .validation import require_evidence, require_text

NOTES_MIN, NOTES_MAX = 20, 1000
REVIEW_NOTES_MIN, REVIEW_NOTES_MAX = 20, 1000
INSTRUCTIONS_MIN, INSTRUCTIONS_MAX = 20, 2000
MIN_FILES_PER_SUBMISSION = 1


def check_not_terminal(compliance: Compliance, claim: Claim) -> None:
    """Shared first guard of every compliance action."""
    if claim.is_terminal:
        raise TerminalStateViolation(
            f"Claim {claim.id} is {claim.status.value}; its compliances are frozen"
        )
    if compliance.ban_triggered:
        raise TerminalStateViolation(
            f"Compliance {compliance.id} triggered a ban; no further actions are possible"
        )
    if compliance.is_terminal:
        raise TerminalStateViolation(
            f"Compliance {compliance.id} is {compliance.status.value}"
        )


def compliance_event(
    compliance: Compliance,
    event_type: EventType,
    actor_id: str,
    now: datetime,
    **payload,
) -> PendingEvent:
    return make_event(
        event_type=event_type,
        entity_type=EntityType.COMPLIANCE,
        entity_id=compliance.id,
        claim_id=compliance.claim_id,
        actor_id=actor_id,
        occurred_at=now,
        payload={
            "status": compliance.status,
            "responsible_user_id": compliance.responsible_user_id,
            **payload,
        },
    )


def account_event(
    compliance: Compliance,
    event_type: EventType,
    actor_id: str,
    now: datetime,
    **payload,
) -> PendingEvent:
    """Directive for the account collaborator. entity_id is the user being sanctioned."""
    return make_event(
        event_type=event_type,
        entity_type=EntityType.ACCOUNT,
        entity_id=compliance.responsible_user_id,
        claim_id=compliance.claim_id,
        actor_id=actor_id,
        occurred_at=now,
        payload={"compliance_id": compliance.id, **payload},
    )


class ComplianceStateMachine:
    """Submission / review cycle of one compliance, plus deadline escalation."""

    def __init__(
        self,
        policy: Optional[EscalationPolicy] = None,
        evaluator: Optional[DeadlineEvaluator] = None,
    ):
        self.policy = policy or EscalationPolicy()
        self.evaluator = evaluator or DeadlineEvaluator()

    # ================================================================
    # CREATION
    # ================================================================

    def impose(
        self,
        claim: Claim,
        spec: ComplianceSpec,
        actor: Actor,
        now: datetime,
    ) -> tuple[Compliance, PendingEvent]:
        if not claim.is_party(spec.responsible_user_id):
            raise ValidationError(
                f"responsible_user_id {spec.responsible_user_id} is not a party of claim {claim.id}"
            )
        if spec.deadline.tzinfo is None:
            raise ValidationError("deadline must be timezone-aware")
        if spec.deadline <= now:
            raise ValidationError("deadline must be in the future")

        compliance = Compliance(
            claim_id=claim.id,
            responsible_user_id=spec.responsible_user_id,
            compliance_type=spec.compliance_type,
            deadline=spec.deadline,
            effective_deadline=spec.deadline,
            moderator_instructions=require_text(
                spec.moderator_instructions, "moderator_instructions",
                INSTRUCTIONS_MIN, INSTRUCTIONS_MAX,
            ),
            max_attempts=self.policy.max_attempts,
            created_at=now,
            updated_at=now,
        )
        return compliance, compliance_event(
            compliance, EventType.COMPLIANCE_IMPOSED, actor.user_id, now,
            compliance_type=compliance.compliance_type,
            deadline=compliance.deadline,
        )

    # ================================================================
    # SUBMISSION
    # ================================================================

    def guard_submit(self, compliance: Compliance, claim: Claim, actor: Actor) -> None:
        check_not_terminal(compliance, claim)
        if actor.user_id != compliance.responsible_user_id or not actor.is_party:
            raise Unauthorized("Only the responsible party can submit evidence")
        if compliance.status != ComplianceStatus.PENDING:
            raise InvalidStateTransition(
                f"Evidence can only be submitted while pending (status: {compliance.status.value})"
            )
        if not compliance.can_still_submit:
            raise InvalidStateTransition(
                f"Compliance {compliance.id} no longer accepts submissions"
            )

    def submit_evidence(
        self,
        compliance: Compliance,
        claim: Claim,
        actor: Actor,
        evidence: Iterable[EvidenceFile],
        notes: str,
        now: datetime,
    ) -> tuple[Compliance, list[PendingEvent]]:
        self.guard_submit(compliance, claim, actor)

        urls = require_evidence(evidence, "evidence", min_count=MIN_FILES_PER_SUBMISSION)
        text = require_text(notes, "user_notes", NOTES_MIN, NOTES_MAX)

        submission = Submission(
            attempt_number=compliance.current_attempt,
            submitted_at=now,
            user_notes=text,
            evidence_urls=urls,
        )
        updated = compliance.model_copy(update={
            "status": ComplianceStatus.SUBMITTED,
            "evidence_urls": urls,
            "user_notes": text,
            "submitted_at": now,
            # A new submission starts a new peer review cycle
            "peer_approved": None,
            "peer_review_reason": None,
            "peer_reviewed_at": None,
            "submissions": [*compliance.submissions, submission],
            "updated_at": now,
        })
        return updated, [compliance_event(
            updated, EventType.COMPLIANCE_SUBMITTED, actor.user_id, now,
            attempt_number=submission.attempt_number,
            evidence_count=len(urls),
            overdue_status=compliance.overdue_status,
        )]

    # ================================================================
    # MODERATOR REVIEW
    # ================================================================

    def guard_review(self, compliance: Compliance, claim: Claim, actor: Actor) -> None:
        check_not_terminal(compliance, claim)
        if not actor.is_staff:
            raise Unauthorized("Only a moderator or admin can review a compliance")
        if (
            not actor.is_admin
            and claim.assigned_moderator_id is not None
            and claim.assigned_moderator_id != actor.user_id
        ):
            raise Unauthorized(f"Claim {claim.id} is assigned to another moderator")
        if compliance.status != ComplianceStatus.SUBMITTED:
            raise InvalidStateTransition(
                f"Only submitted compliances can be reviewed (status: {compliance.status.value})"
            )

    def review(
        self,
        compliance: Compliance,
        claim: Claim,
        actor: Actor,
        decision: ReviewDecision,
        notes: str,
        now: datetime,
    ) -> tuple[Compliance, list[PendingEvent]]:
        """
        Binding decision on the current submission.

        Reject consults the escalation policy with the rejection count
        *before* this rejection, then increments it.
        """
        self.guard_review(compliance, claim, actor)
        text = require_text(notes, "moderator_notes", REVIEW_NOTES_MIN, REVIEW_NOTES_MAX)

        try:
            decision = ReviewDecision(decision)
        except ValueError:
            raise ValidationError(
                f"decision must be one of: approve, reject (got {decision!r})"
            ) from None

        if decision == ReviewDecision.APPROVE:
            return self._approve(compliance, actor, text, now)
        return self._reject(compliance, actor, text, now)

    def _with_moderator_review(
        self,
        compliance: Compliance,
        record: ModeratorReviewRecord,
    ) -> list[Submission]:
        history = list(compliance.submissions)
        if history:
            history[-1] = history[-1].model_copy(update={"moderator_review": record})
        return history

    def _approve(self, compliance, actor, text, now):
        record = ModeratorReviewRecord(
            decision=ReviewDecision.APPROVE,
            notes=text,
            reviewed_by=actor.user_id,
            reviewed_at=now,
        )
        updated = compliance.model_copy(update={
            "status": ComplianceStatus.APPROVED,
            "moderator_notes": text,
            "reviewed_at": now,
            "submissions": self._with_moderator_review(compliance, record),
            "updated_at": now,
        })
        return updated, [compliance_event(
            updated, EventType.COMPLIANCE_APPROVED, actor.user_id, now,
            attempt_number=compliance.current_attempt,
            peer_approved=compliance.peer_approved,
        )]

    def _reject(self, compliance, actor, text, now):
        escalation = self.policy.decide(compliance.rejection_count)
        rejection_count = compliance.rejection_count + 1

        record = ModeratorReviewRecord(
            decision=ReviewDecision.REJECT,
            notes=text,
            reviewed_by=actor.user_id,
            reviewed_at=now,
            consequence=escalation.consequence.value,
        )
        update = {
            "rejection_count": rejection_count,
            "moderator_notes": text,
            "reviewed_at": now,
            "submissions": self._with_moderator_review(compliance, record),
            "updated_at": now,
        }

        retry_allowed = (
            escalation.grants_retry
            and compliance.current_attempt < compliance.max_attempts
        )
        if retry_allowed:
            deadline = now + timedelta(days=escalation.retry_deadline_days)
            update.update({
                "status": ComplianceStatus.PENDING,
                "current_attempt": compliance.current_attempt + 1,
                "deadline": deadline,
                "effective_deadline": deadline,
                "overdue_status": OverdueStatus.NOT_OVERDUE,
                "days_overdue": 0,
                "can_still_submit": True,
            })
        else:
            update.update({
                "status": ComplianceStatus.REJECTED,
                "can_still_submit": False,
            })
            if escalation.consequence == Consequence.BAN:
                update["ban_triggered"] = True
            else:
                # Out of attempts without a ban still suspends
                update["suspension_triggered"] = True

        updated = compliance.model_copy(update=update)

        events = [compliance_event(
            updated, EventType.COMPLIANCE_REJECTED, actor.user_id, now,
            consequence=escalation.consequence,
            rejection_count=rejection_count,
            attempt_number=compliance.current_attempt,
            next_deadline=updated.deadline if retry_allowed else None,
        )]
        if updated.ban_triggered:
            events.append(account_event(
                updated, EventType.ACCOUNT_BANNED, actor.user_id, now,
                reason="rejection_limit",
            ))
        elif updated.suspension_triggered and not compliance.suspension_triggered:
            events.append(account_event(
                updated, EventType.ACCOUNT_SUSPENDED, actor.user_id, now,
                reason="rejection_limit",
                suspension_days=escalation.suspension_days or self.policy.suspension_days,
            ))
        return updated, events

    # ================================================================
    # DEADLINES
    # ================================================================

    def apply_deadline(
        self,
        compliance: Compliance,
        now: datetime,
        actor_id: str = "system",
    ) -> tuple[Compliance, list[PendingEvent]]:
        """
        Advance the overdue stage of a pending compliance by at most one step.

        Returns the compliance unchanged and no events when the stage
        does not move. days_overdue is refreshed on read regardless; the
        caller decides whether that alone is worth persisting.
        """
        if compliance.status != ComplianceStatus.PENDING or compliance.ban_triggered:
            return compliance, []

        assessment = self.evaluator.evaluate(compliance.deadline, now, compliance.overdue_status)
        update = {
            "days_overdue": assessment.days_overdue,
            "effective_deadline": assessment.effective_deadline,
            "can_still_submit": assessment.can_still_submit,
        }

        if assessment.overdue_status == compliance.overdue_status:
            return compliance.model_copy(update=update), []

        stage = assessment.overdue_status
        update["overdue_status"] = stage
        update["updated_at"] = now
        if stage == OverdueStatus.SUSPENDED:
            update["suspension_triggered"] = True
        elif stage == OverdueStatus.BANNED:
            update["ban_triggered"] = True
            update["status"] = ComplianceStatus.ESCALATED

        updated = compliance.model_copy(update=update)
        events = [compliance_event(
            updated, EventType.COMPLIANCE_OVERDUE_ESCALATED, actor_id, now,
            from_stage=compliance.overdue_status,
            to_stage=stage,
            days_overdue=assessment.days_overdue,
            effective_deadline=assessment.effective_deadline,
        )]
        if stage == OverdueStatus.SUSPENDED and not compliance.suspension_triggered:
            events.append(account_event(
                updated, EventType.ACCOUNT_SUSPENDED, actor_id, now,
                reason="deadline_missed",
                suspension_days=self.policy.suspension_days,
            ))
        elif stage == OverdueStatus.BANNED:
            events.append(account_event(
                updated, EventType.ACCOUNT_BANNED, actor_id, now,
                reason="deadline_exhausted",
            ))
        return updated, events
