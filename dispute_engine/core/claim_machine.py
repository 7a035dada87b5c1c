"""
Claim State Machine

    open --mark_in_review--> in_review --add_observations--> pending_clarification
    pending_clarification --submit_observations / subsanar_claim--> requires_staff_response
    in_review | requires_staff_response --resolve_claim--> resolved
    any non-terminal --reject_claim--> rejected
    any non-terminal --cancel_claim--> cancelled

resolve_claim with compliances attached does not close the claim: the
verdict is recorded, the compliances are imposed and the claim stays in
in_review until a moderator issues the final resolve_claim.

Every method takes the current Claim and returns the updated copy plus
the event it emits. Nothing here touches the store.

GUARD ORDER:
1. Terminal claim           -> TerminalStateViolation
2. Role / ownership         -> Unauthorized
3. Current status           -> InvalidStateTransition
4. Payload rules            -> ValidationError
"""

from datetime import datetime
from typing import Iterable, Optional

from ..schemas import (
    Action,
    Actor,
    Claim,
    ClaimStatus,
    ClaimType,
    CLAIM_TYPES_BY_ROLE,
    EntityType,
    EvidenceFile,
    EventType,
    OTHER_CLAIM_TYPES,
    PendingEvent,
    ResolutionType,
    TERMINAL_CLAIM_STATUSES,
)
from .errors import InvalidStateTransition, TerminalStateViolation, Unauthorized, ValidationError
from .event_log import make_event
from .validation import optional_text, require_evidence, require_text

DESCRIPTION_MIN, DESCRIPTION_MAX = 50, 2000
OTHER_REASON_MAX = 30
OBSERVATIONS_MIN, OBSERVATIONS_MAX = 20, 2000
REPLY_MIN, REPLY_MAX = 20, 2000
RESOLUTION_MIN, RESOLUTION_MAX = 20, 2000
PARTIAL_AGREEMENT_MAX = 500
CANCELLATION_REASON_MAX = 2000

NON_TERMINAL_CLAIM_STATUSES = frozenset(ClaimStatus) - TERMINAL_CLAIM_STATUSES

# Action -> statuses it may start from
CLAIM_TRANSITIONS: dict[Action, frozenset[ClaimStatus]] = {
    Action.MARK_IN_REVIEW: frozenset({ClaimStatus.OPEN}),
    Action.ADD_OBSERVATIONS: frozenset({ClaimStatus.IN_REVIEW}),
    Action.SUBMIT_OBSERVATIONS: frozenset({ClaimStatus.PENDING_CLARIFICATION}),
    Action.SUBSANAR_CLAIM: frozenset({ClaimStatus.PENDING_CLARIFICATION}),
    Action.RESOLVE_CLAIM: frozenset({ClaimStatus.IN_REVIEW, ClaimStatus.REQUIRES_STAFF_RESPONSE}),
    Action.REJECT_CLAIM: NON_TERMINAL_CLAIM_STATUSES,
    Action.CANCEL_CLAIM: NON_TERMINAL_CLAIM_STATUSES,
}

STAFF_CLAIM_ACTIONS = frozenset({
    Action.MARK_IN_REVIEW,
    Action.ADD_OBSERVATIONS,
    Action.RESOLVE_CLAIM,
    Action.REJECT_CLAIM,
})


class ClaimStateMachine:
    """Role-gated status transitions of a single claim."""

    # ================================================================
    # GUARDS
    # ================================================================

    def guard(self, action: Action, claim: Claim, actor: Actor) -> None:
        """
        Raise if actor may not perform action on claim right now.

        Payload rules are not checked here; allowed_actions relies on this.
        """
        if action not in CLAIM_TRANSITIONS:
            raise ValueError(f"{action.value} is not a claim action")

        if claim.is_terminal:
            raise TerminalStateViolation(
                f"Claim {claim.id} is {claim.status.value}; no further actions are possible"
            )

        self._check_role(action, claim, actor)

        if claim.status not in CLAIM_TRANSITIONS[action]:
            raise InvalidStateTransition(
                f"{action.value} is not allowed while claim is {claim.status.value}"
            )

        if action == Action.MARK_IN_REVIEW and claim.assigned_moderator_id is not None:
            raise InvalidStateTransition(
                f"Claim {claim.id} is already assigned to a moderator"
            )

    def _check_role(self, action: Action, claim: Claim, actor: Actor) -> None:
        if action in STAFF_CLAIM_ACTIONS:
            self._require_staff(claim, actor, action)
            return

        if action == Action.SUBMIT_OBSERVATIONS:
            if not (actor.is_party and claim.is_party(actor.user_id)):
                raise Unauthorized("Only the parties of the claim can answer observations")
            return

        if action == Action.SUBSANAR_CLAIM:
            if not (actor.is_party and actor.user_id == claim.claimant_id):
                raise Unauthorized("Only the claimant can amend the claim")
            return

        if action == Action.CANCEL_CLAIM:
            if actor.is_staff:
                self._require_staff(claim, actor, action)
            elif actor.user_id != claim.claimant_id:
                raise Unauthorized("Only the claimant or staff can cancel a claim")

    @staticmethod
    def _require_staff(claim: Claim, actor: Actor, action: Action) -> None:
        if not actor.is_staff:
            raise Unauthorized(f"{action.value} requires a moderator or admin")
        # Admins may act on any claim; moderators only on their own.
        if (
            not actor.is_admin
            and claim.assigned_moderator_id is not None
            and claim.assigned_moderator_id != actor.user_id
        ):
            raise Unauthorized(
                f"Claim {claim.id} is assigned to another moderator"
            )

    @staticmethod
    def _assignment(claim: Claim, actor: Actor) -> dict:
        """Fields assigning the acting moderator when nobody holds the claim yet."""
        if actor.is_staff and claim.assigned_moderator_id is None:
            return {
                "assigned_moderator_id": actor.user_id,
                "assigned_moderator_email": actor.email,
            }
        return {}

    @staticmethod
    def _event(
        claim: Claim,
        event_type: EventType,
        actor: Actor,
        now: datetime,
        previous: ClaimStatus,
        **payload,
    ) -> PendingEvent:
        return make_event(
            event_type=event_type,
            entity_type=EntityType.CLAIM,
            entity_id=claim.id,
            claim_id=claim.id,
            actor_id=actor.user_id,
            occurred_at=now,
            payload={
                "from_status": previous,
                "to_status": claim.status,
                "actor_role": actor.role,
                **payload,
            },
        )

    # ================================================================
    # CREATION
    # ================================================================

    def create(
        self,
        actor: Actor,
        hiring_id: str,
        respondent_id: str,
        claim_type: ClaimType,
        description: str,
        now: datetime,
        other_reason: Optional[str] = None,
        evidence: Optional[Iterable[EvidenceFile]] = None,
    ) -> tuple[Claim, PendingEvent]:
        if not actor.is_party:
            raise Unauthorized("Only a client or provider can file a claim")

        if not hiring_id or not hiring_id.strip():
            raise ValidationError("hiring_id is required")
        if not respondent_id or not respondent_id.strip():
            raise ValidationError("respondent_id is required")
        if respondent_id == actor.user_id:
            raise ValidationError("A claim cannot be filed against oneself")

        if claim_type not in CLAIM_TYPES_BY_ROLE[actor.role]:
            raise ValidationError(
                f"Claim type {claim_type.value} cannot be filed by a {actor.role.value}"
            )

        if claim_type in OTHER_CLAIM_TYPES:
            other_reason = require_text(other_reason, "other_reason", 1, OTHER_REASON_MAX)
        elif other_reason and other_reason.strip():
            raise ValidationError("other_reason is only accepted for 'other' claim types")
        else:
            other_reason = None

        claim = Claim(
            hiring_id=hiring_id.strip(),
            claim_type=claim_type,
            other_reason=other_reason,
            claimant_id=actor.user_id,
            claimant_role=actor.role,
            respondent_id=respondent_id,
            description=require_text(description, "description", DESCRIPTION_MIN, DESCRIPTION_MAX),
            evidence_urls=require_evidence(evidence, "evidence"),
            created_at=now,
            updated_at=now,
        )

        event = make_event(
            event_type=EventType.CLAIM_CREATED,
            entity_type=EntityType.CLAIM,
            entity_id=claim.id,
            claim_id=claim.id,
            actor_id=actor.user_id,
            occurred_at=now,
            payload={
                "hiring_id": claim.hiring_id,
                "claim_type": claim.claim_type,
                "claimant_id": claim.claimant_id,
                "claimant_role": claim.claimant_role,
                "respondent_id": claim.respondent_id,
                "to_status": claim.status,
                "evidence_count": len(claim.evidence_urls),
            },
        )
        return claim, event

    # ================================================================
    # TRANSITIONS
    # ================================================================

    def mark_in_review(self, claim: Claim, actor: Actor, now: datetime) -> tuple[Claim, PendingEvent]:
        self.guard(Action.MARK_IN_REVIEW, claim, actor)

        updated = claim.model_copy(update={
            "status": ClaimStatus.IN_REVIEW,
            "assigned_moderator_id": actor.user_id,
            "assigned_moderator_email": actor.email,
            "updated_at": now,
        })
        return updated, self._event(
            updated, EventType.CLAIM_MARKED_IN_REVIEW, actor, now, claim.status,
            moderator_id=actor.user_id,
        )

    def add_observations(
        self,
        claim: Claim,
        actor: Actor,
        observations: str,
        now: datetime,
    ) -> tuple[Claim, PendingEvent]:
        self.guard(Action.ADD_OBSERVATIONS, claim, actor)
        text = require_text(observations, "observations", OBSERVATIONS_MIN, OBSERVATIONS_MAX)

        updated = claim.model_copy(update={
            "status": ClaimStatus.PENDING_CLARIFICATION,
            "observations": text,
            "observations_at": now,
            "updated_at": now,
        })
        return updated, self._event(
            updated, EventType.CLAIM_OBSERVATIONS_ADDED, actor, now, claim.status,
            observations=text,
        )

    def submit_observations(
        self,
        claim: Claim,
        actor: Actor,
        now: datetime,
        text: Optional[str] = None,
        evidence: Optional[Iterable[EvidenceFile]] = None,
        description: Optional[str] = None,
        action: Action = Action.SUBMIT_OBSERVATIONS,
    ) -> tuple[Claim, PendingEvent]:
        """
        The single reply transition out of pending_clarification.

        Needs a 20-2000 char text, at least one new evidence file, or both.
        Called as subsanar_claim the claimant may also replace the
        description.
        """
        if action not in (Action.SUBMIT_OBSERVATIONS, Action.SUBSANAR_CLAIM):
            raise ValueError(f"{action.value} is not a reply action")
        self.guard(action, claim, actor)

        new_urls = require_evidence(evidence, "evidence")
        reply = optional_text(text, "clarification_response", REPLY_MAX)
        if reply is not None and len(reply) < REPLY_MIN:
            raise ValidationError(
                f"clarification_response must be at least {REPLY_MIN} characters (got {len(reply)})"
            )
        if reply is None and not new_urls:
            raise ValidationError(
                "A reply needs a clarification text or at least one new evidence file"
            )

        update = {
            "status": ClaimStatus.REQUIRES_STAFF_RESPONSE,
            "clarification_response": reply,
            "clarification_response_at": now,
            "clarification_by": actor.user_id,
            "evidence_urls": [*claim.evidence_urls, *new_urls],
            "updated_at": now,
        }
        if description is not None:
            if action != Action.SUBSANAR_CLAIM:
                raise ValidationError("Only subsanar_claim may amend the description")
            update["description"] = require_text(
                description, "description", DESCRIPTION_MIN, DESCRIPTION_MAX
            )

        updated = claim.model_copy(update=update)
        return updated, self._event(
            updated, EventType.CLAIM_OBSERVATIONS_ANSWERED, actor, now, claim.status,
            via=action,
            new_evidence_count=len(new_urls),
            description_amended=description is not None,
        )

    def resolve(
        self,
        claim: Claim,
        actor: Actor,
        resolution: str,
        resolution_type: ResolutionType,
        now: datetime,
        partial_agreement_details: Optional[str] = None,
        imposed_compliances: int = 0,
    ) -> tuple[Claim, PendingEvent]:
        """
        Record the verdict.

        With imposed_compliances > 0 this is the verdict-with-conditions:
        the claim goes (back) to in_review and stays open until a later
        resolve_claim without compliances closes it.
        """
        self.guard(Action.RESOLVE_CLAIM, claim, actor)
        text = require_text(resolution, "resolution", RESOLUTION_MIN, RESOLUTION_MAX)

        if resolution_type is None:
            raise ValidationError("resolution_type is required")
        details = optional_text(
            partial_agreement_details, "partial_agreement_details", PARTIAL_AGREEMENT_MAX
        )
        if details is not None and resolution_type != ResolutionType.PARTIAL_AGREEMENT:
            raise ValidationError(
                "partial_agreement_details only applies to partial_agreement resolutions"
            )

        update = {
            "resolution": text,
            "resolution_type": resolution_type,
            "partial_agreement_details": details,
            "resolved_by_email": actor.email,
            "updated_at": now,
            **self._assignment(claim, actor),
        }

        if imposed_compliances > 0:
            update["status"] = ClaimStatus.IN_REVIEW
            update["compliances_imposed_at"] = now
            event_type = EventType.CLAIM_COMPLIANCES_IMPOSED
        else:
            update["status"] = ClaimStatus.RESOLVED
            update["resolved_at"] = now
            event_type = EventType.CLAIM_RESOLVED

        updated = claim.model_copy(update=update)
        return updated, self._event(
            updated, event_type, actor, now, claim.status,
            resolution_type=resolution_type,
            imposed_compliances=imposed_compliances,
        )

    def reject(
        self,
        claim: Claim,
        actor: Actor,
        resolution: str,
        now: datetime,
    ) -> tuple[Claim, PendingEvent]:
        self.guard(Action.REJECT_CLAIM, claim, actor)
        text = require_text(resolution, "resolution", RESOLUTION_MIN, RESOLUTION_MAX)

        updated = claim.model_copy(update={
            "status": ClaimStatus.REJECTED,
            "resolution": text,
            "resolved_by_email": actor.email,
            "resolved_at": now,
            "updated_at": now,
            **self._assignment(claim, actor),
        })
        return updated, self._event(
            updated, EventType.CLAIM_REJECTED, actor, now, claim.status,
            hiring_id=claim.hiring_id,
        )

    def cancel(
        self,
        claim: Claim,
        actor: Actor,
        now: datetime,
        reason: Optional[str] = None,
    ) -> tuple[Claim, PendingEvent]:
        self.guard(Action.CANCEL_CLAIM, claim, actor)

        updated = claim.model_copy(update={
            "status": ClaimStatus.CANCELLED,
            "cancellation_reason": optional_text(reason, "reason", CANCELLATION_REASON_MAX),
            "cancelled_by": actor.user_id,
            "updated_at": now,
        })
        return updated, self._event(
            updated, EventType.CLAIM_CANCELLED, actor, now, claim.status,
            hiring_id=claim.hiring_id,
        )
