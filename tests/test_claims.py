"""
Tests for the claim lifecycle.

open -> in_review -> pending_clarification -> requires_staff_response -> resolved
with rejection and cancellation from any non-terminal state.
"""

import pytest

from dispute_engine.core import (
    ClaimStateMachine,
    InvalidStateTransition,
    NotFound,
    TerminalStateViolation,
    Unauthorized,
    ValidationError,
)
from dispute_engine.schemas import (
    Action,
    ClaimStatus,
    ClaimType,
    EventType,
    ResolutionType,
)

from conftest import DESCRIPTION, HIRING_ID, RESOLUTION, START, evidence

OBSERVATIONS = "Please attach the delivery schedule you both agreed on."
REPLY = "The schedule is in the attached contract, section four."


class TestCreateClaim:

    def test_client_opens_claim(self, engine, client_actor, provider_actor, notifications, hirings):
        view = engine.create_claim(
            client_actor,
            hiring_id=HIRING_ID,
            respondent_id=provider_actor.user_id,
            claim_type=ClaimType.NOT_DELIVERED,
            description=DESCRIPTION,
            evidence=[evidence("chat.png")],
        )

        claim = view.claim
        assert claim.status == ClaimStatus.OPEN
        assert claim.claimant_role == client_actor.role
        assert claim.version == 1
        assert claim.evidence_urls == ["https://files.example.com/chat.png"]
        assert Action.CANCEL_CLAIM in view.available_actions
        assert notifications.event_types == [EventType.CLAIM_CREATED.value]
        assert hirings.statuses[HIRING_ID] == "in_claim"

    def test_description_length_enforced(self, engine, client_actor, provider_actor):
        with pytest.raises(ValidationError, match="description"):
            engine.create_claim(
                client_actor, HIRING_ID, provider_actor.user_id,
                ClaimType.NOT_DELIVERED, "Too short to be a real claim.",
            )

    def test_claim_type_must_match_role(self, engine, client_actor, provider_actor):
        with pytest.raises(ValidationError, match="cannot be filed by a client"):
            engine.create_claim(
                client_actor, HIRING_ID, provider_actor.user_id,
                ClaimType.PAYMENT_NOT_RECEIVED, DESCRIPTION,
            )

    def test_other_type_requires_short_reason(self, engine, client_actor, provider_actor):
        with pytest.raises(ValidationError, match="other_reason"):
            engine.create_claim(
                client_actor, HIRING_ID, provider_actor.user_id,
                ClaimType.CLIENT_OTHER, DESCRIPTION,
            )
        with pytest.raises(ValidationError, match="other_reason"):
            engine.create_claim(
                client_actor, HIRING_ID, provider_actor.user_id,
                ClaimType.CLIENT_OTHER, DESCRIPTION, other_reason="x" * 31,
            )

        view = engine.create_claim(
            client_actor, HIRING_ID, provider_actor.user_id,
            ClaimType.CLIENT_OTHER, DESCRIPTION, other_reason="Wrong language",
        )
        assert view.claim.other_reason == "Wrong language"

    def test_staff_cannot_file(self, engine, moderator, provider_actor):
        with pytest.raises(Unauthorized):
            engine.create_claim(
                moderator, HIRING_ID, provider_actor.user_id,
                ClaimType.NOT_DELIVERED, DESCRIPTION,
            )

    def test_bad_evidence_extension(self, engine, client_actor, provider_actor):
        with pytest.raises(ValidationError, match="extension"):
            engine.create_claim(
                client_actor, HIRING_ID, provider_actor.user_id,
                ClaimType.NOT_DELIVERED, DESCRIPTION, evidence=[evidence("script.exe")],
            )

    def test_evidence_size_limit(self, engine, client_actor, provider_actor):
        with pytest.raises(ValidationError, match="10MB"):
            engine.create_claim(
                client_actor, HIRING_ID, provider_actor.user_id,
                ClaimType.NOT_DELIVERED, DESCRIPTION,
                evidence=[evidence("video.mp4", size=11 * 1024 * 1024)],
            )

    def test_one_active_claim_per_hiring(self, engine, hirings, open_claim, provider_actor):
        hirings.statuses[HIRING_ID] = "delivered"
        with pytest.raises(ValidationError, match="already has an active claim"):
            engine.create_claim(
                provider_actor, HIRING_ID, "client-1",
                ClaimType.PAYMENT_NOT_RECEIVED, DESCRIPTION,
            )

    def test_new_claim_after_cancellation(self, engine, open_claim, client_actor, provider_actor):
        engine.cancel_claim(open_claim.id, client_actor)
        view = engine.create_claim(
            client_actor, HIRING_ID, provider_actor.user_id,
            ClaimType.OFF_AGREEMENT, DESCRIPTION,
        )
        assert view.claim.id != open_claim.id
        assert len(engine.claims_for_hiring(HIRING_ID, client_actor)) == 2

    def test_hiring_must_be_claimable(self, engine, hirings, client_actor, provider_actor):
        hirings.statuses["hiring-300"] = "completed"
        with pytest.raises(ValidationError, match="completed"):
            engine.create_claim(
                client_actor, "hiring-300", provider_actor.user_id,
                ClaimType.NOT_DELIVERED, DESCRIPTION,
            )


class TestClaimTransitions:

    def test_full_clarification_cycle(self, engine, claim_in_review, moderator, provider_actor):
        assert claim_in_review.status == ClaimStatus.IN_REVIEW
        assert claim_in_review.assigned_moderator_id == moderator.user_id

        claim = engine.add_observations(claim_in_review.id, moderator, OBSERVATIONS).claim
        assert claim.status == ClaimStatus.PENDING_CLARIFICATION
        assert claim.observations == OBSERVATIONS

        claim = engine.submit_observations(claim.id, provider_actor, text=REPLY).claim
        assert claim.status == ClaimStatus.REQUIRES_STAFF_RESPONSE
        assert claim.clarification_by == provider_actor.user_id

        view = engine.resolve_claim(
            claim.id, moderator, RESOLUTION, ResolutionType.PROVIDER_FAVOR,
        )
        assert view.claim.status == ClaimStatus.RESOLVED
        assert view.claim.resolved_at == START
        assert view.available_actions == []

    def test_subsanar_amends_description(self, engine, claim_in_review, moderator, client_actor):
        engine.add_observations(claim_in_review.id, moderator, OBSERVATIONS)
        amended = DESCRIPTION + " The staging server was also taken offline."

        claim = engine.subsanar_claim(
            claim_in_review.id, client_actor,
            evidence=[evidence("contract.pdf")], description=amended,
        ).claim
        assert claim.status == ClaimStatus.REQUIRES_STAFF_RESPONSE
        assert claim.description == amended
        assert claim.evidence_urls == ["https://files.example.com/contract.pdf"]

    def test_subsanar_is_claimant_only(self, engine, claim_in_review, moderator, provider_actor):
        engine.add_observations(claim_in_review.id, moderator, OBSERVATIONS)
        with pytest.raises(Unauthorized):
            engine.subsanar_claim(claim_in_review.id, provider_actor, text=REPLY)

    def test_reply_needs_text_or_files(self, engine, claim_in_review, moderator, client_actor):
        engine.add_observations(claim_in_review.id, moderator, OBSERVATIONS)
        with pytest.raises(ValidationError):
            engine.submit_observations(claim_in_review.id, client_actor)
        with pytest.raises(ValidationError, match="at least 20"):
            engine.submit_observations(claim_in_review.id, client_actor, text="Too short")

    def test_add_observations_on_resolved_claim_fails(self, engine, claim_in_review, moderator):
        engine.resolve_claim(claim_in_review.id, moderator, RESOLUTION, ResolutionType.CLIENT_FAVOR)
        with pytest.raises(InvalidStateTransition):
            engine.add_observations(claim_in_review.id, moderator, OBSERVATIONS)

    def test_terminal_violation_is_a_state_transition_error(self, engine, open_claim, client_actor):
        engine.cancel_claim(open_claim.id, client_actor, reason="We settled it privately.")
        with pytest.raises(TerminalStateViolation):
            engine.cancel_claim(open_claim.id, client_actor)

    def test_cannot_resolve_open_claim(self, engine, open_claim, moderator):
        with pytest.raises(InvalidStateTransition):
            engine.resolve_claim(open_claim.id, moderator, RESOLUTION, ResolutionType.CLIENT_FAVOR)

    def test_parties_cannot_moderate(self, engine, open_claim, client_actor):
        with pytest.raises(Unauthorized):
            engine.mark_in_review(open_claim.id, client_actor)

    def test_assigned_moderator_only(self, engine, claim_in_review, other_moderator, admin):
        with pytest.raises(Unauthorized, match="another moderator"):
            engine.add_observations(claim_in_review.id, other_moderator, OBSERVATIONS)
        view = engine.add_observations(claim_in_review.id, admin, OBSERVATIONS)
        assert view.claim.status == ClaimStatus.PENDING_CLARIFICATION

    def test_cannot_mark_twice(self, engine, claim_in_review, admin):
        with pytest.raises(InvalidStateTransition):
            engine.mark_in_review(claim_in_review.id, admin)

    def test_reject_reverts_hiring(self, engine, claim_in_review, moderator, hirings):
        view = engine.reject_claim(claim_in_review.id, moderator, RESOLUTION)
        assert view.claim.status == ClaimStatus.REJECTED
        assert hirings.statuses[HIRING_ID] == "in_progress"
        assert hirings.reverts[0][2] == "claim_rejected"

    def test_respondent_cannot_cancel(self, engine, open_claim, provider_actor):
        with pytest.raises(Unauthorized):
            engine.cancel_claim(open_claim.id, provider_actor)

    def test_partial_details_only_for_partial_agreement(self, engine, claim_in_review, moderator):
        with pytest.raises(ValidationError, match="partial_agreement"):
            engine.resolve_claim(
                claim_in_review.id, moderator, RESOLUTION, ResolutionType.CLIENT_FAVOR,
                partial_agreement_details="Half the amount is returned.",
            )
        view = engine.resolve_claim(
            claim_in_review.id, moderator, RESOLUTION, ResolutionType.PARTIAL_AGREEMENT,
            partial_agreement_details="Half the amount is returned.",
        )
        assert view.claim.partial_agreement_details == "Half the amount is returned."

    def test_unknown_claim(self, engine, moderator):
        from uuid import uuid4
        with pytest.raises(NotFound):
            engine.mark_in_review(uuid4(), moderator)


class TestClaimStateMachine:
    """Guard order of the pure machine."""

    @pytest.fixture
    def machine(self):
        return ClaimStateMachine()

    @pytest.fixture
    def claim(self, machine, client_actor):
        claim, _ = machine.create(
            client_actor, HIRING_ID, "provider-1", ClaimType.NOT_DELIVERED, DESCRIPTION, START,
        )
        return claim

    def test_terminal_checked_before_role(self, machine, claim, client_actor):
        cancelled, _ = machine.cancel(claim, client_actor, START)
        with pytest.raises(TerminalStateViolation):
            machine.guard(Action.MARK_IN_REVIEW, cancelled, client_actor)

    def test_role_checked_before_state(self, machine, claim, client_actor):
        with pytest.raises(Unauthorized):
            machine.guard(Action.RESOLVE_CLAIM, claim, client_actor)

    def test_event_payload_records_transition(self, machine, claim, moderator):
        updated, event = machine.mark_in_review(claim, moderator, START)
        assert event.event_type == EventType.CLAIM_MARKED_IN_REVIEW
        assert event.payload["from_status"] == "open"
        assert event.payload["to_status"] == "in_review"
        assert event.payload["actor_role"] == "moderator"

    def test_machine_does_not_mutate_input(self, machine, claim, moderator):
        machine.mark_in_review(claim, moderator, START)
        assert claim.status == ClaimStatus.OPEN
        assert claim.assigned_moderator_id is None
