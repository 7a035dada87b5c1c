"""
Tests for the engine facade: locking, visibility, listings, the overdue
sweep and after-commit collaborators.
"""

import pytest
from datetime import timedelta

from dispute_engine.core import (
    AccountService,
    ConcurrentModification,
    InvalidStateTransition,
    Unauthorized,
    ValidationError,
)
from dispute_engine.core.engine import paginate
from dispute_engine.schemas import (
    ClaimStatus,
    ClaimType,
    ComplianceStatus,
    EventType,
    OverdueStatus,
    ReviewDecision,
)

from conftest import DESCRIPTION, HIRING_ID, NOTES, RESOLUTION, REVIEW_NOTES, START, evidence


class FailingAccountService(AccountService):

    def suspend(self, user_id, days, reason, event_id):
        raise RuntimeError("account service unavailable")

    def ban(self, user_id, reason, event_id):
        raise RuntimeError("account service unavailable")


def provider_compliance_of(view):
    return next(
        v.compliance for v in view.compliances if v.compliance.responsible_user_id == "provider-1"
    )


@pytest.fixture
def second_claim(engine, clock, provider_actor, client_actor):
    """Filed a minute after open_claim, by the provider on another hiring."""
    clock.advance(minutes=1)
    return engine.create_claim(
        provider_actor, "hiring-200", client_actor.user_id,
        ClaimType.PAYMENT_NOT_RECEIVED, DESCRIPTION,
    ).claim


class TestConcurrency:

    def test_busy_claim_fails_fast(self, engine, store, open_claim, moderator, metrics):
        with store.begin_write(open_claim.id):
            with pytest.raises(ConcurrentModification):
                engine.mark_in_review(open_claim.id, moderator)
        assert metrics.concurrent_conflicts == 1

        view = engine.mark_in_review(open_claim.id, moderator)
        assert view.claim.status == ClaimStatus.IN_REVIEW

    def test_stale_expected_version(self, engine, store, open_claim, moderator, metrics):
        before = len(store.list_events())
        with pytest.raises(ConcurrentModification, match="version"):
            engine.mark_in_review(open_claim.id, moderator, expected_version=0)
        assert len(store.list_events()) == before
        assert metrics.concurrent_conflicts == 1

    def test_matching_version_bumps(self, engine, open_claim, moderator):
        view = engine.mark_in_review(open_claim.id, moderator, expected_version=open_claim.version)
        assert view.claim.version == open_claim.version + 1

    def test_compliance_version_checked(
        self, engine, resolved_with_compliances, provider_actor,
    ):
        compliance = provider_compliance_of(resolved_with_compliances)
        with pytest.raises(ConcurrentModification):
            engine.submit_evidence(
                compliance.id, provider_actor, [evidence()], NOTES,
                expected_version=compliance.version + 1,
            )

    def test_busy_reader_does_not_fail(
        self, engine, store, resolved_with_compliances, moderator, clock,
    ):
        """A reader that cannot take the lock reports the stage without persisting it."""
        claim_id = resolved_with_compliances.claim.id
        clock.advance(days=8)

        with store.begin_write(claim_id):
            view = engine.get_claim(claim_id, moderator)

        assert all(
            c.compliance.overdue_status == OverdueStatus.FIRST_WARNING for c in view.compliances
        )
        assert all(
            c.overdue_status == OverdueStatus.NOT_OVERDUE
            for c in store.compliances_for_claim(claim_id)
        )


class TestRepeatedActions:
    """A repeated action is refused and appends nothing."""

    def test_mark_in_review_twice(self, engine, store, claim_in_review, moderator):
        before = len(store.list_events())
        with pytest.raises(InvalidStateTransition):
            engine.mark_in_review(claim_in_review.id, moderator)
        assert len(store.list_events()) == before

    def test_review_twice(self, engine, store, resolved_with_compliances, moderator, provider_actor):
        compliance = provider_compliance_of(resolved_with_compliances)
        engine.submit_evidence(compliance.id, provider_actor, [evidence()], NOTES)
        engine.review_compliance(compliance.id, moderator, ReviewDecision.APPROVE, REVIEW_NOTES)

        before = len(store.list_events())
        with pytest.raises(InvalidStateTransition):
            engine.review_compliance(compliance.id, moderator, ReviewDecision.APPROVE, REVIEW_NOTES)
        assert len(store.list_events()) == before


class TestVisibility:

    def test_outsider_cannot_read_claim(self, engine, open_claim, outsider):
        with pytest.raises(Unauthorized):
            engine.get_claim(open_claim.id, outsider)
        with pytest.raises(Unauthorized):
            engine.events_for_claim(open_claim.id, outsider)

    def test_parties_and_staff_can_read(self, engine, open_claim, provider_actor, admin):
        assert engine.get_claim(open_claim.id, provider_actor).claim.id == open_claim.id
        assert engine.get_claim(open_claim.id, admin).claim.id == open_claim.id

    def test_party_cannot_list_for_someone_else(self, engine, open_claim, outsider):
        with pytest.raises(Unauthorized):
            engine.list_claims(outsider, user_id="client-1")

    def test_hiring_history_hides_foreign_claims(self, engine, open_claim, outsider, client_actor):
        assert engine.claims_for_hiring(HIRING_ID, outsider) == []
        assert len(engine.claims_for_hiring(HIRING_ID, client_actor)) == 1

    def test_events_for_claim(self, engine, claim_in_review, client_actor):
        events = engine.events_for_claim(claim_in_review.id, client_actor)
        assert [e.event_type for e in events] == [
            EventType.CLAIM_CREATED, EventType.CLAIM_MARKED_IN_REVIEW,
        ]

    def test_outsider_stats_refused(self, engine, resolved_with_compliances, outsider):
        with pytest.raises(Unauthorized):
            engine.user_compliance_stats("provider-1", outsider)


class TestListings:

    def test_staff_sees_everything_newest_first(self, engine, open_claim, second_claim, moderator):
        page = engine.list_claims(moderator)
        assert page.total == 2
        assert [v.claim.id for v in page.items] == [second_claim.id, open_claim.id]

    def test_party_sees_own_claims(self, engine, open_claim, second_claim, client_actor, outsider):
        assert engine.list_claims(client_actor).total == 2
        assert engine.list_claims(outsider).total == 0

    def test_filters(self, engine, open_claim, second_claim, moderator):
        engine.mark_in_review(open_claim.id, moderator)

        in_review = engine.list_claims(moderator, status=ClaimStatus.IN_REVIEW)
        assert [v.claim.id for v in in_review.items] == [open_claim.id]

        by_provider = engine.list_claims(moderator, claimant_role="provider")
        assert [v.claim.id for v in by_provider.items] == [second_claim.id]

        by_hiring = engine.list_claims(moderator, hiring_id="hiring-200")
        assert by_hiring.total == 1

    def test_pagination(self, engine, open_claim, second_claim, moderator):
        page = engine.list_claims(moderator, page=2, limit=1)
        assert page.total == 2
        assert page.pages == 2
        assert [v.claim.id for v in page.items] == [open_claim.id]

        assert engine.list_claims(moderator, page=3, limit=1).items == []

    def test_list_compliances_by_overlay_status(
        self, engine, resolved_with_compliances, moderator, clock,
    ):
        assert engine.list_compliances(moderator).total == 2
        assert engine.list_compliances(moderator, only_overdue=True).total == 0

        clock.advance(days=8)
        overdue = engine.list_compliances(moderator, statuses=[ComplianceStatus.OVERDUE])
        assert overdue.total == 2
        assert all(v.display_status == ComplianceStatus.OVERDUE for v in overdue.items)
        assert engine.list_compliances(moderator, statuses=["pending"]).total == 2
        assert engine.list_compliances(moderator, only_overdue=True).total == 2

    def test_list_compliances_for_user(self, engine, resolved_with_compliances, provider_actor):
        page = engine.list_compliances(provider_actor, user_id="provider-1")
        assert page.total == 1
        assert page.items[0].compliance.responsible_user_id == "provider-1"

    def test_review_queue(
        self, engine, resolved_with_compliances, moderator, other_moderator, admin,
        provider_actor, client_actor,
    ):
        with pytest.raises(Unauthorized):
            engine.compliances_for_moderator_review(provider_actor)

        assert engine.compliances_for_moderator_review(moderator).total == 0

        for view in resolved_with_compliances.compliances:
            actor = provider_actor if view.compliance.responsible_user_id == "provider-1" else client_actor
            engine.submit_evidence(view.compliance.id, actor, [evidence()], NOTES)

        assert engine.compliances_for_moderator_review(moderator).total == 2
        assert engine.compliances_for_moderator_review(admin).total == 2
        assert engine.compliances_for_moderator_review(other_moderator).total == 0

    def test_user_compliance_stats(
        self, engine, resolved_with_compliances, provider_actor, moderator, clock,
    ):
        compliance = provider_compliance_of(resolved_with_compliances)
        engine.submit_evidence(compliance.id, provider_actor, [evidence()], NOTES)
        engine.review_compliance(
            compliance.id, moderator, ReviewDecision.REJECT,
            "The receipt does not match the refund amount.",
        )

        stats = engine.user_compliance_stats("provider-1", provider_actor)
        assert stats.total == 1
        assert stats.pending == 1
        assert stats.overdue == 0

        stats = engine.user_compliance_stats("client-1", moderator)
        assert stats.total == 1
        assert stats.pending == 1

    def test_stats_skip_work_under_closed_claims(
        self, engine, resolved_with_compliances, provider_actor, moderator, clock,
    ):
        engine.reject_claim(resolved_with_compliances.claim.id, moderator, RESOLUTION)
        clock.advance(days=9)

        stats = engine.user_compliance_stats("provider-1", provider_actor)
        assert stats.total == 1
        assert stats.pending == 0
        assert stats.overdue == 0


class TestPaginate:

    def test_slices(self):
        items, total, pages = paginate(list(range(5)), 2, 2)
        assert items == [2, 3]
        assert total == 5
        assert pages == 3

    def test_empty(self):
        assert paginate([], 1, 20) == ([], 0, 0)

    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101)])
    def test_bounds(self, page, limit):
        with pytest.raises(ValidationError):
            paginate([1, 2, 3], page, limit)


class TestSweepOverdue:

    def test_nothing_to_do(self, engine, resolved_with_compliances):
        report = engine.sweep_overdue()
        assert report.evaluated == 2
        assert report.advanced == 0

    def test_advances_one_stage_per_pass(
        self, engine, store, resolved_with_compliances, accounts,
    ):
        deadline = START + timedelta(days=7)

        report = engine.sweep_overdue(deadline + timedelta(days=1))
        assert report.advanced == 2
        assert report.suspended == 0

        report = engine.sweep_overdue(deadline + timedelta(days=1))
        assert report.advanced == 0

        report = engine.sweep_overdue(deadline + timedelta(days=4))
        assert report.advanced == 2
        assert report.suspended == 2
        assert accounts.is_suspended("provider-1")
        assert accounts.is_suspended("client-1")

        report = engine.sweep_overdue(deadline + timedelta(days=6))
        assert report.banned == 2
        stored = store.compliances_for_claim(resolved_with_compliances.claim.id)
        assert {c.status for c in stored} == {ComplianceStatus.ESCALATED}
        assert engine.verify_event_log()

    def test_busy_claim_counted_as_conflict(
        self, engine, store, resolved_with_compliances,
    ):
        with store.begin_write(resolved_with_compliances.claim.id):
            report = engine.sweep_overdue(START + timedelta(days=8))
        assert report.conflicts == 1
        assert report.advanced == 0

    def test_terminal_claims_skipped(self, engine, open_claim, client_actor):
        engine.cancel_claim(open_claim.id, client_actor)
        assert engine.sweep_overdue().evaluated == 0


class TestCollaborators:

    def test_failure_is_logged_not_raised(
        self, engine, store, resolved_with_compliances, metrics, caplog,
    ):
        engine.accounts = FailingAccountService()
        deadline = START + timedelta(days=7)

        engine.sweep_overdue(deadline + timedelta(days=1))
        report = engine.sweep_overdue(deadline + timedelta(days=4))

        assert report.suspended == 2
        assert metrics.collaborator_failures == 2
        assert "Collaborator failed after commit" in caplog.text
        stored = store.compliances_for_claim(resolved_with_compliances.claim.id)
        assert all(c.suspension_triggered for c in stored)

    def test_notifications_follow_commit_order(self, engine, claim_in_review, notifications):
        assert notifications.event_types == [
            EventType.CLAIM_CREATED.value, EventType.CLAIM_MARKED_IN_REVIEW.value,
        ]
        assert [e.sequence_number for e in notifications.events] == [0, 1]

    def test_hiring_reverted_on_cancel(self, engine, open_claim, client_actor, hirings):
        assert hirings.statuses[HIRING_ID] == "in_claim"
        engine.cancel_claim(open_claim.id, client_actor)
        assert hirings.statuses[HIRING_ID] == "in_progress"
        assert hirings.reverts[0][2] == "claim_cancelled"
