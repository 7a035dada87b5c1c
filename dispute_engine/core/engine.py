"""
Dispute Engine - The Service Facade

Every action and query goes through here:

    caller -> DisputeEngine -> state machine (pure) -> store transaction
           <- view (entity + available_actions)   <- collaborators (after commit)

Rules (enforced in code):
- Every write runs under the claim lock, one transaction per action
- expected_version mismatch fails ConcurrentModification
- Overdue stages are evaluated on every read and write of a claim; a
  stage change is persisted with its sanctions in the same transaction
- Collaborators run after commit; their failures are logged, never raised
- A viewer who is neither staff nor a party of the claim sees nothing

The engine has no background threads. sweep_overdue() is the optional
periodic pass that applies deadline sanctions to claims nobody reads.
"""

import math
import time
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence, TypeVar
from uuid import UUID

from ..observability import MetricsCollector, get_logger, get_metrics
from ..schemas import (
    Action,
    Actor,
    Claim,
    ClaimStatus,
    ClaimType,
    ClaimView,
    Compliance,
    ComplianceSpec,
    ComplianceStats,
    ComplianceStatus,
    ComplianceView,
    DomainEvent,
    EventType,
    EvidenceFile,
    OverdueStatus,
    Page,
    ResolutionType,
    ReviewDecision,
    SweepReport,
    Urgency,
)
from .actions import claim_actions, compliance_actions
from .claim_machine import ClaimStateMachine
from .clock import ClockSource, SystemClock
from .collaborators import (
    AccountService,
    HiringService,
    LoggingAccountService,
    LoggingHiringService,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    account_directive_args,
)
from .compliance_machine import ComplianceStateMachine
from .coordinator import ResolutionCoordinator
from .deadlines import DeadlineEvaluator, GraceWindows
from .errors import ChainError, ConcurrentModification, EngineError, NotFound, Unauthorized, ValidationError
from .escalation import EscalationPolicy
from .event_log import EventSealer, verify_event_chain
from .peer_review import PeerReviewGate
from .signing_service import SigningService, get_signing_service

if TYPE_CHECKING:
    from ..db.store import CommitResult, DisputeStore, WriteContext

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
SYSTEM_ACTOR = "system"

# Event type -> hiring revert reason
_HIRING_REVERT_EVENTS = {
    EventType.CLAIM_REJECTED: "claim_rejected",
    EventType.CLAIM_CANCELLED: "claim_cancelled",
}


def paginate(items: Sequence[T], page: int, limit: int) -> tuple[list[T], int, int]:
    """Slice one page out of items. Returns (page items, total, pages)."""
    if page < 1:
        raise ValidationError("page must be >= 1")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    total = len(items)
    start = (page - 1) * limit
    return list(items[start:start + limit]), total, math.ceil(total / limit)


class DisputeEngine:
    """
    The dispute resolution service.

    Storage is delegated to a DisputeStore; business rules to the state
    machines; sanctions and notifications to the collaborators.
    """

    def __init__(
        self,
        store: Optional["DisputeStore"] = None,
        clock: Optional[ClockSource] = None,
        policy: Optional[EscalationPolicy] = None,
        windows: Optional[GraceWindows] = None,
        signing_service: Optional[SigningService] = None,
        notifications: Optional[NotificationDispatcher] = None,
        accounts: Optional[AccountService] = None,
        hirings: Optional[HiringService] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        # Import here to avoid circular imports
        if store is None:
            from ..db.store import InMemoryDisputeStore
            store = InMemoryDisputeStore()

        self.store = store
        self.clock = clock or SystemClock()
        self.policy = policy or EscalationPolicy()
        self.evaluator = DeadlineEvaluator(windows or GraceWindows())
        self.signing_service = signing_service or get_signing_service()
        self.notifications = notifications or LoggingNotificationDispatcher()
        self.accounts = accounts or LoggingAccountService()
        self.hirings = hirings or LoggingHiringService()
        self.metrics = metrics or get_metrics()

        self.claim_machine = ClaimStateMachine()
        self.compliance_machine = ComplianceStateMachine(self.policy, self.evaluator)
        self.peer_gate = PeerReviewGate()
        self.coordinator = ResolutionCoordinator(self.compliance_machine)
        self._sealer = EventSealer(self.signing_service)

    @classmethod
    def from_env(cls, **overrides) -> "DisputeEngine":
        """Engine wired from environment configuration (see db.config, escalation, deadlines)."""
        from ..db.factory import create_store

        kwargs = {
            "store": create_store(),
            "policy": EscalationPolicy.from_env(),
            "windows": GraceWindows.from_env(),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # ================================================================
    # TRANSACTIONS
    # ================================================================

    def _now(self) -> datetime:
        return self.clock.now()

    def _write(
        self,
        claim_id: UUID,
        action: str,
        mutate: Callable[["WriteContext", datetime], None],
        actor_id: str = SYSTEM_ACTOR,
        now: Optional[datetime] = None,
        creating: bool = False,
    ) -> "CommitResult":
        """
        Run one action under the claim lock and commit it.

        Pending overdue stages are applied first. If the action itself
        fails, those deadline changes are still committed before the
        error propagates.
        """
        now = now or self._now()
        start = time.perf_counter()
        result = None

        try:
            with self.store.begin_write(claim_id) as tx:
                if tx.claim is None and not creating:
                    raise NotFound(f"Claim {claim_id} not found")

                deadlines_moved = self._apply_deadlines(tx, now)
                mark = tx.checkpoint()

                try:
                    mutate(tx, now)
                    self._record_readiness(tx, actor_id, now)
                except EngineError:
                    if deadlines_moved:
                        tx.restore(mark)
                        self._record_readiness(tx, SYSTEM_ACTOR, now)
                        result = tx.commit(self._sealer)
                    raise

                result = tx.commit(self._sealer)

        except EngineError as e:
            self.metrics.record_failure(e.kind)
            logger.info(
                "Action refused",
                action=action,
                claim_id=str(claim_id),
                error=e.kind,
                detail=str(e),
            )
            raise
        finally:
            if result is not None:
                self._after_commit(result, action, start)

        return result

    def _apply_deadlines(self, tx: "WriteContext", now: datetime) -> bool:
        claim = tx.claim
        if claim is None or claim.is_terminal:
            return False

        moved = False
        for compliance in tx.compliances:
            updated, events = self.compliance_machine.apply_deadline(compliance, now)
            if events:
                tx.save_compliance(updated)
                tx.record(*events)
                moved = True
        return moved

    def _record_readiness(self, tx: "WriteContext", actor_id: str, now: datetime) -> None:
        claim = tx.current_claim
        if claim is None:
            return
        event = self.coordinator.readiness_event(
            claim, tx.compliances, tx.current_compliances, actor_id, now
        )
        if event is not None:
            tx.record(event)

    @staticmethod
    def _check_version(entity, expected_version: Optional[int]) -> None:
        if expected_version is not None and entity.version != expected_version:
            raise ConcurrentModification(
                f"{type(entity).__name__} {entity.id} is at version {entity.version}, "
                f"not {expected_version}. Refetch and retry."
            )

    def _after_commit(self, result: "CommitResult", action: str, start: float) -> None:
        latency_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_commit(latency_ms, [e.event_type.value for e in result.events])

        if result.events:
            logger.info(
                "Action committed",
                action=action,
                claim_id=str(result.events[0].claim_id),
                events=len(result.events),
                head=result.events[-1].sequence_number,
                latency_ms=round(latency_ms, 2),
            )

        for event in result.events:
            self._deliver("notifications", self.notifications.dispatch, event)

            if event.event_type == EventType.COMPLIANCE_REJECTED:
                self.metrics.compliance_rejections += 1
            elif event.event_type == EventType.ACCOUNT_SUSPENDED:
                self.metrics.suspensions += 1
                self._deliver("accounts", self._suspend, event)
            elif event.event_type == EventType.ACCOUNT_BANNED:
                self.metrics.bans += 1
                self._deliver("accounts", self._ban, event)
            elif event.event_type == EventType.CLAIM_CREATED:
                self._deliver("hirings", self._open_hiring_claim, event)
            elif event.event_type in _HIRING_REVERT_EVENTS:
                self._deliver("hirings", self._revert_hiring, event)

    def _deliver(self, collaborator: str, handler: Callable[[DomainEvent], None], event: DomainEvent) -> None:
        try:
            handler(event)
        except Exception:
            # Committed state stands; the directive needs manual follow-up.
            self.metrics.collaborator_failures += 1
            logger.exception(
                "Collaborator failed after commit",
                collaborator=collaborator,
                event_type=event.event_type.value,
                event_id=str(event.event_id),
                claim_id=str(event.claim_id),
            )

    def _suspend(self, event: DomainEvent) -> None:
        days = event.payload.get("suspension_days") or self.policy.suspension_days
        self.accounts.suspend(days=days, **account_directive_args(event))

    def _ban(self, event: DomainEvent) -> None:
        self.accounts.ban(**account_directive_args(event))

    def _open_hiring_claim(self, event: DomainEvent) -> None:
        self.hirings.open_claim(event.payload["hiring_id"], event.claim_id)

    def _revert_hiring(self, event: DomainEvent) -> None:
        self.hirings.revert(
            event.payload["hiring_id"], event.claim_id, _HIRING_REVERT_EVENTS[event.event_type]
        )

    # ================================================================
    # VIEWS
    # ================================================================

    def urgency(self, compliance: Compliance, now: Optional[datetime] = None) -> Urgency:
        """How pressing a compliance is. Only pending compliances have a clock running."""
        if compliance.status != ComplianceStatus.PENDING:
            return Urgency.NORMAL
        now = now or self._now()
        effective = compliance.effective_deadline or self.evaluator.effective_deadline(
            compliance.deadline, compliance.overdue_status
        )
        return self.evaluator.urgency(effective, now, compliance.overdue_status)

    def _compliance_view(
        self,
        compliance: Compliance,
        claim: Claim,
        viewer: Optional[Actor],
        now: datetime,
    ) -> ComplianceView:
        return ComplianceView(
            compliance=compliance,
            display_status=compliance.display_status,
            urgency=self.urgency(compliance, now),
            available_actions=compliance_actions(compliance, claim, viewer),
        )

    def _claim_view(
        self,
        claim: Claim,
        compliances: Sequence[Compliance],
        viewer: Actor,
        now: datetime,
    ) -> ClaimView:
        return ClaimView(
            claim=claim,
            available_actions=claim_actions(claim, viewer),
            can_resolve=self.coordinator.can_resolve(claim, compliances),
            settlement=self.coordinator.settlement_summary(compliances),
            compliances=[self._compliance_view(c, claim, viewer, now) for c in compliances],
        )

    def _view_of(self, result: "CommitResult", viewer: Actor, now: datetime) -> ClaimView:
        compliances = self._evaluate(result.claim, result.compliances, now, advance=False)
        return self._claim_view(result.claim, compliances, viewer, now)

    def _compliance_view_of(
        self,
        result: "CommitResult",
        compliance_id: UUID,
        viewer: Actor,
        now: datetime,
    ) -> ComplianceView:
        compliances = self._evaluate(result.claim, result.compliances, now, advance=False)
        compliance = next(c for c in compliances if c.id == compliance_id)
        return self._compliance_view(compliance, result.claim, viewer, now)

    # ================================================================
    # READ-TIME DEADLINE EVALUATION
    # ================================================================

    def _evaluate(
        self,
        claim: Claim,
        compliances: Sequence[Compliance],
        now: datetime,
        advance: bool = True,
    ) -> list[Compliance]:
        """
        Deadline fields as of now, without persisting anything.

        With advance=False a pending stage change is left to the next
        evaluation; used on state that was just committed at ``now``.
        """
        if claim.is_terminal:
            return list(compliances)
        evaluated = []
        for compliance in compliances:
            updated, events = self.compliance_machine.apply_deadline(compliance, now)
            evaluated.append(compliance if events and not advance else updated)
        return evaluated

    def _stage_pending(self, claim: Claim, compliances: Sequence[Compliance], now: datetime) -> bool:
        if claim.is_terminal:
            return False
        return any(self.compliance_machine.apply_deadline(c, now)[1] for c in compliances)

    def _refresh(self, claim: Claim, now: datetime) -> tuple[Claim, list[Compliance]]:
        """
        Load a claim's compliances and persist any overdue stage change.

        A busy claim is not an error for a reader: the stage is reported
        as computed and persisted by whichever write gets the lock next.
        """
        compliances = self.store.compliances_for_claim(claim.id)
        if self._stage_pending(claim, compliances, now):
            try:
                result = self._write(claim.id, "refresh_deadlines", lambda tx, now: None, now=now)
                return result.claim, self._evaluate(result.claim, result.compliances, now, advance=False)
            except ConcurrentModification:
                logger.warning(
                    "Deadline refresh deferred; claim busy",
                    claim_id=str(claim.id),
                )
        return claim, self._evaluate(claim, compliances, now)

    # ================================================================
    # ACCESS
    # ================================================================

    def _load_claim(self, claim_id: UUID) -> Claim:
        claim = self.store.get_claim(claim_id)
        if claim is None:
            raise NotFound(f"Claim {claim_id} not found")
        return claim

    def _load_compliance(self, compliance_id: UUID) -> Compliance:
        compliance = self.store.get_compliance(compliance_id)
        if compliance is None:
            raise NotFound(f"Compliance {compliance_id} not found")
        return compliance

    @staticmethod
    def _check_visible(claim: Claim, viewer: Actor) -> None:
        if not (viewer.is_staff or claim.is_party(viewer.user_id)):
            raise Unauthorized(f"Claim {claim.id} is not visible to {viewer.user_id}")

    # ================================================================
    # CLAIM ACTIONS
    # ================================================================

    def create_claim(
        self,
        actor: Actor,
        hiring_id: str,
        respondent_id: str,
        claim_type: ClaimType,
        description: str,
        other_reason: Optional[str] = None,
        evidence: Optional[Iterable[EvidenceFile]] = None,
    ) -> ClaimView:
        now = self._now()
        try:
            self.hirings.check_claimable(hiring_id)
            claim, event = self.claim_machine.create(
                actor, hiring_id, respondent_id, claim_type, description, now,
                other_reason=other_reason, evidence=evidence,
            )
        except EngineError as e:
            self.metrics.record_failure(e.kind)
            raise

        def mutate(tx, now):
            tx.save_claim(claim)
            tx.record(event)

        result = self._write(claim.id, "create_claim", mutate, actor.user_id, now, creating=True)
        return self._view_of(result, actor, now)

    def _claim_action(
        self,
        claim_id: UUID,
        actor: Actor,
        action: Action,
        transition: Callable[[Claim, datetime], tuple],
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        """Shared path of claim transitions that touch no compliance."""
        now = self._now()

        def mutate(tx, now):
            self._check_version(tx.claim, expected_version)
            updated, event = transition(tx.claim, now)
            tx.save_claim(updated)
            tx.record(event)

        result = self._write(claim_id, action.value, mutate, actor.user_id, now)
        return self._view_of(result, actor, now)

    def mark_in_review(
        self,
        claim_id: UUID,
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        return self._claim_action(
            claim_id, actor, Action.MARK_IN_REVIEW,
            lambda claim, now: self.claim_machine.mark_in_review(claim, actor, now),
            expected_version,
        )

    def add_observations(
        self,
        claim_id: UUID,
        actor: Actor,
        observations: str,
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        return self._claim_action(
            claim_id, actor, Action.ADD_OBSERVATIONS,
            lambda claim, now: self.claim_machine.add_observations(claim, actor, observations, now),
            expected_version,
        )

    def submit_observations(
        self,
        claim_id: UUID,
        actor: Actor,
        text: Optional[str] = None,
        evidence: Optional[Iterable[EvidenceFile]] = None,
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        """A party's reply to the moderator's observations."""
        return self._claim_action(
            claim_id, actor, Action.SUBMIT_OBSERVATIONS,
            lambda claim, now: self.claim_machine.submit_observations(
                claim, actor, now, text=text, evidence=evidence,
            ),
            expected_version,
        )

    def subsanar_claim(
        self,
        claim_id: UUID,
        actor: Actor,
        text: Optional[str] = None,
        evidence: Optional[Iterable[EvidenceFile]] = None,
        description: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        """The claimant's reply; may also replace the description."""
        return self._claim_action(
            claim_id, actor, Action.SUBSANAR_CLAIM,
            lambda claim, now: self.claim_machine.submit_observations(
                claim, actor, now, text=text, evidence=evidence,
                description=description, action=Action.SUBSANAR_CLAIM,
            ),
            expected_version,
        )

    def resolve_claim(
        self,
        claim_id: UUID,
        actor: Actor,
        resolution: str,
        resolution_type: ResolutionType,
        partial_agreement_details: Optional[str] = None,
        compliances: Optional[Sequence[ComplianceSpec]] = None,
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        """
        Record the verdict.

        With compliances the claim stays in review and the compliances are
        created in the same commit. Without them the claim is resolved,
        whatever state its existing compliances are in.
        """
        specs = list(compliances or [])
        now = self._now()

        def mutate(tx, now):
            self._check_version(tx.claim, expected_version)
            updated, event = self.claim_machine.resolve(
                tx.claim, actor, resolution, resolution_type, now,
                partial_agreement_details=partial_agreement_details,
                imposed_compliances=len(specs),
            )
            imposed, imposed_events = self.coordinator.impose(updated, specs, actor, now)

            tx.save_claim(updated)
            for item in imposed:
                tx.save_compliance(item)
            tx.record(event, *imposed_events)

        result = self._write(claim_id, Action.RESOLVE_CLAIM.value, mutate, actor.user_id, now)
        return self._view_of(result, actor, now)

    def reject_claim(
        self,
        claim_id: UUID,
        actor: Actor,
        resolution: str,
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        return self._claim_action(
            claim_id, actor, Action.REJECT_CLAIM,
            lambda claim, now: self.claim_machine.reject(claim, actor, resolution, now),
            expected_version,
        )

    def cancel_claim(
        self,
        claim_id: UUID,
        actor: Actor,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ClaimView:
        return self._claim_action(
            claim_id, actor, Action.CANCEL_CLAIM,
            lambda claim, now: self.claim_machine.cancel(claim, actor, now, reason=reason),
            expected_version,
        )

    # ================================================================
    # COMPLIANCE ACTIONS
    # ================================================================

    def _compliance_action(
        self,
        compliance_id: UUID,
        actor: Actor,
        action: Action,
        transition: Callable[[Compliance, Claim, datetime], tuple],
        expected_version: Optional[int] = None,
    ) -> ComplianceView:
        claim_id = self._load_compliance(compliance_id).claim_id
        now = self._now()

        def mutate(tx, now):
            compliance = tx.compliance(compliance_id)
            if compliance is None:
                raise NotFound(f"Compliance {compliance_id} not found")
            self._check_version(compliance, expected_version)

            updated, events = transition(compliance, tx.claim, now)
            tx.save_compliance(updated)
            tx.record(*(events if isinstance(events, list) else [events]))

        result = self._write(claim_id, action.value, mutate, actor.user_id, now)
        return self._compliance_view_of(result, compliance_id, actor, now)

    def submit_evidence(
        self,
        compliance_id: UUID,
        actor: Actor,
        evidence: Iterable[EvidenceFile],
        notes: str,
        expected_version: Optional[int] = None,
        action: Action = Action.UPLOAD_COMPLIANCE,
    ) -> ComplianceView:
        files = list(evidence or [])
        return self._compliance_action(
            compliance_id, actor, action,
            lambda compliance, claim, now: self.compliance_machine.submit_evidence(
                compliance, claim, actor, files, notes, now,
            ),
            expected_version,
        )

    def upload_compliance(self, compliance_id: UUID, actor: Actor, evidence, notes: str,
                          expected_version: Optional[int] = None) -> ComplianceView:
        return self.submit_evidence(compliance_id, actor, evidence, notes, expected_version)

    def submit_compliance_evidence(self, compliance_id: UUID, actor: Actor, evidence, notes: str,
                                   expected_version: Optional[int] = None) -> ComplianceView:
        return self.submit_evidence(
            compliance_id, actor, evidence, notes, expected_version,
            action=Action.SUBMIT_COMPLIANCE_EVIDENCE,
        )

    def peer_review(
        self,
        compliance_id: UUID,
        actor: Actor,
        approved: bool,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        action: Action = Action.PEER_REVIEW,
    ) -> ComplianceView:
        return self._compliance_action(
            compliance_id, actor, action,
            lambda compliance, claim, now: self.peer_gate.review(
                compliance, claim, actor, approved, now, reason=reason,
            ),
            expected_version,
        )

    def peer_approve(self, compliance_id: UUID, actor: Actor, reason: Optional[str] = None,
                     expected_version: Optional[int] = None) -> ComplianceView:
        return self.peer_review(
            compliance_id, actor, True, reason, expected_version, action=Action.PEER_APPROVE,
        )

    def peer_object(self, compliance_id: UUID, actor: Actor, reason: str,
                    expected_version: Optional[int] = None) -> ComplianceView:
        return self.peer_review(
            compliance_id, actor, False, reason, expected_version, action=Action.PEER_OBJECT,
        )

    def review_compliance(
        self,
        compliance_id: UUID,
        actor: Actor,
        decision: ReviewDecision,
        notes: str,
        expected_version: Optional[int] = None,
    ) -> ComplianceView:
        return self._compliance_action(
            compliance_id, actor, Action.REVIEW_COMPLIANCE,
            lambda compliance, claim, now: self.compliance_machine.review(
                compliance, claim, actor, decision, notes, now,
            ),
            expected_version,
        )

    # ================================================================
    # CLAIM QUERIES
    # ================================================================

    def get_claim(self, claim_id: UUID, viewer: Actor) -> ClaimView:
        now = self._now()
        claim = self._load_claim(claim_id)
        self._check_visible(claim, viewer)
        claim, compliances = self._refresh(claim, now)
        return self._claim_view(claim, compliances, viewer, now)

    def list_claims(
        self,
        viewer: Actor,
        status: Optional[ClaimStatus] = None,
        hiring_id: Optional[str] = None,
        claimant_role: Optional[str] = None,
        user_id: Optional[str] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[ClaimView]:
        """Staff see every claim; parties only the ones they are in."""
        if not viewer.is_staff:
            if user_id is not None and user_id != viewer.user_id:
                raise Unauthorized("Parties can only list their own claims")
            user_id = viewer.user_id

        claims = self.store.list_claims(
            status=status, hiring_id=hiring_id, claimant_role=claimant_role, user_id=user_id,
        )
        items, total, pages = paginate(claims, page, limit)

        now = self._now()
        views = []
        for claim in items:
            claim, compliances = self._refresh(claim, now)
            views.append(self._claim_view(claim, compliances, viewer, now))
        return Page[ClaimView](items=views, total=total, page=page, limit=limit, pages=pages)

    def claims_for_hiring(self, hiring_id: str, viewer: Actor) -> list[ClaimView]:
        """Full claim history of one hiring, newest first."""
        now = self._now()
        views = []
        for claim in self.store.list_claims(hiring_id=hiring_id):
            if not (viewer.is_staff or claim.is_party(viewer.user_id)):
                continue
            claim, compliances = self._refresh(claim, now)
            views.append(self._claim_view(claim, compliances, viewer, now))
        return views

    def events_for_claim(self, claim_id: UUID, viewer: Actor) -> list[DomainEvent]:
        claim = self._load_claim(claim_id)
        self._check_visible(claim, viewer)
        return self.store.events_for_claim(claim_id)

    # ================================================================
    # COMPLIANCE QUERIES
    # ================================================================

    def get_compliance(self, compliance_id: UUID, viewer: Actor) -> ComplianceView:
        now = self._now()
        compliance = self._load_compliance(compliance_id)
        claim = self._load_claim(compliance.claim_id)
        self._check_visible(claim, viewer)

        claim, compliances = self._refresh(claim, now)
        compliance = next(c for c in compliances if c.id == compliance_id)
        return self._compliance_view(compliance, claim, viewer, now)

    def _visible_compliances(
        self,
        viewer: Actor,
        claim_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
    ) -> list[tuple[Claim, Compliance]]:
        """(claim, compliance) pairs the viewer may see, deadlines evaluated."""
        now = self._now()
        by_claim: dict[UUID, list[UUID]] = {}
        for item in self.store.list_compliances(claim_id=claim_id, user_id=user_id):
            by_claim.setdefault(item.claim_id, []).append(item.id)

        pairs = []
        for cid, wanted in by_claim.items():
            claim = self.store.get_claim(cid)
            if claim is None or not (viewer.is_staff or claim.is_party(viewer.user_id)):
                continue
            claim, compliances = self._refresh(claim, now)
            pairs.extend((claim, c) for c in compliances if c.id in wanted)
        pairs.sort(key=lambda pair: (pair[1].created_at, str(pair[1].id)))
        return pairs

    def list_compliances(
        self,
        viewer: Actor,
        claim_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ComplianceStatus]] = None,
        only_overdue: bool = False,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[ComplianceView]:
        """
        statuses match either the persisted or the display status, so
        ``overdue`` and ``warning`` filter on the overlay.
        """
        wanted = {ComplianceStatus(s) for s in statuses} if statuses else None
        pairs = [
            (claim, c) for claim, c in self._visible_compliances(viewer, claim_id, user_id)
            if (wanted is None or c.status in wanted or c.display_status in wanted)
            and (not only_overdue or c.overdue_status != OverdueStatus.NOT_OVERDUE)
        ]
        items, total, pages = paginate(pairs, page, limit)

        now = self._now()
        views = [self._compliance_view(c, claim, viewer, now) for claim, c in items]
        return Page[ComplianceView](items=views, total=total, page=page, limit=limit, pages=pages)

    def compliances_for_moderator_review(
        self,
        viewer: Actor,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Page[ComplianceView]:
        """Submitted compliances this staff member can decide on."""
        if not viewer.is_staff:
            raise Unauthorized("Only staff have a review queue")

        now = self._now()
        queue = []
        for claim, c in self._visible_compliances(viewer):
            if Action.REVIEW_COMPLIANCE in compliance_actions(c, claim, viewer):
                queue.append(self._compliance_view(c, claim, viewer, now))
        items, total, pages = paginate(queue, page, limit)
        return Page[ComplianceView](items=items, total=total, page=page, limit=limit, pages=pages)

    def compliances_for_peer_review(self, claim_id: UUID, viewer: Actor) -> list[ComplianceView]:
        """Submitted compliances of a claim that the viewer, as counterpart, may peer review."""
        claim = self._load_claim(claim_id)
        self._check_visible(claim, viewer)

        now = self._now()
        return [
            self._compliance_view(c, claim, viewer, now)
            for claim, c in self._visible_compliances(viewer, claim_id=claim_id)
            if Action.PEER_REVIEW in compliance_actions(c, claim, viewer)
        ]

    def user_compliance_stats(self, user_id: str, viewer: Actor) -> ComplianceStats:
        if not (viewer.is_staff or viewer.user_id == user_id):
            raise Unauthorized("Compliance stats are visible to staff and to the user")

        stats = ComplianceStats(user_id=user_id)
        for claim, c in self._visible_compliances(viewer, user_id=user_id):
            stats.total += 1
            # Work under a closed claim can no longer be done
            actionable = not claim.is_terminal
            if c.status == ComplianceStatus.PENDING:
                if actionable:
                    stats.pending += 1
            elif c.status == ComplianceStatus.SUBMITTED:
                stats.submitted += 1
            elif c.status == ComplianceStatus.APPROVED:
                stats.approved += 1
            elif c.status == ComplianceStatus.REJECTED:
                stats.rejected += 1
            elif c.status == ComplianceStatus.ESCALATED:
                stats.escalated += 1

            if actionable and c.overdue_status != OverdueStatus.NOT_OVERDUE:
                stats.overdue += 1
            if c.suspension_triggered:
                stats.suspensions += 1
            if c.ban_triggered:
                stats.bans += 1
        return stats

    # ================================================================
    # MAINTENANCE
    # ================================================================

    def sweep_overdue(self, now: Optional[datetime] = None) -> SweepReport:
        """
        Apply pending overdue stages on every open claim.

        Busy claims are counted as conflicts and left for the next sweep.
        """
        now = now or self._now()
        report = SweepReport()

        for claim in self.store.list_claims():
            if claim.is_terminal:
                continue
            compliances = self.store.compliances_for_claim(claim.id)
            report.evaluated += len(compliances)
            if not self._stage_pending(claim, compliances, now):
                continue

            try:
                result = self._write(claim.id, "sweep_overdue", lambda tx, now: None, now=now)
            except ConcurrentModification:
                report.conflicts += 1
                continue

            for event in result.events:
                if event.event_type == EventType.COMPLIANCE_OVERDUE_ESCALATED:
                    report.advanced += 1
                elif event.event_type == EventType.ACCOUNT_SUSPENDED:
                    report.suspended += 1
                elif event.event_type == EventType.ACCOUNT_BANNED:
                    report.banned += 1

        logger.info("Overdue sweep complete", **report.model_dump())
        return report

    def verify_event_log(self) -> bool:
        """Re-verify hashes, linkage and signatures of the whole event log."""
        try:
            verify_event_chain(self.store.list_events(), self.signing_service)
        except ChainError as e:
            logger.error("Event log verification FAILED", error=str(e))
            return False
        return True
