"""
API Routes for the Dispute Engine

Actor identity is asserted by the upstream gateway in headers:
X-Actor-Id, X-Actor-Role, X-Actor-Email.

Action endpoints (one POST per action, no PATCH, no PUT, no DELETE):
- POST /claims                                  - Open a claim
- POST /claims/{id}/mark-in-review              - Moderator takes the claim
- POST /claims/{id}/observations                - Moderator asks the parties
- POST /claims/{id}/observations/reply          - A party replies
- POST /claims/{id}/subsanar                    - Claimant replies (may amend description)
- POST /claims/{id}/resolve                     - Verdict (optionally imposing compliances)
- POST /claims/{id}/reject                      - Reject the claim
- POST /claims/{id}/cancel                      - Claimant withdraws
- POST /compliances/{id}/evidence               - Responsible user submits evidence
- POST /compliances/{id}/peer-review            - Counterpart approves or objects
- POST /compliances/{id}/review                 - Moderator decision

Query endpoints:
- GET /claims                                   - List visible claims
- GET /claims/{id}                              - Claim with compliances and actions
- GET /claims/{id}/events                       - Event log of one claim
- GET /claims/{id}/peer-review-queue            - Compliances awaiting the viewer's peer review
- GET /hirings/{id}/claims                      - Claim history of a hiring
- GET /compliances                              - List visible compliances
- GET /compliances/review-queue                 - Staff review queue
- GET /compliances/{id}                         - One compliance
- GET /users/{id}/compliance-stats              - Per-user counters
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core import DisputeEngine
from ..schemas import (
    Actor,
    ClaimStatus,
    ClaimType,
    ClaimView,
    ComplianceSpec,
    ComplianceStats,
    ComplianceStatus,
    ComplianceView,
    DomainEvent,
    EvidenceFile,
    Page,
    ResolutionType,
    ReviewDecision,
)


router = APIRouter()

# ============================================================
# Dependency Injection
# ============================================================

def get_engine(request: Request) -> DisputeEngine:
    return request.app.state.engine


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_actor_email: Optional[str] = Header(None),
) -> Actor:
    """The acting user, as asserted by the gateway."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id and X-Actor-Role headers are required",
        )
    try:
        return Actor(user_id=x_actor_id, role=x_actor_role, email=x_actor_email)
    except PydanticValidationError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown actor role: {x_actor_role}",
        )


# ============================================================
# Request Models
# ============================================================

class VersionedRequest(BaseModel):
    """Optimistic concurrency: the version the caller last saw."""
    expected_version: Optional[int] = Field(None, ge=0)


class CreateClaimRequest(BaseModel):
    hiring_id: str = Field(..., min_length=1)
    respondent_id: str = Field(..., min_length=1)
    claim_type: ClaimType
    description: str
    other_reason: Optional[str] = None
    evidence: list[EvidenceFile] = Field(default_factory=list)


class ObservationsRequest(VersionedRequest):
    observations: str


class ReplyRequest(VersionedRequest):
    text: Optional[str] = None
    evidence: list[EvidenceFile] = Field(default_factory=list)


class SubsanarRequest(ReplyRequest):
    description: Optional[str] = None


class ResolveClaimRequest(VersionedRequest):
    resolution: str
    resolution_type: ResolutionType
    partial_agreement_details: Optional[str] = None
    compliances: list[ComplianceSpec] = Field(default_factory=list)


class RejectClaimRequest(VersionedRequest):
    resolution: str


class CancelClaimRequest(VersionedRequest):
    reason: Optional[str] = None


class SubmitEvidenceRequest(VersionedRequest):
    evidence: list[EvidenceFile]
    notes: str


class PeerReviewRequest(VersionedRequest):
    approved: bool
    reason: Optional[str] = None


class ReviewComplianceRequest(VersionedRequest):
    decision: ReviewDecision
    notes: str


# ============================================================
# CLAIM ACTIONS
# ============================================================

@router.post(
    "/claims",
    response_model=ClaimView,
    status_code=status.HTTP_201_CREATED,
    tags=["Claim Actions"],
    summary="Open a claim",
)
def create_claim(
    request: CreateClaimRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """
    Open a claim against the other party of a hiring.

    Only one open claim per hiring. The claim type must belong to the
    claimant's role.
    """
    return engine.create_claim(
        actor,
        hiring_id=request.hiring_id,
        respondent_id=request.respondent_id,
        claim_type=request.claim_type,
        description=request.description,
        other_reason=request.other_reason,
        evidence=request.evidence,
    )


@router.post(
    "/claims/{claim_id}/mark-in-review",
    response_model=ClaimView,
    tags=["Claim Actions"],
    summary="Take a claim into review",
)
def mark_in_review(
    claim_id: UUID,
    request: Optional[VersionedRequest] = None,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    expected_version = request.expected_version if request else None
    return engine.mark_in_review(claim_id, actor, expected_version=expected_version)


@router.post(
    "/claims/{claim_id}/observations",
    response_model=ClaimView,
    tags=["Claim Actions"],
    summary="Ask the parties for more information",
)
def add_observations(
    claim_id: UUID,
    request: ObservationsRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.add_observations(
        claim_id, actor, request.observations, expected_version=request.expected_version,
    )


@router.post(
    "/claims/{claim_id}/observations/reply",
    response_model=ClaimView,
    tags=["Claim Actions"],
    summary="Reply to the moderator's observations",
)
def submit_observations(
    claim_id: UUID,
    request: ReplyRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """Either party may reply. Text, evidence or both."""
    return engine.submit_observations(
        claim_id, actor,
        text=request.text,
        evidence=request.evidence,
        expected_version=request.expected_version,
    )


@router.post(
    "/claims/{claim_id}/subsanar",
    response_model=ClaimView,
    tags=["Claim Actions"],
    summary="Claimant's reply, optionally amending the description",
)
def subsanar_claim(
    claim_id: UUID,
    request: SubsanarRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.subsanar_claim(
        claim_id, actor,
        text=request.text,
        evidence=request.evidence,
        description=request.description,
        expected_version=request.expected_version,
    )


@router.post(
    "/claims/{claim_id}/resolve",
    response_model=ClaimView,
    tags=["Claim Actions"],
    summary="Record the verdict",
)
def resolve_claim(
    claim_id: UUID,
    request: ResolveClaimRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """
    Without compliances the claim is resolved.

    With compliances the claim stays in review until every compliance is
    settled; the compliances are created in the same transaction.
    """
    return engine.resolve_claim(
        claim_id, actor,
        resolution=request.resolution,
        resolution_type=request.resolution_type,
        partial_agreement_details=request.partial_agreement_details,
        compliances=request.compliances,
        expected_version=request.expected_version,
    )


@router.post(
    "/claims/{claim_id}/reject",
    response_model=ClaimView,
    tags=["Claim Actions"],
    summary="Reject a claim",
)
def reject_claim(
    claim_id: UUID,
    request: RejectClaimRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.reject_claim(
        claim_id, actor, request.resolution, expected_version=request.expected_version,
    )


@router.post(
    "/claims/{claim_id}/cancel",
    response_model=ClaimView,
    tags=["Claim Actions"],
    summary="Withdraw a claim",
)
def cancel_claim(
    claim_id: UUID,
    request: Optional[CancelClaimRequest] = None,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    request = request or CancelClaimRequest()
    return engine.cancel_claim(
        claim_id, actor, reason=request.reason, expected_version=request.expected_version,
    )


# ============================================================
# COMPLIANCE ACTIONS
# ============================================================

@router.post(
    "/compliances/{compliance_id}/evidence",
    response_model=ComplianceView,
    tags=["Compliance Actions"],
    summary="Submit evidence of compliance",
)
def submit_evidence(
    compliance_id: UUID,
    request: SubmitEvidenceRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """
    One to five files plus notes. Resets any previous peer review.
    """
    return engine.submit_evidence(
        compliance_id, actor, request.evidence, request.notes,
        expected_version=request.expected_version,
    )


@router.post(
    "/compliances/{compliance_id}/peer-review",
    response_model=ComplianceView,
    tags=["Compliance Actions"],
    summary="Counterpart approves or objects",
)
def peer_review(
    compliance_id: UUID,
    request: PeerReviewRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """Advisory only: the moderator still decides."""
    return engine.peer_review(
        compliance_id, actor, request.approved,
        reason=request.reason,
        expected_version=request.expected_version,
    )


@router.post(
    "/compliances/{compliance_id}/review",
    response_model=ComplianceView,
    tags=["Compliance Actions"],
    summary="Moderator decision on a submission",
)
def review_compliance(
    compliance_id: UUID,
    request: ReviewComplianceRequest,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """
    Approve, or reject. A rejection may grant another attempt, suspend
    or ban the responsible user, depending on how many came before.
    """
    return engine.review_compliance(
        compliance_id, actor, request.decision, request.notes,
        expected_version=request.expected_version,
    )


# ============================================================
# CLAIM QUERIES
# ============================================================

@router.get(
    "/claims",
    response_model=Page[ClaimView],
    tags=["Claim Queries"],
    summary="List claims",
)
def list_claims(
    status_filter: Optional[ClaimStatus] = Query(None, alias="status"),
    hiring_id: Optional[str] = None,
    claimant_role: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """Staff see every claim; parties see their own."""
    return engine.list_claims(
        actor,
        status=status_filter,
        hiring_id=hiring_id,
        claimant_role=claimant_role,
        user_id=user_id,
        page=page,
        limit=limit,
    )


@router.get(
    "/claims/{claim_id}",
    response_model=ClaimView,
    tags=["Claim Queries"],
    summary="Get a claim",
)
def get_claim(
    claim_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.get_claim(claim_id, actor)


@router.get(
    "/claims/{claim_id}/events",
    response_model=list[DomainEvent],
    tags=["Claim Queries"],
    summary="Event log of a claim",
)
def claim_events(
    claim_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.events_for_claim(claim_id, actor)


@router.get(
    "/claims/{claim_id}/peer-review-queue",
    response_model=list[ComplianceView],
    tags=["Claim Queries"],
    summary="Compliances awaiting the viewer's peer review",
)
def peer_review_queue(
    claim_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.compliances_for_peer_review(claim_id, actor)


@router.get(
    "/hirings/{hiring_id}/claims",
    response_model=list[ClaimView],
    tags=["Claim Queries"],
    summary="Claim history of a hiring",
)
def hiring_claims(
    hiring_id: str,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.claims_for_hiring(hiring_id, actor)


# ============================================================
# COMPLIANCE QUERIES
# ============================================================

@router.get(
    "/compliances",
    response_model=Page[ComplianceView],
    tags=["Compliance Queries"],
    summary="List compliances",
)
def list_compliances(
    claim_id: Optional[UUID] = None,
    user_id: Optional[str] = None,
    statuses: Optional[list[ComplianceStatus]] = Query(None, alias="status"),
    only_overdue: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    """
    ``status`` may repeat. ``overdue`` and ``warning`` match the display
    status of pending compliances past their deadline.
    """
    return engine.list_compliances(
        actor,
        claim_id=claim_id,
        user_id=user_id,
        statuses=statuses,
        only_overdue=only_overdue,
        page=page,
        limit=limit,
    )


@router.get(
    "/compliances/review-queue",
    response_model=Page[ComplianceView],
    tags=["Compliance Queries"],
    summary="Submitted compliances awaiting a moderator",
)
def review_queue(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.compliances_for_moderator_review(actor, page=page, limit=limit)


@router.get(
    "/compliances/{compliance_id}",
    response_model=ComplianceView,
    tags=["Compliance Queries"],
    summary="Get a compliance",
)
def get_compliance(
    compliance_id: UUID,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.get_compliance(compliance_id, actor)


@router.get(
    "/users/{user_id}/compliance-stats",
    response_model=ComplianceStats,
    tags=["Compliance Queries"],
    summary="Compliance counters of a user",
)
def compliance_stats(
    user_id: str,
    actor: Actor = Depends(get_actor),
    engine: DisputeEngine = Depends(get_engine),
):
    return engine.user_compliance_stats(user_id, actor)
