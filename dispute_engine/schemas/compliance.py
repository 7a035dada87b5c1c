"""
Compliance Schema

A Compliance is an obligation a moderator imposes on one party to settle
a claim: refund, redeliver, pay, upload proof...

Persisted statuses are pending, submitted, approved, rejected and
escalated. ``overdue`` and ``warning`` are display overlays on a pending
compliance derived from its overdue stage; they are never stored.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class ComplianceStatus(str, Enum):
    PENDING = "pending"         # Waiting for the responsible party
    SUBMITTED = "submitted"     # Evidence in, waiting for review
    APPROVED = "approved"       # Accepted (terminal)
    REJECTED = "rejected"       # Rejected with suspension/ban (terminal)
    OVERDUE = "overdue"         # Display only: pending + FIRST_WARNING
    WARNING = "warning"         # Display only: pending + SUSPENDED
    ESCALATED = "escalated"     # Deadlines exhausted, party banned (terminal)


TERMINAL_COMPLIANCE_STATUSES = frozenset({
    ComplianceStatus.APPROVED,
    ComplianceStatus.REJECTED,
    ComplianceStatus.ESCALATED,
})


class ComplianceType(str, Enum):
    """What the responsible party has to do."""
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    FULL_REDELIVERY = "full_redelivery"
    CORRECTED_DELIVERY = "corrected_delivery"
    ADDITIONAL_DELIVERY = "additional_delivery"
    PAYMENT_REQUIRED = "payment_required"
    PARTIAL_PAYMENT = "partial_payment"
    EVIDENCE_UPLOAD = "evidence_upload"
    CONFIRMATION_ONLY = "confirmation_only"
    AUTO_REFUND = "auto_refund"
    NO_ACTION_REQUIRED = "no_action_required"


class OverdueStatus(str, Enum):
    """Deadline stages. They only ever move forward."""
    NOT_OVERDUE = "NOT_OVERDUE"
    FIRST_WARNING = "FIRST_WARNING"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


OVERDUE_STAGE_ORDER = (
    OverdueStatus.NOT_OVERDUE,
    OverdueStatus.FIRST_WARNING,
    OverdueStatus.SUSPENDED,
    OverdueStatus.BANNED,
)


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class Urgency(str, Enum):
    """How close a pending compliance is to its deadline."""
    NORMAL = "normal"
    WARNING = "warning"     # Less than 72h left
    URGENT = "urgent"       # Less than 24h left
    CRITICAL = "critical"   # Past the deadline


class PeerReviewRecord(BaseModel):
    """The counterpart's advisory opinion on a submission."""
    model_config = ConfigDict(frozen=True)

    approved: bool
    reason: Optional[str] = None
    reviewed_by: str
    reviewed_at: datetime


class ModeratorReviewRecord(BaseModel):
    """The binding decision on a submission."""
    model_config = ConfigDict(frozen=True)

    decision: ReviewDecision
    notes: str
    reviewed_by: str
    reviewed_at: datetime
    consequence: Optional[str] = None  # warning / suspension / ban on reject


class Submission(BaseModel):
    """
    One attempt at fulfilling a compliance.

    Immutable. Attaching a review produces a new record that replaces the
    last entry of the history; earlier entries are never touched.
    """
    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(..., ge=1)
    submitted_at: datetime
    user_notes: str
    evidence_urls: list[str] = Field(default_factory=list)
    peer_review: Optional[PeerReviewRecord] = None
    moderator_review: Optional[ModeratorReviewRecord] = None


class Compliance(BaseModel):
    """A commitment owned by a claim."""
    id: UUID = Field(default_factory=uuid4)
    claim_id: UUID
    responsible_user_id: str
    compliance_type: ComplianceType
    status: ComplianceStatus = ComplianceStatus.PENDING

    deadline: datetime
    moderator_instructions: str

    current_attempt: int = 1
    max_attempts: int = 3
    rejection_count: int = 0

    # Sticky once true
    suspension_triggered: bool = False
    ban_triggered: bool = False

    overdue_status: OverdueStatus = OverdueStatus.NOT_OVERDUE
    days_overdue: int = 0
    can_still_submit: bool = True
    effective_deadline: Optional[datetime] = None

    # Latest submission
    evidence_urls: list[str] = Field(default_factory=list)
    user_notes: Optional[str] = None
    submitted_at: Optional[datetime] = None

    # Latest peer review
    peer_approved: Optional[bool] = None
    peer_review_reason: Optional[str] = None
    peer_reviewed_at: Optional[datetime] = None

    # Latest moderator review
    moderator_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    submissions: list[Submission] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.ban_triggered or self.status in TERMINAL_COMPLIANCE_STATUSES

    @property
    def display_status(self) -> ComplianceStatus:
        """Persisted status with the overdue overlay applied."""
        if self.status == ComplianceStatus.PENDING:
            if self.overdue_status == OverdueStatus.FIRST_WARNING:
                return ComplianceStatus.OVERDUE
            if self.overdue_status == OverdueStatus.SUSPENDED:
                return ComplianceStatus.WARNING
        return self.status

    @property
    def current_submission(self) -> Optional[Submission]:
        return self.submissions[-1] if self.submissions else None


class ComplianceSpec(BaseModel):
    """What a moderator asks for when imposing a compliance."""
    responsible_user_id: str = Field(..., min_length=1)
    compliance_type: ComplianceType
    deadline: datetime
    moderator_instructions: str
