"""
Claim Schema

A Claim is a formal dispute raised by one party of a hiring against the
other. It moves through exactly one path and terminal states are final.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from .actor import ActorRole


class ClaimStatus(str, Enum):
    """
    open -> in_review -> pending_clarification -> requires_staff_response
    -> resolved | rejected. cancelled from any non-terminal state.
    """
    OPEN = "open"                                       # Filed, nobody assigned
    IN_REVIEW = "in_review"                             # Moderator assigned
    PENDING_CLARIFICATION = "pending_clarification"     # Waiting on a party
    REQUIRES_STAFF_RESPONSE = "requires_staff_response" # Party answered
    RESOLVED = "resolved"                               # Final verdict
    REJECTED = "rejected"                               # Dismissed
    CANCELLED = "cancelled"                             # Withdrawn


TERMINAL_CLAIM_STATUSES = frozenset({
    ClaimStatus.RESOLVED,
    ClaimStatus.REJECTED,
    ClaimStatus.CANCELLED,
})


class ClaimType(str, Enum):
    """
    Reasons are split by which party files the claim.
    The *_OTHER variants require a short free-text reason.
    """
    # Filed by the client
    NOT_DELIVERED = "not_delivered"
    OFF_AGREEMENT = "off_agreement"
    DEFECTIVE_DELIVERY = "defective_delivery"
    CLIENT_OTHER = "client_other"

    # Filed by the provider
    PAYMENT_NOT_RECEIVED = "payment_not_received"
    PROVIDER_OTHER = "provider_other"


CLAIM_TYPES_BY_ROLE: dict[ActorRole, frozenset[ClaimType]] = {
    ActorRole.CLIENT: frozenset({
        ClaimType.NOT_DELIVERED,
        ClaimType.OFF_AGREEMENT,
        ClaimType.DEFECTIVE_DELIVERY,
        ClaimType.CLIENT_OTHER,
    }),
    ActorRole.PROVIDER: frozenset({
        ClaimType.PAYMENT_NOT_RECEIVED,
        ClaimType.PROVIDER_OTHER,
    }),
}

OTHER_CLAIM_TYPES = frozenset({ClaimType.CLIENT_OTHER, ClaimType.PROVIDER_OTHER})


class ResolutionType(str, Enum):
    """Who the verdict favours."""
    CLIENT_FAVOR = "client_favor"
    PROVIDER_FAVOR = "provider_favor"
    PARTIAL_AGREEMENT = "partial_agreement"


class Claim(BaseModel):
    """
    The claim aggregate root. Owns its compliances.

    Instances are treated as values: state machines return an updated
    copy, the store persists it and bumps ``version``.
    """
    id: UUID = Field(default_factory=uuid4)
    hiring_id: str = Field(..., min_length=1)

    claim_type: ClaimType
    other_reason: Optional[str] = None
    status: ClaimStatus = ClaimStatus.OPEN

    claimant_id: str
    claimant_role: ActorRole
    respondent_id: str

    description: str
    evidence_urls: list[str] = Field(default_factory=list)

    # Moderator -> parties
    observations: Optional[str] = None
    observations_at: Optional[datetime] = None

    # Party -> moderator
    clarification_response: Optional[str] = None
    clarification_response_at: Optional[datetime] = None
    clarification_by: Optional[str] = None

    # Verdict (tentative while compliances are outstanding)
    resolution: Optional[str] = None
    resolution_type: Optional[ResolutionType] = None
    partial_agreement_details: Optional[str] = None
    resolved_by_email: Optional[str] = None
    resolved_at: Optional[datetime] = None
    compliances_imposed_at: Optional[datetime] = None

    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None

    assigned_moderator_id: Optional[str] = None
    assigned_moderator_email: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CLAIM_STATUSES

    @property
    def party_ids(self) -> tuple[str, str]:
        return (self.claimant_id, self.respondent_id)

    def is_party(self, user_id: str) -> bool:
        return user_id in self.party_ids

    def counterpart_of(self, user_id: str) -> Optional[str]:
        """The other party of the hiring, or None if user_id is not a party."""
        if user_id == self.claimant_id:
            return self.respondent_id
        if user_id == self.respondent_id:
            return self.claimant_id
        return None
