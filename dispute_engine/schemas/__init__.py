# Schemas for the Claim & Compliance Resolution Engine.
# These define the contract every action and stored aggregate obeys.

from .actor import Actor, ActorRole, PARTY_ROLES, STAFF_ROLES
from .actions import Action, CLAIM_ACTIONS, COMPLIANCE_ACTIONS
from .claim import (
    Claim,
    ClaimStatus,
    ClaimType,
    ResolutionType,
    CLAIM_TYPES_BY_ROLE,
    OTHER_CLAIM_TYPES,
    TERMINAL_CLAIM_STATUSES,
)
from .compliance import (
    Compliance,
    ComplianceSpec,
    ComplianceStatus,
    ComplianceType,
    ModeratorReviewRecord,
    OverdueStatus,
    OVERDUE_STAGE_ORDER,
    PeerReviewRecord,
    ReviewDecision,
    Submission,
    TERMINAL_COMPLIANCE_STATUSES,
    Urgency,
)
from .events import DomainEvent, EntityType, EventType, PendingEvent
from .evidence import (
    EvidenceFile,
    ALLOWED_EXTENSIONS,
    MAX_FILE_SIZE_BYTES,
    MAX_FILES_PER_SUBMISSION,
)
from .views import (
    ClaimView,
    ComplianceStats,
    ComplianceView,
    Page,
    SettlementSummary,
    SweepReport,
)

__all__ = [
    # Actor
    "Actor",
    "ActorRole",
    "PARTY_ROLES",
    "STAFF_ROLES",
    # Actions
    "Action",
    "CLAIM_ACTIONS",
    "COMPLIANCE_ACTIONS",
    # Claim
    "Claim",
    "ClaimStatus",
    "ClaimType",
    "ResolutionType",
    "CLAIM_TYPES_BY_ROLE",
    "OTHER_CLAIM_TYPES",
    "TERMINAL_CLAIM_STATUSES",
    # Compliance
    "Compliance",
    "ComplianceSpec",
    "ComplianceStatus",
    "ComplianceType",
    "ModeratorReviewRecord",
    "OverdueStatus",
    "OVERDUE_STAGE_ORDER",
    "PeerReviewRecord",
    "ReviewDecision",
    "Submission",
    "TERMINAL_COMPLIANCE_STATUSES",
    "Urgency",
    # Events
    "DomainEvent",
    "EntityType",
    "EventType",
    "PendingEvent",
    # Evidence
    "EvidenceFile",
    "ALLOWED_EXTENSIONS",
    "MAX_FILE_SIZE_BYTES",
    "MAX_FILES_PER_SUBMISSION",
    # Views
    "ClaimView",
    "ComplianceStats",
    "ComplianceView",
    "Page",
    "SettlementSummary",
    "SweepReport",
]
