# Core dispute resolution services
from .errors import (
    EngineError,
    ValidationError,
    Unauthorized,
    InvalidStateTransition,
    TerminalStateViolation,
    ConcurrentModification,
    NotFound,
    ChainError,
)
from .clock import ClockSource, SystemClock, FixedClock
from .hasher import Hasher, CanonicalSerializationError
from .signer import Signer
from .signing_service import KeyPair, SigningService, get_signing_service
from .escalation import Consequence, EscalationDecision, EscalationPolicy
from .deadlines import DeadlineEvaluator, GraceWindows, OverdueAssessment
from .claim_machine import ClaimStateMachine
from .compliance_machine import ComplianceStateMachine
from .peer_review import PeerReviewGate
from .coordinator import ResolutionCoordinator
from .actions import claim_actions, compliance_actions
from .collaborators import (
    AccountService,
    HiringService,
    NotificationDispatcher,
    InMemoryAccountService,
    InMemoryHiringService,
    RecordingNotificationDispatcher,
)
from .engine import DisputeEngine

__all__ = [
    "EngineError",
    "ValidationError",
    "Unauthorized",
    "InvalidStateTransition",
    "TerminalStateViolation",
    "ConcurrentModification",
    "NotFound",
    "ChainError",
    "ClockSource",
    "SystemClock",
    "FixedClock",
    "Hasher",
    "CanonicalSerializationError",
    "Signer",
    "KeyPair",
    "SigningService",
    "get_signing_service",
    "Consequence",
    "EscalationDecision",
    "EscalationPolicy",
    "DeadlineEvaluator",
    "GraceWindows",
    "OverdueAssessment",
    "ClaimStateMachine",
    "ComplianceStateMachine",
    "PeerReviewGate",
    "ResolutionCoordinator",
    "claim_actions",
    "compliance_actions",
    "AccountService",
    "HiringService",
    "NotificationDispatcher",
    "InMemoryAccountService",
    "InMemoryHiringService",
    "RecordingNotificationDispatcher",
    "DisputeEngine",
]
