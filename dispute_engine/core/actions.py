"""
Allowed actions.

Derived from the same guards the state machines run, so an action is
listed exactly when attempting it would get past role and state checks.
Payload rules are not part of the answer.
"""

from typing import Optional

from ..schemas import Action, Actor, Claim, Compliance
from .claim_machine import CLAIM_TRANSITIONS, ClaimStateMachine
from .compliance_machine import ComplianceStateMachine
from .errors import EngineError
from .peer_review import PeerReviewGate

# Canonical action -> spellings reported to callers
SUBMIT_ACTIONS = (Action.UPLOAD_COMPLIANCE, Action.SUBMIT_COMPLIANCE_EVIDENCE)
PEER_ACTIONS = (Action.PEER_REVIEW, Action.PEER_APPROVE, Action.PEER_OBJECT)

_claim_machine = ClaimStateMachine()
_compliance_machine = ComplianceStateMachine()
_peer_gate = PeerReviewGate()


def _passes(check, *args) -> bool:
    try:
        check(*args)
    except EngineError:
        return False
    return True


def claim_actions(claim: Claim, viewer: Actor) -> list[Action]:
    """Claim-level actions the viewer may take right now."""
    return [
        action for action in CLAIM_TRANSITIONS
        if _passes(_claim_machine.guard, action, claim, viewer)
    ]


def compliance_actions(
    compliance: Compliance,
    claim: Claim,
    viewer: Optional[Actor],
) -> list[Action]:
    """Compliance-level actions the viewer may take right now."""
    if viewer is None:
        return []

    actions: list[Action] = []
    if _passes(_compliance_machine.guard_submit, compliance, claim, viewer):
        actions.extend(SUBMIT_ACTIONS)
    if _passes(_peer_gate.guard, compliance, claim, viewer):
        actions.extend(PEER_ACTIONS)
    if _passes(_compliance_machine.guard_review, compliance, claim, viewer):
        actions.append(Action.REVIEW_COMPLIANCE)
    return actions
