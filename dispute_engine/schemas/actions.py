"""
Action names.

These are the verbs callers send and the values reported back in
``available_actions``. Aliases are distinct members because callers use
both spellings.
"""

from enum import Enum


class Action(str, Enum):
    # Claim actions
    CANCEL_CLAIM = "cancel_claim"
    MARK_IN_REVIEW = "mark_in_review"
    ADD_OBSERVATIONS = "add_observations"
    SUBMIT_OBSERVATIONS = "submit_observations"
    SUBSANAR_CLAIM = "subsanar_claim"           # Claimant's reply, may amend description
    RESOLVE_CLAIM = "resolve_claim"
    REJECT_CLAIM = "reject_claim"

    # Compliance actions
    UPLOAD_COMPLIANCE = "upload_compliance"     # = submit_evidence
    SUBMIT_COMPLIANCE_EVIDENCE = "submit_compliance_evidence"
    PEER_APPROVE = "peer_approve"
    PEER_OBJECT = "peer_object"
    PEER_REVIEW = "peer_review"
    REVIEW_COMPLIANCE = "review_compliance"


CLAIM_ACTIONS = (
    Action.CANCEL_CLAIM,
    Action.MARK_IN_REVIEW,
    Action.ADD_OBSERVATIONS,
    Action.SUBMIT_OBSERVATIONS,
    Action.SUBSANAR_CLAIM,
    Action.RESOLVE_CLAIM,
    Action.REJECT_CLAIM,
)

COMPLIANCE_ACTIONS = (
    Action.UPLOAD_COMPLIANCE,
    Action.SUBMIT_COMPLIANCE_EVIDENCE,
    Action.PEER_APPROVE,
    Action.PEER_OBJECT,
    Action.PEER_REVIEW,
    Action.REVIEW_COMPLIANCE,
)
