"""
Domain Event Schema

Every state transition emits an event. Events are appended to a
hash-chained, signed log (the audit trail) and then handed to the
notification collaborator.

Nothing in the log is edited. Things happen.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """
    All event types.
    You can add more later, never remove.
    """
    # Claim lifecycle
    CLAIM_CREATED = "CLAIM_CREATED"
    CLAIM_MARKED_IN_REVIEW = "CLAIM_MARKED_IN_REVIEW"
    CLAIM_OBSERVATIONS_ADDED = "CLAIM_OBSERVATIONS_ADDED"
    CLAIM_OBSERVATIONS_ANSWERED = "CLAIM_OBSERVATIONS_ANSWERED"
    CLAIM_COMPLIANCES_IMPOSED = "CLAIM_COMPLIANCES_IMPOSED"
    CLAIM_READY_FOR_RESOLUTION = "CLAIM_READY_FOR_RESOLUTION"
    CLAIM_RESOLVED = "CLAIM_RESOLVED"
    CLAIM_REJECTED = "CLAIM_REJECTED"
    CLAIM_CANCELLED = "CLAIM_CANCELLED"

    # Compliance lifecycle
    COMPLIANCE_IMPOSED = "COMPLIANCE_IMPOSED"
    COMPLIANCE_SUBMITTED = "COMPLIANCE_SUBMITTED"
    COMPLIANCE_PEER_REVIEWED = "COMPLIANCE_PEER_REVIEWED"
    COMPLIANCE_APPROVED = "COMPLIANCE_APPROVED"
    COMPLIANCE_REJECTED = "COMPLIANCE_REJECTED"
    COMPLIANCE_OVERDUE_ESCALATED = "COMPLIANCE_OVERDUE_ESCALATED"

    # Account directives (honoured by the account collaborator)
    ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
    ACCOUNT_BANNED = "ACCOUNT_BANNED"


class EntityType(str, Enum):
    CLAIM = "claim"
    COMPLIANCE = "compliance"
    ACCOUNT = "account"


class PendingEvent(BaseModel):
    """
    An event emitted by a state machine but not yet sealed.

    The store assigns sequence number and previous hash at commit time;
    only then can the event be hashed and signed.

    ``payload`` must already be JSON-native (see Hasher.to_canonical) so
    that it hashes identically after a round-trip through storage.
    """
    event_type: EventType
    entity_type: EntityType
    entity_id: str
    claim_id: UUID
    actor_id: str
    occurred_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


class DomainEvent(BaseModel):
    """
    A sealed entry of the event log.

    CHAIN RULES:
    - sequence_number 0 (genesis) has previous_event_hash=None
    - every later event carries the hash of its predecessor
    - event_hash covers the envelope and payload, chained to the previous hash
    - signature is the engine's Ed25519 signature of event_hash
    """
    event_id: UUID
    sequence_number: int = Field(..., ge=0)
    event_type: EventType
    entity_type: EntityType
    entity_id: str
    claim_id: UUID
    actor_id: str
    payload: dict[str, Any]
    previous_event_hash: Optional[str] = None
    event_hash: str
    signature: str
    created_at: datetime

    @staticmethod
    def envelope(
        event_id: UUID,
        sequence_number: int,
        event_type: EventType,
        entity_type: EntityType,
        entity_id: str,
        claim_id: UUID,
        actor_id: str,
        created_at: datetime,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """Build the dict hashed for an event. Shared by sealing and verification."""
        return {
            "event_id": event_id,
            "sequence_number": sequence_number,
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "claim_id": claim_id,
            "actor_id": actor_id,
            "created_at": created_at,
            "payload": payload,
        }

    @property
    def is_genesis(self) -> bool:
        return self.sequence_number == 0

    def hash_input(self) -> dict[str, Any]:
        """The envelope that event_hash is computed over."""
        return self.envelope(
            event_id=self.event_id,
            sequence_number=self.sequence_number,
            event_type=self.event_type,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            claim_id=self.claim_id,
            actor_id=self.actor_id,
            created_at=self.created_at,
            payload=self.payload,
        )

    def validate_chain_rules(self) -> None:
        """Raises ValueError if genesis/linkage rules are violated."""
        if self.sequence_number == 0:
            if self.previous_event_hash is not None:
                raise ValueError(
                    "Genesis event (sequence 0) must have previous_event_hash=None, "
                    f"got: {self.previous_event_hash}"
                )
        else:
            if self.previous_event_hash is None:
                raise ValueError(
                    f"Non-genesis event (sequence {self.sequence_number}) must have "
                    "previous_event_hash set, got None"
                )
            if len(self.previous_event_hash) != 64:
                raise ValueError(
                    "previous_event_hash must be 64 hex characters, "
                    f"got {len(self.previous_event_hash)}"
                )
