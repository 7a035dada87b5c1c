"""
Domain Event Log

State machines emit PendingEvents. At commit time the store hands the
chain head to the EventSealer, which assigns the sequence number, chains
the hash to the previous event and signs it.

CHAIN INTEGRITY GUARANTEES:
- Sequence numbers are gapless and monotonically increasing (0, 1, 2, ...)
- previous_event_hash is None ONLY for the genesis event
- Every hash covers the full envelope, not just the payload
- Every event is signed with the engine key
"""

from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from ..schemas import DomainEvent, EntityType, EventType, PendingEvent
from .errors import ChainError
from .hasher import Hasher
from .signing_service import SigningService


def make_event(
    event_type: EventType,
    entity_type: EntityType,
    entity_id: Any,
    claim_id: UUID,
    actor_id: str,
    occurred_at: datetime,
    payload: Optional[dict[str, Any]] = None,
) -> PendingEvent:
    """Build a PendingEvent with a JSON-native payload."""
    return PendingEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        claim_id=claim_id,
        actor_id=actor_id,
        occurred_at=occurred_at,
        payload=Hasher.to_canonical(payload or {}),
    )


class EventSealer:
    """Turns PendingEvents into hashed, chained and signed DomainEvents."""

    def __init__(self, signing_service: SigningService):
        self._signing = signing_service

    @property
    def public_key(self) -> str:
        return self._signing.public_key

    def seal(
        self,
        pending: PendingEvent,
        sequence_number: int,
        previous_hash: Optional[str],
    ) -> DomainEvent:
        if sequence_number == 0:
            previous_hash = None
        elif previous_hash is None:
            raise ChainError(
                f"Cannot seal event with sequence {sequence_number}: "
                "previous event hash is missing but this is not genesis"
            )

        event_id = uuid4()
        envelope = DomainEvent.envelope(
            event_id=event_id,
            sequence_number=sequence_number,
            event_type=pending.event_type,
            entity_type=pending.entity_type,
            entity_id=pending.entity_id,
            claim_id=pending.claim_id,
            actor_id=pending.actor_id,
            created_at=pending.occurred_at,
            payload=pending.payload,
        )
        event_hash = Hasher.hash_event(envelope, previous_hash)

        event = DomainEvent(
            event_id=event_id,
            sequence_number=sequence_number,
            event_type=pending.event_type,
            entity_type=pending.entity_type,
            entity_id=pending.entity_id,
            claim_id=pending.claim_id,
            actor_id=pending.actor_id,
            payload=pending.payload,
            previous_event_hash=previous_hash,
            event_hash=event_hash,
            signature=self._signing.sign_event_hash(event_hash),
            created_at=pending.occurred_at,
        )
        event.validate_chain_rules()
        return event


def verify_event_chain(
    events: Iterable[DomainEvent],
    signing_service: Optional[SigningService] = None,
) -> None:
    """
    Verify a complete event chain, in sequence order.

    Checks sequence continuity, genesis rules, linkage, every hash and,
    when a signing service is given, every signature.

    Raises ChainError on the first failure.
    """
    prev_hash: Optional[str] = None
    expected_sequence = 0

    for event in events:
        if event.sequence_number != expected_sequence:
            raise ChainError(
                f"Sequence gap: expected {expected_sequence}, got {event.sequence_number}"
            )
        if event.previous_event_hash != prev_hash:
            raise ChainError(
                f"Broken linkage at sequence {event.sequence_number}: "
                f"expected previous hash {prev_hash}, got {event.previous_event_hash}"
            )
        if not Hasher.verify_chain(event.hash_input(), event.event_hash, prev_hash):
            raise ChainError(
                f"Hash mismatch at sequence {event.sequence_number} "
                f"({event.event_type.value}): event was altered"
            )
        if signing_service is not None and not signing_service.verify_event_hash(
            event.event_hash, event.signature
        ):
            raise ChainError(f"Bad signature at sequence {event.sequence_number}")

        prev_hash = event.event_hash
        expected_sequence += 1
