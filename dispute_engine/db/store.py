"""
Dispute Store Abstraction

This module defines the store interfaces and the in-memory implementation.
The PostgreSQL implementation lives in postgres.py.

The store is responsible for:
- Canonical state of claims and their compliances
- The per-claim write lock (a claim aggregate includes its compliances)
- Optimistic version checks on every saved entity
- Chain head management for the domain event log

The state machines retain responsibility for:
- Business rules and role checks
- Building the events each transition emits

TRANSACTION CONTRACT:
All writes MUST use the begin_write() context manager:

    with store.begin_write(claim_id) as tx:
        claim, compliances = tx.claim, tx.compliances
        # ... run state machine transitions ...
        tx.save_claim(updated_claim)
        tx.record(*events)
        result = tx.commit(sealer)

The claim update, every compliance save and every event land in one
atomic commit, or none of them do.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Generator, Iterable, Optional
from uuid import UUID

from ..core.errors import ConcurrentModification, EngineError, ValidationError
from ..core.event_log import EventSealer
from ..schemas import (
    Claim,
    ClaimStatus,
    Compliance,
    ComplianceStatus,
    DomainEvent,
    PendingEvent,
)


# ============================================================
# EXCEPTIONS
# ============================================================

class StoreError(EngineError):
    """Raised on misuse of the store or an unexpected storage failure."""
    kind = "store_error"


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass
class ChainHead:
    """Current state of the event log head."""
    last_sequence: int  # -1 means empty log
    last_event_hash: Optional[str]  # None means empty log

    @property
    def next_sequence(self) -> int:
        return self.last_sequence + 1

    @property
    def is_empty(self) -> bool:
        return self.last_sequence == -1


@dataclass
class CommitResult:
    """What a write transaction persisted."""
    claim: Optional[Claim]
    compliances: list[Compliance]
    events: list[DomainEvent]


@dataclass
class WriteContext:
    """
    Transaction context for a write on one claim aggregate.

    claim / compliances are the state as loaded under the lock (claim is
    None when the aggregate does not exist yet). Saved entities must carry
    the version they were loaded with; the store bumps it on commit.

    THREAD SAFETY: All transaction state (conn, cursor) is stored HERE,
    not on the store.
    """
    claim_id: UUID
    claim: Optional[Claim]
    compliances: list[Compliance]
    _store: "DisputeStore"
    _conn: Any = field(default=None)
    _cursor: Any = field(default=None)
    _saved_claim: Optional[Claim] = field(default=None, init=False)
    _saved_compliances: dict[UUID, Compliance] = field(default_factory=dict, init=False)
    _events: list[PendingEvent] = field(default_factory=list, init=False)
    _committed: bool = field(default=False, init=False)
    _rolled_back: bool = field(default=False, init=False)

    @property
    def is_new(self) -> bool:
        return self.claim is None

    def compliance(self, compliance_id: UUID) -> Optional[Compliance]:
        """Latest view of a compliance in this transaction, saved or loaded."""
        if compliance_id in self._saved_compliances:
            return self._saved_compliances[compliance_id]
        for item in self.compliances:
            if item.id == compliance_id:
                return item
        return None

    def save_claim(self, claim: Claim) -> None:
        if claim.id != self.claim_id:
            raise StoreError(f"Claim {claim.id} saved in transaction for {self.claim_id}")
        expected = 0 if self.claim is None else self.claim.version
        if claim.version != expected:
            raise ConcurrentModification(
                f"Claim {claim.id} was modified concurrently "
                f"(expected version {expected}, got {claim.version})"
            )
        self._saved_claim = claim

    def save_compliance(self, compliance: Compliance) -> None:
        if compliance.claim_id != self.claim_id:
            raise StoreError(
                f"Compliance {compliance.id} belongs to claim {compliance.claim_id}, "
                f"not {self.claim_id}"
            )
        loaded = next((c for c in self.compliances if c.id == compliance.id), None)
        expected = 0 if loaded is None else loaded.version
        if compliance.version != expected:
            raise ConcurrentModification(
                f"Compliance {compliance.id} was modified concurrently "
                f"(expected version {expected}, got {compliance.version})"
            )
        self._saved_compliances[compliance.id] = compliance

    def record(self, *events: PendingEvent) -> None:
        self._events.extend(events)

    @property
    def has_changes(self) -> bool:
        return self._saved_claim is not None or bool(self._saved_compliances)

    @property
    def current_claim(self) -> Optional[Claim]:
        return self._saved_claim or self.claim

    @property
    def current_compliances(self) -> list[Compliance]:
        return self.merged_compliances(self._saved_compliances.values())

    def checkpoint(self) -> tuple:
        """Mark the saves and events recorded so far."""
        return (self._saved_claim, dict(self._saved_compliances), len(self._events))

    def restore(self, mark: tuple) -> None:
        """Drop everything saved or recorded after checkpoint()."""
        self._saved_claim, saved, count = mark
        self._saved_compliances = dict(saved)
        del self._events[count:]

    def commit(self, sealer: EventSealer) -> CommitResult:
        """Persist saved entities and seal recorded events, atomically."""
        if self._committed:
            raise StoreError("Transaction already committed")
        if self._rolled_back:
            raise StoreError("Transaction already rolled back")
        if self._saved_claim is None and self.claim is None:
            raise StoreError(f"Claim {self.claim_id} does not exist and was not saved")

        result = self._store._do_commit(self, sealer)
        self._committed = True
        return result

    def rollback(self) -> None:
        if not self._committed and not self._rolled_back:
            self._store._do_rollback(self)
            self._rolled_back = True

    # Used by store implementations

    def bumped_claim(self) -> Optional[Claim]:
        if self._saved_claim is None:
            return None
        return self._saved_claim.model_copy(update={"version": self._saved_claim.version + 1})

    def bumped_compliances(self) -> list[Compliance]:
        return [
            c.model_copy(update={"version": c.version + 1})
            for c in self._saved_compliances.values()
        ]

    def merged_compliances(self, bumped: Iterable[Compliance]) -> list[Compliance]:
        by_id = {c.id: c for c in self.compliances}
        for item in bumped:
            by_id[item.id] = item
        return sort_compliances(by_id.values())

    @property
    def pending_events(self) -> list[PendingEvent]:
        return list(self._events)


def sort_compliances(items: Iterable[Compliance]) -> list[Compliance]:
    return sorted(items, key=lambda c: (c.created_at, str(c.id)))


def seal_events(
    sealer: EventSealer,
    head: ChainHead,
    pending: Iterable[PendingEvent],
) -> list[DomainEvent]:
    """Assign consecutive sequence numbers starting at the head and seal."""
    sealed = []
    sequence, previous_hash = head.next_sequence, head.last_event_hash
    for item in pending:
        event = sealer.seal(item, sequence, previous_hash)
        sealed.append(event)
        sequence, previous_hash = sequence + 1, event.event_hash
    return sealed


def claim_matches(
    claim: Claim,
    status: Optional[ClaimStatus] = None,
    hiring_id: Optional[str] = None,
    claimant_role: Optional[str] = None,
    user_id: Optional[str] = None,
) -> bool:
    if status is not None and claim.status != status:
        return False
    if hiring_id is not None and claim.hiring_id != hiring_id:
        return False
    if claimant_role is not None and claim.claimant_role != claimant_role:
        return False
    if user_id is not None and not claim.is_party(user_id):
        return False
    return True


def compliance_matches(
    compliance: Compliance,
    claim_id: Optional[UUID] = None,
    user_id: Optional[str] = None,
    statuses: Optional[Iterable[ComplianceStatus]] = None,
) -> bool:
    if claim_id is not None and compliance.claim_id != claim_id:
        return False
    if user_id is not None and compliance.responsible_user_id != user_id:
        return False
    if statuses is not None and compliance.status not in set(statuses):
        return False
    return True


# ============================================================
# ABSTRACT BASE CLASSES
# ============================================================

class ClaimStore(ABC):
    """Read side of claim storage."""

    @abstractmethod
    def get_claim(self, claim_id: UUID) -> Optional[Claim]:
        pass

    @abstractmethod
    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        hiring_id: Optional[str] = None,
        claimant_role: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[Claim]:
        """Matching claims, newest first."""
        pass


class ComplianceStore(ABC):
    """Read side of compliance storage."""

    @abstractmethod
    def get_compliance(self, compliance_id: UUID) -> Optional[Compliance]:
        pass

    @abstractmethod
    def list_compliances(
        self,
        claim_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ComplianceStatus]] = None,
    ) -> list[Compliance]:
        """Matching compliances, oldest first."""
        pass

    def compliances_for_claim(self, claim_id: UUID) -> list[Compliance]:
        return self.list_compliances(claim_id=claim_id)


class DisputeStore(ClaimStore, ComplianceStore):
    """
    Claims, compliances and the event log behind one transaction boundary.

    Implementations must ensure:
    1. begin_write holds the claim lock until commit or rollback
    2. A busy claim fails fast with ConcurrentModification
    3. Entities and events commit atomically
    4. No gaps or duplicates in event sequence numbers
    5. At most one non-terminal claim per hiring
    """

    @contextmanager
    @abstractmethod
    def begin_write(self, claim_id: UUID) -> Generator[WriteContext, None, None]:
        """
        Lock a claim aggregate for writing.

        Yields a WriteContext loaded under the lock. Leaving the block
        without commit rolls back.
        """
        pass

    @abstractmethod
    def _do_commit(self, ctx: WriteContext, sealer: EventSealer) -> CommitResult:
        """Internal: commit within current transaction. Use ctx.commit() instead."""
        pass

    @abstractmethod
    def _do_rollback(self, ctx: WriteContext) -> None:
        """Internal: rollback current transaction. Use ctx.rollback() instead."""
        pass

    @abstractmethod
    def get_head(self) -> ChainHead:
        """Current event log head, without locking."""
        pass

    @abstractmethod
    def list_events(self) -> list[DomainEvent]:
        """All events ordered by sequence number."""
        pass

    @abstractmethod
    def events_for_claim(self, claim_id: UUID) -> list[DomainEvent]:
        pass

    @abstractmethod
    def get_event_count(self) -> int:
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryDisputeStore(DisputeStore):
    """
    In-memory implementation of DisputeStore.

    Suitable for:
    - Development
    - Testing
    - Single-process deployments without persistence requirements

    A write on a claim that another write holds fails at once with
    ConcurrentModification, like NOWAIT on the PostgreSQL store. Claim
    ids are only tracked while held. The event log head has its own
    lock, held only for the duration of a commit.
    """

    def __init__(self):
        self._claims: dict[UUID, Claim] = {}
        self._compliances: dict[UUID, Compliance] = {}
        self._events: list[DomainEvent] = []
        self._head = ChainHead(last_sequence=-1, last_event_hash=None)

        self._held_claims: set[UUID] = set()
        self._registry_lock = Lock()
        self._commit_lock = Lock()

    def _acquire_claim(self, claim_id: UUID) -> None:
        with self._registry_lock:
            if claim_id in self._held_claims:
                raise ConcurrentModification(
                    f"Claim {claim_id} is busy - another write holds the lock. Try again."
                )
            self._held_claims.add(claim_id)

    def _release_claim(self, claim_id: UUID) -> None:
        with self._registry_lock:
            self._held_claims.discard(claim_id)

    @contextmanager
    def begin_write(self, claim_id: UUID) -> Generator[WriteContext, None, None]:
        self._acquire_claim(claim_id)
        try:
            ctx = WriteContext(
                claim_id=claim_id,
                claim=self.get_claim(claim_id),
                compliances=self.list_compliances(claim_id=claim_id),
                _store=self,
                _conn="in_memory_lock",
            )
            try:
                yield ctx
            finally:
                if not ctx._committed and not ctx._rolled_back:
                    self._do_rollback(ctx)
                ctx._conn = None
        finally:
            self._release_claim(claim_id)

    def _do_commit(self, ctx: WriteContext, sealer: EventSealer) -> CommitResult:
        if ctx._conn != "in_memory_lock":
            raise StoreError("_do_commit called outside begin_write context")

        with self._commit_lock:
            claim = ctx.bumped_claim()
            if claim is not None and not claim.is_terminal:
                self._check_single_active_claim(claim)

            compliances = ctx.bumped_compliances()
            events = seal_events(sealer, self._head, ctx.pending_events)

            # All checks passed - apply
            if claim is not None:
                self._claims[claim.id] = claim
            for item in compliances:
                self._compliances[item.id] = item
            self._events.extend(events)
            if events:
                self._head = ChainHead(
                    last_sequence=events[-1].sequence_number,
                    last_event_hash=events[-1].event_hash,
                )

        return CommitResult(
            claim=(claim or ctx.claim).model_copy(deep=True),
            compliances=[c.model_copy(deep=True) for c in ctx.merged_compliances(compliances)],
            events=events,
        )

    def _check_single_active_claim(self, claim: Claim) -> None:
        for other in self._claims.values():
            if other.id != claim.id and other.hiring_id == claim.hiring_id and not other.is_terminal:
                raise ValidationError(
                    f"Hiring {claim.hiring_id} already has an active claim ({other.id})"
                )

    def _do_rollback(self, ctx: WriteContext) -> None:
        # Nothing was applied; dropping the context is the rollback.
        ctx._rolled_back = True

    # ================================================================
    # READS
    # ================================================================

    def get_claim(self, claim_id: UUID) -> Optional[Claim]:
        claim = self._claims.get(claim_id)
        return claim.model_copy(deep=True) if claim is not None else None

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        hiring_id: Optional[str] = None,
        claimant_role: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[Claim]:
        matches = [
            c.model_copy(deep=True) for c in self._claims.values()
            if claim_matches(c, status, hiring_id, claimant_role, user_id)
        ]
        return sorted(matches, key=lambda c: (c.created_at, str(c.id)), reverse=True)

    def get_compliance(self, compliance_id: UUID) -> Optional[Compliance]:
        item = self._compliances.get(compliance_id)
        return item.model_copy(deep=True) if item is not None else None

    def list_compliances(
        self,
        claim_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ComplianceStatus]] = None,
    ) -> list[Compliance]:
        wanted = set(statuses) if statuses is not None else None
        return sort_compliances(
            c.model_copy(deep=True) for c in self._compliances.values()
            if compliance_matches(c, claim_id, user_id, wanted)
        )

    def get_head(self) -> ChainHead:
        return ChainHead(
            last_sequence=self._head.last_sequence,
            last_event_hash=self._head.last_event_hash,
        )

    def list_events(self) -> list[DomainEvent]:
        return sorted(self._events, key=lambda e: e.sequence_number)

    def events_for_claim(self, claim_id: UUID) -> list[DomainEvent]:
        return [e for e in self.list_events() if e.claim_id == claim_id]

    def get_event_count(self) -> int:
        return len(self._events)

    def clear(self) -> None:
        """Drop everything (for testing only)."""
        with self._commit_lock:
            self._claims.clear()
            self._compliances.clear()
            self._events.clear()
            self._head = ChainHead(last_sequence=-1, last_event_hash=None)
