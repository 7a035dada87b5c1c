"""
PostgreSQL Dispute Store

Provides:
- Full ACID guarantees: entities and events commit in one transaction
- Per-claim locking via SELECT ... FOR UPDATE NOWAIT (busy -> ConcurrentModification)
- Optimistic version check on every UPDATE
- One active claim per hiring via a partial unique index
- Lock/statement timeouts to prevent hanging

Aggregates are stored as JSONB documents next to the columns queries
filter on. Events are stored with their JSON payload exactly as hashed.

THREAD SAFETY:
All transaction state (conn, cursor) is stored in WriteContext, NOT on
the store. One store instance can be shared across threads.
"""

from contextlib import contextmanager
from typing import Any, Callable, Generator, Iterable, Optional
from uuid import UUID

import psycopg2
from psycopg2.extras import Json

from ..core.errors import ConcurrentModification, ValidationError
from ..core.event_log import EventSealer
from ..observability import get_logger
from ..schemas import (
    Claim,
    ClaimStatus,
    Compliance,
    ComplianceStatus,
    DomainEvent,
    EntityType,
    EventType,
    TERMINAL_CLAIM_STATUSES,
)
from .store import (
    ChainHead,
    CommitResult,
    DisputeStore,
    StoreError,
    WriteContext,
    seal_events,
)

logger = get_logger(__name__)


_TERMINAL_SQL = ", ".join(f"'{s.value}'" for s in sorted(TERMINAL_CLAIM_STATUSES, key=lambda s: s.value))

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS claims (
    id              UUID PRIMARY KEY,
    hiring_id       TEXT NOT NULL,
    status          TEXT NOT NULL,
    claimant_id     TEXT NOT NULL,
    claimant_role   TEXT NOT NULL,
    respondent_id   TEXT NOT NULL,
    version         INTEGER NOT NULL,
    document        JSONB NOT NULL,
    created_at      TIMESTAMPTZ NOT NULL,
    updated_at      TIMESTAMPTZ NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS claims_one_active_per_hiring
    ON claims (hiring_id)
    WHERE status NOT IN ({_TERMINAL_SQL});

CREATE INDEX IF NOT EXISTS claims_claimant_idx ON claims (claimant_id);
CREATE INDEX IF NOT EXISTS claims_respondent_idx ON claims (respondent_id);

CREATE TABLE IF NOT EXISTS compliances (
    id                  UUID PRIMARY KEY,
    claim_id            UUID NOT NULL REFERENCES claims (id) ON DELETE CASCADE,
    responsible_user_id TEXT NOT NULL,
    status              TEXT NOT NULL,
    deadline            TIMESTAMPTZ NOT NULL,
    version             INTEGER NOT NULL,
    document            JSONB NOT NULL,
    created_at          TIMESTAMPTZ NOT NULL,
    updated_at          TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS compliances_claim_idx ON compliances (claim_id);
CREATE INDEX IF NOT EXISTS compliances_responsible_idx ON compliances (responsible_user_id);

CREATE TABLE IF NOT EXISTS dispute_events (
    event_id            UUID PRIMARY KEY,
    sequence_number     BIGINT NOT NULL UNIQUE,
    previous_event_hash TEXT,
    event_hash          TEXT NOT NULL UNIQUE,
    event_type          TEXT NOT NULL,
    entity_type         TEXT NOT NULL,
    entity_id           TEXT NOT NULL,
    claim_id            UUID NOT NULL,
    actor_id            TEXT NOT NULL,
    payload_json        JSONB NOT NULL,
    signature           TEXT NOT NULL,
    created_at          TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS dispute_events_claim_idx ON dispute_events (claim_id, sequence_number);

CREATE TABLE IF NOT EXISTS dispute_event_head (
    id              BOOLEAN PRIMARY KEY DEFAULT TRUE CHECK (id),
    last_sequence   BIGINT NOT NULL,
    last_event_hash TEXT
);

INSERT INTO dispute_event_head (id, last_sequence, last_event_hash)
VALUES (TRUE, -1, NULL)
ON CONFLICT (id) DO NOTHING;
"""

_EVENT_COLUMNS = """
    event_id, sequence_number, previous_event_hash, event_hash,
    event_type, entity_type, entity_id, claim_id, actor_id,
    payload_json, signature, created_at
"""


class PostgresDisputeStore(DisputeStore):
    """
    PostgreSQL implementation of DisputeStore.

    Requirements:
    - PostgreSQL 12+
    - Tables created with create_schema() (or `dispute-engine init-db`)
    - psycopg2 for connection

    Usage:
        store = PostgresDisputeStore(lambda: psycopg2.connect(dsn))

        with store.begin_write(claim_id) as tx:
            tx.save_claim(updated)
            tx.record(event)
            tx.commit(sealer)
    """

    # Timeouts to prevent hanging under load
    LOCK_TIMEOUT_MS = 2000  # 2 seconds
    STATEMENT_TIMEOUT_MS = 10000  # 10 seconds

    # psycopg2 error codes
    PGCODE_LOCK_NOT_AVAILABLE = '55P03'
    PGCODE_QUERY_CANCELED = '57014'
    PGCODE_UNIQUE_VIOLATION = '23505'

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Args:
            connection_factory: Callable that returns a psycopg2 connection.
            lock_timeout_ms: How long to wait for the event head lock (ms).
            statement_timeout_ms: Max statement execution time (ms).
        """
        self._connection_factory = connection_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs) -> "PostgresDisputeStore":
        return cls(lambda: psycopg2.connect(dsn), **kwargs)

    def create_schema(self) -> None:
        """Create tables and indexes if missing. Idempotent."""
        conn = self._connection_factory()
        try:
            with conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()
        logger.info("Dispute store schema ready")

    # ================================================================
    # WRITES
    # ================================================================

    @contextmanager
    def begin_write(self, claim_id: UUID) -> Generator[WriteContext, None, None]:
        """
        Lock the claim row with NOWAIT and load the aggregate.

        A missing row is not an error: the claim is being created and the
        primary key / partial unique index guard the insert.
        """
        conn = self._connection_factory()
        conn.autocommit = False
        cursor = conn.cursor()
        ctx = None

        try:
            cursor.execute("BEGIN")
            # SET LOCAL keeps timeouts transaction-scoped
            cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
            cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")
            cursor.execute("SET LOCAL idle_in_transaction_session_timeout = '30s'")

            try:
                cursor.execute(
                    "SELECT document, version FROM claims WHERE id = %s FOR UPDATE NOWAIT",
                    (str(claim_id),),
                )
            except psycopg2.Error as e:
                self._raise_for_timeout(e, f"Claim {claim_id} is busy - try again.")
                raise

            row = cursor.fetchone()
            claim = self._row_to_claim(row) if row else None

            compliances = []
            if claim is not None:
                cursor.execute(
                    "SELECT document, version FROM compliances WHERE claim_id = %s "
                    "ORDER BY created_at, id",
                    (str(claim_id),),
                )
                compliances = [self._row_to_compliance(r) for r in cursor.fetchall()]

            ctx = WriteContext(
                claim_id=claim_id,
                claim=claim,
                compliances=compliances,
                _store=self,
                _conn=conn,
                _cursor=cursor,
            )
            yield ctx

        finally:
            if ctx is None or not ctx._committed:
                try:
                    conn.rollback()
                except psycopg2.Error:
                    logger.warning("Rollback failed; connection is probably broken", claim_id=str(claim_id))
            try:
                cursor.close()
            finally:
                conn.close()

    def _raise_for_timeout(self, e: Exception, busy_message: str) -> None:
        kind = self._timeout_kind(e)
        if kind == "lock":
            raise ConcurrentModification(busy_message) from e
        if kind in ("statement", "timeout"):
            raise StoreError("Query timed out - statement took too long.") from e

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Determine the type of timeout from a PostgreSQL exception.

        Returns:
            "lock" - Lock-related failure (timeout waiting, or NOWAIT refusal)
            "statement" - Statement timeout (query took too long)
            "timeout" - Some timeout but unclear which
            None - Not a timeout error

        NOTE: PostgreSQL uses 57014 (query_canceled) for BOTH lock_timeout and
        statement_timeout. We distinguish by checking the error message.
        55P03 (lock_not_available) is what NOWAIT raises on a locked row.
        """
        pgcode = getattr(e, 'pgcode', None)
        err_msg = (getattr(e, 'pgerror', None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"

        if pgcode == self.PGCODE_QUERY_CANCELED:
            if 'lock timeout' in err_msg or 'lock_timeout' in err_msg:
                return "lock"
            if 'statement timeout' in err_msg or 'statement_timeout' in err_msg:
                return "statement"
            return "timeout"

        if 'lock' in err_msg and 'timeout' in err_msg:
            return "lock"
        if 'statement' in err_msg and 'timeout' in err_msg:
            return "statement"

        return None

    def _do_commit(self, ctx: WriteContext, sealer: EventSealer) -> CommitResult:
        if ctx._cursor is None or ctx._conn is None:
            raise StoreError("_do_commit called outside begin_write context")

        cursor, conn = ctx._cursor, ctx._conn
        claim = ctx.bumped_claim()
        compliances = ctx.bumped_compliances()

        try:
            if claim is not None:
                self._write_claim(cursor, claim, is_new=ctx.is_new)
            for item in compliances:
                self._write_compliance(cursor, item)

            events = []
            if ctx.pending_events:
                # The head row serializes event appends across all claims
                try:
                    cursor.execute(
                        "SELECT last_sequence, last_event_hash FROM dispute_event_head "
                        "WHERE id = TRUE FOR UPDATE"
                    )
                except psycopg2.Error as e:
                    self._raise_for_timeout(e, "Event log busy - try again.")
                    raise
                row = cursor.fetchone()
                head = ChainHead(last_sequence=row[0], last_event_hash=row[1])

                events = seal_events(sealer, head, ctx.pending_events)
                for event in events:
                    self._insert_event(cursor, event)
                cursor.execute(
                    "UPDATE dispute_event_head SET last_sequence = %s, last_event_hash = %s "
                    "WHERE id = TRUE",
                    (events[-1].sequence_number, events[-1].event_hash),
                )

            conn.commit()
        except psycopg2.Error as e:
            if getattr(e, 'pgcode', None) == self.PGCODE_UNIQUE_VIOLATION:
                hiring = (claim or ctx.claim).hiring_id
                raise ValidationError(f"Hiring {hiring} already has an active claim") from e
            raise

        return CommitResult(
            claim=claim or ctx.claim,
            compliances=ctx.merged_compliances(compliances),
            events=events,
        )

    def _write_claim(self, cursor, claim: Claim, is_new: bool) -> None:
        values = (
            claim.hiring_id,
            claim.status.value,
            claim.claimant_id,
            claim.claimant_role.value,
            claim.respondent_id,
            claim.version,
            Json(claim.model_dump(mode="json")),
            claim.created_at,
            claim.updated_at,
        )
        if is_new:
            cursor.execute("""
                INSERT INTO claims (
                    hiring_id, status, claimant_id, claimant_role, respondent_id,
                    version, document, created_at, updated_at, id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, values + (str(claim.id),))
            return

        cursor.execute("""
            UPDATE claims SET
                hiring_id = %s, status = %s, claimant_id = %s, claimant_role = %s,
                respondent_id = %s, version = %s, document = %s,
                created_at = %s, updated_at = %s
            WHERE id = %s AND version = %s
        """, values + (str(claim.id), claim.version - 1))
        if cursor.rowcount != 1:
            raise ConcurrentModification(f"Claim {claim.id} was modified concurrently")

    def _write_compliance(self, cursor, compliance: Compliance) -> None:
        values = (
            str(compliance.claim_id),
            compliance.responsible_user_id,
            compliance.status.value,
            compliance.deadline,
            compliance.version,
            Json(compliance.model_dump(mode="json")),
            compliance.created_at,
            compliance.updated_at,
        )
        if compliance.version == 1:
            cursor.execute("""
                INSERT INTO compliances (
                    claim_id, responsible_user_id, status, deadline, version,
                    document, created_at, updated_at, id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """, values + (str(compliance.id),))
            return

        cursor.execute("""
            UPDATE compliances SET
                claim_id = %s, responsible_user_id = %s, status = %s, deadline = %s,
                version = %s, document = %s, created_at = %s, updated_at = %s
            WHERE id = %s AND version = %s
        """, values + (str(compliance.id), compliance.version - 1))
        if cursor.rowcount != 1:
            raise ConcurrentModification(f"Compliance {compliance.id} was modified concurrently")

    def _insert_event(self, cursor, event: DomainEvent) -> None:
        cursor.execute(f"""
            INSERT INTO dispute_events ({_EVENT_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """, (
            str(event.event_id),
            event.sequence_number,
            event.previous_event_hash,
            event.event_hash,
            event.event_type.value,
            event.entity_type.value,
            event.entity_id,
            str(event.claim_id),
            event.actor_id,
            Json(event.payload),
            event.signature,
            event.created_at,
        ))

    def _do_rollback(self, ctx: WriteContext) -> None:
        if ctx._conn is not None:
            ctx._conn.rollback()

    # ================================================================
    # READS
    # ================================================================

    def _fetch(self, sql: str, params: tuple = ()) -> list[tuple]:
        conn = self._connection_factory()
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.fetchall()
        finally:
            cursor.close()
            conn.close()

    def get_claim(self, claim_id: UUID) -> Optional[Claim]:
        rows = self._fetch(
            "SELECT document, version FROM claims WHERE id = %s", (str(claim_id),)
        )
        return self._row_to_claim(rows[0]) if rows else None

    def list_claims(
        self,
        status: Optional[ClaimStatus] = None,
        hiring_id: Optional[str] = None,
        claimant_role: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[Claim]:
        clauses, params = [], []
        if status is not None:
            clauses.append("status = %s")
            params.append(ClaimStatus(status).value)
        if hiring_id is not None:
            clauses.append("hiring_id = %s")
            params.append(hiring_id)
        if claimant_role is not None:
            clauses.append("claimant_role = %s")
            params.append(str(getattr(claimant_role, "value", claimant_role)))
        if user_id is not None:
            clauses.append("(claimant_id = %s OR respondent_id = %s)")
            params.extend([user_id, user_id])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch(
            f"SELECT document, version FROM claims {where} ORDER BY created_at DESC, id DESC",
            tuple(params),
        )
        return [self._row_to_claim(r) for r in rows]

    def get_compliance(self, compliance_id: UUID) -> Optional[Compliance]:
        rows = self._fetch(
            "SELECT document, version FROM compliances WHERE id = %s", (str(compliance_id),)
        )
        return self._row_to_compliance(rows[0]) if rows else None

    def list_compliances(
        self,
        claim_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ComplianceStatus]] = None,
    ) -> list[Compliance]:
        clauses, params = [], []
        if claim_id is not None:
            clauses.append("claim_id = %s")
            params.append(str(claim_id))
        if user_id is not None:
            clauses.append("responsible_user_id = %s")
            params.append(user_id)
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append([ComplianceStatus(s).value for s in statuses])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch(
            f"SELECT document, version FROM compliances {where} ORDER BY created_at, id",
            tuple(params),
        )
        return [self._row_to_compliance(r) for r in rows]

    def get_head(self) -> ChainHead:
        rows = self._fetch(
            "SELECT last_sequence, last_event_hash FROM dispute_event_head WHERE id = TRUE"
        )
        if not rows:
            return ChainHead(last_sequence=-1, last_event_hash=None)
        return ChainHead(last_sequence=rows[0][0], last_event_hash=rows[0][1])

    def list_events(self) -> list[DomainEvent]:
        rows = self._fetch(
            f"SELECT {_EVENT_COLUMNS} FROM dispute_events ORDER BY sequence_number"
        )
        return [self._row_to_event(r) for r in rows]

    def events_for_claim(self, claim_id: UUID) -> list[DomainEvent]:
        rows = self._fetch(
            f"SELECT {_EVENT_COLUMNS} FROM dispute_events WHERE claim_id = %s "
            "ORDER BY sequence_number",
            (str(claim_id),),
        )
        return [self._row_to_event(r) for r in rows]

    def get_event_count(self) -> int:
        return self._fetch("SELECT COUNT(*) FROM dispute_events")[0][0]

    # ================================================================
    # ROW MAPPING
    # ================================================================

    @staticmethod
    def _row_to_claim(row: tuple) -> Claim:
        document, version = row
        return Claim.model_validate({**document, "version": version})

    @staticmethod
    def _row_to_compliance(row: tuple) -> Compliance:
        document, version = row
        return Compliance.model_validate({**document, "version": version})

    @staticmethod
    def _row_to_event(row: tuple) -> DomainEvent:
        return DomainEvent(
            event_id=row[0] if isinstance(row[0], UUID) else UUID(row[0]),
            sequence_number=row[1],
            previous_event_hash=row[2],
            event_hash=row[3],
            event_type=EventType(row[4]),
            entity_type=EntityType(row[5]),
            entity_id=row[6],
            claim_id=row[7] if isinstance(row[7], UUID) else UUID(row[7]),
            actor_id=row[8],
            payload=row[9],
            signature=row[10],
            created_at=row[11],
        )
