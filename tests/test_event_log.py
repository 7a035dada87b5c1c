"""
Tests for canonical hashing and the signed event log.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID, uuid4

from dispute_engine.core import (
    CanonicalSerializationError,
    ChainError,
    Hasher,
    Signer,
)
from dispute_engine.core.event_log import EventSealer, make_event, verify_event_chain
from dispute_engine.schemas import EntityType, EventType, ResolutionType

from conftest import START


class TestHasher:
    """Canonical hashing - every stored chain depends on it."""

    def test_deterministic_hash(self):
        data = {"name": "test", "value": 42}
        assert Hasher.hash_data(data) == Hasher.hash_data(data)

    def test_key_order_irrelevant(self):
        assert Hasher.hash_data({"b": 2, "a": {"z": 1, "y": 2}}) == Hasher.hash_data(
            {"a": {"y": 2, "z": 1}, "b": 2}
        )

    def test_null_omitted_empty_string_kept(self):
        assert Hasher.canonicalize({"a": 1, "b": None}) == Hasher.canonicalize({"a": 1})
        assert Hasher.canonicalize({"a": ""}) != Hasher.canonicalize({"a": None})

    def test_datetime_requires_timezone(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"at": datetime(2025, 1, 1)})

    def test_datetime_normalized_to_utc(self):
        utc = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        offset = utc.astimezone(timezone(timedelta(hours=-5)))
        assert Hasher.canonicalize({"at": utc}) == Hasher.canonicalize({"at": offset})

    def test_enum_and_uuid(self):
        uid = UUID("ABCDEF00-0000-0000-0000-000000000001")
        canonical = Hasher.canonicalize({"id": uid, "type": ResolutionType.CLIENT_FAVOR})
        assert "abcdef00-0000-0000-0000-000000000001" in canonical
        assert '"client_favor"' in canonical

    def test_floats_banned(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"amount": 1.5})

    def test_decimal_allowed(self):
        assert '"1.50"' in Hasher.canonicalize({"amount": Decimal("1.50")})

    def test_sets_banned(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"ids": {1, 2}})

    def test_chain_hash_depends_on_previous(self):
        envelope = {"event": "x"}
        genesis = Hasher.hash_event(envelope)
        chained = Hasher.hash_event(envelope, genesis)
        assert genesis != chained
        assert Hasher.verify_chain(envelope, chained, genesis)
        assert not Hasher.verify_chain(envelope, chained, None)

    def test_previous_hash_format_checked(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.hash_event({"event": "x"}, "not-a-hash")


class TestSigner:

    def test_sign_and_verify(self):
        private_key, public_key = Signer.generate_keypair()
        signature = Signer.sign("a" * 64, private_key)
        assert Signer.verify("a" * 64, signature, public_key)

    def test_tampered_message_fails(self):
        private_key, public_key = Signer.generate_keypair()
        signature = Signer.sign("a" * 64, private_key)
        assert not Signer.verify("b" * 64, signature, public_key)


class TestEventChain:
    """Sealing and verification of the domain event log."""

    @pytest.fixture
    def sealer(self, signing_service):
        return EventSealer(signing_service)

    def _pending(self, n=0):
        claim_id = uuid4()
        return make_event(
            event_type=EventType.CLAIM_CREATED,
            entity_type=EntityType.CLAIM,
            entity_id=claim_id,
            claim_id=claim_id,
            actor_id="client-1",
            occurred_at=START + timedelta(minutes=n),
            payload={"hiring_id": f"hiring-{n}"},
        )

    def _chain(self, sealer, length=3):
        events, previous = [], None
        for n in range(length):
            event = sealer.seal(self._pending(n), n, previous)
            events.append(event)
            previous = event.event_hash
        return events

    def test_genesis_has_no_previous_hash(self, sealer):
        genesis = sealer.seal(self._pending(), 0, "f" * 64)
        assert genesis.previous_event_hash is None

    def test_non_genesis_requires_previous_hash(self, sealer):
        with pytest.raises(ChainError):
            sealer.seal(self._pending(), 1, None)

    def test_valid_chain_verifies(self, sealer, signing_service):
        verify_event_chain(self._chain(sealer), signing_service)

    def test_sequence_gap_detected(self, sealer):
        events = self._chain(sealer)
        with pytest.raises(ChainError, match="Sequence gap"):
            verify_event_chain([events[0], events[2]])

    def test_altered_payload_detected(self, sealer):
        events = self._chain(sealer)
        events[1] = events[1].model_copy(update={"payload": {"hiring_id": "hiring-999"}})
        with pytest.raises(ChainError, match="altered"):
            verify_event_chain(events)

    def test_foreign_signature_detected(self, sealer, signing_service):
        from dispute_engine.core import KeyPair, SigningService

        private_key, public_key = Signer.generate_keypair()
        other = EventSealer(SigningService(KeyPair(private_key, public_key)))
        events = [other.seal(self._pending(), 0, None)]

        verify_event_chain(events)
        with pytest.raises(ChainError, match="signature"):
            verify_event_chain(events, signing_service)

    def test_payload_is_json_native(self):
        pending = self._pending()
        assert pending.payload == {"hiring_id": "hiring-0"}


class TestEngineEventLog:
    """Every committed action lands in one verifiable chain."""

    def test_actions_extend_chain(self, engine, store, resolved_with_compliances):
        events = store.list_events()
        assert [e.sequence_number for e in events] == list(range(len(events)))
        assert events[0].event_type == EventType.CLAIM_CREATED
        assert engine.verify_event_log()

    def test_tampering_detected(self, engine, store, open_claim):
        store._events[0] = store._events[0].model_copy(update={"actor_id": "someone-else"})
        assert not engine.verify_event_log()

    def test_head_tracks_last_event(self, store, open_claim):
        head = store.get_head()
        assert head.next_sequence == len(store.list_events())
        assert head.last_event_hash == store.list_events()[-1].event_hash
