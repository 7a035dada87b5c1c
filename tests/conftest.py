"""
Shared fixtures: a fixed clock, a deterministic keypair, an in-memory
store and recording collaborators wired into one DisputeEngine.
"""

from datetime import datetime, timedelta, timezone

import pytest

from dispute_engine.core import (
    DisputeEngine,
    FixedClock,
    InMemoryAccountService,
    InMemoryHiringService,
    KeyPair,
    RecordingNotificationDispatcher,
    Signer,
    SigningService,
)
from dispute_engine.db import InMemoryDisputeStore
from dispute_engine.observability import MetricsCollector
from dispute_engine.schemas import (
    Actor,
    ActorRole,
    ClaimType,
    ComplianceSpec,
    ComplianceType,
    EvidenceFile,
    ResolutionType,
)

START = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)
HIRING_ID = "hiring-100"

DESCRIPTION = "The provider never delivered the final website build agreed in the contract."
RESOLUTION = "Provider must refund the client in full within the week."
INSTRUCTIONS = "Upload the bank transfer receipt for the refund."
NOTES = "Refund receipt from the bank is attached."
REVIEW_NOTES = "Receipt checked against the hiring amount."


def evidence(name: str = "receipt.pdf", size: int = 1024) -> EvidenceFile:
    return EvidenceFile(filename=name, url=f"https://files.example.com/{name}", size_bytes=size)


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def signing_service():
    private_key, public_key = Signer.generate_keypair()
    return SigningService(KeyPair(private_key=private_key, public_key=public_key))


@pytest.fixture
def store():
    return InMemoryDisputeStore()


@pytest.fixture
def notifications():
    return RecordingNotificationDispatcher()


@pytest.fixture
def accounts():
    return InMemoryAccountService()


@pytest.fixture
def hirings():
    return InMemoryHiringService({HIRING_ID: "in_progress", "hiring-200": "delivered"})


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def engine(store, clock, signing_service, notifications, accounts, hirings, metrics):
    return DisputeEngine(
        store=store,
        clock=clock,
        signing_service=signing_service,
        notifications=notifications,
        accounts=accounts,
        hirings=hirings,
        metrics=metrics,
    )


@pytest.fixture
def client_actor():
    return Actor(user_id="client-1", role=ActorRole.CLIENT, email="client@example.com")


@pytest.fixture
def provider_actor():
    return Actor(user_id="provider-1", role=ActorRole.PROVIDER, email="provider@example.com")


@pytest.fixture
def moderator():
    return Actor(user_id="mod-1", role=ActorRole.MODERATOR, email="mod@example.com")


@pytest.fixture
def other_moderator():
    return Actor(user_id="mod-2", role=ActorRole.MODERATOR, email="mod2@example.com")


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role=ActorRole.ADMIN, email="admin@example.com")


@pytest.fixture
def outsider():
    return Actor(user_id="client-9", role=ActorRole.CLIENT)


@pytest.fixture
def open_claim(engine, client_actor, provider_actor):
    """A claim filed by the client against the provider."""
    return engine.create_claim(
        client_actor,
        hiring_id=HIRING_ID,
        respondent_id=provider_actor.user_id,
        claim_type=ClaimType.NOT_DELIVERED,
        description=DESCRIPTION,
    ).claim


@pytest.fixture
def claim_in_review(engine, open_claim, moderator):
    return engine.mark_in_review(open_claim.id, moderator).claim


def refund_spec(user_id: str, deadline: datetime, compliance_type=ComplianceType.FULL_REFUND):
    return ComplianceSpec(
        responsible_user_id=user_id,
        compliance_type=compliance_type,
        deadline=deadline,
        moderator_instructions=INSTRUCTIONS,
    )


@pytest.fixture
def resolved_with_compliances(engine, claim_in_review, moderator, provider_actor, client_actor):
    """Verdict with two compliances: provider refunds, client confirms."""
    return engine.resolve_claim(
        claim_in_review.id,
        moderator,
        resolution=RESOLUTION,
        resolution_type=ResolutionType.CLIENT_FAVOR,
        compliances=[
            refund_spec(provider_actor.user_id, START + timedelta(days=7)),
            refund_spec(
                client_actor.user_id, START + timedelta(days=7), ComplianceType.CONFIRMATION_ONLY,
            ),
        ],
    )
