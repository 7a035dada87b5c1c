"""
HTTP surface tests: headers to actors, engine errors to status codes.
"""

import pytest
from datetime import timedelta

from fastapi.testclient import TestClient

from dispute_engine.main import create_app, error_status
from dispute_engine.schemas import EventType, OverdueStatus

from conftest import DESCRIPTION, HIRING_ID, INSTRUCTIONS, NOTES, RESOLUTION, REVIEW_NOTES, START

CLIENT = {"X-Actor-Id": "client-1", "X-Actor-Role": "client"}
PROVIDER = {"X-Actor-Id": "provider-1", "X-Actor-Role": "provider"}
MODERATOR = {"X-Actor-Id": "mod-1", "X-Actor-Role": "moderator", "X-Actor-Email": "mod@example.com"}
OUTSIDER = {"X-Actor-Id": "client-9", "X-Actor-Role": "client"}

FILE = {"filename": "receipt.pdf", "url": "https://files.example.com/receipt.pdf", "size_bytes": 2048}


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as test_client:
        yield test_client


@pytest.fixture
def claim_id(client):
    response = client.post("/api/v1/claims", headers=CLIENT, json={
        "hiring_id": HIRING_ID,
        "respondent_id": "provider-1",
        "claim_type": "not_delivered",
        "description": DESCRIPTION,
        "evidence": [FILE],
    })
    assert response.status_code == 201
    return response.json()["claim"]["id"]


def resolve_with_refund(client, claim_id):
    client.post(f"/api/v1/claims/{claim_id}/mark-in-review", headers=MODERATOR)
    response = client.post(f"/api/v1/claims/{claim_id}/resolve", headers=MODERATOR, json={
        "resolution": RESOLUTION,
        "resolution_type": "client_favor",
        "compliances": [{
            "responsible_user_id": "provider-1",
            "compliance_type": "full_refund",
            "deadline": (START + timedelta(days=7)).isoformat(),
            "moderator_instructions": INSTRUCTIONS,
        }],
    })
    assert response.status_code == 200
    return response.json()["compliances"][0]["compliance"]["id"]


class TestSystemEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_detailed_health_with_verification(self, client, claim_id):
        response = client.get("/health/detailed", params={"verify": True})
        assert response.status_code == 200
        body = response.json()
        assert body["checks"]["store"]["event_count"] == 1
        assert body["checks"]["event_log"]["valid"] is True

    def test_metrics(self, client):
        body = client.get("/metrics").json()
        assert "events_appended" in body
        assert "action_failures" in body

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestIdentityHeaders:

    def test_missing_headers(self, client):
        assert client.get("/api/v1/claims").status_code == 401

    def test_unknown_role(self, client):
        headers = {"X-Actor-Id": "someone", "X-Actor-Role": "superuser"}
        assert client.get("/api/v1/claims", headers=headers).status_code == 401


class TestClaimEndpoints:

    def test_create_and_read(self, client, claim_id):
        response = client.get(f"/api/v1/claims/{claim_id}", headers=PROVIDER)
        assert response.status_code == 200
        body = response.json()
        assert body["claim"]["status"] == "open"
        assert body["available_actions"] == []

    def test_clarification_round_trip(self, client, claim_id):
        client.post(f"/api/v1/claims/{claim_id}/mark-in-review", headers=MODERATOR)
        response = client.post(
            f"/api/v1/claims/{claim_id}/observations", headers=MODERATOR,
            json={"observations": "Please attach the signed contract."},
        )
        assert response.json()["claim"]["status"] == "pending_clarification"

        response = client.post(
            f"/api/v1/claims/{claim_id}/subsanar", headers=CLIENT,
            json={"text": "The signed contract is attached here.", "evidence": [FILE]},
        )
        assert response.status_code == 200
        assert response.json()["claim"]["status"] == "requires_staff_response"

    def test_validation_error_is_422(self, client, claim_id):
        client.post(f"/api/v1/claims/{claim_id}/mark-in-review", headers=MODERATOR)
        response = client.post(
            f"/api/v1/claims/{claim_id}/reject", headers=MODERATOR, json={"resolution": "No."},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_unauthorized_is_403(self, client, claim_id):
        response = client.post(f"/api/v1/claims/{claim_id}/mark-in-review", headers=CLIENT)
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

        assert client.get(f"/api/v1/claims/{claim_id}", headers=OUTSIDER).status_code == 403

    def test_not_found_is_404(self, client):
        response = client.get(
            "/api/v1/claims/00000000-0000-0000-0000-000000000000", headers=MODERATOR,
        )
        assert response.status_code == 404

    def test_state_conflicts_are_409(self, client, claim_id):
        client.post(f"/api/v1/claims/{claim_id}/cancel", headers=CLIENT)

        response = client.post(f"/api/v1/claims/{claim_id}/cancel", headers=CLIENT)
        assert response.status_code == 409
        assert response.json()["error"] == "terminal_state_violation"

    def test_stale_version_is_409(self, client, claim_id):
        response = client.post(
            f"/api/v1/claims/{claim_id}/mark-in-review", headers=MODERATOR,
            json={"expected_version": 7},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "concurrent_modification"

    def test_list_and_history(self, client, claim_id):
        page = client.get("/api/v1/claims", headers=MODERATOR, params={"status": "open"}).json()
        assert page["total"] == 1
        assert page["items"][0]["claim"]["id"] == claim_id

        history = client.get(f"/api/v1/hirings/{HIRING_ID}/claims", headers=CLIENT).json()
        assert [item["claim"]["id"] for item in history] == [claim_id]

        events = client.get(f"/api/v1/claims/{claim_id}/events", headers=CLIENT).json()
        assert events[0]["event_type"] == EventType.CLAIM_CREATED.value
        assert events[0]["sequence_number"] == 0


class TestComplianceEndpoints:

    def test_submit_peer_review_and_approve(self, client, claim_id):
        compliance_id = resolve_with_refund(client, claim_id)

        response = client.post(
            f"/api/v1/compliances/{compliance_id}/evidence", headers=PROVIDER,
            json={"evidence": [FILE], "notes": NOTES},
        )
        assert response.status_code == 200
        assert response.json()["compliance"]["status"] == "submitted"

        queue = client.get(f"/api/v1/claims/{claim_id}/peer-review-queue", headers=CLIENT).json()
        assert [item["compliance"]["id"] for item in queue] == [compliance_id]

        response = client.post(
            f"/api/v1/compliances/{compliance_id}/peer-review", headers=CLIENT,
            json={"approved": True},
        )
        assert response.json()["compliance"]["peer_approved"] is True

        review_queue = client.get("/api/v1/compliances/review-queue", headers=MODERATOR).json()
        assert review_queue["total"] == 1

        response = client.post(
            f"/api/v1/compliances/{compliance_id}/review", headers=MODERATOR,
            json={"decision": "approve", "notes": REVIEW_NOTES},
        )
        assert response.json()["compliance"]["status"] == "approved"

        claim = client.get(f"/api/v1/claims/{claim_id}", headers=MODERATOR).json()
        assert claim["can_resolve"] is True

    def test_overdue_overlay_in_listing(self, client, claim_id, clock):
        compliance_id = resolve_with_refund(client, claim_id)
        clock.advance(days=9)

        page = client.get(
            "/api/v1/compliances", headers=MODERATOR, params={"status": "overdue"},
        ).json()
        assert page["total"] == 1
        assert page["items"][0]["display_status"] == "overdue"
        assert page["items"][0]["urgency"] == "critical"

        one = client.get(f"/api/v1/compliances/{compliance_id}", headers=PROVIDER).json()
        assert one["compliance"]["overdue_status"] == OverdueStatus.FIRST_WARNING.value

    def test_review_queue_is_staff_only(self, client):
        assert client.get("/api/v1/compliances/review-queue", headers=CLIENT).status_code == 403

    def test_compliance_stats(self, client, claim_id):
        resolve_with_refund(client, claim_id)
        stats = client.get("/api/v1/users/provider-1/compliance-stats", headers=PROVIDER).json()
        assert stats["total"] == 1
        assert stats["pending"] == 1

        response = client.get("/api/v1/users/provider-1/compliance-stats", headers=CLIENT)
        assert response.status_code == 403


class TestErrorStatus:

    @pytest.mark.parametrize("kind,expected", [
        ("validation_error", 422),
        ("unauthorized", 403),
        ("not_found", 404),
        ("invalid_state_transition", 409),
        ("terminal_state_violation", 409),
        ("concurrent_modification", 409),
        ("chain_error", 500),
        ("store_error", 500),
    ])
    def test_mapping(self, kind, expected):
        assert error_status(kind) == expected
