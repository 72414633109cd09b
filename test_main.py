# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false

"""
Tests for the Ledenbeheer HTTP API: members, membership requests,
approve/reject workflow, audit log and ops endpoints.
"""

import pytest
from fastapi.testclient import TestClient

from main import app, status_for
from ledenbeheer.core.config import settings
from ledenbeheer.core.dependencies import get_request_workflow, get_store
from ledenbeheer.core.exceptions import (
    InvalidState,
    PartialFailure,
    StoreError,
    StoreTimeout,
    ValidationError,
)

client = TestClient(app)


# ============================================
# Fixtures
# ============================================
@pytest.fixture(autouse=True)
def reset_state():
    """Empty the in-memory store before each test."""
    get_store().clear()
    yield
    get_store().clear()


def _member_payload(**overrides):
    payload = {
        "firstName": "Yusuf",
        "lastName": "Demir",
        "phoneNumber": "0470000000",
        "email": "y@example.com",
        "gender": "man",
        "privacyConsent": True,
    }
    payload.update(overrides)
    return payload


def _request_payload(**overrides):
    payload = {
        "firstName": "Yusuf",
        "lastName": "Demir",
        "phoneNumber": "0470000000",
        "email": "y@example.com",
    }
    payload.update(overrides)
    return payload


def _create_member(**overrides):
    resp = client.post("/api/v1/members", json=_member_payload(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _submit(**overrides):
    resp = client.post("/api/v1/member-requests", json=_request_payload(**overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ============================================
# Health & Metrics
# ============================================
class TestHealth:
    def test_health_returns_ok(self):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == settings.SERVICE_NAME
        assert data["version"] == settings.SERVICE_VERSION

    def test_readiness_pings_store(self):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_readiness_degraded_when_store_down(self, monkeypatch):
        async def broken_ping():
            raise StoreTimeout("Store call timed out: GET counters")
        monkeypatch.setattr(get_store(), "ping", broken_ping)
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_metrics_exposed(self):
        client.get("/api/v1/members")
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "ledenbeheer_requests_total" in response.text

    def test_request_id_propagated(self):
        response = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_request_id_generated(self):
        assert client.get("/health").headers.get("X-Request-ID")


# ============================================
# Members
# ============================================
class TestMembers:
    def test_create_member_allocates_number(self):
        data = _create_member()
        assert data["memberNumber"] == 1
        assert data["displayNumber"] == "0001"
        assert data["paymentStatus"] is False
        assert data["isActive"] is True
        assert data["membershipType"] == "standaard"
        assert data["id"]

    def test_create_requires_privacy_consent(self):
        payload = _member_payload()
        del payload["privacyConsent"]
        assert client.post("/api/v1/members", json=payload).status_code == 422

    def test_create_rejects_declined_consent(self):
        resp = client.post("/api/v1/members", json=_member_payload(privacyConsent=False))
        assert resp.status_code == 422

    @pytest.mark.parametrize("field,value", [
        ("gender", "unknown"),
        ("membershipType", "gold"),
        ("paymentTerm", "weekly"),
        ("paymentMethod", "bitcoin"),
        ("email", "not-an-email"),
        ("accountNumber", "12-34"),
    ])
    def test_create_rejects_invalid_values(self, field, value):
        resp = client.post("/api/v1/members", json=_member_payload(**{field: value}))
        assert resp.status_code == 422

    def test_banking_details_required_for_direct_debit(self):
        resp = client.post("/api/v1/members", json=_member_payload(paymentMethod="domiciliering"))
        assert resp.status_code == 422

    def test_banking_details_normalised(self):
        data = _create_member(
            paymentMethod="domiciliering",
            accountNumber="be68 5390 0754 7034",
            accountHolderName="Y. Demir",
        )
        assert data["accountNumber"] == "BE68539007547034"

    def test_get_member(self):
        created = _create_member(city="Gent")
        resp = client.get(f"/api/v1/members/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["city"] == "Gent"

    def test_get_unknown_member_404(self):
        resp = client.get("/api/v1/members/nope")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "not_found"
        assert body["member_id"] == "nope"

    def test_list_members_sorted_by_number(self):
        _create_member(memberNumber=9)
        _create_member(firstName="Amina", memberNumber=2)
        numbers = [m["memberNumber"] for m in client.get("/api/v1/members").json()]
        assert numbers == [2, 9]

    def test_duplicate_member_number_400(self):
        _create_member(memberNumber=5)
        resp = client.post("/api/v1/members", json=_member_payload(memberNumber=5))
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

    def test_patch_member_partial(self):
        created = _create_member(city="Gent")
        resp = client.patch(f"/api/v1/members/{created['id']}", json={"city": "Antwerpen"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["city"] == "Antwerpen"
        assert data["firstName"] == "Yusuf"
        assert data["memberNumber"] == created["memberNumber"]

    def test_patch_unknown_field_422(self):
        created = _create_member()
        resp = client.patch(f"/api/v1/members/{created['id']}", json={"temp": True})
        assert resp.status_code == 422

    def test_patch_blank_required_field_400(self):
        created = _create_member()
        resp = client.patch(f"/api/v1/members/{created['id']}", json={"firstName": ""})
        assert resp.status_code == 400

    def test_delete_member_releases_number(self):
        created = [_create_member(firstName=f"Lid{i}") for i in range(7)]
        resp = client.delete(f"/api/v1/members/{created[-1]['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"status": "deleted", "id": created[-1]["id"], "memberNumber": 7}

        released = client.get("/api/v1/members/released-numbers").json()
        assert [r["memberNumber"] for r in released] == [7]
        preview = client.get("/api/v1/members/next-number").json()
        assert preview == {"memberNumber": 7, "displayNumber": "0007"}
        assert _create_member(firstName="Nieuw")["memberNumber"] == 7

    def test_next_number_does_not_consume(self):
        assert client.get("/api/v1/members/next-number").json()["memberNumber"] == 1
        assert client.get("/api/v1/members/next-number").json()["memberNumber"] == 1
        assert _create_member()["memberNumber"] == 1


# ============================================
# Membership requests
# ============================================
class TestMembershipRequests:
    def test_submit_creates_pending(self):
        data = _submit()
        assert data["status"] == "pending"
        assert data["requestDate"]
        assert data["processedDate"] is None
        assert data["ipAddress"] == "testclient"
        assert data["paymentTerm"] == "jaarlijks"

    def test_submit_requires_email(self):
        payload = _request_payload()
        del payload["email"]
        assert client.post("/api/v1/member-requests", json=payload).status_code == 422

    def test_submit_blank_name_422(self):
        resp = client.post("/api/v1/member-requests", json=_request_payload(firstName="   "))
        assert resp.status_code == 422

    def test_list_and_filter(self):
        first = _submit()
        _submit(firstName="Amina")
        client.post(f"/api/v1/member-requests/{first['id']}/reject", json={"reason": "x"})
        assert len(client.get("/api/v1/member-requests").json()) == 2
        pending = client.get("/api/v1/member-requests", params={"status": "pending"}).json()
        assert [r["firstName"] for r in pending] == ["Amina"]

    def test_list_invalid_status_422(self):
        resp = client.get("/api/v1/member-requests", params={"status": "archived"})
        assert resp.status_code == 422

    def test_pending_count(self):
        _submit()
        _submit(firstName="Amina")
        resp = client.get("/api/v1/member-requests/pending-count")
        assert resp.json() == {"pending": 2}

    def test_edit_pending(self):
        request = _submit()
        resp = client.patch(f"/api/v1/member-requests/{request['id']}", json={"city": "Brussel"})
        assert resp.status_code == 200
        assert resp.json()["city"] == "Brussel"

    def test_edit_status_field_rejected(self):
        request = _submit()
        resp = client.patch(f"/api/v1/member-requests/{request['id']}",
                            json={"status": "approved"})
        assert resp.status_code == 422

    def test_delete_request(self):
        request = _submit()
        assert client.delete(f"/api/v1/member-requests/{request['id']}").status_code == 200
        assert client.get(f"/api/v1/member-requests/{request['id']}").status_code == 404


# ============================================
# Approve / reject workflow
# ============================================
class TestWorkflow:
    def test_approve_creates_member(self):
        request = _submit()
        resp = client.post(f"/api/v1/member-requests/{request['id']}/approve",
                           json={"processedBy": "secretaris"})
        assert resp.status_code == 201
        result = resp.json()
        assert result["outcome"] == "success"
        assert result["memberNumber"] == 1
        assert result["member"]["firstName"] == "Yusuf"
        assert result["request"]["status"] == "approved"

        stored = client.get(f"/api/v1/member-requests/{request['id']}").json()
        assert stored["status"] == "approved"
        assert stored["memberId"] == result["memberId"]
        member = client.get(f"/api/v1/members/{result['memberId']}").json()
        assert member["lastName"] == "Demir"
        assert member["paymentStatus"] is False

    def test_approve_without_body(self):
        request = _submit()
        assert client.post(f"/api/v1/member-requests/{request['id']}/approve").status_code == 201

    def test_approve_twice_409(self):
        request = _submit()
        client.post(f"/api/v1/member-requests/{request['id']}/approve")
        resp = client.post(f"/api/v1/member-requests/{request['id']}/approve")
        assert resp.status_code == 409
        assert resp.json()["error"] == "invalid_state"

    def test_approve_unknown_404(self):
        assert client.post("/api/v1/member-requests/nope/approve").status_code == 404

    def test_reject_then_approve_409(self):
        request = _submit()
        resp = client.post(f"/api/v1/member-requests/{request['id']}/reject",
                           json={"reason": "incomplete documents", "processedBy": "admin"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "rejected"
        assert data["rejectionReason"] == "incomplete documents"
        assert data["processedDate"]
        resp = client.post(f"/api/v1/member-requests/{request['id']}/approve")
        assert resp.status_code == 409

    def test_reject_without_reason(self):
        request = _submit()
        resp = client.post(f"/api/v1/member-requests/{request['id']}/reject")
        assert resp.json()["rejectionReason"] == "no reason given"

    def test_edit_after_approve_409(self):
        request = _submit()
        client.post(f"/api/v1/member-requests/{request['id']}/approve")
        resp = client.patch(f"/api/v1/member-requests/{request['id']}", json={"city": "Gent"})
        assert resp.status_code == 409

    def test_member_creation_failure_is_207(self, monkeypatch):
        store = get_store()
        workflow = get_request_workflow()
        monkeypatch.setattr(workflow, "_backoff_base", 0)
        original_patch, original_set = store.multi_path_patch, store.set

        async def patch_without_members(updates):
            await original_patch({p: v for p, v in updates.items()
                                  if not p.startswith("members/")})

        async def set_without_members(path, value):
            if not path.startswith("members/"):
                await original_set(path, value)

        monkeypatch.setattr(store, "multi_path_patch", patch_without_members)
        monkeypatch.setattr(store, "set", set_without_members)

        request = _submit()
        resp = client.post(f"/api/v1/member-requests/{request['id']}/approve")
        assert resp.status_code == 207
        body = resp.json()
        assert body["error"] == "partial_failure"
        assert body["subtype"] == "member_creation_failed"
        assert body["result"]["memberId"] == body["member_id"]
        assert body["result"]["attempts"] == settings.APPROVE_MAX_RECOVERY_ATTEMPTS

    def test_mark_approved_repairs_pending_request(self):
        member = _create_member()
        request = _submit()
        resp = client.post(f"/api/v1/member-requests/{request['id']}/mark-approved",
                           json={"memberId": member["id"], "processedBy": "admin"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "approved"
        assert data["memberNumber"] == member["memberNumber"]

    def test_mark_approved_unknown_member_404(self):
        request = _submit()
        resp = client.post(f"/api/v1/member-requests/{request['id']}/mark-approved",
                           json={"memberId": "ghost"})
        assert resp.status_code == 404


# ============================================
# Audit log
# ============================================
class TestAudit:
    def test_workflow_events_recorded(self):
        request = _submit()
        client.post(f"/api/v1/member-requests/{request['id']}/approve")
        events = client.get("/api/v1/audit").json()
        types = {e["eventType"] for e in events}
        assert {"request_submitted", "request_approved"} <= types

    def test_filter_by_event_type(self):
        _submit()
        _submit(firstName="Amina")
        events = client.get("/api/v1/audit", params={"eventType": "request_submitted"}).json()
        assert len(events) == 2
        assert all(e["eventType"] == "request_submitted" for e in events)

    def test_limit(self):
        for i in range(3):
            _submit(firstName=f"L{i}")
        assert len(client.get("/api/v1/audit", params={"limit": 2}).json()) == 2


# ============================================
# Error mapping
# ============================================
class TestErrorMapping:
    @pytest.mark.parametrize("exc,status", [
        (ValidationError("x"), 400),
        (InvalidState("x"), 409),
        (PartialFailure("x", PartialFailure.STATUS_UPDATE_FAILED), 207),
        (StoreTimeout("x"), 503),
        (StoreError("x"), 502),
    ])
    def test_status_for(self, exc, status):
        assert status_for(exc) == status
