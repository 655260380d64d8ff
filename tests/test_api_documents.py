"""
HTTP API: documents, funds, notifications, health.

Identity comes from the gateway headers (X-User-Id / X-User-Role / ...);
service exceptions map to 4xx/5xx JSON bodies with an ``ERR_*`` code.
"""

import pytest

from conftest import (
    DEPT,
    auth_headers,
    communication_payload,
    proposal_payload,
    saf_payload,
)
from docflow.core.actor import Actor
from docflow.core.exceptions import LockContentionError
from docflow.models.fund import SSC_FUND_DEPARTMENT

ADVISER = Actor(id=10, role="employee", position="College Student Council Adviser")
EVP_ACTOR = Actor(id=15, role="employee", position="EVP")
ACCOUNTANT = Actor(id=20, role="employee", position="Accounting Personnel")
STRANGER = Actor(id=77, role="employee", position="Librarian")


def _create(client, actor, doc_type="proposal", data=None):
    res = client.post(
        "/api/v1/documents",
        json={"doc_type": doc_type, "data": data or proposal_payload()},
        headers=auth_headers(actor),
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _sign(client, actor, doc_id, **body):
    return client.post(f"/api/v1/documents/{doc_id}/sign", json=body, headers=auth_headers(actor))


# ── Identity ─────────────────────────────────────────────────────────────────


class TestIdentity:
    def test_missing_headers(self, client):
        res = client.get("/api/v1/documents/mine")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    @pytest.mark.parametrize("headers", [
        {"X-User-Id": "abc", "X-User-Role": "student"},
        {"X-User-Id": "5", "X-User-Role": "alumni"},
        {"X-User-Id": "5"},
    ])
    def test_malformed_headers(self, client, headers):
        assert client.get("/api/v1/documents/mine", headers=headers).status_code == 401


# ── Documents ────────────────────────────────────────────────────────────────


class TestDocumentEndpoints:
    def test_create_returns_steps(self, client, directory, submitter):
        doc = _create(client, submitter)
        assert doc["status"] == "submitted"
        assert doc["submitter_name"] == "Nina Cruz"
        assert doc["steps"][0]["name"] == "Creator Signature"
        assert doc["steps"][0]["status"] == "pending"
        assert doc["steps"][1]["assignee_name"] == "Arturo Santos"
        assert doc["progress"] == {
            "completed_steps": 0, "total_steps": 8, "percent": 0, "current_step": "Creator Signature",
        }

    def test_create_requires_doc_type(self, client, submitter):
        res = client.post("/api/v1/documents", json={"data": proposal_payload()}, headers=auth_headers(submitter))
        assert res.status_code == 400

    def test_create_validation_error(self, client, directory, submitter):
        res = client.post(
            "/api/v1/documents",
            json={"doc_type": "saf", "data": saf_payload(requested_ssc="0", requested_csc="0")},
            headers=auth_headers(submitter),
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "requested_ssc" in body["details"]

    def test_sign_flow(self, client, directory, submitter):
        doc = _create(client, submitter, "communication", communication_payload())
        res = _sign(client, submitter, doc["id"], note="Please approve")
        assert res.status_code == 200
        assert res.get_json()["status"] == "in_progress"

        res = _sign(client, EVP_ACTOR, doc["id"])
        assert res.status_code == 200
        assert res.get_json()["status"] == "approved"

    def test_out_of_order_is_409_with_blocking_orders(self, client, directory, submitter):
        doc = _create(client, submitter)
        evp_step = next(s for s in doc["steps"] if s["position"] == "EVP")
        res = _sign(client, EVP_ACTOR, doc["id"], step_id=evp_step["id"])
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_OUT_OF_ORDER"
        assert body["details"]["blocking_orders"] == list(range(1, evp_step["step_order"]))

    def test_not_assigned_is_403(self, client, directory, submitter):
        doc = _create(client, submitter)
        res = _sign(client, STRANGER, doc["id"])
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_bad_step_id(self, client, directory, submitter):
        doc = _create(client, submitter)
        assert _sign(client, submitter, doc["id"], step_id="first").status_code == 422

    def test_unknown_document_is_404(self, client, directory, submitter):
        assert _sign(client, submitter, 9999).status_code == 404
        res = client.get("/api/v1/documents/9999", headers=auth_headers(submitter))
        assert res.status_code == 404

    def test_lock_contention_is_503_with_retry_after(self, client, monkeypatch, directory, submitter):
        doc = _create(client, submitter)

        def contended(*args, **kwargs):
            raise LockContentionError("sign_step", 3)

        monkeypatch.setattr("docflow.services.signing_service.sign_step", contended)
        res = _sign(client, submitter, doc["id"])
        assert res.status_code == 503
        assert res.headers["Retry-After"] == "1"
        assert res.get_json()["code"] == "ERR_UNAVAILABLE"

    def test_unexpected_error_is_500(self, client, monkeypatch, directory, submitter):
        doc = _create(client, submitter)

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("docflow.services.signing_service.sign_step", broken)
        res = _sign(client, submitter, doc["id"])
        assert res.status_code == 500
        assert res.get_json() == {"error": "Internal server error", "code": "ERR_INTERNAL"}

    def test_reject_requires_reason(self, client, directory, submitter):
        doc = _create(client, submitter)
        res = client.post(f"/api/v1/documents/{doc['id']}/reject", json={}, headers=auth_headers(submitter))
        assert res.status_code == 400

    def test_reject(self, client, directory, submitter):
        doc = _create(client, submitter)
        _sign(client, submitter, doc["id"])
        res = client.post(
            f"/api/v1/documents/{doc['id']}/reject",
            json={"reason": "Wrong venue"},
            headers=auth_headers(ADVISER),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "rejected"
        assert body["steps"][1]["note"] == "Wrong venue"

    @pytest.mark.parametrize("path,method,body", [
        ("", "post", {"doc_type": 7, "data": {}}),
        ("/{id}/sign", "post", {"note": 5}),
        ("/{id}/sign", "post", {"signature_ref": {"blob": "x"}}),
        ("/{id}/reject", "post", {"reason": 123}),
        ("/{id}/steps/{step_id}/note", "put", {"note": ["a"]}),
    ])
    def test_non_string_text_fields_are_rejected(self, client, directory, submitter, path, method, body):
        doc = _create(client, submitter)
        url = "/api/v1/documents" + path.format(id=doc["id"], step_id=doc["steps"][0]["id"])
        res = getattr(client, method)(url, json=body, headers=auth_headers(submitter))
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

        detail = client.get(f"/api/v1/documents/{doc['id']}", headers=auth_headers(submitter)).get_json()
        assert detail["status"] == "submitted"
        assert detail["steps"][0]["status"] == "pending"

    def test_resubmit_requires_on_hold(self, client, directory, submitter):
        doc = _create(client, submitter)
        res = client.post(f"/api/v1/documents/{doc['id']}/resubmit", headers=auth_headers(submitter))
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_update_note(self, client, directory, submitter):
        doc = _create(client, submitter)
        step_id = doc["steps"][0]["id"]
        url = f"/api/v1/documents/{doc['id']}/steps/{step_id}/note"
        assert client.put(url, json={}, headers=auth_headers(submitter)).status_code == 400
        res = client.put(url, json={"note": "Updated objectives"}, headers=auth_headers(submitter))
        assert res.status_code == 200
        assert res.get_json()["note"] == "Updated objectives"
        assert client.put(url, json={"note": "x"}, headers=auth_headers(ADVISER)).status_code == 403

    def test_detail_visibility(self, client, directory, submitter, admin):
        doc = _create(client, submitter)
        url = f"/api/v1/documents/{doc['id']}"
        assert client.get(url, headers=auth_headers(submitter)).status_code == 200
        assert client.get(url, headers=auth_headers(ADVISER)).status_code == 200
        assert client.get(url, headers=auth_headers(admin)).status_code == 200
        assert client.get(url, headers=auth_headers(STRANGER)).status_code == 403

    def test_mine_and_assigned(self, client, directory, submitter):
        doc = _create(client, submitter)
        mine = client.get("/api/v1/documents/mine", headers=auth_headers(submitter)).get_json()
        assert [d["id"] for d in mine["items"]] == [doc["id"]]

        _sign(client, submitter, doc["id"])
        assigned = client.get("/api/v1/documents/assigned", headers=auth_headers(ADVISER)).get_json()
        assert assigned["total"] == 1
        assert assigned["items"][0]["my_step"]["step_order"] == 2

        res = client.get("/api/v1/documents/assigned?status=bogus", headers=auth_headers(ADVISER))
        assert res.status_code == 422

    def test_delete(self, client, directory, submitter):
        doc = _create(client, submitter)
        url = f"/api/v1/documents/{doc['id']}"
        assert client.delete(url, headers=auth_headers(STRANGER)).status_code == 403
        res = client.delete(url, headers=auth_headers(submitter))
        assert res.status_code == 200
        assert res.get_json() == {"deleted": True, "id": doc["id"]}
        assert client.get(url, headers=auth_headers(submitter)).status_code == 404

    def test_delete_after_approval_is_409(self, client, directory, submitter):
        doc = _create(client, submitter, "communication", communication_payload())
        _sign(client, submitter, doc["id"])
        _sign(client, EVP_ACTOR, doc["id"])
        res = client.delete(f"/api/v1/documents/{doc['id']}", headers=auth_headers(submitter))
        assert res.status_code == 409


# ── Funds ────────────────────────────────────────────────────────────────────


class TestFundEndpoints:
    def test_only_fund_managers_can_write(self, client, submitter):
        res = client.put(f"/api/v1/funds/{DEPT}", json={"initial_amount": "100"}, headers=auth_headers(submitter))
        assert res.status_code == 403

    def test_set_balance_and_post_entry(self, client, admin):
        res = client.put(f"/api/v1/funds/{DEPT}", json={"initial_amount": "2000"}, headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["current_balance"] == "2000.00"

        res = client.post(
            f"/api/v1/funds/{DEPT}/ledger",
            json={"type": "deduct", "amount": "150.25", "description": "Printing"},
            headers=auth_headers(ACCOUNTANT),
        )
        assert res.status_code == 201
        assert res.get_json()["created_by"] == "employee:20"

        data = client.get("/api/v1/funds", headers=auth_headers(admin)).get_json()
        assert data["balances"][0]["current_balance"] == "1849.75"
        assert data["ledger"][0]["description"] == "Printing"

    def test_department_ids_with_spaces(self, client, admin):
        res = client.put(
            f"/api/v1/funds/{SSC_FUND_DEPARTMENT}", json={"initial_amount": "10"}, headers=auth_headers(admin),
        )
        assert res.status_code == 200
        assert res.get_json()["department_id"] == SSC_FUND_DEPARTMENT

    @pytest.mark.parametrize("body,status", [
        ({}, 400),
        ({"initial_amount": "lots"}, 422),
        ({"initial_amount": "-1"}, 422),
    ])
    def test_set_balance_validation(self, client, admin, body, status):
        assert client.put(f"/api/v1/funds/{DEPT}", json=body, headers=auth_headers(admin)).status_code == status

    def test_manual_entry_validation(self, client, admin):
        url = f"/api/v1/funds/{DEPT}/ledger"
        assert client.post(url, json={"amount": "5"}, headers=auth_headers(admin)).status_code == 400
        res = client.post(url, json={"type": "refund", "amount": "5"}, headers=auth_headers(admin))
        assert res.status_code == 422


# ── Notifications ────────────────────────────────────────────────────────────


class TestNotificationEndpoints:
    def test_inbox_flow(self, client, directory, submitter):
        doc = _create(client, submitter)
        _sign(client, submitter, doc["id"])

        inbox = client.get("/api/v1/notifications", headers=auth_headers(ADVISER)).get_json()
        assert inbox["total"] == 1
        assert inbox["unread_count"] == 1
        notif_id = inbox["items"][0]["id"]

        assert client.post(f"/api/v1/notifications/{notif_id}/read",
                           headers=auth_headers(submitter)).status_code == 404
        res = client.post(f"/api/v1/notifications/{notif_id}/read", headers=auth_headers(ADVISER))
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        unread = client.get("/api/v1/notifications?unread_only=1", headers=auth_headers(ADVISER)).get_json()
        assert unread["total"] == 0

    def test_read_all(self, client, directory, submitter):
        doc = _create(client, submitter)
        _sign(client, submitter, doc["id"])
        res = client.post("/api/v1/notifications/read-all", headers=auth_headers(ADVISER))
        assert res.get_json() == {"marked_read": 1}


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"


def test_unknown_route(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"
