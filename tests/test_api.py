"""
HTTP API tests: actor headers, the full report lifecycle over HTTP and the
mapping of workflow errors to status codes.
"""

import pytest

from civictrack.models.user import Actor, Role

from conftest import headers

ADMIN = Actor(id="admin-1", role=Role.ADMIN)
CITIZEN = Actor(id="citizen-1", role=Role.CITIZEN)
NEIGHBOUR = Actor(id="citizen-2", role=Role.CITIZEN)
WORKER = Actor(id="worker-1", role=Role.WORKER)
WORKER_2 = Actor(id="worker-2", role=Role.WORKER)

REPORT = {
    "title": "Streetlight out",
    "description": "The streetlight at the park gate has been dark for a week.",
    "category": "lighting",
    "priority": "High",
    "risk_score": 64,
    "address": "Park Gate, Sector 4",
}


@pytest.fixture()
def api(client):
    for worker_id, name in [("worker-1", "Asha Patil"), ("worker-2", "Ravi Kulkarni")]:
        response = client.post(
            "/admin/workers",
            json={"worker_id": worker_id, "full_name": name, "department": "Electrical"},
            headers=headers(ADMIN),
        )
        assert response.status_code == 201
    return client


@pytest.fixture()
def report_id(api):
    response = api.post("/reports", json=REPORT, headers=headers(CITIZEN))
    assert response.status_code == 201
    return response.json()["id"]


def _assign(api, report_id, worker_id="worker-1"):
    return api.post(f"/admin/reports/{report_id}/assign", json={"worker_id": worker_id}, headers=headers(ADMIN))


def _to_awaiting(api, report_id):
    assert _assign(api, report_id).status_code == 201
    assert api.post(f"/worker/reports/{report_id}/start", headers=headers(WORKER)).status_code == 200
    response = api.post(
        f"/worker/reports/{report_id}/proofs",
        json={"evidence_refs": ["https://storage.example.com/light-fixed.jpg"], "notes": "Replaced bulb"},
        headers=headers(WORKER),
    )
    assert response.status_code == 201
    return response.json()["proof"]["id"]


class TestGeneral:
    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"

    def test_database_health(self, client):
        body = client.get("/health/db").json()
        assert body["connected"] is True

    def test_missing_identity_headers(self, client):
        response = client.post("/reports", json=REPORT)
        assert response.status_code == 401

    def test_unknown_role(self, client):
        response = client.post("/reports", json=REPORT, headers={"X-Actor-Id": "x", "X-Actor-Role": "mayor"})
        assert response.status_code == 400

    def test_validation_error_shape(self, client):
        response = client.post("/reports", json={"title": "x"}, headers=headers(CITIZEN))
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestReportEndpoints:
    def test_create_and_fetch(self, api, report_id):
        body = api.get(f"/reports/{report_id}").json()
        assert body["status"] == "reported"
        assert body["priority"] == "High"
        assert body["sla"]["state"] == "on_track"

    def test_unknown_report_is_404(self, api):
        response = api.get("/reports/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_list_by_status(self, api, report_id):
        assert [r["id"] for r in api.get("/reports", params={"status": "reported"}).json()] == [report_id]
        assert api.get("/reports", params={"status": "closed"}).json() == []

    def test_worker_cannot_file(self, api):
        response = api.post("/reports", json=REPORT, headers=headers(WORKER))
        assert response.status_code == 403
        assert response.json()["error"] == "actor_forbidden"


class TestLifecycle:
    def test_full_flow(self, api, report_id):
        proof_id = _to_awaiting(api, report_id)

        response = api.post(
            f"/admin/reports/{report_id}/proofs/{proof_id}/verify",
            json={"decision": "approved", "rating": 5, "comment": "Bright again"},
            headers=headers(ADMIN),
        )
        assert response.status_code == 200
        assert response.json()["report"]["status"] == "closed"

        report = api.get(f"/reports/{report_id}").json()
        assert report["status"] == "closed"
        assert report["resolved_at"] is not None

        timeline = api.get(f"/reports/{report_id}/timeline").json()
        assert [e["action_type"] for e in timeline["entries"]] == [
            "report_created", "worker_assigned", "status_changed", "proof_submitted", "verification",
        ]
        proofs = api.get(f"/reports/{report_id}/proofs").json()
        assert [p["outcome"] for p in proofs["proofs"]] == ["approved"]

    def test_second_assign_is_conflict(self, api, report_id):
        _assign(api, report_id)
        response = _assign(api, report_id, "worker-2")
        assert response.status_code == 409
        assert response.json()["error"] == "already_assigned"

    def test_reassign(self, api, report_id):
        _assign(api, report_id)
        response = api.post(
            f"/admin/reports/{report_id}/reassign",
            json={"worker_id": "worker-2", "reason": "closer to site"},
            headers=headers(ADMIN),
        )
        assert response.status_code == 200
        history = api.get(f"/admin/reports/{report_id}/assignments", headers=headers(ADMIN)).json()
        assert history["active"]["worker_id"] == "worker-2"
        assert len(history["history"]) == 2

    def test_wrong_worker_cannot_start(self, api, report_id):
        _assign(api, report_id)
        response = api.post(f"/worker/reports/{report_id}/start", headers=headers(WORKER_2))
        assert response.status_code == 403
        assert response.json()["error"] == "not_assigned_worker"

    def test_direct_close_is_invalid(self, api, report_id):
        response = api.post(f"/reports/{report_id}/transition", json={"status": "closed"}, headers=headers(ADMIN))
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    def test_closed_report_is_locked(self, api, report_id):
        proof_id = _to_awaiting(api, report_id)
        api.post(
            f"/admin/reports/{report_id}/proofs/{proof_id}/verify",
            json={"decision": "approved", "rating": 4},
            headers=headers(ADMIN),
        )
        response = _assign(api, report_id, "worker-2")
        assert response.status_code == 423
        assert response.json()["error"] == "report_locked"

    def test_double_verify_is_conflict(self, api, report_id):
        proof_id = _to_awaiting(api, report_id)
        url = f"/admin/reports/{report_id}/proofs/{proof_id}/verify"
        api.post(url, json={"decision": "rejected", "comment": "redo edge"}, headers=headers(ADMIN))

        response = api.post(url, json={"decision": "approved", "rating": 5}, headers=headers(ADMIN))
        assert response.status_code == 409
        assert response.json()["error"] == "already_verified"

    def test_approval_without_rating_is_invalid_input(self, api, report_id):
        proof_id = _to_awaiting(api, report_id)
        response = api.post(
            f"/admin/reports/{report_id}/proofs/{proof_id}/verify",
            json={"decision": "approved"},
            headers=headers(ADMIN),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_input"

    def test_worker_assignments(self, api, report_id):
        _assign(api, report_id)
        body = api.get("/worker/assignments", headers=headers(WORKER)).json()
        assert body["count"] == 1
        assert body["assignments"][0]["report"]["id"] == report_id


class TestEscalationEndpoints:
    def test_escalate_and_resolve(self, api, report_id):
        response = api.post(
            f"/reports/{report_id}/escalate",
            json={"reason": "Park is unsafe at night", "severity": "high"},
            headers=headers(NEIGHBOUR),
        )
        assert response.status_code == 201
        escalation_id = response.json()["escalation"]["id"]

        duplicate = api.post(
            f"/reports/{report_id}/escalate",
            json={"reason": "Still dark"},
            headers=headers(CITIZEN),
        )
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "duplicate_escalation"

        listed = api.get("/admin/escalations", headers=headers(ADMIN)).json()
        assert [e["id"] for e in listed["escalations"]] == [escalation_id]

        resolved = api.post(
            f"/admin/escalations/{escalation_id}/resolve",
            json={"note": "Crew scheduled"},
            headers=headers(ADMIN),
        )
        assert resolved.status_code == 200
        assert api.get(f"/reports/{report_id}").json()["is_escalated"] is False

    def test_scan_requires_admin(self, api):
        assert api.post("/admin/escalations/scan", headers=headers(CITIZEN)).status_code == 403
        assert api.post("/admin/escalations/scan", headers=headers(ADMIN)).json()["created"] == 0


class TestMessageEndpoints:
    def test_write_and_read(self, api, report_id):
        response = api.post(
            f"/reports/{report_id}/messages/public",
            json={"text": "Any update?"},
            headers=headers(CITIZEN),
        )
        assert response.status_code == 201
        assert response.json()["channel"] == "public"

        messages = api.get(f"/reports/{report_id}/messages/public", headers=headers(NEIGHBOUR)).json()
        assert [m["text"] for m in messages] == ["Any update?"]

    def test_worker_excluded_from_public(self, api, report_id):
        _assign(api, report_id)
        response = api.get(f"/reports/{report_id}/messages/public", headers=headers(WORKER))
        assert response.status_code == 403
        assert response.json()["error"] == "channel_forbidden"

    def test_visible_channels(self, api, report_id):
        body = api.get(f"/reports/{report_id}/messages", headers=headers(CITIZEN)).json()
        assert set(body["channels"]) == {"public", "admin_citizen"}


class TestAdminViews:
    @pytest.mark.parametrize("path", [
        "/admin/workers",
        "/admin/workloads",
        "/admin/sla-rules",
        "/admin/operations/summary",
        "/admin/activity",
        "/admin/escalations",
    ])
    def test_guarded(self, api, path):
        assert api.get(path, headers=headers(CITIZEN)).status_code == 403
        assert api.get(path, headers=headers(ADMIN)).status_code == 200

    def test_update_sla_rule(self, api):
        response = api.put("/admin/sla-rules/Urgent", json={"max_hours": 12}, headers=headers(ADMIN))
        assert response.status_code == 200
        rules = {r["priority"]: r["max_hours"] for r in api.get("/admin/sla-rules", headers=headers(ADMIN)).json()["rules"]}
        assert rules["Urgent"] == 12

    def test_worker_status(self, api):
        response = api.patch("/admin/workers/worker-1/status", json={"status": "on_leave"}, headers=headers(WORKER))
        assert response.status_code == 200
        assert response.json()["worker"]["status"] == "on_leave"

    def test_worker_deactivation(self, api, report_id):
        assert api.patch("/admin/workers/worker-2/active", json={"is_active": False}, headers=headers(WORKER)).status_code == 403

        response = api.patch("/admin/workers/worker-2/active", json={"is_active": False}, headers=headers(ADMIN))
        assert response.status_code == 200
        assert response.json()["worker"]["is_active"] is False
        roster = api.get("/admin/workers", headers=headers(ADMIN)).json()["workers"]
        assert [w["id"] for w in roster] == ["worker-1"]

        assert _assign(api, report_id, "worker-2").status_code == 422

    def test_busy_worker_deactivation_refused(self, api, report_id):
        assert _assign(api, report_id).status_code == 201
        response = api.patch("/admin/workers/worker-1/active", json={"is_active": False}, headers=headers(ADMIN))
        assert response.status_code == 422

    def test_operations_summary(self, api, report_id):
        body = api.get("/admin/operations/summary", headers=headers(ADMIN)).json()
        assert body["total_reports"] == 1
        assert body["by_status"] == {"reported": 1}
