"""
NCR HTTP API tests.

Covers:
  - Authentication (missing / bad / stale tokens)
  - NCR CRUD: create, list + filters + visibility, detail, edit, delete
  - Workflow actions over HTTP incl. error codes and statuses
  - Full approval chain and rework loop driven through the API
  - Dashboard stats, workflow stage reference data, health probes
"""

import jwt as pyjwt
import pytest

from ncr_tracker.models import db
from ncr_tracker.models.ncr import Ncr

BASE = "/api/v1"


def _create(client, headers, title="Burr on flange", **body):
    res = client.post(f"{BASE}/ncrs", json={"title": title, **body}, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _act(client, headers, ncr_id, action, **body):
    return client.post(f"{BASE}/ncrs/{ncr_id}/actions", json={"action": action, **body}, headers=headers)


# ═════════════════════════════════════════════════════════════════════════════
# Authentication
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthentication:
    def test_missing_token(self, client):
        res = client.get(f"{BASE}/ncrs")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_garbage_token(self, client):
        res = client.get(f"{BASE}/ncrs", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401

    def test_token_signed_with_other_secret(self, client, users):
        token = pyjwt.encode(
            {"sub": str(users["admin"].id), "type": "access"}, "wrong-secret", algorithm="HS256",
        )
        res = client.get(f"{BASE}/ncrs", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401

    def test_inactive_user_rejected(self, client, make_user, auth_headers):
        user = make_user("qa_manager", is_active=False)
        res = client.get(f"{BASE}/ncrs", headers=auth_headers(user))
        assert res.status_code == 401

    def test_role_read_from_database_not_token(self, client, users, auth_headers):
        supervisor = users["station_supervisor"]
        headers = auth_headers(supervisor)
        supervisor.role = "qa_manager"
        db.session.commit()
        res = client.post(f"{BASE}/ncrs", json={"title": "x"}, headers=headers)
        assert res.status_code == 403

    def test_health_needs_no_token(self, client):
        assert client.get(f"{BASE}/health/ready").status_code == 200
        res = client.get(f"{BASE}/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_live_reports_ncr_counts(self, client, users, make_ncr):
        sup = users["station_supervisor"]
        make_ncr(sup, "pe_review")
        make_ncr(sup, "approved")
        counts = client.get(f"{BASE}/health/live").get_json()["checks"]["database"]["ncrs"]
        assert counts == {"total": 2, "open": 1}


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_supervisor_creates_draft(self, client, users, auth_headers):
        supervisor = users["station_supervisor"]
        body = _create(client, auth_headers(supervisor), description="Lot 42", priority="high")
        assert body["workflow_stage"] == "draft"
        assert body["assigned_role"] == "station_supervisor"
        assert body["assigned_to"] == supervisor.id
        assert body["assignment"] == {
            "kind": "person", "role": "station_supervisor", "person_id": supervisor.id,
        }
        assert body["ncr_number"] is None
        assert body["priority"] == "high"
        assert body["final_status"] == "in_progress"
        assert body["batch_decision"] == "pending"
        assert body["version"] == 1

    def test_creation_recorded_in_history(self, client, users, auth_headers):
        headers = auth_headers(users["station_supervisor"])
        ncr = _create(client, headers)
        res = client.get(f"{BASE}/ncrs/{ncr['id']}/transitions", headers=headers)
        history = res.get_json()
        assert len(history) == 1
        assert history[0]["from_stage"] is None
        assert history[0]["to_stage"] == "draft"
        assert history[0]["action"] == "save_draft"
        assert history[0]["comments"] == "NCR created"

    def test_reviewer_cannot_create(self, client, users, auth_headers):
        res = client.post(f"{BASE}/ncrs", json={"title": "x"}, headers=auth_headers(users["qa_manager"]))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_title_required(self, client, users, auth_headers):
        res = client.post(f"{BASE}/ncrs", json={"title": "  "}, headers=auth_headers(users["admin"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_bad_priority(self, client, users, auth_headers):
        res = client.post(
            f"{BASE}/ncrs", json={"title": "x", "priority": "urgent"},
            headers=auth_headers(users["admin"]),
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"priority": "urgent"}

    def test_non_text_title(self, client, users, auth_headers):
        res = client.post(f"{BASE}/ncrs", json={"title": 5}, headers=auth_headers(users["admin"]))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"title": "not_text"}

    def test_non_text_priority(self, client, users, auth_headers):
        res = client.post(
            f"{BASE}/ncrs", json={"title": "x", "priority": ["high"]},
            headers=auth_headers(users["admin"]),
        )
        assert res.status_code == 422
        assert res.get_json()["details"] == {"priority": "not_text"}


class TestReadAndList:
    def test_detail_includes_available_actions(self, client, users, auth_headers):
        headers = auth_headers(users["station_supervisor"])
        ncr = _create(client, headers)
        body = client.get(f"{BASE}/ncrs/{ncr['id']}", headers=headers).get_json()
        assert [a["action"] for a in body["available_actions"]] == ["submit"]
        assert body["stage_info"]["label"] == "Draft"

    def test_detail_reports_terminal_flag(self, client, users, auth_headers, make_ncr):
        headers = auth_headers(users["admin"])
        draft = _create(client, headers)
        assert draft["is_terminal"] is False
        closed = make_ncr(users["station_supervisor"], "approved")
        body = client.get(f"{BASE}/ncrs/{closed.id}", headers=headers).get_json()
        assert body["is_terminal"] is True

    def test_detail_for_outsider_lists_no_actions(self, client, users, auth_headers):
        ncr = _create(client, auth_headers(users["station_supervisor"]))
        res = client.get(f"{BASE}/ncrs/{ncr['id']}/actions", headers=auth_headers(users["qa_manager"]))
        assert res.status_code == 200
        assert res.get_json() == []

    def test_unknown_ncr(self, client, users, auth_headers):
        res = client.get(f"{BASE}/ncrs/does-not-exist", headers=auth_headers(users["admin"]))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_filter_by_stage(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        first = _create(client, sup, title="A")
        _create(client, sup, title="B")
        _act(client, sup, first["id"], "submit")

        qa = auth_headers(users["qa_manager"])
        body = client.get(f"{BASE}/ncrs?workflow_stage=submitted", headers=qa).get_json()
        assert body["total"] == 1
        assert body["items"][0]["title"] == "A"

    def test_filter_by_creator_must_be_int(self, client, users, auth_headers):
        res = client.get(f"{BASE}/ncrs?created_by=abc", headers=auth_headers(users["admin"]))
        assert res.status_code == 422

    def test_restricted_roles_only_see_their_own(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        _create(client, sup)

        pe = auth_headers(users["process_engineer"])
        assert client.get(f"{BASE}/ncrs", headers=pe).get_json()["total"] == 0

        _act(client, sup, ncr["id"], "submit")
        _act(client, auth_headers(users["admin"]), ncr["id"], "approve")
        body = client.get(f"{BASE}/ncrs", headers=pe).get_json()
        assert [n["id"] for n in body["items"]] == [ncr["id"]]

    def test_view_all_roles_see_everything(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        _create(client, sup)
        _create(client, sup)
        for role in ("admin", "qa_manager", "operations_manager", "production_control"):
            body = client.get(f"{BASE}/ncrs", headers=auth_headers(users[role])).get_json()
            assert body["total"] == 2, role

    def test_my_ncrs(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        _act(client, sup, ncr["id"], "submit")

        pc = client.get(f"{BASE}/ncrs/mine", headers=auth_headers(users["production_control"])).get_json()
        assert pc["total"] == 1
        mine = client.get(f"{BASE}/ncrs/mine", headers=sup).get_json()
        assert mine["total"] == 1  # still the creator
        qa = client.get(f"{BASE}/ncrs/mine", headers=auth_headers(users["qa_manager"])).get_json()
        assert qa["total"] == 0


class TestEditAndDelete:
    def test_creator_edits_draft(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        res = client.patch(
            f"{BASE}/ncrs/{ncr['id']}",
            json={"title": "Burr on flange, lot 7", "priority": "critical", "workflow_stage": "approved"},
            headers=sup,
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["title"] == "Burr on flange, lot 7"
        assert body["priority"] == "critical"
        assert body["workflow_stage"] == "draft"
        assert body["version"] == 2

    def test_no_edits_once_submitted(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        _act(client, sup, ncr["id"], "submit")
        res = client.patch(f"{BASE}/ncrs/{ncr['id']}", json={"title": "new"}, headers=sup)
        assert res.status_code == 403

    def test_admin_edits_any_stage(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        _act(client, sup, ncr["id"], "submit")
        res = client.patch(
            f"{BASE}/ncrs/{ncr['id']}", json={"description": "more detail"},
            headers=auth_headers(users["admin"]),
        )
        assert res.status_code == 200
        assert res.get_json()["description"] == "more detail"

    def test_nothing_to_update(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        res = client.patch(f"{BASE}/ncrs/{ncr['id']}", json={"foo": 1}, headers=sup)
        assert res.status_code == 422

    def test_non_text_description(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        res = client.patch(f"{BASE}/ncrs/{ncr['id']}", json={"description": 12}, headers=sup)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"description": "not_text"}

    def test_only_admin_deletes(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        client.post(f"{BASE}/ncrs/{ncr['id']}/comments", json={"content": "hi"}, headers=sup)

        assert client.delete(f"{BASE}/ncrs/{ncr['id']}", headers=sup).status_code == 403

        admin = auth_headers(users["admin"])
        res = client.delete(f"{BASE}/ncrs/{ncr['id']}", headers=admin)
        assert res.status_code == 200
        assert client.get(f"{BASE}/ncrs/{ncr['id']}", headers=admin).status_code == 404
        db.session.expire_all()
        assert db.session.get(Ncr, ncr["id"]) is None


# ═════════════════════════════════════════════════════════════════════════════
# Workflow actions
# ═════════════════════════════════════════════════════════════════════════════


class TestActionsApi:
    def test_action_required(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        res = client.post(f"{BASE}/ncrs/{ncr['id']}/actions", json={}, headers=sup)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_invalid_action(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        res = _act(client, sup, ncr["id"], "approve")
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_ACTION"
        assert body["details"] == {"retryable": False}

    def test_unauthorized(self, client, users, auth_headers):
        ncr = _create(client, auth_headers(users["station_supervisor"]))
        res = _act(client, auth_headers(users["qa_manager"]), ncr["id"], "submit")
        assert res.status_code == 403
        assert res.get_json()["error"] == "You do not have permission to perform this action"

    def test_comment_required(self, client, users, auth_headers, make_ncr):
        ncr = make_ncr(users["station_supervisor"], "pe_review")
        res = _act(client, auth_headers(users["process_engineer"]), ncr.id, "request_rework")
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_COMMENT_REQUIRED"
        assert body["error"] == "Comment is required for this action"
        assert body["details"] == {"retryable": True}

    def test_unknown_ncr(self, client, users, auth_headers):
        res = _act(client, auth_headers(users["admin"]), "nope", "submit")
        assert res.status_code == 404

    def test_non_text_action(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr = _create(client, sup)
        res = _act(client, sup, ncr["id"], 5)
        assert res.status_code == 422
        assert res.get_json()["details"] == {"action": "not_text"}

    def test_numeric_comment_leaves_ncr_actionable(self, client, users, auth_headers, make_ncr):
        ncr = make_ncr(users["station_supervisor"], "pe_review")
        pe = auth_headers(users["process_engineer"])

        res = _act(client, pe, ncr.id, "request_rework", comment=42)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"retryable": False}

        res = _act(client, pe, ncr.id, "accept_batch")
        assert res.status_code == 200
        assert res.get_json()["ncr"]["workflow_stage"] == "em_review"
        history = client.get(f"{BASE}/ncrs/{ncr.id}/transitions", headers=pe).get_json()
        assert [t["action"] for t in history] == ["accept_batch"]

    @pytest.mark.parametrize("extra", [
        {"rework_result": ["conformal"]},
        {"rework_notes": {"text": "re-machined"}},
    ])
    def test_non_text_extra_fields(self, client, users, auth_headers, make_ncr, extra):
        ncr = make_ncr(users["station_supervisor"], "rework")
        res = _act(client, auth_headers(users["station_supervisor"]), ncr.id, "submit_rework", **extra)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_end_to_end_over_http(self, client, users, auth_headers):
        sup = auth_headers(users["station_supervisor"])
        ncr_id = _create(client, sup)["id"]

        chain = [
            ("station_supervisor", "submit", {}, "submitted"),
            ("admin", "approve", {}, "pe_review"),
            ("process_engineer", "accept_batch", {"engineering_findings": "Within rework limits"}, "em_review"),
            ("engineering_manager", "approve", {"comment": "Agreed"}, "om_review"),
            ("operations_manager", "approve", {}, "qa_review"),
            ("qa_manager", "approve", {}, "approved"),
        ]
        for role, action, body, expected in chain:
            res = _act(client, auth_headers(users[role]), ncr_id, action, **body)
            assert res.status_code == 200, (action, res.get_json())
            payload = res.get_json()
            assert payload["success"] is True
            assert payload["ncr"]["workflow_stage"] == expected
            assert payload["transition"]["action"] == action

        final = client.get(f"{BASE}/ncrs/{ncr_id}", headers=sup).get_json()
        assert final["final_status"] == "approved"
        assert final["ncr_number"] == "NCR-0001"
        assert final["batch_decision"] == "accept"
        assert final["engineering_findings"] == "Within rework limits"
        assert (final["em_approved"], final["om_approved"], final["qa_approved"]) == (True, True, True)
        assert final["available_actions"] == []

        history = client.get(f"{BASE}/ncrs/{ncr_id}/transitions", headers=sup).get_json()
        assert len(history) == 7
        assert history[4]["comments"] == "Agreed"
        assert history[2]["from_user"]["role"] == "admin"

    def test_rework_loop_over_http(self, client, users, auth_headers, make_ncr):
        ncr = make_ncr(users["station_supervisor"], "pe_review")
        pe = auth_headers(users["process_engineer"])
        sup = auth_headers(users["station_supervisor"])

        res = _act(client, pe, ncr.id, "request_rework", comment="Regrind surface")
        assert res.get_json()["ncr"]["workflow_stage"] == "rework"
        assert res.get_json()["ncr"]["assigned_role"] == "station_supervisor"

        res = _act(client, sup, ncr.id, "submit_rework", rework_result="non_conformal")
        body = res.get_json()["ncr"]
        assert body["workflow_stage"] == "pe_review"
        assert body["assigned_role"] == "process_engineer"
        assert body["rework_result"] == "non_conformal"


# ═════════════════════════════════════════════════════════════════════════════
# Reference data / dashboard
# ═════════════════════════════════════════════════════════════════════════════


class TestDashboard:
    def test_stats(self, client, users, auth_headers, make_ncr):
        sup_user = users["station_supervisor"]
        sup = auth_headers(sup_user)
        _create(client, sup)
        make_ncr(sup_user, "rework")
        make_ncr(sup_user, "approved", final_status="approved")
        make_ncr(sup_user, "rejected", final_status="rejected")

        stats = client.get(f"{BASE}/dashboard/stats", headers=sup).get_json()
        assert stats["total"] == 4
        assert stats["approved"] == 1
        assert stats["rejected"] == 1
        assert stats["in_rework"] == 1
        assert stats["by_stage"]["draft"] == 1
        assert stats["by_stage"]["qa_review"] == 0
        assert stats["my_pending"] == 2  # draft + rework

    def test_workflow_stages(self, client, users, auth_headers):
        body = client.get(f"{BASE}/workflow/stages", headers=auth_headers(users["qa_manager"])).get_json()
        stages = {s["stage"]: s for s in body}
        assert len(stages) == 11
        assert stages["approved"]["transitions"] == []
        assert stages["draft"]["transitions"][0]["action"] == "submit"
        assert stages["pe_review"]["label"] == "Process Engineer Review"


@pytest.mark.parametrize("path", ["/api/v1/nowhere", "/api/v1/ncrs/x/nothing"])
def test_unknown_routes_return_json(client, path):
    res = client.get(path)
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"
