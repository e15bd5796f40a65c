"""
Tests: HTTP surface.

Covers:
    - Identity: missing / expired / malformed tokens → 401, role gate → 403
    - Request guards: non-JSON body → 415, malformed JSON → 400, oversize → 413
    - Error mapping: 404 / 409 / 422 bodies with machine-readable codes
    - Task CRUD round-trip, archive + include_archived, restore
    - Comments, assignments, dependencies, workflows, attachments endpoints
    - Stats access rules, notification ownership
    - Health probes and X-Request-ID propagation
"""

import json

import pytest

from taskhub.services.jwt_service import generate_access_token

API = "/api/v1"


def _create(client, headers, **fields):
    payload = {"title": "API task"}
    payload.update(fields)
    res = client.post(f"{API}/tasks", json=payload, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# Identity & guards
# ═════════════════════════════════════════════════════════════════════════════


class TestAuth:
    def test_missing_token(self, client):
        res = client.get(f"{API}/tasks")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_expired_token(self, client):
        token = generate_access_token(1, "member", expires_in=-10)
        res = client.get(f"{API}/tasks", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401

    def test_garbage_token(self, client):
        res = client.get(f"{API}/tasks", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401

    def test_viewer_can_read_but_not_write(self, client, auth_headers):
        viewer = auth_headers(9, "viewer")
        assert client.get(f"{API}/tasks", headers=viewer).status_code == 200
        res = client.post(f"{API}/tasks", json={"title": "nope"}, headers=viewer)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_health_needs_no_token(self, client):
        assert client.get(f"{API}/health/ready").status_code == 200


class TestRequestGuards:
    def test_non_json_body_rejected(self, client, headers):
        res = client.post(f"{API}/tasks", data="title=x", content_type="text/plain", headers=headers)
        assert res.status_code == 415

    def test_malformed_json(self, client, headers):
        res = client.post(f"{API}/tasks", data="{not json", content_type="application/json", headers=headers)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_BAD_REQUEST"

    def test_oversize_body(self, client, headers):
        body = json.dumps({"title": "x", "description": "y" * (2 * 1024 * 1024)})
        res = client.post(f"{API}/tasks", data=body, content_type="application/json", headers=headers)
        assert res.status_code == 413

    def test_request_id_echoed(self, client, headers):
        res = client.get(f"{API}/tasks", headers={**headers, "X-Request-ID": "trace-123"})
        assert res.headers["X-Request-ID"] == "trace-123"

    def test_request_id_generated(self, client, headers):
        res = client.get(f"{API}/tasks", headers=headers)
        assert res.headers["X-Request-ID"]


# ═════════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════════


class TestTaskEndpoints:
    def test_create_returns_detail(self, client, headers):
        task = _create(client, headers, priority="high", tags=["a"])
        assert task["status"] == "todo"
        assert task["priority"] == "high"
        assert task["created_by"] == 1
        for key in ("assignments", "comments", "attachments", "subtasks", "dependencies", "urgency_status"):
            assert key in task

    def test_validation_error_body(self, client, headers):
        res = client.post(f"{API}/tasks", json={"title": "x", "priority": "asap"}, headers=headers)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert "priority" in body["details"]

    def test_unknown_task_404(self, client, headers):
        res = client.get(f"{API}/tasks/999", headers=headers)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_patch_partial_update(self, client, headers):
        task = _create(client, headers, description="keep")
        res = client.patch(f"{API}/tasks/{task['id']}", json={"completion_percentage": 150}, headers=headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["completion_percentage"] == 100
        assert body["description"] == "keep"

    def test_status_change_visible_in_detail(self, client, headers):
        task = _create(client, headers)
        body = client.put(f"{API}/tasks/{task['id']}", json={"status": "done"}, headers=headers).get_json()
        assert body["completed_at"] is not None
        assert body["comments"][0]["comment_type"] == "status_change"

    def test_archive_and_restore(self, client, headers):
        task = _create(client, headers)
        res = client.delete(f"{API}/tasks/{task['id']}", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["archived_at"] is not None

        listed = client.get(f"{API}/tasks", headers=headers).get_json()
        assert listed["tasks"] == []
        listed = client.get(f"{API}/tasks?include_archived=true", headers=headers).get_json()
        assert [t["id"] for t in listed["tasks"]] == [task["id"]]

        res = client.post(f"{API}/tasks/{task['id']}/restore", headers=headers)
        assert res.get_json()["is_archived"] is False

    def test_list_pagination_params(self, client, headers):
        for i in range(3):
            _create(client, headers, title=f"T{i}")
        body = client.get(f"{API}/tasks?limit=2&page=2&sort_by=title&sort_order=asc", headers=headers).get_json()
        assert [t["title"] for t in body["tasks"]] == ["T2"]
        assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}

    def test_list_bad_limit(self, client, headers):
        assert client.get(f"{API}/tasks?limit=500", headers=headers).status_code == 422

    def test_search(self, client, headers):
        _create(client, headers, title="Budget review")
        res = client.get(f"{API}/tasks/search?q=budget", headers=headers)
        assert [r["title"] for r in res.get_json()] == ["Budget review"]
        assert client.get(f"{API}/tasks/search?q=b", headers=headers).get_json() == []


class TestStatsEndpoint:
    def test_own_and_global(self, client, headers):
        _create(client, headers)
        assert client.get(f"{API}/tasks/stats", headers=headers).get_json()["total"] == 1
        assert client.get(f"{API}/tasks/stats?user_id=1", headers=headers).status_code == 200

    def test_other_user_requires_admin(self, client, headers, auth_headers):
        assert client.get(f"{API}/tasks/stats?user_id=2", headers=headers).status_code == 403
        res = client.get(f"{API}/tasks/stats?user_id=2", headers=auth_headers(5, "admin"))
        assert res.status_code == 200
        assert res.get_json()["user_id"] == 2


# ═════════════════════════════════════════════════════════════════════════════
# Sub-resources
# ═════════════════════════════════════════════════════════════════════════════


class TestCommentEndpoints:
    def test_add_list_delete(self, client, headers, auth_headers):
        task = _create(client, headers)
        url = f"{API}/tasks/{task['id']}/comments"
        res = client.post(url, json={"content": "First"}, headers=headers)
        assert res.status_code == 201
        comment_id = res.get_json()["id"]

        other = auth_headers(2, "member")
        assert client.delete(f"{url}/{comment_id}", headers=other).status_code == 403
        assert client.delete(f"{url}/{comment_id}", headers=headers).status_code == 200
        assert client.get(url, headers=headers).get_json() == []

    def test_empty_content_rejected(self, client, headers):
        task = _create(client, headers)
        res = client.post(f"{API}/tasks/{task['id']}/comments", json={"content": ""}, headers=headers)
        assert res.status_code == 422


class TestAssignmentEndpoints:
    def test_assign_and_respond(self, client, headers, auth_headers):
        task = _create(client, headers)
        url = f"{API}/tasks/{task['id']}/assignments"
        res = client.post(url, json={"user_id": 2, "workload_percentage": 40}, headers=headers)
        assert res.status_code == 200
        assert res.get_json()["status"] == "pending"

        res = client.post(f"{url}/respond", json={"accept": True}, headers=auth_headers(2, "viewer"))
        assert res.status_code == 200
        assert res.get_json()["status"] == "accepted"

        rows = client.get(url, headers=headers).get_json()
        assert [(r["user_id"], r["workload_percentage"]) for r in rows] == [(2, 40)]


class TestDependencyEndpoints:
    def test_add_cycle_duplicate_remove(self, client, headers):
        a = _create(client, headers, title="A")
        b = _create(client, headers, title="B")

        res = client.post(f"{API}/tasks/{b['id']}/dependencies", json={"predecessor_id": a["id"]}, headers=headers)
        assert res.status_code == 201
        dep_id = res.get_json()["id"]

        res = client.post(f"{API}/tasks/{a['id']}/dependencies", json={"predecessor_id": b["id"]}, headers=headers)
        assert res.status_code == 422

        res = client.post(f"{API}/tasks/{a['id']}/dependencies", json={"successor_id": b["id"]}, headers=headers)
        assert res.status_code == 409

        listing = client.get(f"{API}/tasks/{b['id']}/dependencies", headers=headers).get_json()
        assert [d["predecessor_id"] for d in listing["predecessors"]] == [a["id"]]

        assert client.delete(f"{API}/dependencies/{dep_id}", headers=headers).status_code == 200

    def test_missing_other_end(self, client, headers):
        a = _create(client, headers)
        res = client.post(f"{API}/tasks/{a['id']}/dependencies", json={}, headers=headers)
        assert res.status_code == 422


class TestWorkflowEndpoints:
    def test_catalog_and_apply(self, client, headers, workflows):
        names = [w["name"] for w in client.get(f"{API}/workflows", headers=headers).get_json()]
        assert names == ["Approval", "Inspection", "Standard"]
        assert client.get(f"{API}/task-templates", headers=headers).status_code == 200

        task = _create(client, headers)
        res = client.post(
            f"{API}/tasks/{task['id']}/workflow",
            json={"workflow_id": workflows["Approval"].id},
            headers=headers,
        )
        body = res.get_json()
        assert body["current_workflow_step"] == 1
        assert body["workflow_name"] == "Approval"
        assert body["current_step_name"] == "Request"


class TestAttachmentEndpoints:
    def test_add_and_list(self, client, headers):
        task = _create(client, headers)
        url = f"{API}/tasks/{task['id']}/attachments"
        res = client.post(url, json={"file_name": "a.png", "file_size": 5, "mime_type": "image/png"}, headers=headers)
        assert res.status_code == 201
        assert [a["file_name"] for a in client.get(url, headers=headers).get_json()] == ["a.png"]


class TestWronglyShapedBodies:
    @pytest.mark.parametrize("path,body,field", [
        ("comments", [], "body"),
        ("comments", {"content": "x", "comment_type": ["comment"]}, "comment_type"),
        ("comments", {"content": "x", "parent_comment_id": [1]}, "parent_comment_id"),
        ("comments", {"content": "x", "is_internal": "false"}, "is_internal"),
        ("assignments", {"user_id": 2, "role": ["assignee"]}, "role"),
        ("dependencies", {"successor_id": 999, "dependency_type": {"a": 1}}, "dependency_type"),
        ("attachments", {"file_name": "a", "mime_type": ["text/plain"]}, "mime_type"),
        ("attachments", {"file_name": "a", "mime_type": "text/plain", "description": {"x": 1}}, "description"),
    ])
    def test_answers_422(self, client, headers, path, body, field):
        task = _create(client, headers)
        res = client.post(f"{API}/tasks/{task['id']}/{path}", json=body, headers=headers)
        assert res.status_code == 422
        assert field in res.get_json()["details"]


class TestNotificationEndpoints:
    def test_ownership_and_read_state(self, client, headers, auth_headers):
        _create(client, headers, assigned_to=2)
        bob = auth_headers(2, "member")

        items = client.get(f"{API}/notifications", headers=bob).get_json()
        assert len(items) == 1
        assert client.get(f"{API}/notifications/unread-count", headers=bob).get_json() == {"unread_count": 1}

        nid = items[0]["id"]
        assert client.put(f"{API}/notifications/{nid}/read", headers=headers).status_code == 404
        res = client.put(f"{API}/notifications/{nid}/read", headers=bob)
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        assert client.put(f"{API}/notifications/read-all", headers=bob).get_json() == {"marked_read": 0}

    @pytest.mark.parametrize("limit", ["0", "101", "ten"])
    def test_bad_limit(self, client, headers, limit):
        assert client.get(f"{API}/notifications?limit={limit}", headers=headers).status_code == 422


class TestHealth:
    def test_live_reports_database(self, client):
        body = client.get(f"{API}/health/live").get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["directory"]["status"] == "standalone"
