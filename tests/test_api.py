"""
HTTP tests for the change request API.

Identity comes from X-User-* headers; bodies and responses use camelCase.
"""
from datetime import datetime, timezone

import pytest

from app.models.enums import UserRole
from app.services.authorization import Principal


PROJECT_ID = "proj-mercy-general"
BASE = f"/api/projects/{PROJECT_ID}/change-requests"


@pytest.fixture
def requester_headers(auth_headers, requester):
    return auth_headers(requester)


@pytest.fixture
def approver_headers(auth_headers, approver):
    return auth_headers(approver)


@pytest.fixture
def created(client, requester_headers):
    response = client.post(BASE, json={
        "title": "Extend go-live support",
        "description": "Add a week of at-the-elbow support",
        "category": "timeline",
        "priority": "high",
        "estimatedCost": "$40,000",
    }, headers=requester_headers)
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def submitted(client, requester_headers, created):
    response = client.post(f"/api/change-requests/{created['id']}/submit", headers=requester_headers)
    assert response.status_code == 200
    return response.json()


class TestLifecycleOverHttp:

    def test_create_returns_draft(self, created, requester):
        year = datetime.now(timezone.utc).year

        assert created["status"] == "draft"
        assert created["requestNumber"] == f"CR-{year}-0001"
        assert created["projectId"] == PROJECT_ID
        assert created["requestedById"] == requester.id
        assert created["estimatedCost"] == "$40,000"
        assert created["impactLevel"] == "moderate"
        assert created["submittedAt"] is None

    def test_full_lifecycle(self, client, auth_headers, approver_headers, implementer, submitted):
        change_request_id = submitted["id"]
        assert submitted["status"] == "submitted"
        assert submitted["submittedAt"] is not None

        response = client.post(
            f"/api/change-requests/{change_request_id}/approve",
            json={"comments": "Approved, critical for go-live"},
            headers=approver_headers,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["request"]["status"] == "approved"
        assert body["approval"]["decision"] == "approved"
        assert body["approval"]["comments"] == "Approved, critical for go-live"

        response = client.post(
            f"/api/change-requests/{change_request_id}/implement",
            headers=auth_headers(implementer),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "implemented"
        assert response.json()["actualImplementationDate"] is not None

    def test_approve_without_body(self, client, approver_headers, submitted):
        response = client.post(f"/api/change-requests/{submitted['id']}/approve", headers=approver_headers)

        assert response.status_code == 200
        assert response.json()["approval"]["comments"] is None

    def test_edit_draft(self, client, requester_headers, created):
        response = client.patch(
            f"{BASE}/{created['id']}",
            json={"title": "Extend go-live support by two weeks", "priority": "critical"},
            headers=requester_headers,
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Extend go-live support by two weeks"
        assert response.json()["priority"] == "critical"
        assert response.json()["category"] == "timeline"

    def test_delete_draft(self, client, requester_headers, created):
        response = client.delete(f"{BASE}/{created['id']}", headers=requester_headers)
        assert response.status_code == 204

        response = client.get(f"{BASE}/{created['id']}", headers=requester_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestDetailAndSideRecords:

    def test_detail_includes_related_records(self, client, requester_headers, approver_headers, submitted):
        change_request_id = submitted["id"]

        response = client.post(
            f"/api/change-requests/{change_request_id}/impacts",
            json={"impactArea": "budget", "description": "Adds $40,000", "severity": "high"},
            headers=requester_headers,
        )
        assert response.status_code == 201
        assert response.json()["impactArea"] == "budget"

        for content in ("First question", "Second question"):
            response = client.post(
                f"/api/change-requests/{change_request_id}/comments",
                json={"content": content},
                headers=approver_headers,
            )
            assert response.status_code == 201

        client.post(
            f"/api/change-requests/{change_request_id}/reject",
            json={"comments": "Budget exhausted"},
            headers=approver_headers,
        )

        response = client.get(f"{BASE}/{change_request_id}", headers=requester_headers)
        assert response.status_code == 200
        detail = response.json()
        assert detail["status"] == "rejected"
        assert [i["severity"] for i in detail["impacts"]] == ["high"]
        assert [a["decision"] for a in detail["approvals"]] == ["rejected"]
        assert [c["content"] for c in detail["comments"]] == ["First question", "Second question"]

    def test_list_comments(self, client, requester_headers, created):
        client.post(
            f"/api/change-requests/{created['id']}/comments",
            json={"content": "Please attach the quote"},
            headers=requester_headers,
        )

        response = client.get(f"/api/change-requests/{created['id']}/comments", headers=requester_headers)

        assert response.status_code == 200
        assert [c["content"] for c in response.json()] == ["Please attach the quote"]

    def test_empty_comment_is_400(self, client, requester_headers, created):
        response = client.post(
            f"/api/change-requests/{created['id']}/comments",
            json={"content": "  "},
            headers=requester_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["fields"] == ["content"]


class TestListingAndStats:

    def test_list_with_filters_and_total(self, client, requester_headers, submitted):
        client.post(BASE, json={
            "title": "Second request",
            "description": "Another one",
            "category": "budget",
        }, headers=requester_headers)

        response = client.get(BASE, headers=requester_headers)
        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "2"
        assert [cr["title"] for cr in response.json()] == ["Second request", "Extend go-live support"]

        response = client.get(BASE, params={"status": "submitted"}, headers=requester_headers)
        assert response.headers["X-Total-Count"] == "1"
        assert response.json()[0]["id"] == submitted["id"]

        response = client.get(BASE, params={"search": "SECOND", "limit": 1}, headers=requester_headers)
        assert [cr["title"] for cr in response.json()] == ["Second request"]

    def test_invalid_status_filter_is_400(self, client, requester_headers):
        response = client.get(BASE, params={"status": "archived"}, headers=requester_headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_stats(self, client, requester_headers, submitted):
        client.post(BASE, json={"title": "Draft", "description": "Still a draft"}, headers=requester_headers)

        response = client.get(f"{BASE}/stats", headers=requester_headers)

        assert response.status_code == 200
        stats = response.json()
        assert stats["total"] == 2
        assert stats["pendingApprovals"] == 1
        assert stats["byStatus"] == {"draft": 1, "submitted": 1}
        assert stats["byCategory"] == {"timeline": 1, "scope": 1}
        assert len(stats["recentRequests"]) == 2


class TestRefusalsOverHttp:

    def test_missing_identity_is_401(self, client):
        response = client.get(BASE)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTHENTICATION_REQUIRED"

    def test_unknown_role_is_400(self, client):
        response = client.get(BASE, headers={"X-User-Id": "u1", "X-User-Role": "janitor"})

        assert response.status_code == 400

    def test_project_restriction_is_403(self, client, auth_headers, requester):
        response = client.get(BASE, headers=auth_headers(requester, projects=["proj-elsewhere"]))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_request_is_404(self, client, requester_headers):
        response = client.post("/api/change-requests/does-not-exist/submit", headers=requester_headers)

        assert response.status_code == 404

    def test_double_submit_is_409(self, client, requester_headers, submitted):
        response = client.post(f"/api/change-requests/{submitted['id']}/submit", headers=requester_headers)

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "INVALID_TRANSITION"
        assert error["details"]["current_status"] == "submitted"

    def test_reject_without_comments_is_400(self, client, approver_headers, submitted):
        response = client.post(
            f"/api/change-requests/{submitted['id']}/reject",
            json={"comments": ""},
            headers=approver_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["fields"] == ["comments"]

    def test_consultant_cannot_approve(self, client, requester_headers, submitted):
        response = client.post(f"/api/change-requests/{submitted['id']}/approve", headers=requester_headers)

        assert response.status_code == 403

    def test_other_consultant_cannot_delete(self, client, auth_headers, created):
        other = Principal(id="user_456", name="Sam Other", role=UserRole.CONSULTANT)

        response = client.delete(f"{BASE}/{created['id']}", headers=auth_headers(other))

        assert response.status_code == 403

    def test_request_from_other_project_is_404(self, client, requester_headers, created):
        response = client.get(
            f"/api/projects/proj-elsewhere/change-requests/{created['id']}",
            headers=requester_headers,
        )

        assert response.status_code == 404

    def test_correlation_id_is_echoed(self, client, requester_headers):
        headers = dict(requester_headers, **{"X-Correlation-Id": "corr-123"})

        response = client.get(BASE, headers=headers)

        assert response.headers["X-Correlation-Id"] == "corr-123"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
