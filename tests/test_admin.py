"""Tests for the admin API and the health check."""

from milestack.models.admin import AuditLog
from milestack.models.points import FraudDetectionLog
from milestack.services.points import points_service


EARN = {"amount": 10, "category": "concept-explanation", "reason": "Explained recursion", "quality_score": 85}


class TestAdminAccess:
    """Tests for admin-only access."""

    def test_students_are_refused(self, client, auth_headers):
        """Every admin route needs an admin."""
        for path in (
            "/api/v1/admin/dashboard",
            "/api/v1/admin/analytics/overview",
            "/api/v1/admin/users/flagged",
            "/api/v1/admin/settings/platform",
            "/api/v1/admin/fraud-detection",
        ):
            response = client.get(path, headers=auth_headers)
            assert response.status_code == 403, path
            assert response.json()["detail"] == "Admin access required"

    def test_anonymous_is_refused(self, client):
        assert client.get("/api/v1/admin/dashboard").status_code == 401

    def test_dashboard(self, client, admin_headers, auth_headers, analyzed_assignment):
        """The dashboard counts users and analyzed assignments."""
        data = client.get("/api/v1/admin/dashboard", headers=admin_headers).json()["data"]
        assert data["users"]["total"] == 2
        assert data["assignments"] == {"total": 1, "analyzed": 1}
        assert data["pathways"]["completion_rate"] == 0
        assert data["fraud"]["pending_reviews"] == 0


class TestAdminAnalytics:
    """Tests for /admin/analytics."""

    def test_overview(self, client, admin_headers, auth_headers, analyzed_assignment):
        """The overview sums points and assessment outcomes."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})

        data = client.get("/api/v1/admin/analytics/overview", headers=admin_headers).json()["data"]
        assert data["points"] == {"earned": 10, "spent": 0, "circulating": 10}
        assert data["assessments"] == {"attempts": 1, "passed": 1, "pass_rate": 100.0}
        assert data["ai_assistance_by_level"] == {"1": 0, "2": 0, "3": 0, "4": 0}

    def test_integrity(self, client, admin_headers, auth_headers):
        """Integrity analytics report the honor code signature rate."""
        client.post("/api/v1/integrity/honor/sign", headers=auth_headers, json={})
        data = client.get("/api/v1/admin/analytics/integrity", headers=admin_headers).json()["data"]
        assert data["honor_code"] == {"signed_users": 1, "total_users": 1, "signature_rate": 100.0}
        assert set(data["fraud_actions"]) == {"none", "flag", "block", "review"}


class TestPlatformSettings:
    """Tests for /admin/settings/platform."""

    def test_defaults_are_grouped(self, client, admin_headers):
        data = client.get("/api/v1/admin/settings/platform", headers=admin_headers).json()["data"]
        keys = {s["key"] for group in data["settings"].values() for s in group}
        assert {"site_name", "enable_ai_assistance", "ai_ask_daily_limit"} <= keys

    def test_update_is_audited(self, client, admin_headers, db):
        """Updates return old and new values and leave an audit entry."""
        response = client.put(
            "/api/v1/admin/settings/platform",
            headers=admin_headers,
            json={"settings": {"site_name": "Milestack Labs"}},
        )
        assert response.status_code == 200
        assert response.json()["data"]["updated"]["site_name"]["new_value"] == "Milestack Labs"
        assert db.query(AuditLog).filter(AuditLog.resource == "system_settings").count() == 1

    def test_unknown_setting(self, client, admin_headers):
        response = client.put(
            "/api/v1/admin/settings/platform", headers=admin_headers, json={"settings": {"theme": "dark"}}
        )
        assert response.status_code == 404

    def test_invalid_values(self, client, admin_headers):
        """Values are checked against the setting's type and limits."""
        url = "/api/v1/admin/settings/platform"
        response = client.put(url, headers=admin_headers, json={"settings": {"enable_registration": "yes"}})
        assert response.status_code == 400
        assert response.json()["detail"] == "enable_registration expects a boolean"

        response = client.put(url, headers=admin_headers, json={"settings": {"ai_ask_daily_limit": 0}})
        assert response.status_code == 400
        assert response.json()["detail"] == "ai_ask_daily_limit must be at least 1"


class TestFraudReview:
    """Tests for /admin/fraud-detection and /admin/users/flagged."""

    def test_clean_awards_are_not_logged(self, client, admin_headers, auth_headers):
        """A clean award leaves no fraud log to review."""
        response = client.post("/api/v1/points/earn", headers=auth_headers, json=EARN)
        assert response.status_code == 200
        data = client.get("/api/v1/admin/fraud-detection", headers=admin_headers).json()["data"]
        assert data["total"] == 0
        assert data["logs"] == []

    def test_flagged_user_and_review(self, client, admin_headers, auth_headers, user, db, monkeypatch):
        """Blocked activity shows up as a flagged user until reviewed."""
        monkeypatch.setattr(points_service, "BLOCK_THRESHOLD", 20)
        client.post("/api/v1/points/earn", headers=auth_headers, json={**EARN, "quality_score": 30})

        flagged = client.get("/api/v1/admin/users/flagged", headers=admin_headers).json()["data"]
        assert flagged["users"][0]["user_id"] == user.id
        assert flagged["users"][0]["max_risk_score"] == 20

        log_id = db.query(FraudDetectionLog).filter(FraudDetectionLog.user_id == user.id).one().id
        response = client.post(
            "/api/v1/admin/fraud-detection/review",
            headers=admin_headers,
            json={"log_id": log_id, "action": "none", "notes": "Legitimate struggle"},
        )
        assert response.status_code == 200
        assert response.json()["data"]["log"]["reviewed"] is True

        assert client.get("/api/v1/admin/users/flagged", headers=admin_headers).json()["data"]["total"] == 0

        pending = client.get(
            "/api/v1/admin/fraud-detection", headers=admin_headers, params={"reviewed": False}
        ).json()["data"]
        assert pending["total"] == 0

    def test_review_missing_log(self, client, admin_headers):
        response = client.post(
            "/api/v1/admin/fraud-detection/review", headers=admin_headers, json={"log_id": 999, "action": "flag"}
        )
        assert response.status_code == 404

    def test_review_invalid_action(self, client, admin_headers):
        response = client.post(
            "/api/v1/admin/fraud-detection/review", headers=admin_headers, json={"log_id": 1, "action": "ban"}
        )
        assert response.status_code == 422

    def test_analytics_bands(self, client, admin_headers, db, user):
        """Logs are counted into risk bands and buckets."""
        for score in (10, 45, 100):
            db.add(FraudDetectionLog(
                user_id=user.id,
                activity_type="code-review",
                risk_score=score,
                flags=[],
                details={},
                action_taken="none",
            ))
        db.commit()

        data = client.get("/api/v1/admin/fraud-detection/analytics", headers=admin_headers).json()["data"]
        assert data["risk_levels"] == {"high": 1, "medium": 1, "low": 1}
        assert data["risk_distribution"]["80-99"] == 1
        assert data["activity_breakdown"]["code-review"] == {"count": 3, "average_risk": 51.7}
        assert data["daily_trend"][0]["high_risk"] == 1


class TestHealth:
    """Tests for the health check."""

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
