"""Tests for academic integrity records and privacy controls."""

import json

from milestack.models.assignment import Assignment
from milestack.models.points import UserPoints
from milestack.models.privacy import PrivacyAuditLog
from milestack.models.user import User

from conftest import headers_for


class TestHonorCode:
    """Tests for /integrity/honor."""

    def test_sign_and_list(self, client, auth_headers):
        """Signing stores a versioned, signed record."""
        response = client.post("/api/v1/integrity/honor/sign", headers=auth_headers, json={"institution": "MIT"})
        assert response.status_code == 201
        signature = response.json()["data"]["signature"]
        assert signature["signature"]
        assert signature["version"] == "1.0.0"

        data = client.get("/api/v1/integrity/honor", headers=auth_headers).json()["data"]
        assert data["has_signed"] is True
        assert len(data["signatures"]) == 1

    def test_sign_for_other_users_assignment(self, client, auth_headers, analyzed_assignment, other_user):
        """Signing for someone else's assignment is forbidden."""
        response = client.post(
            "/api/v1/integrity/honor/sign",
            headers=headers_for(other_user),
            json={"assignment_id": analyzed_assignment["assignment"]["id"]},
        )
        assert response.status_code == 403


class TestIntegrityReports:
    """Tests for reports, sharing and the dashboard."""

    def test_report_lists_progression_and_ai_use(self, client, auth_headers, analyzed_assignment, user, grant_points):
        """The report covers milestones and AI help on the assignment."""
        assignment_id = analyzed_assignment["assignment"]["id"]
        grant_points(user, 10)
        client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "Hint?", "assignment_id": assignment_id})

        data = client.get(f"/api/v1/integrity/report/{assignment_id}", headers=auth_headers).json()["data"]
        report = data["report"]
        assert report["learning_progression"]["total"] == 2
        assert report["ai_assistance_used"][0]["level"] == 1
        assert report["academic_integrity_compliance"]["policy_violations"] == 0
        assert data["signature"]

    def test_share_and_view_shared_report(self, client, auth_headers, analyzed_assignment):
        """A shared report is readable through its public link."""
        assignment_id = analyzed_assignment["assignment"]["id"]
        data = client.post(
            f"/api/v1/integrity/share/{assignment_id}",
            headers=auth_headers,
            json={"instructor_email": "prof@university.edu"},
        ).json()["data"]
        assert data["shared_with"] == "prof@university.edu"

        token = data["report_url"].rsplit("/", 1)[-1]
        shared = client.get(f"/api/v1/integrity/shared/{token}").json()["data"]
        assert shared["student_name"] == "Ada Lovelace"
        assert shared["shared_with"] == "prof@university.edu"

    def test_share_requires_valid_email(self, client, auth_headers, analyzed_assignment):
        """Instructor e-mails are validated."""
        assignment_id = analyzed_assignment["assignment"]["id"]
        url = f"/api/v1/integrity/share/{assignment_id}"
        assert client.post(url, headers=auth_headers, json={}).status_code == 400
        assert client.post(url, headers=auth_headers, json={"instructor_email": "not-an-email"}).status_code == 400

    def test_unknown_shared_report(self, client):
        """Unknown share tokens give 404."""
        assert client.get("/api/v1/integrity/shared/missing").status_code == 404

    def test_integrity_score_without_activity(self, client, auth_headers):
        """An unsigned user without activity is capped on compliance."""
        score = client.get("/api/v1/integrity/dashboard", headers=auth_headers).json()["data"]["integrity_score"]
        assert score == {"transparency": 100, "compliance": 70, "learning_engagement": 0, "overall": 57}

    def test_integrity_score_after_learning(self, client, auth_headers, analyzed_assignment, user, grant_points):
        """Signing, a completed milestone and AI use shift the score."""
        client.post("/api/v1/integrity/honor/sign", headers=auth_headers, json={})
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})
        grant_points(user, 10)
        client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "Hint?"})

        score = client.get("/api/v1/integrity/dashboard", headers=auth_headers).json()["data"]["integrity_score"]
        assert score == {"transparency": 50, "compliance": 100, "learning_engagement": 10, "overall": 53}

    def test_export_record(self, client, auth_headers):
        """The integrity export includes signatures and the score."""
        client.post("/api/v1/integrity/honor/sign", headers=auth_headers, json={})
        data = client.get("/api/v1/integrity/export", headers=auth_headers).json()["data"]
        assert len(data["honor_code_signatures"]) == 1
        assert data["integrity_score"]["compliance"] == 100


class TestPrivacySettings:
    """Tests for /privacy/settings and consent."""

    def test_defaults_and_update(self, client, auth_headers):
        """Settings start with defaults and accept partial updates."""
        data = client.get("/api/v1/privacy/settings", headers=auth_headers).json()["data"]["settings"]
        assert data["share_with_instructors"] is False

        response = client.put(
            "/api/v1/privacy/settings", headers=auth_headers, json={"share_with_instructors": True}
        )
        assert response.json()["data"]["settings"]["share_with_instructors"] is True

    def test_integrity_privacy_shares_settings(self, client, auth_headers):
        """The integrity privacy view edits the same settings record."""
        response = client.put("/api/v1/integrity/privacy", headers=auth_headers, json={"data_retention_days": 365})
        assert response.json()["data"]["settings"]["data_retention_days"] == 365

        data = client.get("/api/v1/privacy/settings", headers=auth_headers).json()["data"]["settings"]
        assert data["data_retention_days"] == 365
        assert client.get("/api/v1/integrity/privacy", headers=auth_headers).json()["data"]["settings"] == data

    def test_update_requires_a_field(self, client, auth_headers):
        """An empty update is rejected."""
        assert client.put("/api/v1/privacy/settings", headers=auth_headers, json={}).status_code == 400

    def test_consent_history(self, client, auth_headers):
        """Granting then withdrawing keeps both records."""
        client.post("/api/v1/privacy/consent", headers=auth_headers, json={"consent_type": "analytics", "granted": True})
        response = client.request(
            "DELETE", "/api/v1/privacy/consent", headers=auth_headers, json={"consent_type": "analytics"}
        )
        assert response.status_code == 200

        data = client.get("/api/v1/privacy/consent", headers=auth_headers).json()["data"]
        assert [c["granted"] for c in data["consents"]] == [False, True]

        settings = client.get("/api/v1/privacy/settings", headers=auth_headers).json()["data"]["settings"]
        assert settings["gdpr_consent"]["analytics"] is False

    def test_consent_requires_fields(self, client, auth_headers):
        """Consent needs a type and a decision."""
        response = client.post("/api/v1/privacy/consent", headers=auth_headers, json={"consent_type": "analytics"})
        assert response.status_code == 400

    def test_compliance_report(self, client, auth_headers):
        """Default processing consent counts; withdrawing it is reported as an issue."""
        data = client.get("/api/v1/privacy/compliance", headers=auth_headers).json()["data"]
        assert "No consent for data processing" not in data["issues"]
        assert data["issues"] == ["Consent may be outdated"]

        client.post(
            "/api/v1/privacy/consent", headers=auth_headers, json={"consent_type": "dataProcessing", "granted": True}
        )
        assert client.get("/api/v1/privacy/compliance", headers=auth_headers).json()["data"]["compliant"] is True

        client.request(
            "DELETE", "/api/v1/privacy/consent", headers=auth_headers, json={"consent_type": "dataProcessing"}
        )
        data = client.get("/api/v1/privacy/compliance", headers=auth_headers).json()["data"]
        assert data["compliant"] is False
        assert data["issues"] == ["No consent for data processing"]


class TestDataExport:
    """Tests for /privacy/export."""

    def test_json_export_can_be_downloaded(self, client, auth_headers, user):
        """An export completes in the background and downloads as a file."""
        response = client.post(
            "/api/v1/privacy/export", headers=auth_headers, json={"format": "json", "data_categories": ["profile"]}
        )
        assert response.status_code == 202
        export_id = response.json()["data"]["export"]["id"]

        status = client.get(f"/api/v1/privacy/export/{export_id}", headers=auth_headers).json()["data"]["export"]
        assert status["status"] == "completed"

        download = client.get(f"/api/v1/privacy/export/{export_id}/download", headers=auth_headers)
        assert download.status_code == 200
        assert "attachment" in download.headers["content-disposition"]
        assert json.loads(download.content)["profile"]["account"]["email"] == user.email

    def test_csv_export(self, client, auth_headers):
        """CSV exports have a category, field, value header."""
        export_id = client.post(
            "/api/v1/privacy/export", headers=auth_headers, json={"format": "csv"}
        ).json()["data"]["export"]["id"]
        download = client.get(f"/api/v1/privacy/export/{export_id}/download", headers=auth_headers)
        assert download.text.splitlines()[0] == "category,field,value"

    def test_invalid_export_requests(self, client, auth_headers):
        """Unknown formats and categories are rejected."""
        assert client.post("/api/v1/privacy/export", headers=auth_headers, json={"format": "xml"}).status_code == 400
        response = client.post("/api/v1/privacy/export", headers=auth_headers, json={"data_categories": ["secrets"]})
        assert response.status_code == 400

    def test_other_users_export(self, client, auth_headers, other_user):
        """Exports are private to their owner."""
        export_id = client.post("/api/v1/privacy/export", headers=auth_headers, json={}).json()["data"]["export"]["id"]
        response = client.get(f"/api/v1/privacy/export/{export_id}", headers=headers_for(other_user))
        assert response.status_code == 404


class TestDataDeletion:
    """Tests for /privacy/delete."""

    def test_delete_points_only(self, client, auth_headers, user, grant_points, db):
        """Deleting one category leaves the account usable."""
        grant_points(user, 30)
        response = client.post(
            "/api/v1/privacy/delete", headers=auth_headers, json={"reason": "Fresh start", "data_categories": ["points"]}
        )
        assert response.status_code == 202
        deletion_id = response.json()["data"]["deletion"]["id"]

        data = client.get(f"/api/v1/privacy/delete/{deletion_id}", headers=auth_headers).json()["data"]["deletion"]
        assert data["status"] == "completed"
        assert data["deleted_counts"]["points"] >= 2

        db.expire_all()
        assert db.query(UserPoints).filter(UserPoints.user_id == user.id).count() == 0

    def test_delete_everything_anonymizes_account(self, client, auth_headers, analyzed_assignment, user, db):
        """Deleting all data removes assignments and deactivates the account."""
        response = client.post("/api/v1/privacy/delete", headers=auth_headers, json={"reason": "Leaving"})
        assert response.status_code == 202

        db.expire_all()
        account = db.get(User, user.id)
        assert account.is_active is False
        assert account.email.endswith("@deleted.invalid")
        assert db.query(Assignment).filter(Assignment.user_id == user.id).count() == 0
        assert client.get("/api/v1/auth/me", headers=auth_headers).status_code == 403

    def test_deletion_requires_reason(self, client, auth_headers):
        """A reason is required."""
        assert client.post("/api/v1/privacy/delete", headers=auth_headers, json={}).status_code == 400

    def test_deletion_rejects_unknown_category(self, client, auth_headers):
        """Unknown categories are rejected."""
        response = client.post(
            "/api/v1/privacy/delete", headers=auth_headers, json={"reason": "x", "data_categories": ["friends"]}
        )
        assert response.status_code == 400

    def test_audit_log(self, client, auth_headers, db, user):
        """Privacy actions are written to the audit log."""
        client.put("/api/v1/privacy/settings", headers=auth_headers, json={"lms_integration": True})
        entries = client.get("/api/v1/privacy/audit-log", headers=auth_headers).json()["data"]["entries"]
        assert entries[0]["action"] == "settings_updated"
        assert db.query(PrivacyAuditLog).filter(PrivacyAuditLog.user_id == user.id).count() == 1
