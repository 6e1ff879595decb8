"""Tests for onboarding, the profile views and the learning dashboard."""

from milestack.models.privacy import ConsentRecord


SETUP = {
    "full_name": "Ada King",
    "major": "Computer Science",
    "year": "2",
    "experience_level": "intermediate",
    "honor_code_accepted": True,
    "digital_signature": "Ada King",
    "data_usage_consent": True,
}


class TestProfileSetup:
    """Tests for /profile/setup and /profile/update."""

    def test_setup_completes_profile(self, client, auth_headers, db, user):
        """Setup stores the profile, signs the honor code and records consent."""
        response = client.post("/api/v1/profile/setup", headers=auth_headers, json=SETUP)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["profile"]["is_complete"] is True
        assert data["profile"]["experience_level"] == "intermediate"
        assert data["honor_code_signature"]["signature"]

        me = client.get("/api/v1/auth/me", headers=auth_headers).json()
        assert me["user"]["last_name"] == "King"
        assert db.query(ConsentRecord).filter(
            ConsentRecord.user_id == user.id,
            ConsentRecord.consent_type == "dataProcessing"
        ).count() == 1

    def test_setup_requires_fields(self, client, auth_headers):
        """Missing required fields are listed in the error."""
        response = client.post("/api/v1/profile/setup", headers=auth_headers, json={**SETUP, "major": ""})
        assert response.status_code == 400
        assert response.json()["detail"] == "Missing required fields: major"

    def test_setup_requires_signature(self, client, auth_headers):
        """The honor code must be signed."""
        response = client.post(
            "/api/v1/profile/setup", headers=auth_headers, json={**SETUP, "digital_signature": None}
        )
        assert response.status_code == 400

    def test_setup_requires_consent(self, client, auth_headers):
        """Data usage consent is mandatory."""
        response = client.post(
            "/api/v1/profile/setup", headers=auth_headers, json={**SETUP, "data_usage_consent": False}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Data usage consent is required"

    def test_setup_rejects_unknown_experience_level(self, client, auth_headers):
        response = client.post(
            "/api/v1/profile/setup", headers=auth_headers, json={**SETUP, "experience_level": "wizard"}
        )
        assert response.status_code == 400

    def test_update_profile(self, client, auth_headers):
        """Updates change only the fields sent."""
        client.post("/api/v1/profile/setup", headers=auth_headers, json=SETUP)
        response = client.put(
            "/api/v1/profile/update",
            headers=auth_headers,
            json={"full_name": "Ada King", "bio": "Analytical engines"},
        )
        profile = response.json()["data"]["profile"]
        assert profile["bio"] == "Analytical engines"
        assert profile["major"] == "Computer Science"

    def test_update_requires_name(self, client, auth_headers):
        response = client.put("/api/v1/profile/update", headers=auth_headers, json={"bio": "No name"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Full name is required"


class TestProfileViews:
    """Tests for the read-only profile endpoints."""

    def test_status_before_setup(self, client, auth_headers):
        """Status lists what is still missing."""
        data = client.get("/api/v1/profile/status", headers=auth_headers).json()["data"]
        assert data["has_profile"] is False
        assert data["missing_fields"] == ["full_name", "major", "year"]
        assert data["honor_code_signed"] is False

    def test_status_after_setup(self, client, auth_headers):
        client.post("/api/v1/profile/setup", headers=auth_headers, json=SETUP)
        data = client.get("/api/v1/profile/status", headers=auth_headers).json()["data"]
        assert data["is_complete"] is True
        assert data["missing_fields"] == []
        assert data["honor_code_signed"] is True
        assert data["data_usage_consent"] is True

    def test_honor_code_is_public_and_versioned(self, client, auth_headers):
        """The honor code is readable without a token and matches the version students sign."""
        honor_code = client.get("/api/v1/profile/honor-code").json()["data"]["honor_code"]
        assert honor_code["version"] == "1.0.0"
        assert honor_code["content"]["student_responsibilities"]
        assert "Submitting AI-generated code as your own" in honor_code["content"]["ai_guidelines"]["prohibited_uses"]

        signed = client.post("/api/v1/integrity/honor/sign", headers=auth_headers, json={}).json()["data"]
        assert signed["signature"]["version"] == honor_code["version"]

    def test_profile_data(self, client, auth_headers, user):
        """Profile data returns the account even without a profile."""
        data = client.get("/api/v1/profile/data", headers=auth_headers).json()["data"]
        assert data["user"]["email"] == user.email
        assert data["profile"] is None

    def test_stats(self, client, auth_headers, analyzed_assignment):
        """Stats count assignments, milestones and points."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})

        data = client.get("/api/v1/profile/stats", headers=auth_headers).json()["data"]
        assert data["assignments"] == {"total": 1, "completed": 0}
        assert data["milestones_completed"] == 1
        assert data["points"]["current_balance"] == 10

    def test_activity(self, client, auth_headers, analyzed_assignment):
        """Activity merges points and attempts."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})

        activity = client.get("/api/v1/profile/activity", headers=auth_headers).json()["data"]["activity"]
        types = {a["type"] for a in activity}
        assert types == {"points_earned", "milestone_attempt"}

    def test_achievements_only_unlocked(self, client, auth_headers, user, grant_points):
        """Only unlocked achievements are listed on the profile."""
        assert client.get("/api/v1/profile/achievements", headers=auth_headers).json()["data"]["total_unlocked"] == 0

        grant_points(user, 1000)
        client.post("/api/v1/achievements/check", headers=auth_headers)
        data = client.get("/api/v1/profile/achievements", headers=auth_headers).json()["data"]
        assert [a["id"] for a in data["achievements"]] == ["points_1000"]


class TestLearningDashboard:
    """Tests for /learning-dashboard."""

    def test_stats_average_score(self, client, auth_headers, analyzed_assignment):
        """Stats average every graded attempt."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})

        data = client.get("/api/v1/learning-dashboard/stats", headers=auth_headers).json()["data"]
        assert data["milestones"] == {"completed": 1, "attempts": 1}
        assert data["average_score"] == 86
        assert data["assignments"] == 1

    def test_empty_stats(self, client, auth_headers):
        data = client.get("/api/v1/learning-dashboard/stats", headers=auth_headers).json()["data"]
        assert data["average_score"] == 0
        assert data["points"]["current_balance"] == 0

    def test_progress(self, client, auth_headers, analyzed_assignment):
        """Progress reports each assignment's milestone counts."""
        data = client.get("/api/v1/learning-dashboard/progress", headers=auth_headers).json()["data"]
        assignment = data["assignments"][0]
        assert assignment["total_milestones"] == 2
        assert assignment["completed_milestones"] == 0
        assert data["pathways"] == []

    def test_activity_has_one_entry_per_day(self, client, auth_headers, analyzed_assignment):
        """Activity covers every requested day, today included."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})

        data = client.get("/api/v1/learning-dashboard/activity", headers=auth_headers, params={"days": 3}).json()["data"]
        assert len(data["activity"]) == 3
        assert data["activity"][-1]["points_earned"] == 10
        assert data["activity"][-1]["attempts"] == 1
        assert data["active_days"] == 1

    def test_recent_assessments(self, client, auth_headers, analyzed_assignment):
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})

        data = client.get("/api/v1/learning-dashboard/assessments", headers=auth_headers).json()["data"]
        assert data["total"] == 1
        assert data["assessments"][0]["type"] == "milestone"
        assert data["assessments"][0]["passed"] is True
