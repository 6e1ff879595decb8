"""Tests for paid AI tutoring and copilot sessions."""

from datetime import datetime, timedelta

from milestack.models.ai import AIAssistanceLog, AISession

from conftest import headers_for


def set_platform_setting(client, admin_headers, key, value):
    response = client.put(
        "/api/v1/admin/settings/platform",
        headers=admin_headers,
        json={"settings": {key: value}},
    )
    assert response.status_code == 200


class TestAsk:
    """Tests for POST /ai/ask."""

    def test_ask_charges_level_cost(self, client, auth_headers, user, grant_points, db):
        """A level 2 answer costs 15 points and is logged."""
        grant_points(user, 40)
        response = client.post(
            "/api/v1/ai/ask", headers=auth_headers, json={"question": "How do I start?", "level": 2}
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["points_deducted"] == 15
        assert data["remaining_balance"] == 25
        assert data["level_name"] == "Pseudocode Structure"

        log = db.query(AIAssistanceLog).filter(AIAssistanceLog.user_id == user.id).one()
        assert log.points_spent == 15

    def test_ask_includes_assignment_concepts(self, client, auth_headers, user, grant_points, agent, analyzed_assignment):
        """Questions about an assignment carry its concepts to the tutor."""
        grant_points(user, 10)
        client.post(
            "/api/v1/ai/ask",
            headers=auth_headers,
            json={"question": "Where do I begin?", "assignment_id": analyzed_assignment["assignment"]["id"]},
        )
        assert "Key concepts: recursion, base case" in agent.questions[-1]

    def test_ask_insufficient_points(self, client, auth_headers):
        """Without enough points the question is refused."""
        response = client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "Help?", "level": 4})
        assert response.status_code == 400
        assert "50 points" in response.json()["detail"]

    def test_ask_agent_failure_charges_nothing(self, client, auth_headers, user, grant_points, agent):
        """A failed agent call answers 502 and keeps the balance."""
        grant_points(user, 20)
        agent.fail = True
        response = client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "Help?"})
        assert response.status_code == 502

        balance = client.get("/api/v1/points/balance", headers=auth_headers).json()["data"]
        assert balance["current_balance"] == 20

    def test_ask_requires_question(self, client, auth_headers):
        """Blank questions are rejected."""
        assert client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": " "}).status_code == 400

    def test_ask_invalid_level(self, client, auth_headers):
        """Levels outside 1-4 fail validation."""
        response = client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "Help?", "level": 5})
        assert response.status_code == 422

    def test_ask_disabled(self, client, auth_headers, admin_headers):
        """Admins can switch AI assistance off."""
        set_platform_setting(client, admin_headers, "enable_ai_assistance", False)
        response = client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "Help?"})
        assert response.status_code == 403

    def test_ask_daily_limit(self, client, auth_headers, admin_headers, user, grant_points):
        """Questions past the daily limit answer 429."""
        set_platform_setting(client, admin_headers, "ai_ask_daily_limit", 1)
        grant_points(user, 20)
        client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "First?"})
        response = client.post("/api/v1/ai/ask", headers=auth_headers, json={"question": "Second?"})
        assert response.status_code == 429


class TestCopilotSessions:
    """Tests for /ai/session."""

    def start(self, client, headers):
        response = client.post("/api/v1/ai/session/start", headers=headers, json={"topic": "Recursion"})
        assert response.status_code == 201
        return response.json()["data"]

    def test_start_session_charges_cost(self, client, auth_headers, user, grant_points):
        """Opening a session costs 50 points and greets the student."""
        grant_points(user, 60)
        data = self.start(client, auth_headers)
        assert data["session"]["status"] == "active"
        assert data["messages"][0]["role"] == "ai"

        balance = client.get("/api/v1/points/balance", headers=auth_headers).json()["data"]
        assert balance["current_balance"] == 10

    def test_start_session_insufficient_points(self, client, auth_headers):
        """Sessions cannot be opened without 50 points."""
        response = client.post("/api/v1/ai/session/start", headers=auth_headers, json={})
        assert response.status_code == 400

    def test_message_and_transcript(self, client, auth_headers, user, grant_points):
        """Messages are answered and kept in the transcript."""
        grant_points(user, 50)
        session_id = self.start(client, auth_headers)["session"]["id"]

        response = client.post(
            f"/api/v1/ai/session/{session_id}/message", headers=auth_headers, json={"message": "Is n == 0 my base case?"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["time_remaining_seconds"] > 0

        transcript = client.get(f"/api/v1/ai/session/{session_id}/transcript", headers=auth_headers).json()["data"]
        assert [m["role"] for m in transcript["messages"]] == ["ai", "student", "ai"]

    def test_end_session(self, client, auth_headers, user, grant_points):
        """Ending a session blocks further messages."""
        grant_points(user, 50)
        session_id = self.start(client, auth_headers)["session"]["id"]

        data = client.post(f"/api/v1/ai/session/{session_id}/end", headers=auth_headers).json()["data"]
        assert data["status"] == "ended"

        response = client.post(
            f"/api/v1/ai/session/{session_id}/message", headers=auth_headers, json={"message": "Hello?"}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Session has ended"

    def test_expired_session(self, client, auth_headers, user, grant_points, db):
        """Messages after the time limit are refused."""
        grant_points(user, 50)
        session_id = self.start(client, auth_headers)["session"]["id"]

        session = db.get(AISession, session_id)
        session.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        response = client.post(
            f"/api/v1/ai/session/{session_id}/message", headers=auth_headers, json={"message": "Still there?"}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Session has expired"

    def test_other_users_session(self, client, auth_headers, user, other_user, grant_points):
        """Sessions are private to their owner."""
        grant_points(user, 50)
        session_id = self.start(client, auth_headers)["session"]["id"]
        response = client.get(f"/api/v1/ai/session/{session_id}/transcript", headers=headers_for(other_user))
        assert response.status_code == 403
