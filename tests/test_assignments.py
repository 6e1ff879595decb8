"""Tests for assignment upload, analysis and milestone attempts."""

from milestack.models.assignment import Assignment
from milestack.models.points import PointTransaction

from conftest import headers_for


def upload(client, headers, title="Recursion Lab", content=b"Write a recursive factorial.", mime="text/plain"):
    return client.post(
        "/api/v1/assignments/upload",
        headers=headers,
        data={"title": title},
        files={"file": ("lab.txt", content, mime)},
    )


class TestUpload:
    """Tests for POST /assignments/upload."""

    def test_upload_stores_assignment(self, client, auth_headers):
        """A text upload is stored with its extracted text and hash."""
        response = upload(client, auth_headers)
        assert response.status_code == 201
        assignment = response.json()["data"]["assignment"]
        assert assignment["title"] == "Recursion Lab"
        assert assignment["analysis_status"] == "uploaded"
        assert assignment["file_hash"]

    def test_upload_requires_title(self, client, auth_headers):
        """A blank title is rejected."""
        assert upload(client, auth_headers, title=" ").status_code == 400

    def test_upload_rejects_unsupported_type(self, client, auth_headers):
        """Executables are refused with 415."""
        response = upload(client, auth_headers, mime="application/x-msdownload")
        assert response.status_code == 415

    def test_upload_rejects_duplicate(self, client, auth_headers):
        """The same file twice gives 409 with the existing id."""
        first = upload(client, auth_headers).json()["data"]["assignment"]["id"]
        response = upload(client, auth_headers, title="Again")
        assert response.status_code == 409
        assert response.json()["detail"]["assignment_id"] == first

    def test_upload_requires_auth(self, client):
        """Anonymous uploads are refused."""
        assert upload(client, {}).status_code == 401


class TestAnalyze:
    """Tests for POST /assignments/analyze."""

    def test_analyze_builds_pathway(self, analyzed_assignment):
        """Analysis creates ordered milestones with only the first unlocked."""
        milestones = analyzed_assignment["pathway"]["milestones"]
        assert [m["order"] for m in milestones] == [1, 2]
        assert milestones[0]["status"] == "available"
        assert milestones[1]["status"] == "locked"
        assert analyzed_assignment["pathway"]["total_points"] == 25
        assert analyzed_assignment["analysis"]["concepts"] == ["recursion", "base case"]

    def test_analyze_requires_id(self, client, auth_headers):
        """The assignment id is required."""
        response = client.post("/api/v1/assignments/analyze", headers=auth_headers, json={})
        assert response.status_code == 400

    def test_analyze_agent_failure(self, client, auth_headers, agent, db):
        """Agent failures mark the analysis failed and allow a retry."""
        assignment_id = upload(client, auth_headers).json()["data"]["assignment"]["id"]
        agent.fail = True

        response = client.post("/api/v1/assignments/analyze", headers=auth_headers, json={"assignment_id": assignment_id})
        assert response.status_code == 500
        assert response.json()["detail"]["canRetry"] is True
        assert db.get(Assignment, assignment_id).analysis_status == "failed"

    def test_analyze_rejects_mistyped_agent_output(self, client, auth_headers, agent, db):
        """Agent JSON with the wrong field types fails the analysis and allows a retry."""
        assignment_id = upload(client, auth_headers).json()["data"]["assignment"]["id"]
        agent.analysis_reply = 'Here you go: {"core_milestones": ["Write the function"], "languages": "Python"}'

        response = client.post("/api/v1/assignments/analyze", headers=auth_headers, json={"assignment_id": assignment_id})
        assert response.status_code == 500
        assert response.json()["detail"]["canRetry"] is True
        assert "each milestone must be an object" in response.json()["detail"]["message"]
        db.expire_all()
        assert db.get(Assignment, assignment_id).analysis_status == "failed"

    def test_analyze_rejects_non_string_concepts(self, client, auth_headers, agent):
        """key_concepts must be a list of strings."""
        assignment_id = upload(client, auth_headers).json()["data"]["assignment"]["id"]
        agent.analysis_reply = '{"core_milestones": [{"title": "Trace calls", "key_concepts": {"name": "recursion"}}]}'

        response = client.post("/api/v1/assignments/analyze", headers=auth_headers, json={"assignment_id": assignment_id})
        assert response.status_code == 500
        assert "key_concepts" in response.json()["detail"]["message"]

    def test_analyze_transforms_agent_output(self, client, auth_headers, agent):
        """Well-formed agent JSON becomes scored milestones and concepts."""
        assignment_id = upload(client, auth_headers).json()["data"]["assignment"]["id"]
        agent.analysis_reply = (
            '{"core_milestones": [{"title": "Trace calls", "type": "concept", "key_concepts": ["recursion"]},'
            ' {"title": "Implement factorial", "type": "code", "key_concepts": ["recursion", "base case"]}],'
            ' "languages": ["Python"], "difficulty_score": 3}'
        )

        response = client.post("/api/v1/assignments/analyze", headers=auth_headers, json={"assignment_id": assignment_id})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["analysis"]["concepts"] == ["recursion", "base case"]
        assert [m["points_reward"] for m in data["pathway"]["milestones"]] == [10, 17]

    def test_analyze_other_users_assignment(self, client, auth_headers, other_user):
        """Another user's assignment is forbidden."""
        assignment_id = upload(client, auth_headers).json()["data"]["assignment"]["id"]
        response = client.post(
            "/api/v1/assignments/analyze",
            headers=headers_for(other_user),
            json={"assignment_id": assignment_id},
        )
        assert response.status_code == 403


class TestAssignmentQueries:
    """Tests for listing, reading and deleting assignments."""

    def test_list_and_get(self, client, auth_headers, analyzed_assignment):
        """Listing and detail include the analysis and milestones."""
        listing = client.get("/api/v1/assignments", headers=auth_headers).json()["data"]
        assert listing["total"] == 1

        assignment_id = analyzed_assignment["assignment"]["id"]
        detail = client.get(f"/api/v1/assignments/{assignment_id}", headers=auth_headers).json()["data"]
        assert detail["analysis"]["languages"] == ["Python"]
        assert len(detail["milestones"]) == 2

    def test_get_missing_assignment(self, client, auth_headers):
        """Unknown assignments give 404."""
        assert client.get("/api/v1/assignments/999", headers=auth_headers).status_code == 404

    def test_delete_requires_matching_title(self, client, auth_headers, analyzed_assignment):
        """The typed title must match exactly."""
        assignment_id = analyzed_assignment["assignment"]["id"]
        response = client.post(
            f"/api/v1/assignments/{assignment_id}/delete",
            headers=auth_headers,
            json={"confirmation_title": "recursion lab"},
        )
        assert response.status_code == 400

    def test_delete_assignment(self, client, auth_headers, analyzed_assignment):
        """A confirmed delete removes the assignment."""
        assignment_id = analyzed_assignment["assignment"]["id"]
        response = client.post(
            f"/api/v1/assignments/{assignment_id}/delete",
            headers=auth_headers,
            json={"confirmation_title": "Recursion Lab"},
        )
        assert response.status_code == 200
        assert client.get(f"/api/v1/assignments/{assignment_id}", headers=auth_headers).status_code == 404


class TestMilestoneAttempts:
    """Tests for /milestones."""

    def test_get_milestone(self, client, auth_headers, analyzed_assignment):
        """Milestone detail includes reflection prompts and starting feedback."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        data = client.get(f"/api/v1/milestones/{milestone_id}", headers=auth_headers).json()["data"]
        assert data["assignment"]["title"] == "Recursion Lab"
        assert data["adaptive_feedback"]["level"] == "start"
        assert len(data["reflection_prompts"]) == 3

    def test_passing_attempt_unlocks_next(self, client, auth_headers, analyzed_assignment, db, user):
        """Passing completes the milestone, unlocks the next and awards points."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        response = client.post(
            f"/api/v1/milestones/{milestone_id}/attempt",
            headers=auth_headers,
            json={"answer": "Recursion calls itself until the base case stops it."},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["passed"] is True
        assert data["milestone"]["status"] == "completed"
        assert data["next_milestone"]["status"] == "available"
        assert data["points"]["points_awarded"] == 10
        assert data["attempt"]["grading_source"] == "agent"

        transaction = db.query(PointTransaction).filter(
            PointTransaction.user_id == user.id,
            PointTransaction.source_type == "milestone"
        ).one()
        assert transaction.amount == 10

    def test_second_pass_within_cooling_period_keeps_pass(self, client, auth_headers, analyzed_assignment):
        """A refused award is reported without undoing the pass."""
        first, second = [m["id"] for m in analyzed_assignment["pathway"]["milestones"]]
        client.post(f"/api/v1/milestones/{first}/attempt", headers=auth_headers, json={"answer": "Base case first."})

        data = client.post(
            f"/api/v1/milestones/{second}/attempt",
            headers=auth_headers,
            json={"answer": "def fact(n): return 1 if n == 0 else n * fact(n - 1)"},
        ).json()["data"]
        assert data["passed"] is True
        assert data["points"] is None
        assert "wait" in data["points_error"]

    def test_failed_attempt(self, client, auth_headers, analyzed_assignment, agent):
        """A failing grade leaves the milestone in progress."""
        agent.pass_grades = False
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        data = client.post(
            f"/api/v1/milestones/{milestone_id}/attempt",
            headers=auth_headers,
            json={"answer": "I am not sure."},
        ).json()["data"]
        assert data["passed"] is False
        assert data["milestone"]["status"] == "in_progress"
        assert data["points"] is None

    def test_locked_milestone(self, client, auth_headers, analyzed_assignment):
        """Locked milestones cannot be attempted."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][1]["id"]
        response = client.post(
            f"/api/v1/milestones/{milestone_id}/attempt",
            headers=auth_headers,
            json={"answer": "Trying to skip ahead."},
        )
        assert response.status_code == 403

    def test_completed_milestone(self, client, auth_headers, analyzed_assignment):
        """A completed milestone cannot be attempted again."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})
        response = client.post(
            f"/api/v1/milestones/{milestone_id}/attempt",
            headers=auth_headers,
            json={"answer": "Again."},
        )
        assert response.status_code == 400

    def test_empty_answer(self, client, auth_headers, analyzed_assignment):
        """Blank answers are rejected."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        response = client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "  "})
        assert response.status_code == 400

    def test_rule_based_grading_when_agent_fails(self, client, auth_headers, analyzed_assignment, agent):
        """Without the agent, answers are graded by keyword rules."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        agent.fail = True
        answer = (
            "Recursion means a function calls itself on a smaller input. Every recursive "
            "function needs a base case that stops the calls, otherwise it never returns."
        )
        data = client.post(
            f"/api/v1/milestones/{milestone_id}/attempt",
            headers=auth_headers,
            json={"answer": answer},
        ).json()["data"]
        assert data["attempt"]["grading_source"] == "rules"
        assert "recursion" in data["attempt"]["feedback"]["concepts_identified"]
