"""Tests for learning pathways and their checkpoints."""

import pytest

from milestack.models.points import PointTransaction
from milestack.services.grading import grading_service


GOOD_EXPLANATION = (
    "A recursive function uses the call stack for every call. The base case stops the recursion. "
    "Each call reduces the input size until the base case returns a value."
)

PATHWAY = {
    "title": "Recursion Fundamentals",
    "description": "From the call stack to divide and conquer",
    "category": "algorithms",
    "difficulty": "beginner",
    "estimated_duration": 90,
    "tags": ["recursion"],
    "checkpoints": [
        {
            "title": "Explain the call stack",
            "type": "concept-explanation",
            "points": 20,
            "max_attempts": 2,
            "passing_score": 80,
            "content": {"expected_concepts": ["stack", "base case"]},
        },
        {
            "title": "Quick quiz",
            "type": "skill-assessment",
            "points": 10,
            "content": {
                "questions": [
                    {"id": "q1", "type": "multiple-choice", "correct_answer": "B", "points": 10},
                ]
            },
        },
    ],
}


@pytest.fixture
def pathway(client, admin_headers):
    response = client.post("/api/v1/pathways", headers=admin_headers, json=PATHWAY)
    assert response.status_code == 201
    return response.json()["data"]["pathway"]


class TestPathwayCatalogue:
    """Tests for listing and managing pathways."""

    def test_create_pathway_orders_checkpoints(self, pathway):
        """Checkpoints are numbered in order and points are totalled."""
        assert [c["order_index"] for c in pathway["checkpoints"]] == [1, 2]
        assert pathway["total_points"] == 30

    def test_create_pathway_requires_admin(self, client, auth_headers):
        """Students cannot create pathways."""
        response = client.post("/api/v1/pathways", headers=auth_headers, json=PATHWAY)
        assert response.status_code == 403

    def test_list_pathways_with_pagination(self, client, auth_headers, pathway):
        """Listing reports pagination and the caller's progress."""
        data = client.get("/api/v1/pathways", headers=auth_headers).json()["data"]
        assert data["pagination"] == {"page": 1, "limit": 20, "total": 1, "pages": 1}
        assert data["pathways"][0]["user_progress"] is None

    def test_list_pathways_filters(self, client, auth_headers, admin_headers, pathway):
        """Category, difficulty and search filters narrow the list."""
        client.post(
            "/api/v1/pathways",
            headers=admin_headers,
            json={**PATHWAY, "title": "Advanced Graphs", "category": "data-structures", "difficulty": "advanced"},
        )

        by_category = client.get("/api/v1/pathways", headers=auth_headers, params={"category": "data-structures"})
        assert [p["title"] for p in by_category.json()["data"]["pathways"]] == ["Advanced Graphs"]

        by_search = client.get("/api/v1/pathways", headers=auth_headers, params={"search": "recursion"})
        assert [p["title"] for p in by_search.json()["data"]["pathways"]] == ["Recursion Fundamentals"]

        by_difficulty = client.get(
            "/api/v1/pathways", headers=auth_headers, params={"sort_by": "difficulty", "sort_order": "asc"}
        )
        assert [p["difficulty"] for p in by_difficulty.json()["data"]["pathways"]] == ["beginner", "advanced"]

    def test_list_pathways_invalid_sort(self, client, auth_headers):
        """Unknown sort fields are rejected."""
        response = client.get("/api/v1/pathways", headers=auth_headers, params={"sort_by": "popularity"})
        assert response.status_code == 400

    def test_update_and_deactivate(self, client, auth_headers, admin_headers, pathway):
        """Admins can update and deactivate a pathway."""
        response = client.put(
            f"/api/v1/pathways/{pathway['id']}", headers=admin_headers, json={"title": "Recursion 101"}
        )
        assert response.json()["data"]["pathway"]["title"] == "Recursion 101"

        client.delete(f"/api/v1/pathways/{pathway['id']}", headers=admin_headers)
        assert client.get(f"/api/v1/pathways/{pathway['id']}", headers=auth_headers).status_code == 404

    def test_start_pathway(self, client, auth_headers, pathway):
        """Recording progress starts the pathway at its first checkpoint."""
        response = client.post(
            f"/api/v1/pathways/{pathway['id']}/progress", headers=auth_headers, json={"time_spent": 120}
        )
        progress = response.json()["data"]["progress"]
        assert progress["time_spent"] == 120
        assert progress["current_checkpoint_id"] == pathway["checkpoints"][0]["id"]


class TestCheckpointAttempts:
    """Tests for /checkpoints."""

    def test_pass_concept_explanation(self, client, auth_headers, pathway, db, user):
        """Passing awards points under the matching category and topic."""
        checkpoint = pathway["checkpoints"][0]
        response = client.post(
            f"/api/v1/checkpoints/{checkpoint['id']}/attempt",
            headers=auth_headers,
            json={"responses": {"explanation": GOOD_EXPLANATION}, "time_spent": 60},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["passed"] is True
        assert data["points"]["points_awarded"] == 20
        assert data["progress"]["completed_checkpoints"] == 1
        assert data["progress"]["current_checkpoint_id"] == pathway["checkpoints"][1]["id"]

        transaction = db.query(PointTransaction).filter(
            PointTransaction.user_id == user.id,
            PointTransaction.source_type == "checkpoint"
        ).one()
        assert transaction.category == "concept-explanation"
        assert transaction.topic == "algorithms"

    def test_failed_attempt_and_retry_limit(self, client, auth_headers, pathway):
        """Failing uses up attempts until the maximum is reached."""
        checkpoint = pathway["checkpoints"][0]
        url = f"/api/v1/checkpoints/{checkpoint['id']}/attempt"

        first = client.post(url, headers=auth_headers, json={"responses": {"explanation": "Not sure"}}).json()["data"]
        assert first["passed"] is False
        assert first["attempts_remaining"] == 1

        client.post(url, headers=auth_headers, json={"responses": {"explanation": "Still not sure"}})
        response = client.post(url, headers=auth_headers, json={"responses": {"explanation": GOOD_EXPLANATION}})
        assert response.status_code == 400
        assert response.json()["detail"] == "Maximum attempts exceeded"

        detail = client.get(f"/api/v1/checkpoints/{checkpoint['id']}", headers=auth_headers).json()["data"]
        assert detail["can_retry"] is False
        assert detail["total_attempts"] == 2

    def test_cannot_repeat_passed_checkpoint(self, client, auth_headers, pathway):
        """A passed checkpoint cannot be attempted again."""
        url = f"/api/v1/checkpoints/{pathway['checkpoints'][0]['id']}/attempt"
        client.post(url, headers=auth_headers, json={"responses": {"explanation": GOOD_EXPLANATION}})
        response = client.post(url, headers=auth_headers, json={"responses": {"explanation": GOOD_EXPLANATION}})
        assert response.status_code == 400
        assert response.json()["detail"] == "Checkpoint already passed"

    def test_skill_assessment(self, client, auth_headers, pathway):
        """Multiple choice answers are compared case-insensitively."""
        url = f"/api/v1/checkpoints/{pathway['checkpoints'][1]['id']}/attempt"
        data = client.post(url, headers=auth_headers, json={"responses": {"q1": "b"}}).json()["data"]
        assert data["score"] == 100
        assert data["passed"] is True

    def test_responses_required(self, client, auth_headers, pathway):
        """Empty responses are rejected."""
        url = f"/api/v1/checkpoints/{pathway['checkpoints'][0]['id']}/attempt"
        assert client.post(url, headers=auth_headers, json={"responses": {}}).status_code == 400

    def test_feedback_summary(self, client, auth_headers, pathway):
        """Feedback reports score trend and next steps."""
        checkpoint_id = pathway["checkpoints"][0]["id"]
        url = f"/api/v1/checkpoints/{checkpoint_id}/attempt"
        client.post(url, headers=auth_headers, json={"responses": {"explanation": "Not sure"}})
        client.post(url, headers=auth_headers, json={"responses": {"explanation": GOOD_EXPLANATION}})

        data = client.get(f"/api/v1/checkpoints/{checkpoint_id}/feedback", headers=auth_headers).json()["data"]
        assert data["best_score"] == 100
        assert data["improvement"] == 70
        assert data["next_steps"][0] == "Move on to the next checkpoint"

    def test_missing_checkpoint(self, client, auth_headers):
        """Unknown checkpoints give 404."""
        assert client.get("/api/v1/checkpoints/999", headers=auth_headers).status_code == 404


class TestSkillAssessmentScoring:
    """Tests for grading_service on code questions."""

    def test_code_answers_score_raw_points_up_to_the_question_value(self):
        """Code heuristics award their raw score, capped at the question's points."""
        content = {
            "questions": [
                {"id": "q1", "type": "code-completion", "points": 10},
                {"id": "q2", "type": "code-completion", "points": 40},
                {"id": "q3", "type": "practical-implementation", "points": 50},
            ]
        }
        responses = {"q1": "x = 1", "q2": "x = 1", "q3": "x = 1"}

        result = grading_service.grade_checkpoint("skill-assessment", content, responses, passing_score=70)

        scores = [q["score"] for q in result["analysis"]["questions"]]
        assert scores == [10, 20, 30]
        assert result["analysis"]["total"] == 60
        assert result["score"] == 60
        assert result["passed"] is False

    def test_fuller_code_answer_fills_the_question(self):
        """A function with a return reaches the cap of a larger question."""
        content = {"questions": [{"id": "q1", "type": "code-completion", "points": 40}]}
        responses = {"q1": "def double(n):\n    return n * 2"}

        result = grading_service.grade_checkpoint("skill-assessment", content, responses, passing_score=70)
        assert result["analysis"]["questions"][0]["score"] == 40
        assert result["passed"] is True
