"""Tests for the points economy, achievements and leaderboard."""

from datetime import datetime, timedelta

from milestack.core.config import settings
from milestack.models.assignment import AssignmentAnalysis
from milestack.models.points import FraudDetectionLog, PointTransaction
from milestack.models.user import User
from milestack.services.achievements import achievements_service
from milestack.services.points import points_service

from conftest import headers_for


EARN = {"amount": 10, "category": "concept-explanation", "reason": "Explained recursion", "quality_score": 85}

ALGORITHMS_PATHWAY = {
    "title": "Sorting Basics",
    "description": "Comparison sorts and their invariants",
    "category": "algorithms",
    "difficulty": "beginner",
    "estimated_duration": 60,
    "tags": ["sorting"],
    "checkpoints": [
        {
            "title": "Explain the call stack",
            "type": "concept-explanation",
            "points": 20,
            "passing_score": 80,
            "content": {"expected_concepts": ["stack", "base case"]},
        },
    ],
}

GOOD_EXPLANATION = (
    "A recursive function uses the call stack for every call. The base case stops the recursion. "
    "Each call reduces the input size until the base case returns a value."
)


def earned(user_id, category, amount=10):
    return PointTransaction(
        user_id=user_id,
        amount=amount,
        transaction_type="earned",
        category=category,
        reason="Recorded activity",
    )


class TestEarnAndSpend:
    """Tests for /points."""

    def test_new_balance_is_empty(self, client, auth_headers):
        """A new user starts with the full daily allowance."""
        data = client.get("/api/v1/points/balance", headers=auth_headers).json()["data"]
        assert data["current_balance"] == 0
        assert data["remaining_today"] == settings.DAILY_POINT_LIMIT
        assert data["can_earn_more"] is True

    def test_earn_points(self, client, auth_headers):
        """Earning credits the balance and the daily total."""
        data = client.post("/api/v1/points/earn", headers=auth_headers, json=EARN).json()["data"]
        assert data["points_awarded"] == 10
        assert data["new_balance"] == 10

        balance = client.get("/api/v1/points/balance", headers=auth_headers).json()["data"]
        assert balance["daily_earned"] == 10

    def test_cooling_period(self, client, auth_headers):
        """A second award within the cooling period is refused."""
        client.post("/api/v1/points/earn", headers=auth_headers, json=EARN)
        response = client.post("/api/v1/points/earn", headers=auth_headers, json=EARN)
        assert response.status_code == 400
        assert "wait" in response.json()["detail"]

    def test_low_quality_refused(self, client, auth_headers):
        """Quality below the minimum earns nothing."""
        response = client.post("/api/v1/points/earn", headers=auth_headers, json={**EARN, "quality_score": 60})
        assert response.status_code == 400
        assert response.json()["detail"] == "Quality score too low to earn points"

    def test_daily_limit(self, client, auth_headers):
        """Requests above the remaining allowance are refused."""
        response = client.post("/api/v1/points/earn", headers=auth_headers, json={**EARN, "amount": 150})
        assert response.status_code == 400
        assert "Remaining: 100" in response.json()["detail"]

    def test_fraud_scoring(self, db, user):
        """Very low quality raises the risk score to review."""
        result = points_service.detect_fraud(db, user.id, "concept-explanation", quality_score=30)
        assert result["flags"] == ["low_quality_score"]
        assert result["risk_score"] == 20
        assert result["action"] == "review"

    def test_blocked_award_is_logged(self, client, auth_headers, db, user, monkeypatch):
        """A blocked award answers 403 and leaves a fraud log."""
        monkeypatch.setattr(points_service, "BLOCK_THRESHOLD", 20)
        response = client.post("/api/v1/points/earn", headers=auth_headers, json={**EARN, "quality_score": 30})
        assert response.status_code == 403

        log = db.query(FraudDetectionLog).filter(FraudDetectionLog.user_id == user.id).one()
        assert log.action_taken == "block"

    def test_invalid_category(self, client, auth_headers):
        """Unknown earn categories fail validation."""
        response = client.post("/api/v1/points/earn", headers=auth_headers, json={**EARN, "category": "gaming"})
        assert response.status_code == 422

    def test_spend_points(self, client, auth_headers, user, grant_points):
        """Spending debits the balance."""
        grant_points(user, 40)
        response = client.post(
            "/api/v1/points/spend",
            headers=auth_headers,
            json={"amount": 15, "category": "pseudocode-guidance", "reason": "Level 2 hint"},
        )
        assert response.json()["data"]["new_balance"] == 25

    def test_spend_insufficient(self, client, auth_headers):
        """Spending more than the balance is refused."""
        response = client.post(
            "/api/v1/points/spend",
            headers=auth_headers,
            json={"amount": 5, "category": "conceptual-hints", "reason": "Hint"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient points balance"

    def test_history_filter(self, client, auth_headers, user, grant_points):
        """History can be filtered by transaction type."""
        grant_points(user, 40)
        client.post(
            "/api/v1/points/spend",
            headers=auth_headers,
            json={"amount": 5, "category": "conceptual-hints", "reason": "Hint"},
        )

        spent = client.get("/api/v1/points/history", headers=auth_headers, params={"type": "spent"}).json()["data"]
        assert spent["total"] == 1
        assert spent["transactions"][0]["amount"] == -5

        everything = client.get("/api/v1/points/history", headers=auth_headers).json()["data"]
        assert everything["total"] == 2

    def test_points_analytics(self, client, auth_headers, user, grant_points):
        """Analytics totals earned and spent points."""
        grant_points(user, 40)
        client.post(
            "/api/v1/points/spend",
            headers=auth_headers,
            json={"amount": 5, "category": "conceptual-hints", "reason": "Hint"},
        )
        data = client.get("/api/v1/analytics/points", headers=auth_headers).json()["data"]
        assert data["total_earned"] == 40
        assert data["total_spent"] == 5
        assert data["net"] == 35


class TestAchievements:
    """Tests for /achievements."""

    def test_list_templates_with_progress(self, client, auth_headers):
        """Seeded templates are listed as locked."""
        data = client.get("/api/v1/achievements", headers=auth_headers).json()["data"]
        assert data["total"] > 0
        assert data["unlocked"] == 0

    def test_check_unlocks_points_achievement(self, client, auth_headers, user, grant_points):
        """Reaching a points target unlocks and pays the achievement once."""
        grant_points(user, 1000)

        data = client.post("/api/v1/achievements/check", headers=auth_headers).json()["data"]
        assert [a["id"] for a in data["new_achievements"]] == ["points_1000"]
        assert data["points_awarded"] == 50

        again = client.post("/api/v1/achievements/check", headers=auth_headers).json()["data"]
        assert again["count"] == 0

    def test_achievement_analytics(self, client, auth_headers, user, grant_points):
        """Analytics group unlocks by category."""
        grant_points(user, 1000)
        client.post("/api/v1/achievements/check", headers=auth_headers)

        data = client.get("/api/v1/analytics/achievements", headers=auth_headers).json()["data"]
        assert data["unlocked"] == 1
        assert data["points_from_achievements"] == 50
        assert data["by_category"]["points"]["unlocked"] == 1

    def test_init_requires_admin(self, client, auth_headers, admin_headers):
        """Only admins can seed templates; seeding twice creates nothing."""
        assert client.post("/api/v1/achievements/init", headers=auth_headers).status_code == 403
        data = client.post("/api/v1/achievements/init", headers=admin_headers).json()["data"]
        assert data["created"] == 0


class TestAchievementProgress:
    """Tests for progress towards streak, mastery, collaboration and integrity targets."""

    def progress(self, db, user_id, criteria):
        db.expire_all()
        return achievements_service.calculate_progress(db, db.get(User, user_id), criteria)

    def test_streak_unlocks_week_warrior(self, client, auth_headers, analyzed_assignment, db, user):
        """Activity on the seventh consecutive day unlocks the 7 day streak."""
        user.last_active_date = datetime.utcnow() - timedelta(days=1)
        user.current_streak = 6
        user.longest_streak = 6
        db.commit()

        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        response = client.post(
            f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."}
        )
        unlocked = response.json()["data"]["new_achievements"]
        assert [a["id"] for a in unlocked] == ["streak_7_days"]
        assert unlocked[0]["points"] == 50

        again = client.post("/api/v1/achievements/check", headers=auth_headers).json()["data"]
        assert again["count"] == 0
        assert self.progress(db, user.id, {"type": "streak", "target": 30})["current"] == 7

    def test_mastery_counts_topic_checkpoints_and_matching_milestones(
        self, client, auth_headers, admin_headers, analyzed_assignment, db, user
    ):
        """Passed checkpoints in the topic and milestones on matching concepts both count."""
        pathway = client.post("/api/v1/pathways", headers=admin_headers, json=ALGORITHMS_PATHWAY).json()["data"]["pathway"]
        response = client.post(
            f"/api/v1/checkpoints/{pathway['checkpoints'][0]['id']}/attempt",
            headers=auth_headers,
            json={"responses": {"explanation": GOOD_EXPLANATION}},
        )
        assert response.json()["data"]["passed"] is True

        analysis = db.query(AssignmentAnalysis).filter(
            AssignmentAnalysis.assignment_id == analyzed_assignment["assignment"]["id"]
        ).one()
        analysis.concepts = ["recursion", "Divide and conquer algorithms"]
        db.commit()

        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})

        algorithms = self.progress(db, user.id, {"type": "mastery", "target": 10, "topic": "algorithms"})
        assert algorithms == {"current": 2, "target": 10, "percentage": 20}

        structures = self.progress(db, user.id, {"type": "mastery", "target": 10, "topic": "data-structures"})
        assert structures["current"] == 0

    def test_peer_help_counts_towards_collaboration(self, client, auth_headers, db, user):
        """Only earned peer-help transactions count as helping peers."""
        for _ in range(10):
            db.add(earned(user.id, "peer-help"))
        db.add(earned(user.id, "concept-explanation"))
        db.commit()

        assert self.progress(db, user.id, {"type": "collaboration", "target": 50})["current"] == 10

        data = client.post("/api/v1/achievements/check", headers=auth_headers).json()["data"]
        assert [a["id"] for a in data["new_achievements"]] == ["helper_10_peers"]

    def test_open_flag_zeroes_integrity_progress(self, client, auth_headers, analyzed_assignment, db, user):
        """An unreviewed flag holds integrity progress at zero until it is reviewed."""
        milestone_id = analyzed_assignment["pathway"]["milestones"][0]["id"]
        client.post(f"/api/v1/milestones/{milestone_id}/attempt", headers=auth_headers, json={"answer": "Base case."})
        db.add(earned(user.id, "concept-explanation"))
        db.commit()

        daily = {"type": "integrity", "target": 30, "timeframe": "daily"}
        assessments = {"type": "integrity", "target": 100}
        assert self.progress(db, user.id, daily)["current"] == 1
        assert self.progress(db, user.id, assessments)["current"] == 1

        log = FraudDetectionLog(
            user_id=user.id,
            activity_type="concept-explanation",
            risk_score=40,
            flags=["rapid_submissions"],
            action_taken="flag",
        )
        db.add(log)
        db.commit()

        assert self.progress(db, user.id, daily)["current"] == 0
        assert self.progress(db, user.id, assessments) == {"current": 0, "target": 100, "percentage": 0}

        log.reviewed = True
        db.commit()
        assert self.progress(db, user.id, assessments)["current"] == 1


class TestLeaderboard:
    """Tests for /leaderboard."""

    def test_overall_ranking(self, client, auth_headers, user, other_user, grant_points):
        """Users are ranked by earned points with the caller's rank."""
        grant_points(user, 30)
        grant_points(other_user, 80)

        data = client.get("/api/v1/leaderboard", headers=auth_headers).json()["data"]
        assert data["leaderboard"][0]["user_id"] == other_user.id
        assert data["leaderboard"][0]["rank"] == 1
        assert data["my_rank"]["rank"] == 2
        assert data["my_rank"]["points"] == 30

    def test_topic_board_only_counts_topic_points(self, client, auth_headers, user, other_user, grant_points):
        """A topic board lists only users with points in that topic."""
        grant_points(other_user, 80)
        client.post("/api/v1/points/earn", headers=auth_headers, json=EARN)

        data = client.get(
            "/api/v1/leaderboard", headers=headers_for(other_user), params={"category": "algorithms"}
        ).json()["data"]
        assert data["leaderboard"] == []
        assert data["my_rank"] is None

    def test_invalid_category(self, client, auth_headers):
        """Unknown categories are rejected."""
        response = client.get("/api/v1/leaderboard", headers=auth_headers, params={"category": "gaming"})
        assert response.status_code == 400

    def test_invalid_sort(self, client, auth_headers):
        """Unknown sort keys are rejected."""
        response = client.get("/api/v1/leaderboard", headers=auth_headers, params={"sort_by": "karma"})
        assert response.status_code == 400
