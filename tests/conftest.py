"""Shared fixtures: in-memory database, test client and a scripted AI agent."""

import os

os.environ["TESTING"] = "True"

import pytest
from fastapi.testclient import TestClient

from milestack.core.config import settings
from milestack.core.database import DatabaseManager, SessionLocal
from milestack.core.security import create_access_token, get_password_hash
from milestack.main import app
from milestack.models.user import User
from milestack.services.ai_agent import AIAgentClient, AIAgentError, extract_json, get_ai_agent


PASSWORD = "Password123!"


class FakeAIAgent:
    """Stands in for the external agent with predictable answers."""

    def __init__(self):
        self.fail = False
        self.pass_grades = True
        self.questions = []
        self.analysis_reply = None

    async def analyze_assignment(self, title, user_id, course_name=None, description=None, extracted_text=None):
        if self.fail:
            raise AIAgentError("Agent unavailable")
        if self.analysis_reply is not None:
            return AIAgentClient().parse_analysis(extract_json(self.analysis_reply))
        return {
            "concepts": ["recursion", "base case"],
            "languages": ["Python"],
            "difficulty": 4,
            "prerequisites": ["functions"],
            "estimated_hours": 3.0,
            "learning_gaps": [],
            "milestones": [
                {
                    "title": "Understand recursion",
                    "description": "Explain how a recursive function reaches its base case",
                    "competency_check": "Explain your understanding and approach",
                    "points_reward": 10,
                },
                {
                    "title": "Write the recursive solution",
                    "description": "Implement the solution with a clear base case",
                    "competency_check": "Demonstrate working code that solves the problem",
                    "points_reward": 15,
                },
            ],
        }

    async def grade_milestone(self, assignment_title, milestone_title, competency_requirement,
                              expected_concepts, answer, attempt_number, user_id):
        if self.fail:
            raise AIAgentError("Agent unavailable")
        if self.pass_grades:
            return {
                "context_relevance_score": 90,
                "understanding_depth_score": 85,
                "completeness_score": 80,
                "final_score": 86,
                "passed": True,
                "improvement_suggestions": [],
            }
        return {
            "context_relevance_score": 40,
            "understanding_depth_score": 50,
            "completeness_score": 30,
            "final_score": 41,
            "passed": False,
            "improvement_suggestions": ["Relate your answer to recursion"],
        }

    async def ask(self, prompt, user_id, session_id=None):
        if self.fail:
            raise AIAgentError("Agent unavailable")
        self.questions.append(prompt)
        return "Think about what happens when the input is smallest."


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    """Fresh schema, seed data and file directories for every test."""
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "EXPORT_DIR", str(tmp_path / "exports"))

    DatabaseManager.reset_database()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def agent():
    fake = FakeAIAgent()
    app.dependency_overrides[get_ai_agent] = lambda: fake
    return fake


@pytest.fixture
def client(agent):
    return TestClient(app)


def make_user(db, email="student@milestack.dev", first_name="Ada", last_name="Lovelace", **kwargs):
    user = User(
        email=email,
        hashed_password=get_password_hash(PASSWORD),
        first_name=first_name,
        last_name=last_name,
        is_active=True,
        is_email_verified=True,
        terms_accepted=True,
        privacy_accepted=True,
        **kwargs
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def headers_for(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture
def user(db):
    return make_user(db)


@pytest.fixture
def auth_headers(user):
    return headers_for(user)


@pytest.fixture
def other_user(db):
    return make_user(db, email="grace@milestack.dev", first_name="Grace", last_name="Hopper")


@pytest.fixture
def admin_headers(db):
    admin = db.query(User).filter(User.email == settings.FIRST_ADMIN_EMAIL).first()
    return headers_for(admin)


@pytest.fixture
def grant_points(db):
    """Credit points straight into the ledger, bypassing earn limits."""
    from milestack.services.points import points_service

    def grant(user, amount):
        points_service.credit_achievement(db, user.id, amount, "Test credit", "test")
        db.commit()

    return grant


@pytest.fixture
def analyzed_assignment(client, auth_headers):
    """Upload and analyze an assignment; returns the analyze payload."""
    response = client.post(
        "/api/v1/assignments/upload",
        headers=auth_headers,
        data={"title": "Recursion Lab", "course_name": "CS 101"},
        files={"file": ("lab.txt", b"Write a recursive factorial function.", "text/plain")},
    )
    assert response.status_code == 201
    assignment_id = response.json()["data"]["assignment"]["id"]

    response = client.post(
        "/api/v1/assignments/analyze",
        headers=auth_headers,
        json={"assignment_id": assignment_id},
    )
    assert response.status_code == 200
    return response.json()["data"]
