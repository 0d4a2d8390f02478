"""Tests for adaptive learning paths."""

import pytest

from soun.models import StudyLevel
from soun.services import mastery
from soun.services.learning_path import learning_paths, learning_velocity, preferred_difficulty, vocal_strategies
from soun.services.semantic_memory import semantic_memory


@pytest.fixture
def history(db, user_id, client, auth_headers):
    """A struggle, a mastered topic, a half-learned topic and a missing prerequisite."""
    client.post(
        "/api/courses",
        json={"course_id": "CS201", "name": "Data Structures", "prerequisites": ["MATH100"]},
        headers=auth_headers,
    )
    semantic_memory.record_struggle(db, user_id, "recursion", severity=5)
    mastery.upsert_study_level(db, user_id, "loops", mastery=90)
    mastery.upsert_study_level(db, user_id, "arrays", mastery=62)


class TestHelpers:
    """Pure helpers."""

    def test_velocity(self):
        assert learning_velocity([]) == 1
        assert learning_velocity([StudyLevel(mastery_level=85) for _ in range(8)]) == 2

    def test_preferred_difficulty(self):
        assert preferred_difficulty([]) == "beginner"
        assert preferred_difficulty([StudyLevel(mastery_level=90)]) == "advanced"
        assert preferred_difficulty([StudyLevel(mastery_level=72)]) == "intermediate"

    def test_vocal_strategies(self):
        assert vocal_strategies("Physics")[0]["strategy"] == "Phenomenon Description"
        assert vocal_strategies("history")[0]["strategy"] == "Verbal Teaching"


class TestGenerate:
    """Path construction from the learner's state."""

    def test_steps_ordered_by_priority(self, db, user_id, history):
        path = learning_paths.generate(db, user_id)
        priorities = [s.priority for s in path.steps]
        assert priorities == sorted(priorities)
        assert path.steps[0].topic == "recursion"
        assert path.steps[0].adaptive_reason == "weakness_detected"
        topics = [s.topic for s in path.steps]
        assert "MATH100" in topics
        assert "Advanced loops" in topics
        assert "arrays" in topics
        assert path.total_estimated_time == sum(s.estimated_time for s in path.steps)
        assert path.insights["struggling_topics"] == ["recursion"]
        assert path.title == "Personalized Learning Journey"

    def test_empty_history(self, db, user_id):
        path = learning_paths.generate(db, user_id)
        assert path.steps == []
        assert path.insights["preferred_difficulty"] == "beginner"

    def test_vocal_practice_for_practice_heavy_course(self, client, auth_headers, db, user_id):
        client.post("/api/courses", json={"course_id": "CS101", "name": "Intro to Computer Science"}, headers=auth_headers)
        semantic_memory.record_struggle(db, user_id, "pointers", "CS101")
        path = learning_paths.generate(db, user_id, "CS101")
        assert path.title == "Adaptive Learning Path - CS101"
        assert "We'll use vocal techniques" in path.steps[0].reason
        assert any(s.topic == "Vocal Practice: Algorithm Explanation" for s in path.steps)

    def test_adaptive_endpoint(self, client, auth_headers, history):
        data = client.get("/api/learning-path/adaptive", headers=auth_headers).json()
        assert data["steps"][0]["priority"] == 1
        assert data["user_id"] == client.get("/api/auth/me", headers=auth_headers).json()["id"]


class TestCompleteStep:
    """Adapting the path after a step."""

    def test_struggling_inserts_review(self, client, auth_headers, history):
        path = client.get("/api/learning-path/adaptive", headers=auth_headers).json()
        step_id = path["steps"][0]["id"]
        data = client.post(
            "/api/learning-path/complete-step",
            json={"step_id": step_id, "performance": "struggling"},
            headers=auth_headers,
        ).json()
        updated = data["updated_path"]
        assert data["success"] is True
        assert updated["steps"][0]["topic"] == "recursion - Fundamentals Review"
        assert step_id in updated["completed_steps"]

    def test_excellent_adds_advanced_step(self, client, auth_headers, db, user_id):
        data = client.post(
            "/api/learning-path/complete-step",
            json={"step_id": "external", "topic": "graphs", "performance": "excellent"},
            headers=auth_headers,
        ).json()
        assert data["updated_path"]["steps"][-1]["topic"] == "Advanced graphs Applications"
        level = db.query(StudyLevel).filter_by(user_id=user_id, topic="graphs").one()
        assert level.mastery_level == 75

    def test_invalid_performance(self, client, auth_headers):
        response = client.post(
            "/api/learning-path/complete-step",
            json={"step_id": "x", "performance": "meh"},
            headers=auth_headers,
        )
        assert response.status_code == 400


class TestNextStep:
    """Picking the next step."""

    def test_context_match(self, client, auth_headers, history):
        data = client.get("/api/learning-path/next-step?context=loops", headers=auth_headers).json()
        assert data["has_next"] is True
        assert data["next_step"]["topic"] == "Advanced loops"

    def test_first_remaining(self, client, auth_headers, history):
        data = client.get("/api/learning-path/next-step", headers=auth_headers).json()
        assert data["next_step"]["topic"] == "recursion"

    def test_nothing_to_do(self, client, auth_headers):
        data = client.get("/api/learning-path/next-step", headers=auth_headers).json()
        assert data == {"next_step": None, "has_next": False}

    def test_combined(self, client, auth_headers, history):
        data = client.get("/api/learning-path/combined", headers=auth_headers).json()
        assert data["struggles"][0]["topic"] == "recursion"
        assert data["mastery"]["topics_studied"] == 3
