"""Tests for the progress endpoints and periodic cleanup."""

from datetime import datetime, timedelta

from soun.cleanup import purge_stale_state
from soun.models import AuthSession, QuizSession
from soun.services import flashcards, mastery
from soun.services.flashcards import Flashcard
from soun.services.semantic_memory import semantic_memory


class TestMasteryEndpoints:
    """Tests for /api/user/mastery and /api/user/mastery-stats."""

    def test_empty_stats(self, client, auth_headers):
        data = client.get("/api/user/mastery-stats", headers=auth_headers).json()
        assert data == {"overall_mastery": 0, "topics_studied": 0, "total_questions": 0, "correct_answers": 0}

    def test_mastery_grouped_by_course(self, client, auth_headers, course, db, user_id):
        mastery.record_answer(db, user_id, "loops", "CS101", True)
        mastery.record_answer(db, user_id, "loops", "CS101", True)
        mastery.record_answer(db, user_id, "cells", None, False)
        data = client.get("/api/user/mastery", headers=auth_headers).json()
        names = {c["course_id"]: c["course_name"] for c in data["courses"]}
        assert names == {"CS101": "Intro to Computer Science", "general": "General"}
        assert data["most_studied_course"] == "Intro to Computer Science"
        assert data["topics_studied"] == 2

    def test_stats_with_voice_activity(self, client, auth_headers, db, user_id):
        mastery.record_answer(db, user_id, "loops", None, True)
        client.post("/api/voice/process", json={"command": "go to dashboard"}, headers=auth_headers)
        data = client.get("/api/user/mastery-stats", headers=auth_headers).json()
        assert data["topics_studied"] == 1
        assert data["avg_accuracy"] == 100
        vocal = next(f for f in data["improvement_factors"]["factors"] if f["factor"] == "Active Recall & Vocal Learning")
        assert vocal["current"] == 5


class TestOverview:
    """Tests for dashboard summaries."""

    def test_curriculum_overview(self, client, auth_headers):
        client.post(
            "/api/courses", json={"course_id": "PH1", "name": "Physics", "semester": "Spring", "year": 2025, "credits": 3},
            headers=auth_headers,
        )
        client.post("/api/courses", json={"course_id": "AR1", "name": "Art"}, headers=auth_headers)
        data = client.get("/api/curriculum-overview", headers=auth_headers).json()
        assert data["total_courses"] == 2
        assert data["total_credits"] == 3
        assert "Spring 2025" in data["semesters"]
        assert "Unscheduled" in data["semesters"]

    def test_recent_activity(self, client, auth_headers, course):
        data = client.get("/api/user/recent-activity", headers=auth_headers).json()
        assert data["courses"][0]["document_count"] == 0
        assert data["recent_documents"] == []


class TestCleanup:
    """Tests for the periodic purge of stale state."""

    def test_purges_everything_stale(self, db, user_id):
        now = datetime.utcnow()
        db.add(AuthSession(session_id="old", user_id=user_id, last_activity_at=now - timedelta(days=8)))
        db.add(QuizSession(user_id=user_id, start_time=now - timedelta(days=2)))
        db.add(QuizSession(user_id=user_id, start_time=now))
        db.commit()
        semantic_memory.update_conversation(db, user_id, "s", "hello", "hi")
        semantic_memory._flows[f"{user_id}-s"][-1].timestamp = now - timedelta(days=2)

        counts = purge_stale_state(db, now)

        assert counts["auth_sessions"] == 1
        assert counts["quiz_sessions"] == 1
        assert counts["conversation_flows"] == 1
        assert db.get(AuthSession, "old") is None
        statuses = sorted(s.status for s in db.query(QuizSession).all())
        assert statuses == ["abandoned", "in_progress"]

    def test_keeps_live_flashcard_sessions(self, db):
        flashcards.start_session(1, [Flashcard(id="c", front="f", back="b")])
        assert purge_stale_state(db)["flashcard_sessions"] == 0
