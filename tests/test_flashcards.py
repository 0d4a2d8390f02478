"""Tests for spoken flashcard sessions."""

import pytest

from soun.models import StudyLevel
from soun.services import flashcards
from soun.services.flashcards import Flashcard, simple_answer_match


def _card(front="What does CPU stand for?", back="central processing unit", category="hardware"):
    return {"id": front[:8], "front": front, "back": back, "category": category}


def _start(client, headers, cards=None, **extra):
    body = {"cards": cards or [_card()], **extra}
    return client.post("/api/flashcards/start-voice-session", json=body, headers=headers).json()


def _answer(client, headers, session_id, answer):
    return client.post(
        "/api/flashcards/process-voice-answer",
        json={"session_id": session_id, "answer": answer},
        headers=headers,
    ).json()


class TestAnswerMatching:
    """Fallback grading when the LLM is unavailable."""

    def test_exact_and_containment(self):
        assert simple_answer_match("Central Processing Unit", "central processing unit!")
        assert simple_answer_match("mitochondria", "the mitochondria")

    def test_word_overlap(self):
        assert not simple_answer_match("the quick brown fox jumps", "a slow green turtle")
        assert not simple_answer_match("answer", "")


class TestVoiceSession:
    """Tests for the session flow through the API."""

    def test_start_returns_instructions(self, client, auth_headers):
        data = _start(client, auth_headers)
        assert data["total"] == 1
        assert data["question"]["type"] == "instructions"
        assert "What does CPU stand for?" in data["question"]["content"]

    def test_correct_answer_finishes_and_records_mastery(self, client, auth_headers, db, user_id):
        session_id = _start(client, auth_headers)["session_id"]
        data = _answer(client, auth_headers, session_id, "Central processing unit")
        assert data["type"] == "feedback"
        assert data["next_action"] == "end"
        assert "1 out of 1" in data["content"]
        assert data["flashcard"] is None
        level = db.query(StudyLevel).filter_by(user_id=user_id, topic="hardware").one()
        assert level.mastery_level == 10

    def test_three_misses_reveal_answer(self, client, auth_headers):
        session_id = _start(client, auth_headers)["session_id"]
        first = _answer(client, auth_headers, session_id, "graphics card")
        assert first["next_action"] == "continue"
        assert first["flashcard"]["incorrect_count"] == 1
        _answer(client, auth_headers, session_id, "memory")
        third = _answer(client, auth_headers, session_id, "disk")
        assert "Here's how it works: central processing unit." in third["content"]

    def test_skip_counts_as_answered(self, client, auth_headers):
        cards = [_card(), _card(front="What is RAM?", back="random access memory")]
        session_id = _start(client, auth_headers, cards)["session_id"]
        data = _answer(client, auth_headers, session_id, "skip")
        assert data["content"].startswith("Skipped.")
        assert data["session_stats"]["total_answers"] == 1
        assert data["session_stats"]["correct_count"] == 0

    def test_repeat_keeps_question(self, client, auth_headers):
        session_id = _start(client, auth_headers)["session_id"]
        data = _answer(client, auth_headers, session_id, "repeat")
        assert data["type"] == "question"
        assert data["content"].startswith("Let me repeat the question")

    def test_end_session_summary(self, client, auth_headers):
        session_id = _start(client, auth_headers)["session_id"]
        data = _answer(client, auth_headers, session_id, "end session")
        assert data["type"] == "summary"
        assert "Keep studying!" in data["content"]
        assert client.get(f"/api/flashcards/session-stats/{session_id}", headers=auth_headers).status_code == 404

    def test_unknown_session(self, client, auth_headers):
        data = _answer(client, auth_headers, "missing", "anything")
        assert data["type"] == "instructions"

    def test_stats_endpoint(self, client, auth_headers):
        session_id = _start(client, auth_headers)["session_id"]
        stats = client.get(f"/api/flashcards/session-stats/{session_id}", headers=auth_headers).json()
        assert stats["current"] == 1
        assert stats["total"] == 1
        assert stats["accuracy"] == 0.0

    def test_invalid_session_type(self, client, auth_headers):
        response = client.post(
            "/api/flashcards/start-voice-session",
            json={"cards": [_card()], "session_type": "cram"},
            headers=auth_headers,
        )
        assert response.status_code == 400


class TestSummaryVerdicts:
    """End-of-session verdict by accuracy."""

    @pytest.mark.parametrize(
        "correct,total,verdict",
        [(9, 10, "Excellent work!"), (7, 10, "Good job!"), (5, 10, "Not bad!"), (2, 10, "Keep studying!")],
    )
    def test_verdicts(self, correct, total, verdict):
        session_id, _ = flashcards.start_session(1, [Flashcard(id="c", front="f", back="b")])
        session = flashcards.get_session(session_id, 1)
        session.correct_answers = correct
        session.total_answers = total
        assert verdict in flashcards.end_session(session_id)["content"]


class TestGeneration:
    """Card generation through the LLM."""

    def test_generate_from_voice(self, client, auth_headers, llm):
        llm.queue({"topic": "Photosynthesis", "flashcards": [{"question": "Where?", "answer": "chloroplast", "difficulty": "EASY"}]})
        data = client.post(
            "/api/flashcards/generate-from-voice",
            json={"transcript": "quiz me on photosynthesis", "count": 1},
            headers=auth_headers,
        ).json()
        card = data["flashcards"][0]
        assert card["front"] == "Where?"
        assert card["back"] == "chloroplast"
        assert card["difficulty"] == "easy"
        assert card["source"] == "Photosynthesis"
