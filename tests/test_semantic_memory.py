"""Tests for the per-user struggle memory."""

from datetime import datetime, timedelta

from soun.models import StudyLevel
from soun.services.semantic_memory import SemanticMemory, Struggle, detect_struggles, extract_topics


def _level(db, user_id, topic):
    return db.query(StudyLevel).filter_by(user_id=user_id, topic=topic).one()


class TestDetection:
    """Topic and confusion detection in free text."""

    def test_extract_topics(self):
        assert extract_topics('I need help with calculus and "eigenvalues"') == ["calculus", "eigenvalues"]

    def test_topics_deduplicated(self):
        assert extract_topics("physics, more physics") == ["physics"]

    def test_struggles_need_confusion(self):
        assert detect_struggles("Tell me about genetics") == []
        assert detect_struggles("I'm stuck on genetics") == ["genetics"]


class TestRecording:
    """Struggles and successes update the mastery rows."""

    def test_struggle_starts_from_seventy(self, db, user_id):
        memory = SemanticMemory()
        memory.record_struggle(db, user_id, "recursion", "CS101", severity=4)
        level = _level(db, user_id, "recursion")
        assert level.mastery_level == 66
        assert level.course_id == "CS101"

    def test_repeated_struggle_merges(self, db, user_id):
        memory = SemanticMemory()
        memory.record_struggle(db, user_id, "Recursion", severity=2)
        entry = memory.record_struggle(db, user_id, "recursion", severity=4)
        assert entry.encounter_count == 2
        assert entry.severity == 4
        assert len(memory.struggling_topics(user_id)) == 1

    def test_severity_is_clamped(self, db, user_id):
        entry = SemanticMemory().record_struggle(db, user_id, "loops", severity=9)
        assert entry.severity == 5

    def test_success_resolves_repeated_struggle(self, db, user_id):
        memory = SemanticMemory()
        memory.record_struggle(db, user_id, "loops")
        memory.record_struggle(db, user_id, "loops")
        memory.record_success(db, user_id, "loops")
        assert memory.struggling_topics(user_id) == []
        assert memory.resolved_count(user_id) == 1
        assert _level(db, user_id, "loops").mastery_level == 69

    def test_single_struggle_survives_success(self, db, user_id):
        memory = SemanticMemory()
        memory.record_struggle(db, user_id, "graphs")
        memory.record_success(db, user_id, "graphs")
        assert [s.topic for s in memory.struggling_topics(user_id)] == ["graphs"]


class TestContext:
    """Recommendations and encouragement."""

    def test_recommendations_for_severe_understanding_struggle(self):
        recs = SemanticMemory.recommendations([Struggle("calculus", None, "understanding", 5)])
        assert recs[0] == "Consider breaking down calculus into smaller concepts"
        assert len(recs) == 3

    def test_recommendations_for_retention(self):
        recs = SemanticMemory.recommendations([Struggle("dates", None, "retention", 2)])
        assert recs == [
            "Use spaced repetition to improve memory retention",
            "Create flashcards for key concepts",
        ]

    def test_no_struggles_no_recommendations(self):
        assert SemanticMemory.recommendations([]) == []

    def test_personalized_context(self, db, user_id):
        memory = SemanticMemory()
        memory.record_struggle(db, user_id, "thermodynamics", severity=3)
        context = memory.personalized_context(db, user_id, "thermo")
        assert context["struggling_topics"] == ["thermodynamics"]
        assert context["related_struggles"][0]["topic"] == "thermodynamics"
        assert context["encouragement"][0] == "Remember, struggling with difficult concepts is part of learning"


class TestConversation:
    """Conversation flows and their cleanup."""

    def test_update_records_struggles(self, db, user_id):
        memory = SemanticMemory()
        found = memory.update_conversation(db, user_id, "s1", "I'm confused about algebra", "Let's go step by step.")
        assert found == ["algebra"]
        assert memory.conversation(user_id, "s1")[0].topics == ["algebra"]
        assert memory.struggling_topics(user_id)[0].context["session_id"] == "s1"

    def test_cleanup_drops_idle_flows(self, db, user_id):
        memory = SemanticMemory()
        memory.update_conversation(db, user_id, "old", "hello", "hi")
        memory.update_conversation(db, user_id, "new", "hello", "hi")
        memory._flows[f"{user_id}-old"][-1].timestamp = datetime.utcnow() - timedelta(days=2)
        assert memory.cleanup() == 1
        assert memory.conversation(user_id, "old") == []
        assert len(memory.conversation(user_id, "new")) == 1
