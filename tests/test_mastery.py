"""Tests for mastery bookkeeping and derived statistics."""

from datetime import datetime, timedelta

from soun.models import StudyLevel
from soun.services import mastery


class TestClamp:
    """Mastery always stays inside 0-100."""

    def test_clamp_bounds(self):
        assert mastery.clamp_mastery(-12) == 0
        assert mastery.clamp_mastery(130) == 100
        assert mastery.clamp_mastery(55.4) == 55


class TestRecordAnswer:
    """Tests for quiz-driven mastery steps."""

    def test_correct_and_incorrect_steps(self, db, user_id):
        mastery.record_answer(db, user_id, "recursion", "CS101", True)
        mastery.record_answer(db, user_id, "recursion", "CS101", True)
        row = mastery.record_answer(db, user_id, "recursion", "CS101", False)
        assert row.mastery_level == 15
        assert row.questions_attempted == 3
        assert row.questions_correct == 2

    def test_never_below_zero(self, db, user_id):
        row = mastery.record_answer(db, user_id, "graphs", "CS101", False)
        assert row.mastery_level == 0

    def test_never_above_hundred(self, db, user_id):
        for _ in range(12):
            row = mastery.record_answer(db, user_id, "loops", None, True)
        assert row.mastery_level == 100

    def test_one_row_per_user_course_topic(self, db, user_id):
        """Repeated updates upsert the same row; other courses get their own."""
        mastery.record_answer(db, user_id, "sets", "MATH101", True)
        mastery.record_answer(db, user_id, "sets", "MATH101", False)
        mastery.record_answer(db, user_id, "sets", None, True)
        rows = db.query(StudyLevel).filter(StudyLevel.user_id == user_id, StudyLevel.topic == "sets").all()
        assert sorted(r.course_id for r in rows) == ["MATH101", "general"]


class TestUpsert:
    """Tests for direct mastery writes."""

    def test_initial_value_for_new_rows(self, db, user_id):
        row = mastery.upsert_study_level(db, user_id, "proofs", None, delta=-3, initial=70)
        assert row.mastery_level == 67

    def test_absolute_mastery(self, db, user_id):
        mastery.upsert_study_level(db, user_id, "proofs", None, delta=10)
        row = mastery.upsert_study_level(db, user_id, "proofs", None, mastery=150)
        assert row.mastery_level == 100


def _level(value, attempted=10, correct=5, updated=None):
    return StudyLevel(
        topic=f"t{value}",
        course_id="general",
        mastery_level=value,
        questions_attempted=attempted,
        questions_correct=correct,
        last_updated=updated or datetime.utcnow(),
    )


class TestStatistics:
    """Tests for the derived analytics numbers."""

    def test_consistency(self):
        assert mastery.consistency([_level(50), _level(50)]) == 1.0
        assert mastery.consistency([_level(0), _level(100)]) == 0.0

    def test_mastery_potential_capped(self):
        result = mastery.mastery_potential([_level(90), _level(90)], avg_accuracy=100, total_questions=200)
        assert result["projected_mastery"] == 95
        assert result["confidence_level"] == "high"

    def test_improvement_factors_use_recent_review(self):
        now = datetime.utcnow()
        stale = [_level(70, updated=now - timedelta(days=30)), _level(72, updated=now - timedelta(days=30))]
        result = mastery.improvement_factors(stale, avg_accuracy=90, total_questions=60, voice_interactions=40, now=now)
        names = [f["factor"] for f in result["factors"]]
        assert "Regular Review" in names
        assert "Active Recall & Vocal Learning" not in names

    def test_current_semester(self):
        assert mastery.current_semester(datetime(2026, 3, 1)) == "Spring"
        assert mastery.current_semester(datetime(2026, 7, 1)) == "Summer"
        assert mastery.current_semester(datetime(2026, 10, 1)) == "Fall"
