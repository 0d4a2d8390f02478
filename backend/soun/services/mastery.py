"""Per-topic mastery bookkeeping and the statistics derived from it.

Mastery is an integer 0-100 stored once per (user, course, topic). Quiz
answers move it by fixed steps; study-session completion and semantic-memory
events set it directly.
"""
from __future__ import annotations
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db import run_with_retry
from ..models import StudyLevel

logger = logging.getLogger(__name__)

MASTERY_CORRECT_STEP = 10
MASTERY_INCORRECT_STEP = 5
MASTERED_THRESHOLD = 80
WEAK_THRESHOLD = 60
GENERAL_COURSE = "general"


def clamp_mastery(value: float) -> int:
	return max(0, min(100, int(round(value))))


def upsert_study_level(
	db: Session,
	user_id: int,
	topic: str,
	course_id: Optional[str] = None,
	*,
	attempted: int = 0,
	correct: int = 0,
	delta: Optional[int] = None,
	mastery: Optional[float] = None,
	initial: int = 0,
	strengths: Optional[List[str]] = None,
	weaknesses: Optional[List[str]] = None,
	recommended_actions: Optional[List[str]] = None,
) -> StudyLevel:
	"""Create or update the single mastery row for ``(user, course, topic)``.

	``mastery`` sets the level outright; otherwise ``delta`` is added to the
	current level, starting from ``initial`` for a new row. The result is
	always clamped to 0-100.
	"""
	course_key = (course_id or GENERAL_COURSE).strip() or GENERAL_COURSE
	topic = (topic or "general").strip()[:256] or "general"

	def _apply() -> StudyLevel:
		row = (
			db.query(StudyLevel)
			.filter(StudyLevel.user_id == user_id, StudyLevel.course_id == course_key, StudyLevel.topic == topic)
			.first()
		)
		if row is None:
			row = StudyLevel(user_id=user_id, course_id=course_key, topic=topic, mastery_level=clamp_mastery(initial),
				questions_attempted=0, questions_correct=0, strengths=[], weaknesses=[], recommended_actions=[])
			db.add(row)
		row.questions_attempted = (row.questions_attempted or 0) + attempted
		row.questions_correct = (row.questions_correct or 0) + correct
		if mastery is not None:
			row.mastery_level = clamp_mastery(mastery)
		elif delta is not None:
			row.mastery_level = clamp_mastery((row.mastery_level or 0) + delta)
		if strengths is not None:
			row.strengths = list(strengths)
		if weaknesses is not None:
			row.weaknesses = list(weaknesses)
		if recommended_actions is not None:
			row.recommended_actions = list(recommended_actions)
		row.last_updated = datetime.utcnow()
		db.commit()
		return row

	try:
		return run_with_retry(_apply)
	except IntegrityError:
		# Lost a race with a concurrent insert for the same key; update theirs
		db.rollback()
		return run_with_retry(_apply)


def record_answer(db: Session, user_id: int, topic: str, course_id: Optional[str], is_correct: bool) -> StudyLevel:
	step = MASTERY_CORRECT_STEP if is_correct else -MASTERY_INCORRECT_STEP
	return upsert_study_level(db, user_id, topic, course_id, attempted=1, correct=1 if is_correct else 0, delta=step)


def levels_for(db: Session, user_id: int, course_id: Optional[str] = None) -> List[StudyLevel]:
	query = db.query(StudyLevel).filter(StudyLevel.user_id == user_id)
	if course_id:
		query = query.filter(StudyLevel.course_id == course_id)
	return query.order_by(StudyLevel.mastery_level.desc()).all()


def average_mastery(levels: Iterable[StudyLevel]) -> int:
	values = [lvl.mastery_level for lvl in levels]
	return round(sum(values) / len(values)) if values else 0


def consistency(levels: List[StudyLevel]) -> float:
	"""1.0 when every topic sits at the same mastery, falling with spread."""
	if not levels:
		return 0.0
	values = [lvl.mastery_level for lvl in levels]
	mean = sum(values) / len(values)
	std = math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))
	return max(0.0, 1 - std / 50)


def mastery_potential(levels: List[StudyLevel], avg_accuracy: float, total_questions: int) -> Dict[str, Any]:
	current = sum(lvl.mastery_level for lvl in levels) / len(levels)
	consistency_factor = consistency(levels)
	practice_factor = min(total_questions / (len(levels) * 20), 1)
	accuracy_factor = avg_accuracy / 100
	projected = min(current + consistency_factor * 15 + practice_factor * 10 + accuracy_factor * 10, 95)
	confidence = "low"
	if total_questions >= len(levels) * 15 and consistency_factor > 0.6:
		confidence = "high"
	elif total_questions >= len(levels) * 8 and consistency_factor > 0.4:
		confidence = "medium"
	return {
		"current_mastery": round(current),
		"projected_mastery": round(projected),
		"potential_increase": round(projected - current),
		"confidence_level": confidence,
	}


def improvement_factors(
	levels: List[StudyLevel],
	avg_accuracy: float,
	total_questions: int,
	*,
	voice_interactions: int = 0,
	now: Optional[datetime] = None,
) -> Dict[str, Any]:
	factors: List[Dict[str, Any]] = []
	total_impact = 0

	practice_score = min(total_questions / len(levels) / 20, 1) * 100
	if practice_score < 80:
		factors.append({
			"factor": "Practice Volume",
			"current": round(practice_score),
			"target": 100,
			"impact": "high" if practice_score < 50 else "medium",
			"recommendations": [
				"Complete at least 15-20 practice questions per topic",
				"Use spaced repetition - practice topics multiple times over weeks",
				"Focus on weak topics identified in your learning insights",
			],
		})
		total_impact += 3 if practice_score < 50 else 2

	if avg_accuracy < 85:
		factors.append({
			"factor": "Answer Accuracy",
			"current": round(avg_accuracy),
			"target": 90,
			"impact": "high" if avg_accuracy < 70 else "medium",
			"recommendations": [
				"Review incorrect answers thoroughly to understand mistakes",
				"Use the Feynman Technique - explain concepts in simple terms",
				"Create concept maps to connect related ideas",
			],
		})
		total_impact += 3 if avg_accuracy < 70 else 2

	consistency_score = consistency(levels) * 100
	if consistency_score < 70:
		factors.append({
			"factor": "Study Consistency",
			"current": round(consistency_score),
			"target": 85,
			"impact": "high",
			"recommendations": [
				"Balance your study time across all topics",
				"Don't neglect difficult topics - they need more attention",
				"Set up regular study sessions (e.g., Pomodoro technique)",
			],
		})
		total_impact += 3

	vocal_score = min(voice_interactions / 20, 1) * 100
	if vocal_score < 60:
		factors.append({
			"factor": "Active Recall & Vocal Learning",
			"current": round(vocal_score),
			"target": 75,
			"impact": "medium",
			"recommendations": [
				"Use voice flashcards to practice active recall",
				"Explain concepts out loud to yourself or others",
			],
		})
		total_impact += 2

	now = now or datetime.utcnow()
	recent = sum(1 for lvl in levels if lvl.last_updated and now - lvl.last_updated <= timedelta(days=7))
	review_score = recent / len(levels) * 100
	if review_score < 75:
		factors.append({
			"factor": "Regular Review",
			"current": round(review_score),
			"target": 85,
			"impact": "high",
			"recommendations": [
				"Review topics at increasing intervals (1 day, 3 days, 1 week)",
				"Use interleaved practice - mix different problem types",
				"Revisit mastered topics monthly to prevent forgetting",
			],
		})
		total_impact += 3

	return {"factors": factors, "overall_impact_score": min(total_impact / 15 * 100, 100)}


def study_level_summary(levels: List[StudyLevel], *, voice_interactions: int = 0, now: Optional[datetime] = None) -> Dict[str, Any]:
	if not levels:
		return {"overall_mastery": 0, "topics_studied": 0, "total_questions": 0, "correct_answers": 0}
	total_questions = sum(lvl.questions_attempted for lvl in levels)
	correct_answers = sum(lvl.questions_correct for lvl in levels)
	avg_accuracy = correct_answers / total_questions * 100 if total_questions else 0.0
	return {
		"overall_mastery": average_mastery(levels),
		"topics_studied": len(levels),
		"total_questions": total_questions,
		"correct_answers": correct_answers,
		"avg_accuracy": round(avg_accuracy),
		"consistency": round(consistency(levels), 2),
		"mastery_potential": mastery_potential(levels, avg_accuracy, total_questions),
		"improvement_factors": improvement_factors(levels, avg_accuracy, total_questions, voice_interactions=voice_interactions, now=now),
		"topics_with_high_mastery": sum(1 for lvl in levels if lvl.mastery_level >= MASTERED_THRESHOLD),
		"topics_with_low_mastery": sum(1 for lvl in levels if lvl.mastery_level < WEAK_THRESHOLD),
	}


def current_semester(today: Optional[datetime] = None) -> str:
	month = (today or datetime.utcnow()).month
	if month <= 5:
		return "Spring"
	if month <= 8:
		return "Summer"
	return "Fall"
