from __future__ import annotations

import logging
import random
import re
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import LLMError
from ..openai_client import ask_json

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("multiple-choice", "true-false", "short-answer", "explanation")
OBJECTIVE_TYPES = ("multiple-choice", "true-false")
DIFFICULTIES = ("easy", "medium", "hard")
PRACTICE_HEAVY_SUBJECTS = (
	"mathematics", "physics", "chemistry", "engineering", "statistics", "computer science", "economics",
)
EXPLANATION_METHOD_KEYWORDS = ("method", "approach", "technique", "strategy", "formula", "way to", "different")
GROUPING_KEYWORDS = ("method", "approach", "technique", "strategy", "formula", "theorem")
_APPROACH_NAME = re.compile(r"(method|approach|technique|strategy|formula|theorem)[\s:]?\s*([A-Za-z\s]+)", re.I)

CORRECT_FEEDBACK = ["Correct!", "Exactly right!", "Perfect!", "Great job!", "That's right!"]
FIRST_MISS_FEEDBACK = "Hmm, not quite. Want to give it another shot?"
SECOND_MISS_FEEDBACK = "Still not quite right. Think about the key concepts and try once more."


class QuizQuestion(BaseModel):
	id: str
	question: str
	type: str = "short-answer"
	options: Optional[List[str]] = None
	correct_answer: str = ""
	explanation: str = ""
	difficulty: str = "medium"
	concept_tested: str = "general"
	approach: Optional[str] = None
	document_reference: Optional[str] = None


class UserAnswer(BaseModel):
	question_id: str
	answer: str = ""
	confidence: Optional[int] = None
	time_spent: Optional[int] = None


class ConceptAssessment(BaseModel):
	concept: str
	mastery_level: float = Field(ge=0, le=1)
	strengths: List[str] = []
	weaknesses: List[str] = []
	recommended_actions: List[str] = []


def is_practice_heavy(subject: Optional[str]) -> bool:
	lowered = (subject or "").lower()
	return any(s in lowered for s in PRACTICE_HEAVY_SUBJECTS)


def validate_questions(raw: Any) -> List[QuizQuestion]:
	"""Coerce LLM question dicts into QuizQuestion, filling defaults."""
	if isinstance(raw, dict):
		raw = raw.get("questions") or []
	if not isinstance(raw, list):
		return []
	questions: List[QuizQuestion] = []
	for item in raw:
		if not isinstance(item, dict):
			continue
		qtype = str(item.get("type") or "").lower()
		difficulty = str(item.get("difficulty") or "").lower()
		options = item.get("options")
		questions.append(QuizQuestion(
			id=str(item.get("id") or uuid.uuid4().hex),
			question=str(item.get("question") or "Question text not available"),
			type=qtype if qtype in QUESTION_TYPES else "short-answer",
			options=[str(o) for o in options] if isinstance(options, list) and options else None,
			correct_answer=str(item.get("correct_answer") or item.get("correctAnswer") or ""),
			explanation=str(item.get("explanation") or ""),
			difficulty=difficulty if difficulty in DIFFICULTIES else "medium",
			concept_tested=str(item.get("concept_tested") or item.get("conceptTested") or "general"),
			approach=str(item["approach"]) if item.get("approach") else None,
			document_reference=str(item["document_reference"]) if item.get("document_reference") else None,
		))
	return questions


_QUESTION_SCHEMA = (
	'Return JSON: {"questions": [{"question": str, "type": "multiple-choice|true-false|short-answer|explanation", '
	'"options": [str] (multiple-choice only), "correct_answer": str, "explanation": str, '
	'"difficulty": "easy|medium|hard", "concept_tested": str}]}'
)


def _approach_of(q: QuizQuestion) -> Optional[str]:
	if q.approach:
		return q.approach.strip().lower()[:20]
	text = f"{q.question} {q.explanation}".lower()
	if not any(k in text for k in GROUPING_KEYWORDS):
		return None
	match = _APPROACH_NAME.search(q.explanation) or _APPROACH_NAME.search(q.question)
	return match.group(2).strip().lower()[:20] if match else "general"


def ensure_interleaved_order(questions: List[QuizQuestion]) -> List[QuizQuestion]:
	"""Alternate approach groups and slot one ungrouped question after every third."""
	groups: Dict[str, List[QuizQuestion]] = {}
	ungrouped: List[QuizQuestion] = []
	for q in questions:
		approach = _approach_of(q)
		if approach is None:
			ungrouped.append(q)
		else:
			groups.setdefault(approach, []).append(q)

	interleaved: List[QuizQuestion] = []
	if len(groups) > 1:
		longest = max(len(g) for g in groups.values())
		for i in range(longest):
			for group in groups.values():
				if i < len(group):
					interleaved.append(group[i])
	else:
		for group in groups.values():
			interleaved.extend(group)

	result: List[QuizQuestion] = []
	pending = iter(ungrouped)
	for index, q in enumerate(interleaved, start=1):
		result.append(q)
		if index % 3 == 0:
			extra = next(pending, None)
			if extra is not None:
				result.append(extra)
	result.extend(pending)
	return result


async def generate_document_quiz(
	subject: str,
	content: str,
	*,
	topic: Optional[str] = None,
	count: int = 5,
	difficulty: str = "medium",
) -> List[QuizQuestion]:
	practice = is_practice_heavy(subject)
	focus = (
		"Most questions should require applying a method to a concrete problem; state the method used in each explanation."
		if practice else
		"Mix recall, understanding and application questions."
	)
	prompt = (
		f"Create {count} {difficulty} quiz questions for a student of {subject}"
		f"{f' focusing on {topic}' if topic else ''}, based on this course material.\n{focus}\n"
		f"{_QUESTION_SCHEMA}\n\nMaterial:\n{content[:6000]}"
	)
	data = await ask_json(prompt, system="You are an expert educator writing quiz questions from course material.", temperature=0.4)
	questions = validate_questions(data)[:count]
	return ensure_interleaved_order(questions) if practice else questions


def explanation_mentions_methods(explanation: str) -> bool:
	lowered = (explanation or "").lower()
	return any(k in lowered for k in EXPLANATION_METHOD_KEYWORDS)


async def generate_post_explanation_quiz(topic: str, explanation: str, *, count: int = 3, difficulty: str = "medium", document_context: Optional[str] = None) -> List[QuizQuestion]:
	multiple_approaches = explanation_mentions_methods(explanation)
	lines = [
		f"Generate {count} quiz questions to test understanding right after this explanation.",
		f"Topic: {topic}",
		f"Explanation given: {explanation}",
	]
	if document_context:
		lines.append(f"Document context: {document_context[:3000]}")
	if multiple_approaches:
		lines.append(
			"The explanation compares methods. Include questions on when to use each approach, "
			"how to tell similar methods apart, and why one suits a given context better."
		)
	lines.append("Use one multiple-choice, one short-answer and one explanation question where possible.")
	lines.append(f"Difficulty: {difficulty}")
	lines.append(_QUESTION_SCHEMA)
	data = await ask_json("\n".join(lines), system="You write short comprehension checks for students.", temperature=0.4)
	return validate_questions(data)[:count]


async def generate_interleaved_quiz(subject: str, topics: List[str], approaches: List[str], target_count: int = 8) -> List[QuizQuestion]:
	prompt = (
		f"Create {target_count} interleaved practice questions for {subject}.\n"
		f"Topics: {', '.join(topics)}\nApproaches to discriminate between: {', '.join(approaches)}\n"
		"Each question must be solvable by exactly one of the approaches; record it in an \"approach\" field "
		"using one of the listed names. Never put two questions for the same approach next to each other.\n"
		f"{_QUESTION_SCHEMA}"
	)
	data = await ask_json(prompt, system="You design interleaved practice that trains approach selection.", temperature=0.5)
	return ensure_interleaved_order(validate_questions(data)[:target_count])


async def generate_self_test(topics: List[str], *, count: int = 5, difficulty: str = "medium", weak_areas: Optional[List[str]] = None, document_context: str = "") -> List[QuizQuestion]:
	focus = weak_areas if weak_areas else topics
	prompt = (
		f"Create {count} self-test questions so a student can judge their own mastery.\n"
		f"Focus areas: {', '.join(focus) or 'general review'}\nDifficulty: {difficulty}\n"
		"Mix concept understanding, application, approach selection and reflective questions.\n"
		f"{_QUESTION_SCHEMA}"
	)
	if document_context:
		prompt += f"\n\nStudy materials:\n{document_context[:4000]}"
	data = await ask_json(prompt, system="You are an expert educator creating self-assessment questions.", temperature=0.6)
	return validate_questions(data)[:count]


def is_answer_correct(question: QuizQuestion, user_answer: str) -> bool:
	if not user_answer or not question.correct_answer:
		return False
	if question.type in OBJECTIVE_TYPES:
		return user_answer.strip().lower() == question.correct_answer.strip().lower()
	user_words = user_answer.lower().split()
	correct_words = question.correct_answer.lower().split()
	matched = [
		w for w in correct_words
		if len(w) > 3 and any(u in w or w in u for u in user_words if len(u) > 2)
	]
	return len(matched) / max(len(correct_words), 1) >= 0.6


async def _grade_open_answers(pairs: List[Dict[str, str]]) -> Dict[str, Dict[str, Any]]:
	prompt = (
		"Grade these open quiz answers. Give partial credit for partially correct explanations.\n"
		f"{pairs}\n\n"
		'Return JSON: {"results": [{"question_id": str, "is_correct": bool, "mastery": 0-1, '
		'"feedback": str, "strengths": [str], "weaknesses": [str]}]}'
	)
	data = await ask_json(prompt, system="You are an expert educator evaluating student quiz responses.")
	graded = data.get("results") if isinstance(data, dict) else None
	if not isinstance(graded, list):
		raise LLMError("Grading response had no results")
	return {str(r.get("question_id")): r for r in graded if isinstance(r, dict)}


def adaptive_feedback(is_correct: bool, attempts: int, explanation: str, correct_answer: str) -> tuple[str, bool]:
	"""Feedback text and whether to reveal the answer on this attempt."""
	if is_correct:
		return random.choice(CORRECT_FEEDBACK), False
	if attempts <= 1:
		return FIRST_MISS_FEEDBACK, False
	if attempts == 2:
		return SECOND_MISS_FEEDBACK, False
	return f"Here's how it works: {explanation or correct_answer}. You were close!", True


async def evaluate_answers(
	questions: List[QuizQuestion],
	answers: List[UserAnswer],
	attempt_history: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
	by_id = {a.question_id: a.answer for a in answers}
	attempt_history = attempt_history or {}

	open_pairs = [
		{"question_id": q.id, "question": q.question, "correct_answer": q.correct_answer, "user_answer": by_id.get(q.id, "")}
		for q in questions
		if q.type not in OBJECTIVE_TYPES and by_id.get(q.id)
	]
	graded: Dict[str, Dict[str, Any]] = {}
	if open_pairs:
		try:
			graded = await _grade_open_answers(open_pairs)
		except LLMError as err:
			logger.info("Open answers graded by keyword overlap: %s", err.message)

	results: List[Dict[str, Any]] = []
	concepts: Dict[str, Dict[str, Any]] = {}
	for q in questions:
		user_answer = by_id.get(q.id, "")
		verdict = graded.get(q.id)
		if verdict is not None:
			correct = bool(verdict.get("is_correct"))
			try:
				concept_mastery = max(0.0, min(1.0, float(verdict.get("mastery", 1.0 if correct else 0.0))))
			except (TypeError, ValueError):
				concept_mastery = 1.0 if correct else 0.0
		else:
			correct = is_answer_correct(q, user_answer)
			concept_mastery = 1.0 if correct else 0.0
		attempts = int(attempt_history.get(q.id, 1) or 1)
		feedback, reveal = adaptive_feedback(correct, attempts, q.explanation, q.correct_answer)
		results.append({
			"question_id": q.id,
			"user_answer": user_answer,
			"is_correct": correct,
			"explanation": q.explanation,
			"correct_answer": q.correct_answer if (correct or reveal) else None,
			"concept_mastery": concept_mastery,
			"adaptive_feedback": feedback,
			"should_reveal_answer": reveal,
		})
		bucket = concepts.setdefault(q.concept_tested, {"scores": [], "strengths": [], "weaknesses": []})
		bucket["scores"].append(concept_mastery)
		if verdict is not None:
			bucket["strengths"].extend(str(s) for s in verdict.get("strengths") or [])
			bucket["weaknesses"].extend(str(w) for w in verdict.get("weaknesses") or [])

	assessments = []
	recommendations: List[str] = []
	for concept, bucket in concepts.items():
		level = sum(bucket["scores"]) / len(bucket["scores"])
		actions: List[str] = []
		if level < 0.7:
			actions = [f"Review the fundamentals of {concept}", f"Practice a few more {concept} questions"]
			recommendations.append(f"Spend more time on {concept}")
		assessments.append({
			"concept": concept,
			"mastery_level": round(level, 2),
			"strengths": bucket["strengths"],
			"weaknesses": bucket["weaknesses"],
			"recommended_actions": actions,
		})
	correct_total = sum(1 for r in results if r["is_correct"])
	if questions and correct_total == len(questions):
		recommendations.append("Great work! Try a harder quiz or an interleaved practice set next.")
	return {
		"results": results,
		"overall_score": correct_total / len(questions) if questions else 0.0,
		"concept_assessments": assessments,
		"recommendations": recommendations,
	}


async def adaptive_follow_up(assessments: List[ConceptAssessment], document_context: Optional[str] = None) -> Dict[str, Any]:
	weak = [a for a in assessments if a.mastery_level < 0.7]
	strong = [a for a in assessments if a.mastery_level > 0.8]

	async def _targeted(items: List[ConceptAssessment], kind: str) -> List[QuizQuestion]:
		if not items:
			return []
		names = ", ".join(a.concept for a in items)
		level = "easy" if kind == "remedial" else "hard"
		focus = "fundamental understanding and basic application" if kind == "remedial" else "advanced application and critical thinking"
		prompt = f"Create 2-3 {level} questions on: {names}. Focus on {focus}.\n{_QUESTION_SCHEMA}"
		if document_context:
			prompt += f"\n\nDocument context:\n{document_context[:3000]}"
		try:
			return validate_questions(await ask_json(prompt, temperature=0.4))
		except LLMError as err:
			logger.info("Follow-up %s questions unavailable: %s", kind, err.message)
			return []

	explanations: List[str] = []
	if weak:
		explanations = [
			f"{a.concept}: revisit the core idea, work through one concrete example, and explain it back in your own words."
			for a in weak
		]
	return {
		"reinforcement_questions": [q.model_dump() for q in await _targeted(weak, "remedial")],
		"remedial_explanations": explanations,
		"advanced_challenges": [q.model_dump() for q in await _targeted(strong, "advanced")],
	}


def evaluate_self_test(questions: List[QuizQuestion], answers: List[UserAnswer], total_time_ms: int = 0) -> Dict[str, Any]:
	by_id = {a.question_id: a for a in answers}
	correct = 0
	strong: List[str] = []
	weak: List[str] = []
	for q in questions:
		answer = by_id.get(q.id)
		if answer is not None and is_answer_correct(q, answer.answer):
			correct += 1
			strong.append(q.concept_tested)
		else:
			weak.append(q.concept_tested)
	confidences = [a.confidence for a in answers if a.confidence]
	avg_confidence = sum(confidences) / len(confidences) / 5 if confidences else 0.0
	score = correct / len(questions) if questions else 0.0
	calibration = "well calibrated"
	if confidences and avg_confidence - score > 0.2:
		calibration = "over-confident"
	elif confidences and score - avg_confidence > 0.2:
		calibration = "under-confident"
	return {
		"correct_answers": correct,
		"total_questions": len(questions),
		"overall_score": score,
		"average_confidence": round(avg_confidence, 2),
		"confidence_calibration": calibration,
		"strong_areas": sorted(set(strong) - set(weak)),
		"weak_areas": sorted(set(weak)),
		"total_time_minutes": round(total_time_ms / 1000 / 60, 2),
		"ready_for_exam": score >= 0.8,
	}
