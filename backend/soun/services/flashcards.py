from __future__ import annotations

import logging
import random
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import LLMError
from ..openai_client import ask_json
from ..sessions import SessionStore

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")
SESSION_TYPES = ("practice", "review", "challenge")
SKIP_COMMANDS = {"skip", "next", "pass"}
END_COMMANDS = {"end session", "stop", "quit"}
REPEAT_COMMANDS = {"repeat", "repeat question"}

CORRECT_RESPONSES = [
	"Correct!", "Exactly right!", "Perfect!", "Great job!", "That's right!",
	"Excellent!", "Well done!", "Spot on!", "Nice work!", "You got it!",
]
FIRST_MISS_RESPONSES = [
	"Hmm, not quite. Want to give it another shot?",
	"That's not quite right. Care to try again?",
	"Not exactly. Would you like another attempt?",
	"Close, but not quite there. Try once more?",
]
SECOND_MISS_RESPONSES = [
	"Still not quite right. Think about it differently and try once more.",
	"Not quite there yet. Consider what key elements might be missing and try again.",
	"Close, but missing something important. One more try?",
]


class Flashcard(BaseModel):
	id: str
	front: str
	back: str
	difficulty: str = "medium"
	category: str = "general"
	source: str = "manual"
	correct_count: int = 0
	incorrect_count: int = 0
	mastery: float = Field(default=0.0, ge=0.0, le=1.0)
	last_reviewed: Optional[datetime] = None


class _FlashcardSession:
	def __init__(self, user_id: int, cards: List[Flashcard], session_type: str = "practice", course_id: Optional[int] = None) -> None:
		self.user_id = user_id
		self.course_id = course_id
		self.session_type = session_type
		self.cards = cards
		self.current_index = 0
		self.correct_answers = 0
		self.total_answers = 0
		self.attempts: Dict[str, int] = {}
		self.started_at = datetime.utcnow()

	@property
	def current_card(self) -> Optional[Flashcard]:
		return self.cards[self.current_index] if self.current_index < len(self.cards) else None

	@property
	def accuracy(self) -> float:
		return self.correct_answers / self.total_answers if self.total_answers else 0.0

	def stats(self) -> Dict[str, Any]:
		return {
			"current": min(self.current_index + 1, len(self.cards)),
			"total": len(self.cards),
			"correct_count": self.correct_answers,
			"total_answers": self.total_answers,
			"accuracy": self.accuracy,
			"time_elapsed": (datetime.utcnow() - self.started_at).total_seconds(),
		}


@dataclass
class Graded:
	card: Flashcard
	correct: bool


@dataclass
class Turn:
	response: Dict[str, Any]
	graded: Optional[Graded] = None


_sessions: SessionStore[_FlashcardSession] = SessionStore()


def _response(kind: str, content: str, session: Optional[_FlashcardSession] = None, *, card: Optional[Flashcard] = None, next_action: str = "continue") -> Dict[str, Any]:
	return {
		"type": kind,
		"content": content,
		"flashcard": card.model_dump(mode="json") if card else None,
		"session_stats": session.stats() if session else None,
		"next_action": next_action,
	}


def validate_flashcards(raw: Any, source: str) -> List[Flashcard]:
	"""Normalise LLM card dicts, accepting question/answer as aliases."""
	if isinstance(raw, dict):
		raw = raw.get("flashcards") or raw.get("cards") or []
	if not isinstance(raw, list):
		return []
	cards: List[Flashcard] = []
	for item in raw:
		if not isinstance(item, dict):
			continue
		difficulty = str(item.get("difficulty") or "").lower()
		cards.append(Flashcard(
			id=uuid.uuid4().hex,
			front=str(item.get("front") or item.get("question") or "Question not available"),
			back=str(item.get("back") or item.get("answer") or "Answer not available"),
			difficulty=difficulty if difficulty in DIFFICULTIES else "medium",
			category=str(item.get("category") or source),
			source=source,
		))
	return cards


async def generate_from_document(title: str, content: str, count: int = 10) -> List[Flashcard]:
	prompt = (
		f"Create {count} flashcards from this document for spaced-repetition study.\n"
		"Test understanding and application, not just recall. Keep answers concise.\n"
		'Return JSON: {"flashcards": [{"front": str, "back": str, "difficulty": "easy|medium|hard", "category": str}]}\n\n'
		f"Document title: {title}\n\nContent:\n{content[:6000]}"
	)
	data = await ask_json(prompt, system="You are an expert educator creating flashcards for effective spaced repetition learning.")
	return validate_flashcards(data, title)


async def generate_from_voice(transcript: str, count: int = 5, course_name: Optional[str] = None) -> List[Flashcard]:
	topic = course_name or "general study topics"
	prompt = (
		f'A student said: "{transcript}"\n'
		f"Work out the topic they want to study (course context: {topic}) and create {count} flashcards about it.\n"
		'Return JSON: {"topic": str, "flashcards": [{"front": str, "back": str, "difficulty": "easy|medium|hard"}]}'
	)
	data = await ask_json(prompt, system="Create educational flashcards based on user requests.", temperature=0.5)
	source = str(data.get("topic") or "Voice Generated") if isinstance(data, dict) else "Voice Generated"
	return validate_flashcards(data, source)


def _normalize(text: str) -> str:
	return re.sub(r"[^\w\s]", "", (text or "").lower()).strip()


def word_similarity(a: str, b: str) -> float:
	words_a, words_b = a.split(), b.split()
	if not words_a or not words_b:
		return 0.0
	shared = [w for w in words_a if w in words_b]
	return len(shared) / max(len(words_a), len(words_b))


def simple_answer_match(correct_answer: str, user_answer: str) -> bool:
	correct, given = _normalize(correct_answer), _normalize(user_answer)
	if not given:
		return False
	return correct == given or given in correct or correct in given or word_similarity(correct, given) > 0.7


async def evaluate_answer(card: Flashcard, user_answer: str) -> Dict[str, Any]:
	prompt = (
		"Evaluate this flashcard answer.\n"
		f"Question: {card.front}\nCorrect answer: {card.back}\nStudent answer: {user_answer}\n\n"
		"Return JSON with is_correct (boolean), feedback (string), confidence (0-1), "
		"missing_elements (array of strings naming concepts the student left out)."
	)
	try:
		data = await ask_json(prompt, system="You are an expert educator evaluating student answers. Be accurate and encouraging.")
		if not isinstance(data, dict):
			raise LLMError("Evaluation was not a JSON object")
		return {
			"is_correct": bool(data.get("is_correct", False)),
			"feedback": str(data.get("feedback") or ""),
			"missing_elements": [str(m) for m in data.get("missing_elements") or []],
		}
	except LLMError as err:
		logger.info("Flashcard grading fell back to text match: %s", err.message)
		ok = simple_answer_match(card.back, user_answer)
		return {"is_correct": ok, "feedback": "", "missing_elements": []}


def start_session(user_id: int, cards: List[Flashcard], session_type: str = "practice", course_id: Optional[int] = None) -> tuple[str, Dict[str, Any]]:
	shuffled = list(cards)
	random.shuffle(shuffled)
	session = _FlashcardSession(user_id, shuffled, session_type, course_id)
	session_id = _sessions.add(session)
	first = session.current_card
	content = (
		f"Starting your {session_type} session with {len(cards)} flashcards. Answer out loud; say \"skip\" to move on "
		f"or \"end session\" to finish. Here's your first question: {first.front if first else ''}"
	).strip()
	return session_id, _response("instructions", content, session, card=first)


def get_session(session_id: str, user_id: int) -> Optional[_FlashcardSession]:
	session = _sessions.get(session_id)
	if session is None or session.user_id != user_id:
		return None
	return session


def _missing_session() -> Dict[str, Any]:
	return _response("instructions", "I couldn't find your session. Please start a new flashcard session.", next_action="end")


def end_session(session_id: str) -> Dict[str, Any]:
	session = _sessions.pop(session_id)
	if session is None:
		return _response("summary", "Session already ended.", next_action="end")
	accuracy = session.accuracy
	minutes = round((datetime.utcnow() - session.started_at).total_seconds() / 60)
	if accuracy >= 0.9:
		verdict = "Excellent work! You're mastering this material."
	elif accuracy >= 0.7:
		verdict = "Good job! You're on the right track."
	elif accuracy >= 0.5:
		verdict = "Not bad! Keep practicing to improve."
	else:
		verdict = "Keep studying! This material needs more review."
	session.current_index = len(session.cards)
	content = (
		f"Session complete! You got {session.correct_answers} out of {session.total_answers} correct "
		f"({round(accuracy * 100)}% accuracy) in {minutes} minutes. {verdict}"
	)
	return _response("summary", content, session, next_action="end")


def next_question(session_id: str, user_id: int) -> Dict[str, Any]:
	session = get_session(session_id, user_id)
	if session is None:
		return _response("instructions", "Session not found. Please start a new flashcard session.", next_action="end")
	card = session.current_card
	if card is None:
		return end_session(session_id)
	return _response("question", card.front, session, card=card)


def _advance(session_id: str, session: _FlashcardSession, feedback: str) -> Dict[str, Any]:
	session.current_index += 1
	card = session.current_card
	if card is None:
		summary = end_session(session_id)
		summary["type"] = "feedback"
		summary["content"] = f"{feedback} {summary['content']}"
		return summary
	return _response("feedback", f"{feedback} Next question: {card.front}", session, card=card)


async def process_answer(session_id: str, user_id: int, answer: str) -> Turn:
	session = get_session(session_id, user_id)
	if session is None:
		return Turn(_missing_session())
	card = session.current_card
	if card is None:
		return Turn(end_session(session_id))

	command = (answer or "").lower().strip()
	if command in SKIP_COMMANDS:
		session.total_answers += 1
		return Turn(_advance(session_id, session, f"Skipped. The answer was: {card.back}."))
	if command in END_COMMANDS:
		return Turn(end_session(session_id))
	if command in REPEAT_COMMANDS:
		return Turn(_response("question", f"Let me repeat the question: {card.front}", session, card=card))

	attempt = session.attempts.get(card.id, 0) + 1
	session.attempts[card.id] = attempt
	evaluation = await evaluate_answer(card, answer)
	card.last_reviewed = datetime.utcnow()

	if evaluation["is_correct"]:
		session.correct_answers += 1
		session.total_answers += 1
		card.correct_count += 1
		card.mastery = min(1.0, round(card.mastery + 0.1, 2))
		feedback = random.choice(CORRECT_RESPONSES)
		if len(evaluation["feedback"]) > 10:
			feedback += f" {evaluation['feedback']}"
		return Turn(_advance(session_id, session, feedback), Graded(card, True))

	card.incorrect_count += 1
	card.mastery = max(0.0, round(card.mastery - 0.05, 2))
	if attempt == 1:
		return Turn(_response("feedback", random.choice(FIRST_MISS_RESPONSES), session, card=card))
	if attempt == 2:
		return Turn(_response("feedback", random.choice(SECOND_MISS_RESPONSES), session, card=card))

	# Third miss: reveal and move on
	session.total_answers += 1
	reveal = f"Here's how it works: {card.back}."
	if evaluation["missing_elements"]:
		reveal += f" You were missing these key elements: {', '.join(evaluation['missing_elements'])}."
	if evaluation["feedback"]:
		reveal += f" {evaluation['feedback']}"
	return Turn(_advance(session_id, session, reveal), Graded(card, False))


def session_stats(session_id: str, user_id: int) -> Optional[Dict[str, Any]]:
	session = get_session(session_id, user_id)
	return session.stats() if session else None


def purge_expired() -> int:
	return _sessions.purge_expired()


def reset_sessions() -> None:
	_sessions.clear()
